"""Write validation package."""

from fintrack.validation.validator import LedgerEntryValidator

__all__ = ["LedgerEntryValidator"]
