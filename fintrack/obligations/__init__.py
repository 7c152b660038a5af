"""Per-period fee obligations and debtor master data."""

from fintrack.obligations.ledger import ObligationLedger

__all__ = ["ObligationLedger"]
