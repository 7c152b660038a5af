"""Ledger entry aggregate service."""

from fintrack.ledger.service import LedgerService

__all__ = ["LedgerService"]
