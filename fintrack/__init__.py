"""
FinTrack - Ledger Engine Package

The recurring obligation and ledger aggregation core of a personal /
small-business finance tracker.

DESIGN PRINCIPLES:
1. Money is never double-counted
2. Every multi-row write is one atomic unit
3. Aggregation is safe to re-run
4. Every state change is auditable
5. Storage layer is swappable
"""

__version__ = "1.0.0"
__author__ = "FinTrack Team"
