"""
Projection Result Models

Read-only views computed by the balance projector. Nothing here is stored.
"""

from datetime import date
from decimal import Decimal
from typing import Optional

from pydantic import BaseModel

from fintrack.models.ledger import Scope


class AccountBalance(BaseModel):
    account_id: str
    total_income: Decimal = Decimal("0")
    total_expenses: Decimal = Decimal("0")
    total_investments: Decimal = Decimal("0")

    @property
    def current_balance(self) -> Decimal:
        """Income minus expenses. Investments move money but are not spend."""
        return self.total_income - self.total_expenses


class CategorySpending(BaseModel):
    scope: Scope
    category_id: str
    amount: Decimal = Decimal("0")
    entry_count: int = 0


class EntryStats(BaseModel):
    account_id: str
    entry_count: int = 0
    total_income: Decimal = Decimal("0")
    total_expenses: Decimal = Decimal("0")
    average_amount: Decimal = Decimal("0")
    most_used_category: Optional[str] = None
    oldest_entry: Optional[date] = None
    newest_entry: Optional[date] = None
