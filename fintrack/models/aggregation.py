"""
Aggregation Models

An aggregation receipt proves that a (month, year) window has been folded
into the ledger. At most one receipt exists per window; its existence is
the only idempotency guard.
"""

from datetime import datetime
from decimal import Decimal
from enum import Enum
from typing import Optional
from uuid import UUID, uuid4

from pydantic import BaseModel, Field

from fintrack.models.ledger import LedgerEntry, Money
from fintrack.models.obligation import Period


class AggregationReceipt(BaseModel):
    """Persisted record of one completed aggregation."""

    id: UUID = Field(default_factory=uuid4)
    month: int = Field(..., ge=1, le=12)
    year: int
    total_amount: Money
    payment_count: int = Field(..., ge=1)
    entry_id: UUID
    aggregated_at: datetime = Field(default_factory=datetime.utcnow)

    @property
    def period(self) -> Period:
        return Period(month=self.month, year=self.year)


class AggregationOutcome(str, Enum):
    COMPLETED = "completed"
    NOTHING_TO_AGGREGATE = "nothing_to_aggregate"
    ALREADY_AGGREGATED = "already_aggregated"


class AggregationResult(BaseModel):
    """
    What an aggregation call did.

    Only COMPLETED carries a receipt and an emitted entry.
    """

    period: Period
    outcome: AggregationOutcome
    total_amount: Decimal = Decimal("0")
    payment_count: int = 0
    receipt: Optional[AggregationReceipt] = None
    entry: Optional[LedgerEntry] = None

    @property
    def message(self) -> str:
        if self.outcome == AggregationOutcome.COMPLETED:
            return (
                f"Aggregated {self.payment_count} payments totalling "
                f"{self.total_amount} for {self.period.label}"
            )
        if self.outcome == AggregationOutcome.ALREADY_AGGREGATED:
            return f"{self.period.label} has already been aggregated"
        return f"No paid obligations to aggregate for {self.period.label}"
