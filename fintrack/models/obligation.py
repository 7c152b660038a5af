"""
Obligation (Fee Period) Models

An obligation is what one debtor owes for one (month, year) period,
tracked against partial payments.

INVARIANTS:
1. 0 <= paid_amount <= total_amount
2. paid_amount never decreases within a period
3. status is a pure function of (paid_amount, total_amount)
4. Exactly one obligation per (debtor, month, year)

`overdue` is never stored. It is derived at read time from the period
and today's date (see effective_status).
"""

import calendar
from datetime import date, datetime
from decimal import Decimal
from enum import Enum
from typing import Optional, Union
from uuid import UUID, uuid4

from pydantic import BaseModel, ConfigDict, Field, model_validator

from fintrack.models.ledger import Money


class ObligationStatus(str, Enum):
    """Payment state of an obligation."""
    PENDING = "pending"
    PARTIAL = "partial"
    PAID = "paid"
    OVERDUE = "overdue"  # Derived only, never stored


class PaymentMethod(str, Enum):
    """Accepted payment methods."""
    CASH = "cash"
    CARD = "card"
    BANK_TRANSFER = "bank_transfer"
    UPI = "upi"


class DebtorStatus(str, Enum):
    ACTIVE = "active"
    INACTIVE = "inactive"
    GRADUATED = "graduated"


class SubscriptionStatus(str, Enum):
    ACTIVE = "active"
    COMPLETED = "completed"
    DROPPED = "dropped"


def derive_status(paid_amount: Decimal, total_amount: Decimal) -> ObligationStatus:
    """paid <=> paid >= total; partial <=> 0 < paid < total; pending <=> paid = 0."""
    if paid_amount >= total_amount:
        return ObligationStatus.PAID
    if paid_amount > 0:
        return ObligationStatus.PARTIAL
    return ObligationStatus.PENDING


# =============================================================================
# PERIOD
# =============================================================================

class Period(BaseModel):
    """A billing window: one calendar month of one year."""
    model_config = ConfigDict(frozen=True)

    month: int = Field(..., ge=1, le=12)
    year: int = Field(..., ge=1900, le=9999)

    @classmethod
    def of(cls, month: Union[str, int], year: Union[str, int]) -> "Period":
        """Build a period from route-style values such as ("03", 2025)."""
        return cls(month=int(month), year=int(year))

    @classmethod
    def previous(cls, today: date) -> "Period":
        """The last full calendar month before `today`."""
        if today.month == 1:
            return cls(month=12, year=today.year - 1)
        return cls(month=today.month - 1, year=today.year)

    @property
    def month_str(self) -> str:
        return f"{self.month:02d}"

    @property
    def last_day(self) -> date:
        return date(self.year, self.month, calendar.monthrange(self.year, self.month)[1])

    @property
    def label(self) -> str:
        """Human-readable name, e.g. 'March 2025'."""
        return f"{calendar.month_name[self.month]} {self.year}"

    def has_closed(self, today: date) -> bool:
        return self.last_day < today

    def __str__(self) -> str:
        return f"{self.month_str}/{self.year}"


# =============================================================================
# MASTER DATA (debtors and what they subscribe to)
# =============================================================================

class Debtor(BaseModel):
    """Someone who owes periodic fees (a student, a client)."""
    model_config = ConfigDict(str_strip_whitespace=True)

    id: UUID = Field(default_factory=uuid4)
    name: str = Field(..., min_length=1, max_length=200)
    status: DebtorStatus = DebtorStatus.ACTIVE
    created_at: datetime = Field(default_factory=datetime.utcnow)

    @property
    def is_active(self) -> bool:
        return self.status == DebtorStatus.ACTIVE


class Subscription(BaseModel):
    """A recurring fee a debtor owes every period while active."""
    model_config = ConfigDict(str_strip_whitespace=True)

    id: UUID = Field(default_factory=uuid4)
    debtor_id: UUID
    name: str = Field(..., min_length=1, max_length=200)
    fee: Money
    start_date: date
    end_date: Optional[date] = None
    status: SubscriptionStatus = SubscriptionStatus.ACTIVE
    created_at: datetime = Field(default_factory=datetime.utcnow)


# =============================================================================
# OBLIGATION
# =============================================================================

class Obligation(BaseModel):
    """What one debtor owes for one period, and how much is paid."""

    id: UUID = Field(default_factory=uuid4)
    debtor_id: UUID
    month: int = Field(..., ge=1, le=12)
    year: int
    total_amount: Money
    paid_amount: Money = Decimal("0")
    status: ObligationStatus = ObligationStatus.PENDING
    payment_date: Optional[datetime] = None
    payment_method: Optional[PaymentMethod] = None
    notes: Optional[str] = None
    aggregated: bool = False
    created_at: datetime = Field(default_factory=datetime.utcnow)
    updated_at: datetime = Field(default_factory=datetime.utcnow)

    @model_validator(mode='after')
    def validate_amounts(self) -> 'Obligation':
        """Enforce the amount and status invariants."""
        if self.paid_amount > self.total_amount:
            raise ValueError("Paid amount cannot exceed total amount")
        if self.status == ObligationStatus.OVERDUE:
            raise ValueError("Overdue is derived and cannot be stored")
        if self.status != derive_status(self.paid_amount, self.total_amount):
            raise ValueError(
                f"Status {self.status.value} does not match paid "
                f"{self.paid_amount} of {self.total_amount}"
            )
        return self

    @property
    def period(self) -> Period:
        return Period(month=self.month, year=self.year)

    @property
    def remaining(self) -> Decimal:
        return self.total_amount - self.paid_amount

    def effective_status(self, today: date) -> ObligationStatus:
        """Stored status, or overdue once the period closed unpaid."""
        if self.status != ObligationStatus.PAID and self.period.has_closed(today):
            return ObligationStatus.OVERDUE
        return self.status


class PaymentRequest(BaseModel):
    """A payment submitted against a debtor's period."""
    model_config = ConfigDict(str_strip_whitespace=True)

    debtor_id: UUID
    period: Period
    amount: Money
    method: PaymentMethod
    note: Optional[str] = Field(default=None, max_length=1000)


class SkippedObligation(BaseModel):
    """A debtor skipped during bulk generation because a record exists."""

    debtor_id: UUID
    debtor_name: str
    obligation_id: UUID
    reason: str


class GenerationReport(BaseModel):
    """Outcome of generating obligations for one period."""

    period: Period
    created: list[Obligation] = Field(default_factory=list)
    skipped: list[SkippedObligation] = Field(default_factory=list)

    @property
    def created_count(self) -> int:
        return len(self.created)

    @property
    def message(self) -> str:
        return f"Generated {self.created_count} fee records for {self.period}"


class RosterRow(BaseModel):
    """One debtor's position for a period, whether or not a record exists."""

    debtor_id: UUID
    debtor_name: str
    period: Period
    obligation_id: Optional[UUID] = None
    total_amount: Money
    paid_amount: Money = Decimal("0")
    status: ObligationStatus
    payment_date: Optional[datetime] = None
    payment_method: Optional[PaymentMethod] = None
    notes: Optional[str] = None


class ObligationSummary(BaseModel):
    """Totals for one period across all debtors."""

    period: Period
    total_expected: Decimal = Decimal("0")
    total_collected: Decimal = Decimal("0")
    total_pending: Decimal = Decimal("0")
    debtor_count: int = 0


class ObligationBalance(BaseModel):
    """What a debtor still owes against their current fees."""

    debtor_id: UUID
    total_fee: Decimal = Decimal("0")
    total_paid: Decimal = Decimal("0")
    remaining_balance: Decimal = Decimal("0")
