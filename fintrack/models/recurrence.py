"""
Recurrence Rule Models

A recurrence rule is a frequency-based schedule plus the template of the
ledger entry it produces each time an occurrence is materialized.

Lifecycle:
- created once
- `last_processed` advances every time an occurrence becomes a LedgerEntry
- excluded from due-date generation once `end_date` has passed
"""

from datetime import date, datetime
from enum import Enum
from typing import Any, Optional
from uuid import UUID, uuid4

from pydantic import (
    BaseModel,
    ConfigDict,
    Field,
    field_validator,
    model_validator,
)

from fintrack.models.ledger import (
    EntryKind,
    LedgerEntry,
    Money,
    Scope,
    normalize_tags,
)


class Frequency(str, Enum):
    """How often a rule comes due."""
    DAILY = "daily"
    WEEKLY = "weekly"
    MONTHLY = "monthly"
    YEARLY = "yearly"


RULE_TEMPLATE_FIELDS = (
    "description",
    "amount",
    "kind",
    "category_id",
    "scope",
    "frequency",
    "start_date",
)


class RecurrenceRuleCreate(BaseModel):
    """A new recurring rule, as submitted by a caller."""
    model_config = ConfigDict(str_strip_whitespace=True)

    account_id: str = Field(..., min_length=1)
    description: str = Field(..., min_length=1, max_length=500)
    amount: Money
    kind: EntryKind
    category_id: str = Field(..., min_length=1)
    scope: Scope
    frequency: Frequency
    start_date: date
    end_date: Optional[date] = None
    last_processed: Optional[date] = None
    tags: list[str] = Field(default_factory=list)

    @field_validator('tags')
    @classmethod
    def clean_tags(cls, v: list[str]) -> list[str]:
        return normalize_tags(v)

    @model_validator(mode='after')
    def validate_dates(self) -> 'RecurrenceRuleCreate':
        if self.end_date and self.end_date < self.start_date:
            raise ValueError("End date cannot be before start date")
        if self.last_processed and self.last_processed < self.start_date:
            raise ValueError("Last processed date cannot be before start date")
        return self


class RecurrenceRule(RecurrenceRuleCreate):
    """A stored recurring rule."""

    id: UUID = Field(default_factory=uuid4)
    created_at: datetime = Field(default_factory=datetime.utcnow)
    updated_at: datetime = Field(default_factory=datetime.utcnow)

    @property
    def anchor(self) -> date:
        """Date the next occurrence is computed from."""
        return self.last_processed or self.start_date

    def is_expired(self, today: date) -> bool:
        return self.end_date is not None and self.end_date < today


class RecurrenceRuleUpdate(BaseModel):
    """
    Explicit update request for a recurring rule.

    Template fields apply only when supplied. `end_date` and
    `last_processed` may be supplied as None to clear them.
    `tags` is replaced wholesale when not None.
    """
    model_config = ConfigDict(str_strip_whitespace=True)

    description: Optional[str] = Field(default=None, min_length=1, max_length=500)
    amount: Optional[Money] = None
    kind: Optional[EntryKind] = None
    category_id: Optional[str] = Field(default=None, min_length=1)
    scope: Optional[Scope] = None
    frequency: Optional[Frequency] = None
    start_date: Optional[date] = None
    end_date: Optional[date] = None
    last_processed: Optional[date] = None
    tags: Optional[list[str]] = None

    @field_validator('tags')
    @classmethod
    def clean_tags(cls, v: Optional[list[str]]) -> Optional[list[str]]:
        return normalize_tags(v)

    def changes(self) -> dict[str, Any]:
        """Fields the caller actually supplied, tags excluded."""
        changes = {
            name: getattr(self, name)
            for name in RULE_TEMPLATE_FIELDS
            if getattr(self, name) is not None
        }
        for nullable in ("end_date", "last_processed"):
            if nullable in self.model_fields_set:
                changes[nullable] = getattr(self, nullable)
        return changes


class DueRule(BaseModel):
    """One row of the 'due soon' list."""

    rule_id: UUID
    account_id: str
    description: str
    amount: Money
    kind: EntryKind
    frequency: Frequency
    next_due: date
    days_past_due: int = Field(ge=0)


class MaterializationResult(BaseModel):
    """Entries produced by materializing a rule's due occurrences."""

    rule_id: UUID
    entries: list[LedgerEntry] = Field(default_factory=list)
    last_processed: Optional[date] = None

    @property
    def created_count(self) -> int:
        return len(self.entries)
