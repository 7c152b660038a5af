"""
Ledger Entry Models

A ledger entry is a multi-row aggregate: one header, zero or more splits,
and a set of tags. The aggregate is always written as a unit.

DESIGN DECISION: Amounts are never negative. The direction of money is
carried by `kind`, so summing a column never has to guess at signs.

DESIGN DECISION: Updates use an explicit request type. Every updatable
field is listed; children (splits, tags) follow replace-or-preserve
semantics that are visible in the type:
- field omitted (None)  -> existing children are preserved
- field supplied ([])   -> existing children are deleted
- field supplied ([..]) -> existing children are replaced wholesale
"""

from datetime import date, datetime
from decimal import Decimal
from enum import Enum
from typing import Annotated, Any, Optional
from uuid import UUID, uuid4

from pydantic import (
    BaseModel,
    ConfigDict,
    Field,
    field_validator,
    model_validator,
)


Money = Annotated[Decimal, Field(ge=0, max_digits=12, decimal_places=2)]

ENTRY_HEADER_FIELDS = (
    "description",
    "amount",
    "kind",
    "category_id",
    "scope",
    "occurred_on",
    "is_split",
)


# =============================================================================
# ENUMS - Finite set of valid values
# =============================================================================

class EntryKind(str, Enum):
    """Direction of money for an entry."""
    INCOME = "income"
    EXPENSE = "expense"
    INVESTMENT = "investment"


class Scope(str, Enum):
    """Coarse ownership tag of an entry or split."""
    PERSONAL = "personal"
    BUSINESS = "business"
    FAMILY = "family"


class ReferenceType(str, Enum):
    """Kind of supporting document attached to an entry."""
    RECEIPT = "receipt"
    INVOICE = "invoice"
    CONTRACT = "contract"
    OTHER = "other"


def normalize_tags(tags: Optional[list[str]]) -> Optional[list[str]]:
    """Strip, drop empties and de-duplicate while keeping first-seen order."""
    if tags is None:
        return None
    seen: list[str] = []
    for tag in tags:
        cleaned = tag.strip()
        if cleaned and cleaned not in seen:
            seen.append(cleaned)
    return seen


# =============================================================================
# CHILD MODELS
# =============================================================================

class Reference(BaseModel):
    """Optional reference block (receipt number, invoice, attachment)."""
    model_config = ConfigDict(str_strip_whitespace=True)

    type: ReferenceType
    number: Optional[str] = Field(
        default=None,
        max_length=100,
        description="Document number"
    )
    notes: Optional[str] = Field(
        default=None,
        max_length=1000
    )
    attachment: Optional[str] = Field(
        default=None,
        description="Location of an attached scan or screenshot"
    )


class SplitCreate(BaseModel):
    """A sub-allocation of an entry's amount, as submitted by a caller."""
    model_config = ConfigDict(str_strip_whitespace=True)

    amount: Money
    category_id: str = Field(..., min_length=1)
    scope: Scope
    note: Optional[str] = Field(default=None, max_length=500)


class Split(SplitCreate):
    """A stored split. Always belongs to exactly one entry."""

    id: UUID = Field(default_factory=uuid4)


# =============================================================================
# LEDGER ENTRY
# =============================================================================

class LedgerEntryCreate(BaseModel):
    """Header fields of a new ledger entry."""
    model_config = ConfigDict(str_strip_whitespace=True)

    account_id: str = Field(
        ...,
        min_length=1,
        description="Owning account"
    )
    description: str = Field(
        ...,
        min_length=1,
        max_length=500
    )
    amount: Money
    kind: EntryKind
    category_id: str = Field(..., min_length=1)
    scope: Scope
    occurred_on: date
    is_split: bool = False
    reference: Optional[Reference] = None


class LedgerEntry(BaseModel):
    """
    A stored ledger entry with its children.

    Owned exclusively by `account_id`.
    """
    model_config = ConfigDict(str_strip_whitespace=True)

    id: UUID = Field(default_factory=uuid4)
    account_id: str
    description: str
    amount: Money
    kind: EntryKind
    category_id: str
    scope: Scope
    occurred_on: date
    is_split: bool = False
    reference: Optional[Reference] = None
    splits: list[Split] = Field(default_factory=list)
    tags: list[str] = Field(default_factory=list)
    created_at: datetime = Field(default_factory=datetime.utcnow)
    updated_at: datetime = Field(default_factory=datetime.utcnow)

    @property
    def split_total(self) -> Decimal:
        return sum((s.amount for s in self.splits), Decimal("0"))

    @property
    def signed_amount(self) -> Decimal:
        """Amount as it affects the account balance."""
        if self.kind == EntryKind.INCOME:
            return self.amount
        if self.kind == EntryKind.EXPENSE:
            return -self.amount
        return Decimal("0")


class LedgerEntryUpdate(BaseModel):
    """
    Explicit update request for a ledger entry.

    Header fields are applied only when supplied. `reference` may be
    supplied as None to clear it. `splits` and `tags` are replaced
    wholesale when not None (an empty list clears them).
    """
    model_config = ConfigDict(str_strip_whitespace=True)

    description: Optional[str] = Field(default=None, min_length=1, max_length=500)
    amount: Optional[Money] = None
    kind: Optional[EntryKind] = None
    category_id: Optional[str] = Field(default=None, min_length=1)
    scope: Optional[Scope] = None
    occurred_on: Optional[date] = None
    is_split: Optional[bool] = None
    reference: Optional[Reference] = None
    splits: Optional[list[SplitCreate]] = None
    tags: Optional[list[str]] = None

    @field_validator('tags')
    @classmethod
    def clean_tags(cls, v: Optional[list[str]]) -> Optional[list[str]]:
        return normalize_tags(v)

    @property
    def replaces_splits(self) -> bool:
        return self.splits is not None

    @property
    def replaces_tags(self) -> bool:
        return self.tags is not None

    def header_changes(self) -> dict[str, Any]:
        """Header fields the caller actually supplied."""
        changes = {
            name: getattr(self, name)
            for name in ENTRY_HEADER_FIELDS
            if getattr(self, name) is not None
        }
        if "reference" in self.model_fields_set:
            changes["reference"] = self.reference
        return changes

    @property
    def is_empty(self) -> bool:
        return (
            not self.header_changes()
            and not self.replaces_splits
            and not self.replaces_tags
        )


class LedgerFilter(BaseModel):
    """
    Conjunction of optional predicates for listing entries.

    An empty set means "no constraint" for that dimension.
    """

    date_from: Optional[date] = None
    date_to: Optional[date] = None
    kinds: set[EntryKind] = Field(default_factory=set)
    category_ids: set[str] = Field(default_factory=set)
    scopes: set[Scope] = Field(default_factory=set)
    tag: Optional[str] = None

    @model_validator(mode='after')
    def validate_range(self) -> 'LedgerFilter':
        if self.date_from and self.date_to and self.date_to < self.date_from:
            raise ValueError("date_to cannot be before date_from")
        return self
