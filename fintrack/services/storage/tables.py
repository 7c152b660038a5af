"""
SQLAlchemy table definitions for the relational store.

One ORM class per table. Money columns are Numeric(12, 2); enums are
stored as their string values and guarded by CHECK constraints.
The uniqueness constraints here are the idempotency guards the services
rely on:
- uq_obligation_debtor_period: one obligation per (debtor, month, year)
- uq_receipt_period: one aggregation receipt per (month, year)
"""

from sqlalchemy import (
    Boolean,
    CheckConstraint,
    Column,
    Date,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    Numeric,
    PrimaryKeyConstraint,
    String,
    Text,
    UniqueConstraint,
    Uuid,
)
from sqlalchemy.orm import declarative_base

Base = declarative_base()

MONEY = Numeric(12, 2)

_KINDS = "('income', 'expense', 'investment')"
_SCOPES = "('personal', 'business', 'family')"


class EntryRow(Base):
    """Ledger entry header."""

    __tablename__ = "ledger_entries"

    id = Column(Uuid, primary_key=True)
    account_id = Column(String(64), nullable=False)
    description = Column(String(500), nullable=False)
    amount = Column(MONEY, nullable=False)
    kind = Column(String(20), nullable=False)
    category_id = Column(String(64), nullable=False)
    scope = Column(String(20), nullable=False)
    occurred_on = Column(Date, nullable=False)
    is_split = Column(Boolean, nullable=False, default=False)

    # Optional reference block
    reference_type = Column(String(20), nullable=True)
    reference_number = Column(String(100), nullable=True)
    reference_notes = Column(Text, nullable=True)
    reference_attachment = Column(Text, nullable=True)

    created_at = Column(DateTime, nullable=False)
    updated_at = Column(DateTime, nullable=False)

    __table_args__ = (
        CheckConstraint("amount >= 0", name="ck_entry_amount"),
        CheckConstraint(f"kind IN {_KINDS}", name="ck_entry_kind"),
        CheckConstraint(f"scope IN {_SCOPES}", name="ck_entry_scope"),
        Index("ix_entries_account_date", "account_id", "occurred_on"),
        Index("ix_entries_category", "category_id"),
    )


class SplitRow(Base):
    """Sub-allocation of an entry amount."""

    __tablename__ = "entry_splits"

    id = Column(Uuid, primary_key=True)
    entry_id = Column(
        Uuid,
        ForeignKey("ledger_entries.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    position = Column(Integer, nullable=False, default=0)
    amount = Column(MONEY, nullable=False)
    category_id = Column(String(64), nullable=False)
    scope = Column(String(20), nullable=False)
    note = Column(String(500), nullable=True)

    __table_args__ = (
        CheckConstraint(f"scope IN {_SCOPES}", name="ck_split_scope"),
    )


class EntryTagRow(Base):
    __tablename__ = "entry_tags"

    entry_id = Column(
        Uuid,
        ForeignKey("ledger_entries.id", ondelete="CASCADE"),
        nullable=False,
    )
    tag = Column(String(100), nullable=False)

    __table_args__ = (
        PrimaryKeyConstraint("entry_id", "tag"),
        Index("ix_entry_tags_tag", "tag"),
    )


class RuleRow(Base):
    """Recurring rule with the template of the entry it produces."""

    __tablename__ = "recurring_rules"

    id = Column(Uuid, primary_key=True)
    account_id = Column(String(64), nullable=False, index=True)
    description = Column(String(500), nullable=False)
    amount = Column(MONEY, nullable=False)
    kind = Column(String(20), nullable=False)
    category_id = Column(String(64), nullable=False)
    scope = Column(String(20), nullable=False)
    frequency = Column(String(20), nullable=False)
    start_date = Column(Date, nullable=False)
    end_date = Column(Date, nullable=True)
    last_processed = Column(Date, nullable=True)
    created_at = Column(DateTime, nullable=False)
    updated_at = Column(DateTime, nullable=False)

    __table_args__ = (
        CheckConstraint(
            "frequency IN ('daily', 'weekly', 'monthly', 'yearly')",
            name="ck_rule_frequency",
        ),
        CheckConstraint(f"kind IN {_KINDS}", name="ck_rule_kind"),
    )


class RuleTagRow(Base):
    __tablename__ = "rule_tags"

    rule_id = Column(
        Uuid,
        ForeignKey("recurring_rules.id", ondelete="CASCADE"),
        nullable=False,
    )
    tag = Column(String(100), nullable=False)

    __table_args__ = (
        PrimaryKeyConstraint("rule_id", "tag"),
    )


class DebtorRow(Base):
    __tablename__ = "debtors"

    id = Column(Uuid, primary_key=True)
    name = Column(String(200), nullable=False)
    status = Column(String(20), nullable=False, default="active")
    created_at = Column(DateTime, nullable=False)

    __table_args__ = (
        CheckConstraint(
            "status IN ('active', 'inactive', 'graduated')",
            name="ck_debtor_status",
        ),
        Index("ix_debtors_status", "status"),
    )


class SubscriptionRow(Base):
    """A fee a debtor owes every period while active."""

    __tablename__ = "subscriptions"

    id = Column(Uuid, primary_key=True)
    debtor_id = Column(
        Uuid,
        ForeignKey("debtors.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    name = Column(String(200), nullable=False)
    fee = Column(MONEY, nullable=False)
    start_date = Column(Date, nullable=False)
    end_date = Column(Date, nullable=True)
    status = Column(String(20), nullable=False, default="active")
    created_at = Column(DateTime, nullable=False)

    __table_args__ = (
        CheckConstraint("fee >= 0", name="ck_subscription_fee"),
        CheckConstraint(
            "status IN ('active', 'completed', 'dropped')",
            name="ck_subscription_status",
        ),
    )


class ObligationRow(Base):
    """Fee obligation of one debtor for one period."""

    __tablename__ = "obligations"

    id = Column(Uuid, primary_key=True)
    debtor_id = Column(
        Uuid,
        ForeignKey("debtors.id", ondelete="CASCADE"),
        nullable=False,
    )
    month = Column(Integer, nullable=False)
    year = Column(Integer, nullable=False)
    total_amount = Column(MONEY, nullable=False)
    paid_amount = Column(MONEY, nullable=False, default=0)
    status = Column(String(20), nullable=False, default="pending")
    payment_date = Column(DateTime, nullable=True)
    payment_method = Column(String(20), nullable=True)
    notes = Column(Text, nullable=True)
    aggregated = Column(Boolean, nullable=False, default=False)
    created_at = Column(DateTime, nullable=False)
    updated_at = Column(DateTime, nullable=False)

    __table_args__ = (
        UniqueConstraint("debtor_id", "month", "year", name="uq_obligation_debtor_period"),
        CheckConstraint("month BETWEEN 1 AND 12", name="ck_obligation_month"),
        CheckConstraint("paid_amount >= 0", name="ck_obligation_paid_non_negative"),
        CheckConstraint("paid_amount <= total_amount", name="ck_obligation_not_overpaid"),
        CheckConstraint(
            "status IN ('pending', 'partial', 'paid')",
            name="ck_obligation_status",
        ),
        CheckConstraint(
            "payment_method IS NULL OR payment_method IN ('cash', 'card', 'bank_transfer', 'upi')",
            name="ck_obligation_method",
        ),
        Index("ix_obligations_period", "month", "year"),
        Index("ix_obligations_aggregated", "aggregated"),
    )


class ReceiptRow(Base):
    """Proof that a period has been folded into the ledger."""

    __tablename__ = "aggregation_receipts"

    id = Column(Uuid, primary_key=True)
    month = Column(Integer, nullable=False)
    year = Column(Integer, nullable=False)
    total_amount = Column(MONEY, nullable=False)
    payment_count = Column(Integer, nullable=False)
    entry_id = Column(Uuid, nullable=False)
    aggregated_at = Column(DateTime, nullable=False)

    __table_args__ = (
        UniqueConstraint("month", "year", name="uq_receipt_period"),
    )


class AuditEventRow(Base):
    """Append-only audit trail."""

    __tablename__ = "audit_events"

    event_id = Column(Uuid, primary_key=True)
    timestamp = Column(DateTime, nullable=False, index=True)
    event_type = Column(String(50), nullable=False)
    severity = Column(String(20), nullable=False)
    entity_type = Column(String(50), nullable=True)
    entity_id = Column(Uuid, nullable=True)
    correlation_id = Column(Uuid, nullable=True, index=True)
    description = Column(String(500), nullable=False)
    details_json = Column(Text, nullable=True)
    error_code = Column(String(50), nullable=True)
    error_message = Column(Text, nullable=True)

    __table_args__ = (
        Index("ix_audit_entity", "entity_type", "entity_id"),
    )
