"""
Data Models Package

This package contains all Pydantic models used by the ledger engine.
All data flowing through the core must conform to these schemas.
"""

from fintrack.models.ledger import (
    EntryKind,
    LedgerEntry,
    LedgerEntryCreate,
    LedgerEntryUpdate,
    LedgerFilter,
    Reference,
    ReferenceType,
    Scope,
    Split,
    SplitCreate,
)
from fintrack.models.recurrence import (
    DueRule,
    Frequency,
    MaterializationResult,
    RecurrenceRule,
    RecurrenceRuleCreate,
    RecurrenceRuleUpdate,
)
from fintrack.models.obligation import (
    Debtor,
    DebtorStatus,
    GenerationReport,
    Obligation,
    ObligationBalance,
    ObligationStatus,
    ObligationSummary,
    PaymentMethod,
    PaymentRequest,
    Period,
    RosterRow,
    SkippedObligation,
    Subscription,
    SubscriptionStatus,
    derive_status,
)
from fintrack.models.aggregation import (
    AggregationOutcome,
    AggregationReceipt,
    AggregationResult,
)
from fintrack.models.reports import (
    AccountBalance,
    CategorySpending,
    EntryStats,
)
from fintrack.models.validation import IssueSeverity, ValidationIssue, ValidationResult
from fintrack.models.audit import (
    AuditEvent,
    AuditEventBuilder,
    AuditEventType,
    AuditSeverity,
)

__all__ = [
    # Ledger models
    "EntryKind",
    "LedgerEntry",
    "LedgerEntryCreate",
    "LedgerEntryUpdate",
    "LedgerFilter",
    "Reference",
    "ReferenceType",
    "Scope",
    "Split",
    "SplitCreate",
    # Recurrence models
    "DueRule",
    "Frequency",
    "MaterializationResult",
    "RecurrenceRule",
    "RecurrenceRuleCreate",
    "RecurrenceRuleUpdate",
    # Obligation models
    "Debtor",
    "DebtorStatus",
    "GenerationReport",
    "Obligation",
    "ObligationBalance",
    "ObligationStatus",
    "ObligationSummary",
    "PaymentMethod",
    "PaymentRequest",
    "Period",
    "RosterRow",
    "SkippedObligation",
    "Subscription",
    "SubscriptionStatus",
    "derive_status",
    # Aggregation models
    "AggregationOutcome",
    "AggregationReceipt",
    "AggregationResult",
    # Projections
    "AccountBalance",
    "CategorySpending",
    "EntryStats",
    # Validation
    "IssueSeverity",
    "ValidationIssue",
    "ValidationResult",
    # Audit models
    "AuditEvent",
    "AuditEventBuilder",
    "AuditEventType",
    "AuditSeverity",
]
