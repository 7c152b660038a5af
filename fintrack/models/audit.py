"""
Audit Models

One AuditEvent is written for every state change in the engine: entries,
rules, payments, generation runs and aggregation runs. Refused payments
and aggregation conflicts are recorded too, and the expired-rule purge
writes its event before anything is deleted.

Rows in the audit_events table are only ever inserted.
"""

import json
from datetime import datetime
from decimal import Decimal
from enum import Enum
from typing import Any, Optional
from uuid import UUID, uuid4

from pydantic import BaseModel, Field


class AuditEventType(str, Enum):
    # Ledger entries
    ENTRY_CREATED = "entry_created"
    ENTRY_UPDATED = "entry_updated"
    ENTRY_DELETED = "entry_deleted"

    # Recurring rules
    RULE_CREATED = "rule_created"
    RULE_UPDATED = "rule_updated"
    RULE_DELETED = "rule_deleted"
    RULE_MATERIALIZED = "rule_materialized"
    EXPIRED_RULES_PURGE_STARTED = "expired_rules_purge_started"
    EXPIRED_RULES_PURGED = "expired_rules_purged"

    # Obligations
    PAYMENT_RECORDED = "payment_recorded"
    PAYMENT_REJECTED = "payment_rejected"
    OBLIGATIONS_GENERATED = "obligations_generated"

    # Aggregation
    AGGREGATION_COMPLETED = "aggregation_completed"
    AGGREGATION_SKIPPED = "aggregation_skipped"
    AGGREGATION_CONFLICT = "aggregation_conflict"

    SYSTEM_ERROR = "system_error"


class AuditSeverity(str, Enum):
    DEBUG = "debug"
    INFO = "info"
    WARNING = "warning"
    ERROR = "error"
    CRITICAL = "critical"


class AuditEvent(BaseModel):
    """One row of the audit trail."""

    event_id: UUID = Field(default_factory=uuid4)
    timestamp: datetime = Field(default_factory=datetime.utcnow)
    event_type: AuditEventType
    severity: AuditSeverity = AuditSeverity.INFO

    # What the event is about: 'entry', 'rule', 'debtor', 'obligation', 'receipt'
    entity_type: Optional[str] = None
    entity_id: Optional[UUID] = None

    # Shared by every event of one run (a purge, an aggregation)
    correlation_id: Optional[UUID] = None

    description: str = Field(..., max_length=500)
    details: dict[str, Any] = Field(default_factory=dict)

    error_code: Optional[str] = None
    error_message: Optional[str] = None

    def to_log_dict(self) -> dict:
        """Flat, JSON-safe keyword arguments for a structlog call."""
        return self.model_dump(mode="json")

    def details_json(self) -> str:
        """Details serialized for a text column."""
        return json.dumps(self.details, default=str) if self.details else ""


class AuditEventBuilder:
    """Static constructors, one per event type."""

    @staticmethod
    def entry_created(
        entry_id: UUID,
        account_id: str,
        amount: Decimal,
        kind: str,
        correlation_id: Optional[UUID] = None,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.ENTRY_CREATED,
            entity_type="entry",
            entity_id=entry_id,
            correlation_id=correlation_id,
            description=f"Ledger entry created: {kind} {amount}",
            details={
                "account_id": account_id,
                "amount": str(amount),
                "kind": kind,
            },
        )

    @staticmethod
    def entry_updated(
        entry_id: UUID,
        fields: list[str],
        correlation_id: Optional[UUID] = None,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.ENTRY_UPDATED,
            entity_type="entry",
            entity_id=entry_id,
            correlation_id=correlation_id,
            description=f"Ledger entry updated: {', '.join(fields) or 'no fields'}",
            details={"fields": fields},
        )

    @staticmethod
    def entry_deleted(
        entry_id: UUID,
        existed: bool,
        correlation_id: Optional[UUID] = None,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.ENTRY_DELETED,
            entity_type="entry",
            entity_id=entry_id,
            correlation_id=correlation_id,
            description="Ledger entry deleted" if existed else "Delete of absent entry ignored",
            details={"existed": existed},
        )

    @staticmethod
    def rule_changed(
        event_type: AuditEventType,
        rule_id: UUID,
        description: str,
        details: Optional[dict] = None,
        correlation_id: Optional[UUID] = None,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=event_type,
            entity_type="rule",
            entity_id=rule_id,
            correlation_id=correlation_id,
            description=description,
            details=details or {},
        )

    @staticmethod
    def expired_rules_purge_started(
        cutoff: str,
        rule_ids: list[UUID],
        correlation_id: Optional[UUID] = None,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.EXPIRED_RULES_PURGE_STARTED,
            severity=AuditSeverity.WARNING,
            entity_type="rule",
            correlation_id=correlation_id,
            description=f"Deleting {len(rule_ids)} recurring rules that ended before {cutoff}",
            details={
                "cutoff": cutoff,
                "rule_ids": [str(rule_id) for rule_id in rule_ids],
            },
        )

    @staticmethod
    def expired_rules_purged(
        deleted: int,
        correlation_id: Optional[UUID] = None,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.EXPIRED_RULES_PURGED,
            severity=AuditSeverity.WARNING,
            entity_type="rule",
            correlation_id=correlation_id,
            description=f"Deleted {deleted} expired recurring rules",
            details={"deleted": deleted},
        )

    @staticmethod
    def payment_recorded(
        obligation_id: UUID,
        debtor_id: UUID,
        period: str,
        amount: Decimal,
        paid_amount: Decimal,
        status: str,
        correlation_id: Optional[UUID] = None,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.PAYMENT_RECORDED,
            entity_type="obligation",
            entity_id=obligation_id,
            correlation_id=correlation_id,
            description=f"Payment of {amount} recorded for {period} ({status})",
            details={
                "debtor_id": str(debtor_id),
                "period": period,
                "amount": str(amount),
                "paid_amount": str(paid_amount),
                "status": status,
            },
        )

    @staticmethod
    def payment_rejected(
        debtor_id: Optional[UUID],
        period: str,
        amount: Any,
        reason: str,
        correlation_id: Optional[UUID] = None,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.PAYMENT_REJECTED,
            severity=AuditSeverity.WARNING,
            entity_type="debtor",
            entity_id=debtor_id,
            correlation_id=correlation_id,
            description=f"Payment of {amount} for {period} rejected",
            error_message=reason,
            details={
                "period": period,
                "amount": str(amount),
            },
        )

    @staticmethod
    def obligations_generated(
        period: str,
        created: int,
        skipped: int,
        correlation_id: Optional[UUID] = None,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.OBLIGATIONS_GENERATED,
            entity_type="period",
            correlation_id=correlation_id,
            description=f"Generated {created} obligations for {period}, skipped {skipped}",
            details={
                "period": period,
                "created": created,
                "skipped": skipped,
            },
        )

    @staticmethod
    def aggregation_completed(
        receipt_id: UUID,
        period: str,
        total_amount: Decimal,
        payment_count: int,
        entry_id: UUID,
        correlation_id: Optional[UUID] = None,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.AGGREGATION_COMPLETED,
            entity_type="receipt",
            entity_id=receipt_id,
            correlation_id=correlation_id,
            description=f"Aggregated {payment_count} payments ({total_amount}) for {period}",
            details={
                "period": period,
                "total_amount": str(total_amount),
                "payment_count": payment_count,
                "entry_id": str(entry_id),
            },
        )

    @staticmethod
    def aggregation_skipped(
        period: str,
        reason: str,
        correlation_id: Optional[UUID] = None,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.AGGREGATION_SKIPPED,
            entity_type="period",
            correlation_id=correlation_id,
            description=f"Aggregation for {period} skipped: {reason}",
            details={"period": period, "reason": reason},
        )

    @staticmethod
    def aggregation_conflict(
        period: str,
        error_message: str,
        correlation_id: Optional[UUID] = None,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.AGGREGATION_CONFLICT,
            severity=AuditSeverity.WARNING,
            entity_type="period",
            correlation_id=correlation_id,
            description=f"Aggregation for {period} lost to a concurrent run",
            error_message=error_message,
            details={"period": period},
        )

    @staticmethod
    def system_error(
        error_type: str,
        error_message: str,
        details: Optional[dict] = None,
        correlation_id: Optional[UUID] = None
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.SYSTEM_ERROR,
            severity=AuditSeverity.ERROR,
            description=f"System error: {error_type}",
            error_code=error_type,
            error_message=error_message,
            details=details or {},
            correlation_id=correlation_id,
        )
