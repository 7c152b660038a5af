"""
Audit Logger

Every state change in the engine goes through AuditLogger.log(), which
writes a structlog line and, when a backend is configured, a row in the
audit_events table.

Callers log after their unit of work has committed, so a failed audit
write can never roll back money movements. The one exception is the
expired-rule purge, whose warning is persisted before the delete runs.
A failed audit write is reported through the return value, not raised.
"""

import logging
from decimal import Decimal
from typing import Any, Optional
from uuid import UUID, uuid4

import structlog

from fintrack.models.audit import AuditEvent, AuditEventBuilder, AuditEventType, AuditSeverity
from fintrack.services.storage import AuditStorageInterface


structlog.configure(
    processors=[
        structlog.stdlib.filter_by_level,
        structlog.stdlib.add_logger_name,
        structlog.stdlib.add_log_level,
        structlog.stdlib.PositionalArgumentsFormatter(),
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.processors.StackInfoRenderer(),
        structlog.processors.format_exc_info,
        structlog.processors.UnicodeDecoder(),
        structlog.processors.JSONRenderer()
    ],
    wrapper_class=structlog.stdlib.BoundLogger,
    context_class=dict,
    logger_factory=structlog.stdlib.LoggerFactory(),
    cache_logger_on_first_use=True,
)


def configure_logging(level: str = "INFO") -> None:
    """Route structlog output through the stdlib root logger at `level`."""
    logging.basicConfig(format="%(message)s", level=getattr(logging, level.upper(), logging.INFO))
    logging.getLogger().setLevel(level.upper())


_LEVELS = {
    AuditSeverity.DEBUG: "debug",
    AuditSeverity.INFO: "info",
    AuditSeverity.WARNING: "warning",
    AuditSeverity.ERROR: "error",
    AuditSeverity.CRITICAL: "critical",
}


class AuditLogger:
    """
    Audit trail writer.

    Args:
        storage: Backend for the audit_events table; None logs locally only
    """

    def __init__(self, storage: Optional[AuditStorageInterface] = None):
        self._storage = storage
        self._logger = structlog.get_logger("fintrack.audit")

    def log(self, event: AuditEvent) -> bool:
        """
        Emit `event` at its severity and persist it if a backend is set.

        Returns False only when the backend write failed.
        """
        emit = getattr(self._logger, _LEVELS[event.severity])
        emit("audit_event", **event.to_log_dict())

        if self._storage is None:
            return True
        try:
            return self._storage.append_event(event)
        except Exception as e:
            self._logger.error(
                "audit_storage_failed",
                error=str(e),
                event_id=str(event.event_id),
            )
            return False

    def log_entry_created(
        self,
        entry_id: UUID,
        account_id: str,
        amount: Decimal,
        kind: str,
        correlation_id: Optional[UUID] = None,
    ) -> None:
        self.log(AuditEventBuilder.entry_created(
            entry_id=entry_id,
            account_id=account_id,
            amount=amount,
            kind=kind,
            correlation_id=correlation_id,
        ))

    def log_entry_updated(
        self,
        entry_id: UUID,
        fields: list[str],
        correlation_id: Optional[UUID] = None,
    ) -> None:
        self.log(AuditEventBuilder.entry_updated(
            entry_id=entry_id,
            fields=fields,
            correlation_id=correlation_id,
        ))

    def log_entry_deleted(
        self,
        entry_id: UUID,
        existed: bool,
        correlation_id: Optional[UUID] = None,
    ) -> None:
        self.log(AuditEventBuilder.entry_deleted(
            entry_id=entry_id,
            existed=existed,
            correlation_id=correlation_id,
        ))

    def log_rule_changed(
        self,
        event_type: AuditEventType,
        rule_id: UUID,
        description: str,
        details: Optional[dict] = None,
        correlation_id: Optional[UUID] = None,
    ) -> None:
        """Log creation, update, deletion or materialization of a rule."""
        self.log(AuditEventBuilder.rule_changed(
            event_type=event_type,
            rule_id=rule_id,
            description=description,
            details=details,
            correlation_id=correlation_id,
        ))

    def log_purge_started(
        self,
        cutoff: str,
        rule_ids: list[UUID],
        correlation_id: Optional[UUID] = None,
    ) -> bool:
        """
        Log an irreversible purge before it runs.

        Returns whether the event was persisted.
        """
        return self.log(AuditEventBuilder.expired_rules_purge_started(
            cutoff=cutoff,
            rule_ids=rule_ids,
            correlation_id=correlation_id,
        ))

    def log_purge_completed(
        self,
        deleted: int,
        correlation_id: Optional[UUID] = None,
    ) -> None:
        self.log(AuditEventBuilder.expired_rules_purged(
            deleted=deleted,
            correlation_id=correlation_id,
        ))

    def log_payment_recorded(
        self,
        obligation_id: UUID,
        debtor_id: UUID,
        period: str,
        amount: Decimal,
        paid_amount: Decimal,
        status: str,
        correlation_id: Optional[UUID] = None,
    ) -> None:
        self.log(AuditEventBuilder.payment_recorded(
            obligation_id=obligation_id,
            debtor_id=debtor_id,
            period=period,
            amount=amount,
            paid_amount=paid_amount,
            status=status,
            correlation_id=correlation_id,
        ))

    def log_payment_rejected(
        self,
        debtor_id: Optional[UUID],
        period: str,
        amount: Any,
        reason: str,
        correlation_id: Optional[UUID] = None,
    ) -> None:
        self.log(AuditEventBuilder.payment_rejected(
            debtor_id=debtor_id,
            period=period,
            amount=amount,
            reason=reason,
            correlation_id=correlation_id,
        ))

    def log_obligations_generated(
        self,
        period: str,
        created: int,
        skipped: int,
        correlation_id: Optional[UUID] = None,
    ) -> None:
        self.log(AuditEventBuilder.obligations_generated(
            period=period,
            created=created,
            skipped=skipped,
            correlation_id=correlation_id,
        ))

    def log_aggregation_completed(
        self,
        receipt_id: UUID,
        period: str,
        total_amount: Decimal,
        payment_count: int,
        entry_id: UUID,
        correlation_id: Optional[UUID] = None,
    ) -> None:
        """Log a completed aggregation."""
        self.log(AuditEventBuilder.aggregation_completed(
            receipt_id=receipt_id,
            period=period,
            total_amount=total_amount,
            payment_count=payment_count,
            entry_id=entry_id,
            correlation_id=correlation_id,
        ))

    def log_aggregation_skipped(
        self,
        period: str,
        reason: str,
        correlation_id: Optional[UUID] = None,
    ) -> None:
        self.log(AuditEventBuilder.aggregation_skipped(
            period=period,
            reason=reason,
            correlation_id=correlation_id,
        ))

    def log_aggregation_conflict(
        self,
        period: str,
        error_message: str,
        correlation_id: Optional[UUID] = None,
    ) -> None:
        self.log(AuditEventBuilder.aggregation_conflict(
            period=period,
            error_message=error_message,
            correlation_id=correlation_id,
        ))

    def log_error(
        self,
        error_type: str,
        error_message: str,
        details: Optional[dict] = None,
        correlation_id: Optional[UUID] = None,
    ) -> None:
        """Log an error."""
        event = AuditEventBuilder.system_error(
            error_type=error_type,
            error_message=error_message,
            details=details,
            correlation_id=correlation_id,
        )
        self.log(event)


def create_correlation_id() -> UUID:
    """New id shared by every event of one multi-step run."""
    return uuid4()
