"""
Main Orchestrator for FinTrack

This module ties together all the components and exposes them to the
routing layer as one facade:
1. Ledger entry CRUD keyed by account
2. Recurring rule CRUD, materialization and the "due soon" query
3. Obligation payments, period generation and obligation queries
4. Aggregation (explicit period or last month) and its history
5. Balance projections

DESIGN DECISION: There is no global store handle. The factory builds one
SqlStorage and passes it to every component through its constructor.
Tests build the same graph over an in-memory database.

Period closing is triggered externally (manual call or cron); nothing in
here schedules work on its own.
"""

from dataclasses import dataclass, field
from datetime import date, datetime
from typing import Callable, Optional

import structlog

from fintrack.aggregation import AggregationCoordinator
from fintrack.audit import AuditLogger, configure_logging
from fintrack.config import Settings, get_settings
from fintrack.ledger import LedgerService
from fintrack.models.aggregation import AggregationResult
from fintrack.models.recurrence import MaterializationResult
from fintrack.obligations import ObligationLedger
from fintrack.queries import BalanceProjector
from fintrack.recurrence import RecurringRuleService
from fintrack.services.storage import SqlAuditStorage, SqlStorage
from fintrack.validation import LedgerEntryValidator

logger = structlog.get_logger(__name__)


@dataclass
class MaintenanceReport:
    """What one maintenance run did."""

    materialized: list[MaterializationResult] = field(default_factory=list)
    purged_rules: int = 0
    aggregation: Optional[AggregationResult] = None


class FinTrackEngine:
    """
    Facade over every core component.

    Routing code talks to the attributes directly (engine.ledger.create,
    engine.obligations.record_payment, ...). Multi-step flows live here.
    """

    def __init__(
        self,
        storage: SqlStorage,
        audit_logger: AuditLogger,
        ledger: LedgerService,
        rules: RecurringRuleService,
        obligations: ObligationLedger,
        aggregation: AggregationCoordinator,
        projector: BalanceProjector,
        clock: Callable[[], datetime] = datetime.utcnow,
    ):
        self.storage = storage
        self.audit = audit_logger
        self.ledger = ledger
        self.rules = rules
        self.obligations = obligations
        self.aggregation = aggregation
        self.projector = projector
        self._clock = clock

    def run_maintenance(self, account_id: str, today: Optional[date] = None) -> MaintenanceReport:
        """
        Periodic housekeeping for one account.

        1. Materialize every due recurring occurrence
        2. Delete rules that ended before today (logged before the delete)
        3. Aggregate last month's settled fees if not done yet
        """
        today = today or self._clock().date()
        report = MaintenanceReport()

        report.materialized = self.rules.materialize_due(account_id, today)
        report.purged_rules = self.rules.purge_expired(today)
        report.aggregation = self.aggregation.auto_aggregate(account_id, today)

        logger.info(
            "maintenance_completed",
            account_id=account_id,
            materialized=sum(r.created_count for r in report.materialized),
            purged_rules=report.purged_rules,
            aggregation=report.aggregation.outcome.value,
        )
        return report

    def close(self) -> None:
        self.storage.dispose()


def create_app_components(
    settings: Optional[Settings] = None,
    persist_audit: bool = True,
    clock: Callable[[], datetime] = datetime.utcnow,
) -> FinTrackEngine:
    """
    Factory function to create all application components.

    Args:
        settings: Root settings; defaults to get_settings()
        persist_audit: Write audit events to the audit_events table.
                       Set to False to log locally only.
        clock: Returns the current UTC datetime

    Returns:
        A wired FinTrackEngine with its schema created
    """
    settings = settings or get_settings()
    configure_logging(settings.app.log_level)

    ledger_settings = settings.ledger

    storage = SqlStorage(settings.database)
    storage.connect()

    if persist_audit:
        audit_logger = AuditLogger(SqlAuditStorage(storage))
    else:
        audit_logger = AuditLogger()  # Local-only logging

    validator = LedgerEntryValidator()

    return FinTrackEngine(
        storage=storage,
        audit_logger=audit_logger,
        ledger=LedgerService(storage, validator, audit_logger, clock=clock),
        rules=RecurringRuleService(storage, validator, audit_logger, clock=clock),
        obligations=ObligationLedger(storage, ledger_settings, audit_logger, clock=clock),
        aggregation=AggregationCoordinator(storage, ledger_settings, audit_logger, clock=clock),
        projector=BalanceProjector(storage, ledger_settings, clock=clock),
        clock=clock,
    )
