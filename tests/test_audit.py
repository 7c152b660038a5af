"""Tests for the audit trail and the wired engine."""

from datetime import date, datetime
from decimal import Decimal
from uuid import uuid4

import pytest

from fintrack.audit import AuditLogger, create_correlation_id
from fintrack.models import AggregationOutcome, AuditEvent, AuditEventType, AuditSeverity, Period
from fintrack.orchestrator import create_app_components
from fintrack.config import Settings


class BrokenAuditStorage:
    """Audit backend whose writes always fail."""

    def append_event(self, event):
        raise RuntimeError("audit table unavailable")


class TestAuditLogger:
    """Tests for AuditLogger."""

    def test_local_only_logging_succeeds(self):
        """Test that a logger without storage reports success."""
        logger = AuditLogger()
        event = AuditEvent(event_type=AuditEventType.SYSTEM_ERROR, description="x")
        assert logger.log(event) is True

    def test_storage_failure_does_not_raise(self):
        """Test that a failing backend returns False instead of raising."""
        logger = AuditLogger(BrokenAuditStorage())
        event = AuditEvent(event_type=AuditEventType.ENTRY_CREATED, description="x")
        assert logger.log(event) is False

    def test_purge_started_reports_persistence(self, audit_logger, audit_storage):
        """Test that the pre-delete warning is persisted before returning."""
        rule_ids = [uuid4()]
        correlation_id = create_correlation_id()

        assert audit_logger.log_purge_started("2025-04-10", rule_ids, correlation_id=correlation_id) is True

        events = audit_storage.get_events_by_correlation_id(correlation_id)
        assert len(events) == 1
        assert events[0].severity == AuditSeverity.WARNING

    def test_log_error(self, audit_logger, audit_storage):
        """Test that errors are stored with their code."""
        audit_logger.log_error("STORAGE_ERROR", "disk full", details={"entity": "entry"})

        event = audit_storage.get_recent_events(limit=1)[0]
        assert event.event_type == AuditEventType.SYSTEM_ERROR
        assert event.error_code == "STORAGE_ERROR"


class TestAuditStorage:
    """Tests for SqlAuditStorage queries."""

    def test_details_round_trip(self, audit_storage):
        """Test that structured details survive storage."""
        entity_id = uuid4()
        audit_storage.append_event(AuditEvent(
            event_type=AuditEventType.PAYMENT_RECORDED,
            entity_type="obligation",
            entity_id=entity_id,
            description="Payment recorded",
            details={"period": "03/2025", "amount": "400"},
        ))

        events = audit_storage.get_events_by_entity("obligation", entity_id)
        assert events[0].details == {"period": "03/2025", "amount": "400"}

    def test_recent_events_newest_first(self, audit_storage):
        """Test ordering and limit."""
        for i in range(3):
            audit_storage.append_event(AuditEvent(
                event_type=AuditEventType.ENTRY_CREATED,
                description=f"event {i}",
                timestamp=datetime(2025, 4, 10, 9, i),
            ))

        recent = audit_storage.get_recent_events(limit=2)
        assert [e.description for e in recent] == ["event 2", "event 1"]


class TestEngine:
    """Tests for the wired FinTrackEngine."""

    @pytest.fixture
    def engine(self, monkeypatch, tmp_path):
        monkeypatch.chdir(tmp_path)
        monkeypatch.setenv("FINTRACK_DB_URL", "sqlite://")
        engine = create_app_components(Settings(), clock=lambda: datetime(2025, 4, 10, 9, 30))
        yield engine
        engine.close()

    def test_run_maintenance(self, engine):
        """Test materialization, purge and last-month aggregation in one run."""
        engine.rules.create({
            "account_id": "acct-1",
            "description": "Internet",
            "amount": "40.00",
            "kind": "expense",
            "category_id": "utilities",
            "scope": "personal",
            "frequency": "monthly",
            "start_date": date(2025, 3, 1),
        })
        engine.rules.create({
            "account_id": "acct-1",
            "description": "Old gym",
            "amount": "30.00",
            "kind": "expense",
            "category_id": "health",
            "scope": "personal",
            "frequency": "monthly",
            "start_date": date(2024, 1, 1),
            "end_date": date(2025, 1, 31),
        })
        debtor = engine.obligations.register_debtor("Asha Rao")
        engine.obligations.subscribe(debtor.id, "Mathematics", Decimal("1000.00"), date(2025, 1, 1))
        engine.obligations.record_payment({
            "debtor_id": debtor.id,
            "period": Period.of("03", 2025),
            "amount": "1000",
            "method": "cash",
        })

        report = engine.run_maintenance("acct-1")

        assert sum(r.created_count for r in report.materialized) == 1
        assert report.purged_rules == 1
        assert report.aggregation.outcome == AggregationOutcome.COMPLETED
        assert engine.projector.account_balance("acct-1").current_balance == Decimal("960.00")

        again = engine.run_maintenance("acct-1")
        assert sum(r.created_count for r in again.materialized) == 0
        assert again.aggregation.outcome == AggregationOutcome.ALREADY_AGGREGATED
