"""Tests for folding paid obligations into the ledger."""

import pytest
from datetime import date
from decimal import Decimal
from uuid import uuid4

from fintrack.exceptions import ConflictError, NotFoundError
from fintrack.models import (
    AggregationOutcome,
    AggregationReceipt,
    AuditEventType,
    EntryKind,
    Period,
    Scope,
)

MARCH = Period.of("03", 2025)
FEBRUARY = Period.of("02", 2025)


@pytest.fixture
def second_debtor(obligations):
    student = obligations.register_debtor("Ben Li")
    obligations.subscribe(student.id, "Biology", Decimal("1500.00"), date(2025, 1, 1))
    return student


def pay(obligations, debtor_id, amount, period=MARCH):
    return obligations.record_payment({
        "debtor_id": debtor_id,
        "period": period,
        "amount": amount,
        "method": "cash",
    })


class TestAggregate:
    """Tests for AggregationCoordinator.aggregate."""

    def test_paid_obligations_become_one_income_entry(
        self, coordinator, obligations, ledger, debtor, second_debtor, account_id,
    ):
        """Test 1000 + 1500 paid -> one entry of 2500 and one receipt."""
        pay(obligations, debtor.id, "1000")
        pay(obligations, second_debtor.id, "1500")

        result = coordinator.aggregate(MARCH, account_id)

        assert result.outcome == AggregationOutcome.COMPLETED
        assert result.total_amount == Decimal("2500.00")
        assert result.payment_count == 2

        entries = ledger.list(account_id)
        assert len(entries) == 1
        entry = entries[0]
        assert entry.amount == Decimal("2500.00")
        assert entry.kind == EntryKind.INCOME
        assert entry.scope == Scope.BUSINESS
        assert entry.category_id == "tuition-fees"
        assert entry.description == "Monthly Tuition Fees Aggregate - March 2025"
        assert entry.occurred_on == date(2025, 4, 10)

        receipt = coordinator.get_receipt(MARCH)
        assert receipt.entry_id == entry.id
        assert receipt.payment_count == 2

        assert obligations.get_obligation(debtor.id, MARCH).aggregated is True

    def test_second_run_has_nothing_to_aggregate(self, coordinator, obligations, ledger, debtor, account_id):
        """Test that a repeat run neither emits nor records anything."""
        pay(obligations, debtor.id, "1000")
        coordinator.aggregate(MARCH, account_id)

        again = coordinator.aggregate(MARCH, account_id)

        assert again.outcome == AggregationOutcome.NOTHING_TO_AGGREGATE
        assert again.receipt is None
        assert len(coordinator.history()) == 1
        assert len(ledger.list(account_id)) == 1

    def test_partial_payments_are_not_aggregated(
        self, coordinator, obligations, debtor, second_debtor, account_id,
    ):
        """Test that only fully paid obligations count."""
        pay(obligations, debtor.id, "1000")
        pay(obligations, second_debtor.id, "500")

        result = coordinator.aggregate(MARCH, account_id)

        assert result.total_amount == Decimal("1000.00")
        assert result.payment_count == 1
        assert obligations.get_obligation(second_debtor.id, MARCH).aggregated is False

    def test_settled_after_receipt_is_refused(
        self, coordinator, obligations, debtor, second_debtor, account_id,
    ):
        """Test that a period with a receipt cannot be aggregated twice."""
        pay(obligations, debtor.id, "1000")
        pay(obligations, second_debtor.id, "500")
        coordinator.aggregate(MARCH, account_id)

        pay(obligations, second_debtor.id, "1000")

        with pytest.raises(ConflictError):
            coordinator.aggregate(MARCH, account_id)
        assert obligations.get_obligation(second_debtor.id, MARCH).aggregated is False

    def test_empty_period(self, coordinator, ledger, account_id):
        """Test a period with no payments at all."""
        result = coordinator.aggregate(MARCH, account_id)

        assert result.outcome == AggregationOutcome.NOTHING_TO_AGGREGATE
        assert coordinator.history() == []
        assert ledger.list(account_id) == []

    def test_existing_receipt_rolls_everything_back(
        self, coordinator, obligations, ledger, storage, debtor, account_id, audit_storage,
    ):
        """Test that a duplicate receipt undoes the entry and the flags."""
        pay(obligations, debtor.id, "1000")
        with storage.transaction() as tx:
            tx.add_receipt(AggregationReceipt(
                month=3,
                year=2025,
                total_amount=Decimal("1000.00"),
                payment_count=1,
                entry_id=uuid4(),
            ))

        with pytest.raises(ConflictError):
            coordinator.aggregate(MARCH, account_id)

        assert ledger.list(account_id) == []
        assert obligations.get_obligation(debtor.id, MARCH).aggregated is False

        conflicts = [
            e for e in audit_storage.get_recent_events()
            if e.event_type == AuditEventType.AGGREGATION_CONFLICT
        ]
        assert len(conflicts) == 1

    def test_completion_is_audited(self, coordinator, obligations, debtor, account_id, audit_storage):
        """Test the audit event for a completed aggregation."""
        pay(obligations, debtor.id, "1000")
        result = coordinator.aggregate(MARCH, account_id)

        events = audit_storage.get_events_by_entity("receipt", result.receipt.id)
        assert [e.event_type for e in events] == [AuditEventType.AGGREGATION_COMPLETED]
        assert events[0].details["period"] == "03/2025"


class TestAutoAggregate:
    """Tests for the previous-month convenience call."""

    def test_targets_previous_month(self, coordinator, obligations, debtor, account_id):
        """Test that the clock's previous month is aggregated."""
        pay(obligations, debtor.id, "1000")

        result = coordinator.auto_aggregate(account_id)

        assert result.period == MARCH
        assert result.outcome == AggregationOutcome.COMPLETED

    def test_second_call_reports_already_aggregated(self, coordinator, obligations, debtor, account_id):
        """Test the receipt short-circuit."""
        pay(obligations, debtor.id, "1000")
        first = coordinator.auto_aggregate(account_id)

        second = coordinator.auto_aggregate(account_id)

        assert second.outcome == AggregationOutcome.ALREADY_AGGREGATED
        assert second.receipt.id == first.receipt.id
        assert second.message == "March 2025 has already been aggregated"

    def test_january_targets_december(self, coordinator, account_id):
        """Test the year rollover."""
        result = coordinator.auto_aggregate(account_id, today=date(2025, 1, 5))
        assert result.period == Period(month=12, year=2024)


class TestHistory:
    """Tests for receipt reads."""

    def test_history_newest_first(self, coordinator, obligations, debtor, account_id):
        """Test receipt ordering."""
        pay(obligations, debtor.id, "1000", period=FEBRUARY)
        pay(obligations, debtor.id, "1000", period=MARCH)
        coordinator.aggregate(FEBRUARY, account_id)
        coordinator.aggregate(MARCH, account_id)

        assert [r.period for r in coordinator.history()] == [MARCH, FEBRUARY]

    def test_missing_receipt(self, coordinator):
        """Test NotFoundError for a period never aggregated."""
        with pytest.raises(NotFoundError):
            coordinator.get_receipt(MARCH)
