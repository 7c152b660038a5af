"""
Concurrent writers against one file-backed SQLite database.

Payments for the same (debtor, period) and aggregation runs for the same
period must serialize: no lost updates, no double-counted receipts.
"""

from concurrent.futures import ThreadPoolExecutor
from datetime import date, datetime
from decimal import Decimal

import pytest

from fintrack.aggregation import AggregationCoordinator
from fintrack.audit import AuditLogger
from fintrack.config import DatabaseSettings, LedgerSettings
from fintrack.exceptions import ConflictError, FinTrackError
from fintrack.ledger import LedgerService
from fintrack.models import AggregationOutcome, Period
from fintrack.obligations import ObligationLedger
from fintrack.services.storage import SqlAuditStorage, SqlStorage
from fintrack.validation import LedgerEntryValidator

MARCH = Period.of("03", 2025)
WORKERS = 8


def clock() -> datetime:
    return datetime(2025, 4, 10, 9, 30)


@pytest.fixture
def storage(tmp_path):
    store = SqlStorage(DatabaseSettings(url=f"sqlite:///{tmp_path / 'fintrack.db'}", connect_retries=1))
    store.connect()
    yield store
    store.dispose()


@pytest.fixture
def audit_logger(storage):
    return AuditLogger(SqlAuditStorage(storage))


@pytest.fixture
def ledger_settings():
    return LedgerSettings(min_period_year=2020)


@pytest.fixture
def obligations(storage, ledger_settings, audit_logger):
    return ObligationLedger(storage, ledger_settings, audit_logger, clock=clock)


@pytest.fixture
def coordinator(storage, ledger_settings, audit_logger):
    return AggregationCoordinator(storage, ledger_settings, audit_logger, clock=clock)


@pytest.fixture
def ledger(storage, audit_logger):
    return LedgerService(storage, LedgerEntryValidator(), audit_logger, clock=clock)


def enrol(obligations, name, fee):
    debtor = obligations.register_debtor(name)
    obligations.subscribe(debtor.id, "Mathematics", Decimal(fee), date(2025, 1, 1))
    return debtor


def pay(obligations, debtor_id, amount):
    return obligations.record_payment({
        "debtor_id": debtor_id,
        "period": MARCH,
        "amount": amount,
        "method": "cash",
    })


class TestParallelPayments:
    """Payments racing on one obligation row."""

    def test_no_payment_is_lost(self, obligations):
        """Test that every accepted payment lands in paid_amount."""
        debtor = enrol(obligations, "Asha Rao", "1000.00")
        pay(obligations, debtor.id, "1.00")

        def pay_ten(_):
            try:
                pay(obligations, debtor.id, "10.00")
                return True
            except FinTrackError:
                return False

        with ThreadPoolExecutor(max_workers=WORKERS) as pool:
            accepted = sum(pool.map(pay_ten, range(20)))

        obligation = obligations.get_obligation(debtor.id, MARCH)
        assert accepted > 0
        assert obligation.paid_amount == Decimal("1.00") + Decimal("10.00") * accepted

    def test_overpayment_race_never_exceeds_total(self, obligations):
        """Test that racing payments stop exactly at the total."""
        debtor = enrol(obligations, "Ben Li", "100.00")
        pay(obligations, debtor.id, "40.00")

        def pay_ten(_):
            try:
                pay(obligations, debtor.id, "10.00")
                return True
            except FinTrackError:
                return False

        with ThreadPoolExecutor(max_workers=WORKERS) as pool:
            accepted = sum(pool.map(pay_ten, range(10)))

        obligation = obligations.get_obligation(debtor.id, MARCH)
        assert accepted == 6
        assert obligation.paid_amount == Decimal("100.00")


class TestParallelAggregation:
    """Aggregation runs racing on one period."""

    def test_exactly_one_receipt(self, obligations, coordinator, ledger):
        """Test that concurrent runs produce one entry and one receipt."""
        for name, fee in [("Asha Rao", "1000.00"), ("Ben Li", "1500.00")]:
            debtor = enrol(obligations, name, fee)
            pay(obligations, debtor.id, fee)

        def run(_):
            try:
                return coordinator.aggregate(MARCH, "acct-1").outcome
            except ConflictError:
                return None

        with ThreadPoolExecutor(max_workers=WORKERS) as pool:
            outcomes = list(pool.map(run, range(WORKERS)))

        assert outcomes.count(AggregationOutcome.COMPLETED) == 1
        assert len(coordinator.history()) == 1

        entries = ledger.list("acct-1")
        assert len(entries) == 1
        assert entries[0].amount == Decimal("2500.00")


if __name__ == "__main__":
    pytest.main([__file__, "-v"])
