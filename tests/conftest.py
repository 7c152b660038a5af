"""
Shared fixtures.

Every test gets a fresh in-memory SQLite database and services wired to
it with a fixed clock, so dates in assertions never depend on the day the
suite runs.
"""

from datetime import date, datetime
from decimal import Decimal

import pytest

from fintrack.aggregation import AggregationCoordinator
from fintrack.audit import AuditLogger
from fintrack.config import DatabaseSettings, LedgerSettings
from fintrack.ledger import LedgerService
from fintrack.obligations import ObligationLedger
from fintrack.queries import BalanceProjector
from fintrack.recurrence import RecurringRuleService
from fintrack.services.storage import SqlAuditStorage, SqlStorage
from fintrack.validation import LedgerEntryValidator

FIXED_NOW = datetime(2025, 4, 10, 9, 30, 0)
TODAY = FIXED_NOW.date()
ACCOUNT = "acct-1"


def fixed_clock() -> datetime:
    return FIXED_NOW


@pytest.fixture
def storage():
    store = SqlStorage(DatabaseSettings(url="sqlite://", connect_retries=1))
    store.connect()
    yield store
    store.dispose()


@pytest.fixture
def audit_storage(storage):
    return SqlAuditStorage(storage)


@pytest.fixture
def audit_logger(audit_storage):
    return AuditLogger(audit_storage)


@pytest.fixture
def ledger_settings():
    return LedgerSettings(
        due_soon_window_days=7,
        fees_category_id="tuition-fees",
        aggregate_description_prefix="Monthly Tuition Fees Aggregate",
        note_separator="; ",
        min_period_year=2020,
    )


@pytest.fixture
def validator():
    return LedgerEntryValidator()


@pytest.fixture
def ledger(storage, validator, audit_logger):
    return LedgerService(storage, validator, audit_logger, clock=fixed_clock)


@pytest.fixture
def rules(storage, validator, audit_logger):
    return RecurringRuleService(storage, validator, audit_logger, clock=fixed_clock)


@pytest.fixture
def obligations(storage, ledger_settings, audit_logger):
    return ObligationLedger(storage, ledger_settings, audit_logger, clock=fixed_clock)


@pytest.fixture
def coordinator(storage, ledger_settings, audit_logger):
    return AggregationCoordinator(storage, ledger_settings, audit_logger, clock=fixed_clock)


@pytest.fixture
def projector(storage, ledger_settings):
    return BalanceProjector(storage, ledger_settings, clock=fixed_clock)


@pytest.fixture
def debtor(obligations):
    """An active debtor owing 1000 per month."""
    student = obligations.register_debtor("Asha Rao")
    obligations.subscribe(student.id, "Mathematics", Decimal("1000.00"), date(2025, 1, 1))
    return student


@pytest.fixture
def today():
    return TODAY


@pytest.fixture
def account_id():
    return ACCOUNT


@pytest.fixture
def entry_data():
    """Factory for valid ledger entry input; keyword overrides replace fields."""
    def build(**overrides) -> dict:
        data = {
            "account_id": ACCOUNT,
            "description": "Groceries",
            "amount": Decimal("120.00"),
            "kind": "expense",
            "category_id": "food",
            "scope": "personal",
            "occurred_on": date(2025, 3, 15),
        }
        data.update(overrides)
        return data
    return build
