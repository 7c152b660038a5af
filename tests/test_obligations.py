"""Tests for the obligation ledger state machine and period generation."""

import pytest
from datetime import date
from decimal import Decimal
from uuid import uuid4

from fintrack.exceptions import NotFoundError, ValidationError
from fintrack.models import (
    AuditEventType,
    DebtorStatus,
    ObligationStatus,
    PaymentMethod,
    PaymentRequest,
    Period,
    SubscriptionStatus,
)

MARCH = Period.of("03", 2025)


def pay(obligations, debtor_id, amount, method="cash", note=None, period=MARCH):
    return obligations.record_payment({
        "debtor_id": debtor_id,
        "period": period,
        "amount": amount,
        "method": method,
        "note": note,
    })


class TestMasterData:
    """Tests for debtors and subscriptions."""

    def test_monthly_fee_sums_active_subscriptions(self, obligations, debtor):
        """Test fee total over active subscriptions only."""
        physics = obligations.subscribe(debtor.id, "Physics", Decimal("500.00"), date(2025, 1, 1))
        assert obligations.monthly_fee(debtor.id) == Decimal("1500.00")

        obligations.end_subscription(physics.id, status=SubscriptionStatus.DROPPED)
        assert obligations.monthly_fee(debtor.id) == Decimal("1000.00")

    def test_subscribe_unknown_debtor(self, obligations):
        """Test NotFoundError for an unknown debtor."""
        with pytest.raises(NotFoundError):
            obligations.subscribe(uuid4(), "Chemistry", Decimal("100"), date(2025, 1, 1))

    def test_subscribe_rejects_zero_fee(self, obligations, debtor):
        """Test that a fee must be positive."""
        with pytest.raises(ValidationError):
            obligations.subscribe(debtor.id, "Free class", Decimal("0"), date(2025, 1, 1))

    def test_end_subscription_defaults_to_today(self, obligations, debtor, today):
        """Test that ending a subscription records an end date."""
        subscription = obligations.list_subscriptions(debtor.id)[0]
        ended = obligations.end_subscription(subscription.id)

        assert ended.status == SubscriptionStatus.COMPLETED
        assert ended.end_date == today
        assert obligations.list_subscriptions(debtor.id) == []


class TestRecordPayment:
    """Tests for the payment state machine."""

    def test_partial_then_full_then_overpayment(self, obligations, debtor):
        """Test 400 -> partial, 600 -> paid, anything more -> rejected."""
        first = pay(obligations, debtor.id, "400")
        assert first.status == ObligationStatus.PARTIAL
        assert first.paid_amount == Decimal("400.00")
        assert first.total_amount == Decimal("1000.00")

        second = pay(obligations, debtor.id, "600", method="upi")
        assert second.id == first.id
        assert second.status == ObligationStatus.PAID
        assert second.paid_amount == Decimal("1000.00")
        assert second.payment_method == PaymentMethod.UPI

        with pytest.raises(ValidationError, match="exceeds"):
            pay(obligations, debtor.id, "0.01")

        stored = obligations.get_obligation(debtor.id, MARCH)
        assert stored.paid_amount == Decimal("1000.00")
        assert stored.status == ObligationStatus.PAID

    def test_full_first_payment_is_paid(self, obligations, debtor):
        """Test a single payment covering the whole amount."""
        obligation = pay(obligations, debtor.id, "1000")
        assert obligation.status == ObligationStatus.PAID

    def test_first_payment_above_total_rejected(self, obligations, debtor):
        """Test overpayment on the first payment of a period."""
        with pytest.raises(ValidationError):
            pay(obligations, debtor.id, "1000.01")

        with pytest.raises(NotFoundError):
            obligations.get_obligation(debtor.id, MARCH)

    def test_overpayment_is_not_clamped(self, obligations, debtor):
        """Test that a too-large second payment changes nothing."""
        pay(obligations, debtor.id, "700")
        with pytest.raises(ValidationError):
            pay(obligations, debtor.id, "400")

        assert obligations.get_obligation(debtor.id, MARCH).paid_amount == Decimal("700.00")

    def test_payment_sets_date_and_method(self, obligations, debtor):
        """Test that every payment stamps date and method."""
        obligation = pay(obligations, debtor.id, "100", method="bank_transfer")
        assert obligation.payment_date is not None
        assert obligation.payment_method == PaymentMethod.BANK_TRANSFER

    def test_notes_are_appended(self, obligations, debtor):
        """Test that notes accumulate with the separator."""
        pay(obligations, debtor.id, "100", note="first instalment")
        pay(obligations, debtor.id, "100")
        obligation = pay(obligations, debtor.id, "100", note="third instalment")

        assert obligation.notes == "first instalment; third instalment"

    def test_total_is_a_snapshot(self, obligations, debtor):
        """Test that later fee changes do not alter an existing obligation."""
        pay(obligations, debtor.id, "100")
        obligations.subscribe(debtor.id, "Physics", Decimal("500.00"), date(2025, 3, 1))

        obligation = pay(obligations, debtor.id, "100")
        assert obligation.total_amount == Decimal("1000.00")

    def test_nothing_owed_is_not_found(self, obligations):
        """Test a debtor without active subscriptions."""
        debtor = obligations.register_debtor("No Classes")
        with pytest.raises(NotFoundError, match="Nothing is owed"):
            pay(obligations, debtor.id, "100")

    def test_unknown_debtor(self, obligations):
        """Test NotFoundError for an unknown debtor."""
        with pytest.raises(NotFoundError):
            pay(obligations, uuid4(), "100")

    def test_inactive_debtor_rejected(self, obligations, debtor):
        """Test that only active debtors can pay."""
        obligations.set_debtor_status(debtor.id, DebtorStatus.GRADUATED)
        with pytest.raises(ValidationError, match="graduated"):
            pay(obligations, debtor.id, "100")

    @pytest.mark.parametrize("amount", ["0", "-5"])
    def test_non_positive_amount_rejected(self, obligations, debtor, amount):
        """Test that amounts must be positive."""
        with pytest.raises(ValidationError):
            pay(obligations, debtor.id, amount)

    def test_unknown_method_rejected(self, obligations, debtor):
        """Test payment method validation."""
        with pytest.raises(ValidationError):
            pay(obligations, debtor.id, "100", method="cheque")

    @pytest.mark.parametrize("year", [2019, 2027])
    def test_year_out_of_range(self, obligations, debtor, year):
        """Test the accepted period years (clock is in 2025)."""
        with pytest.raises(ValidationError):
            pay(obligations, debtor.id, "100", period=Period(month=1, year=year))

    def test_accepts_request_model(self, obligations, debtor):
        """Test that a PaymentRequest instance is accepted."""
        obligation = obligations.record_payment(PaymentRequest(
            debtor_id=debtor.id,
            period=MARCH,
            amount=Decimal("250"),
            method=PaymentMethod.CARD,
        ))
        assert obligation.paid_amount == Decimal("250.00")

    def test_rejection_is_audited(self, obligations, debtor, audit_storage):
        """Test that refused payments leave an audit trail."""
        with pytest.raises(ValidationError):
            pay(obligations, debtor.id, "5000")

        events = audit_storage.get_events_by_entity("debtor", debtor.id)
        assert [e.event_type for e in events] == [AuditEventType.PAYMENT_REJECTED]
        assert "exceeds" in events[0].error_message

    @pytest.mark.parametrize("overrides", [
        {"amount": "-5"},
        {"method": "cheque"},
        {"period": {"month": 13, "year": 2025}},
    ])
    def test_malformed_payment_is_audited(self, obligations, debtor, audit_storage, overrides):
        """Test that input failing schema validation is still recorded as rejected."""
        payment = {"debtor_id": debtor.id, "period": MARCH, "amount": "100", "method": "cash"}
        payment.update(overrides)

        with pytest.raises(ValidationError):
            obligations.record_payment(payment)

        events = audit_storage.get_events_by_entity("debtor", debtor.id)
        assert [e.event_type for e in events] == [AuditEventType.PAYMENT_REJECTED]


class TestGeneration:
    """Tests for bulk period generation."""

    def test_generation_is_duplicate_tolerant(self, obligations, debtor):
        """Test that a second run creates nothing and reports skips."""
        other = obligations.register_debtor("Ben Li")
        obligations.subscribe(other.id, "Biology", Decimal("800.00"), date(2025, 1, 1))

        first = obligations.generate_period_obligations(MARCH)
        assert first.created_count == 2
        assert first.skipped == []
        assert all(o.status == ObligationStatus.PENDING for o in first.created)
        assert first.message == "Generated 2 fee records for 03/2025"

        second = obligations.generate_period_obligations(MARCH)
        assert second.created_count == 0
        assert sorted(s.debtor_name for s in second.skipped) == ["Asha Rao", "Ben Li"]

    def test_generation_skips_debtors_owing_nothing(self, obligations, debtor):
        """Test that debtors without fees and inactive debtors are left out."""
        obligations.register_debtor("No Classes")
        inactive = obligations.register_debtor("Left", status=DebtorStatus.INACTIVE)
        obligations.subscribe(inactive.id, "Art", Decimal("300.00"), date(2025, 1, 1))

        report = obligations.generate_period_obligations(MARCH)

        assert [o.debtor_id for o in report.created] == [debtor.id]

    def test_existing_payment_is_skipped(self, obligations, debtor):
        """Test that a period already paid into is reported as skipped."""
        paid = pay(obligations, debtor.id, "300")

        report = obligations.generate_period_obligations(MARCH)

        assert report.created_count == 0
        assert report.skipped[0].obligation_id == paid.id

    def test_generated_obligation_accepts_payments(self, obligations, debtor):
        """Test paying into a generated obligation."""
        report = obligations.generate_period_obligations(MARCH)
        obligation = pay(obligations, debtor.id, "1000")

        assert obligation.id == report.created[0].id
        assert obligation.status == ObligationStatus.PAID


class TestObligationQueries:
    """Tests for obligation reads."""

    def test_list_debtor_obligations_newest_first(self, obligations, debtor):
        """Test ordering by period."""
        pay(obligations, debtor.id, "100", period=Period(month=1, year=2025))
        pay(obligations, debtor.id, "100", period=Period(month=3, year=2025))
        pay(obligations, debtor.id, "100", period=Period(month=12, year=2024))

        periods = [str(o.period) for o in obligations.list_debtor_obligations(debtor.id)]
        assert periods == ["03/2025", "01/2025", "12/2024"]

    def test_get_missing_obligation(self, obligations, debtor):
        """Test NotFoundError when nothing was recorded."""
        with pytest.raises(NotFoundError):
            obligations.get_obligation(debtor.id, MARCH)
