"""
Obligation Ledger

Tracks what each debtor owes per (month, year) period and accumulates
payments against it.

State machine per obligation:
    pending --payment--> partial --payment--> paid
    pending --payment (full)--> paid

`overdue` is never stored; see Obligation.effective_status.

INVARIANTS (checked on every write):
1. 0 <= paid_amount <= total_amount
2. paid_amount never decreases; overpayment is refused, not clamped
3. status = derive_status(paid_amount, total_amount)
4. One obligation per (debtor, month, year), enforced by the store

CONCURRENCY: the read-modify-write of paid_amount runs inside one unit of
work with the obligation row locked, so two payments for the same
(debtor, period) cannot lose an update.
"""

from datetime import date, datetime
from decimal import Decimal
from typing import Any, Callable, Optional, Union
from uuid import UUID

import structlog
from pydantic import ValidationError as PydanticValidationError

from fintrack.audit.logger import AuditLogger
from fintrack.config.settings import LedgerSettings
from fintrack.exceptions import FinTrackError, NotFoundError, ValidationError
from fintrack.models.obligation import (
    Debtor,
    DebtorStatus,
    GenerationReport,
    Obligation,
    ObligationStatus,
    PaymentRequest,
    Period,
    SkippedObligation,
    Subscription,
    SubscriptionStatus,
    derive_status,
)
from fintrack.services.storage import StorageInterface, StorageTransaction

logger = structlog.get_logger(__name__)


def _parse(model_cls, data):
    if isinstance(data, model_cls):
        return data
    try:
        return model_cls.model_validate(data)
    except PydanticValidationError as e:
        raise ValidationError.from_pydantic(e) from e


def _as_uuid(value) -> Optional[UUID]:
    if isinstance(value, UUID):
        return value
    try:
        return UUID(str(value))
    except ValueError:
        return None


class ObligationLedger:
    """
    Per-period fee obligations and the debtor master data they derive from.

    Args:
        storage: Store handle
        settings: Ledger policy (note separator, accepted period years)
        audit_logger: Audit trail
        clock: Returns the current UTC datetime; injectable for tests
    """

    def __init__(
        self,
        storage: StorageInterface,
        settings: LedgerSettings,
        audit_logger: AuditLogger,
        clock: Callable[[], datetime] = datetime.utcnow,
    ):
        self._storage = storage
        self._settings = settings
        self._audit = audit_logger
        self._clock = clock

    # -------------------------------------------------------------------------
    # Debtors and subscriptions
    # -------------------------------------------------------------------------

    def register_debtor(
        self,
        name: str,
        status: DebtorStatus = DebtorStatus.ACTIVE,
    ) -> Debtor:
        debtor = _parse(Debtor, {"name": name, "status": status, "created_at": self._clock()})
        with self._storage.transaction() as tx:
            tx.add_debtor(debtor)
        logger.info("debtor_registered", debtor_id=str(debtor.id), status=debtor.status.value)
        return debtor

    def get_debtor(self, debtor_id: UUID) -> Debtor:
        with self._storage.transaction() as tx:
            debtor = tx.get_debtor(debtor_id)
        if debtor is None:
            raise NotFoundError(f"Debtor not found: {debtor_id}")
        return debtor

    def list_debtors(self, status: Optional[DebtorStatus] = None) -> list[Debtor]:
        with self._storage.transaction() as tx:
            return tx.list_debtors(status)

    def set_debtor_status(self, debtor_id: UUID, status: DebtorStatus) -> Debtor:
        """Move a debtor to another status (e.g. graduated)."""
        with self._storage.transaction() as tx:
            debtor = tx.get_debtor(debtor_id)
            if debtor is None:
                raise NotFoundError(f"Debtor not found: {debtor_id}")
            debtor = debtor.model_copy(update={"status": DebtorStatus(status)})
            tx.save_debtor(debtor)
        logger.info("debtor_status_changed", debtor_id=str(debtor_id), status=debtor.status.value)
        return debtor

    def subscribe(
        self,
        debtor_id: UUID,
        name: str,
        fee: Union[Decimal, str],
        start_date: date,
    ) -> Subscription:
        """
        Start a recurring fee for a debtor.

        Raises:
            NotFoundError: Unknown debtor
            ValidationError: Fee is not a positive amount
        """
        subscription = _parse(Subscription, {
            "debtor_id": debtor_id,
            "name": name,
            "fee": fee,
            "start_date": start_date,
            "created_at": self._clock(),
        })
        if subscription.fee <= 0:
            raise ValidationError.single("fee", "invalid_value", "Fee must be greater than zero")

        with self._storage.transaction() as tx:
            if tx.get_debtor(debtor_id) is None:
                raise NotFoundError(f"Debtor not found: {debtor_id}")
            tx.add_subscription(subscription)
        return subscription

    def end_subscription(
        self,
        subscription_id: UUID,
        end_date: Optional[date] = None,
        status: SubscriptionStatus = SubscriptionStatus.COMPLETED,
    ) -> Subscription:
        """
        Stop a subscription. Existing obligations keep the total they
        were created with.
        """
        if SubscriptionStatus(status) == SubscriptionStatus.ACTIVE:
            raise ValidationError.single("status", "invalid_value", "An ended subscription cannot be active")

        with self._storage.transaction() as tx:
            subscription = tx.get_subscription(subscription_id)
            if subscription is None:
                raise NotFoundError(f"Subscription not found: {subscription_id}")
            subscription = subscription.model_copy(update={
                "status": SubscriptionStatus(status),
                "end_date": end_date or self._clock().date(),
            })
            tx.save_subscription(subscription)
        return subscription

    def list_subscriptions(self, debtor_id: UUID, active_only: bool = True) -> list[Subscription]:
        with self._storage.transaction() as tx:
            return tx.list_subscriptions(debtor_id, active_only=active_only)

    def monthly_fee(self, debtor_id: UUID) -> Decimal:
        """Sum of the debtor's active subscription fees."""
        with self._storage.transaction() as tx:
            if tx.get_debtor(debtor_id) is None:
                raise NotFoundError(f"Debtor not found: {debtor_id}")
            return tx.active_fee_total(debtor_id)

    # -------------------------------------------------------------------------
    # Payments
    # -------------------------------------------------------------------------

    def _check_period(self, period: Period) -> None:
        latest = self._clock().year + 1
        if not self._settings.min_period_year <= period.year <= latest:
            raise ValidationError.single(
                "period.year",
                "out_of_range",
                f"Year must be between {self._settings.min_period_year} and {latest}",
            )

    def _log_rejection(self, payment: Union[PaymentRequest, dict[str, Any]], error: FinTrackError) -> None:
        # Unparseable input is logged with whatever identifying fields it carries
        if isinstance(payment, PaymentRequest):
            debtor_id, period, amount = payment.debtor_id, str(payment.period), payment.amount
        else:
            raw = payment if isinstance(payment, dict) else {}
            debtor_id = _as_uuid(raw.get("debtor_id"))
            period = str(raw.get("period", "unknown period"))
            amount = raw.get("amount")

        self._audit.log_payment_rejected(
            debtor_id=debtor_id,
            period=period,
            amount=amount,
            reason=str(error),
        )

    def _append_note(self, existing: Optional[str], note: Optional[str]) -> Optional[str]:
        if not note:
            return existing
        if not existing:
            return note
        return f"{existing}{self._settings.note_separator}{note}"

    def _apply_payment(
        self,
        tx: StorageTransaction,
        request: PaymentRequest,
    ) -> Obligation:
        debtor = tx.get_debtor(request.debtor_id)
        if debtor is None:
            raise NotFoundError(f"Debtor not found: {request.debtor_id}")
        if not debtor.is_active:
            raise ValidationError.single(
                "debtor_id",
                "inactive_debtor",
                f"Debtor {debtor.name} is {debtor.status.value}",
            )

        now = self._clock()
        existing = tx.get_obligation(request.debtor_id, request.period, lock=True)

        if existing is None:
            total = tx.active_fee_total(request.debtor_id)
            if total <= 0:
                raise NotFoundError(f"Nothing is owed by {debtor.name} for {request.period}")
            if request.amount > total:
                raise ValidationError.single(
                    "amount",
                    "overpayment",
                    f"Payment {request.amount} exceeds the amount owed ({total})",
                )
            obligation = Obligation(
                debtor_id=request.debtor_id,
                month=request.period.month,
                year=request.period.year,
                total_amount=total,
                paid_amount=request.amount,
                status=derive_status(request.amount, total),
                payment_date=now,
                payment_method=request.method,
                notes=request.note or None,
                created_at=now,
                updated_at=now,
            )
            tx.add_obligation(obligation)
            return obligation

        if request.amount > existing.remaining:
            raise ValidationError.single(
                "amount",
                "overpayment",
                f"Payment {request.amount} exceeds the remaining balance ({existing.remaining})",
            )

        paid = existing.paid_amount + request.amount
        obligation = Obligation.model_validate({
            **existing.model_dump(),
            "paid_amount": paid,
            "status": derive_status(paid, existing.total_amount),
            "payment_date": now,
            "payment_method": request.method,
            "notes": self._append_note(existing.notes, request.note),
            "updated_at": now,
        })
        tx.save_obligation(obligation)
        return obligation

    def record_payment(
        self,
        payment: Union[PaymentRequest, dict[str, Any]],
    ) -> Obligation:
        """
        Record a payment against a debtor's period.

        Without an obligation for the period, one is created with the
        debtor's current active fee total as its snapshot total.

        Raises:
            ValidationError: Non-positive amount, period out of range,
                inactive debtor, or overpayment
            NotFoundError: Unknown debtor, or nothing owed for the period
            ConflictError: A concurrent first payment created the obligation
        """
        request = None
        try:
            request = _parse(PaymentRequest, payment)
            if request.amount <= 0:
                raise ValidationError.single("amount", "invalid_value", "Payment amount must be greater than zero")
            self._check_period(request.period)

            with self._storage.transaction() as tx:
                obligation = self._apply_payment(tx, request)
        except FinTrackError as e:
            self._log_rejection(request if request is not None else payment, e)
            raise

        self._audit.log_payment_recorded(
            obligation_id=obligation.id,
            debtor_id=obligation.debtor_id,
            period=str(obligation.period),
            amount=request.amount,
            paid_amount=obligation.paid_amount,
            status=obligation.status.value,
        )
        return obligation

    # -------------------------------------------------------------------------
    # Generation and reads
    # -------------------------------------------------------------------------

    def generate_period_obligations(self, period: Period) -> GenerationReport:
        """
        Create a pending obligation for every active debtor who owes something.

        Debtors that already have an obligation for the period are reported
        as skipped; running this twice creates nothing the second time.
        """
        self._check_period(period)
        report = GenerationReport(period=period)
        now = self._clock()

        with self._storage.transaction() as tx:
            for debtor in tx.list_debtors(DebtorStatus.ACTIVE):
                existing = tx.get_obligation(debtor.id, period)
                if existing is not None:
                    report.skipped.append(SkippedObligation(
                        debtor_id=debtor.id,
                        debtor_name=debtor.name,
                        obligation_id=existing.id,
                        reason="Fee record already exists",
                    ))
                    continue

                total = tx.active_fee_total(debtor.id)
                if total <= 0:
                    continue

                obligation = Obligation(
                    debtor_id=debtor.id,
                    month=period.month,
                    year=period.year,
                    total_amount=total,
                    status=ObligationStatus.PENDING,
                    created_at=now,
                    updated_at=now,
                )
                tx.add_obligation(obligation)
                report.created.append(obligation)

        self._audit.log_obligations_generated(
            period=str(period),
            created=report.created_count,
            skipped=len(report.skipped),
        )
        return report

    def get_obligation(self, debtor_id: UUID, period: Period) -> Obligation:
        with self._storage.transaction() as tx:
            obligation = tx.get_obligation(debtor_id, period)
        if obligation is None:
            raise NotFoundError(f"No obligation for debtor {debtor_id} in {period}")
        return obligation

    def list_debtor_obligations(self, debtor_id: UUID) -> list[Obligation]:
        """A debtor's obligations, newest period first."""
        with self._storage.transaction() as tx:
            if tx.get_debtor(debtor_id) is None:
                raise NotFoundError(f"Debtor not found: {debtor_id}")
            return tx.list_debtor_obligations(debtor_id)
