"""
Aggregation Coordinator

Folds the paid obligations of a (month, year) period into the main ledger
as one income entry, exactly once.

DESIGN DECISION: Eligibility is `status = paid AND aggregated = false` on
every call path. Partially paid obligations wait until they are settled.

DESIGN DECISION: Exactly-once is guaranteed by the store, not by a check.
One unit of work:
1. Locks and reads the eligible obligations
2. Emits the income entry
3. Flags the obligations as aggregated
4. Inserts the receipt, whose (month, year) uniqueness constraint makes a
   concurrent or repeated run fail with ConflictError

A crash anywhere rolls back all four steps, so a retry never double-counts.
The receipt lookup in auto_aggregate only saves work; it is not the guard.
"""

from datetime import date, datetime
from decimal import Decimal
from typing import Callable, Optional

import structlog

from fintrack.audit.logger import AuditLogger, create_correlation_id
from fintrack.config.settings import LedgerSettings
from fintrack.exceptions import ConflictError, NotFoundError
from fintrack.models.aggregation import (
    AggregationOutcome,
    AggregationReceipt,
    AggregationResult,
)
from fintrack.models.ledger import EntryKind, LedgerEntry, Scope
from fintrack.models.obligation import ObligationStatus, Period
from fintrack.services.storage import StorageInterface

logger = structlog.get_logger(__name__)


class AggregationCoordinator:
    """
    Turns settled obligations into ledger income.

    Args:
        storage: Store handle
        settings: Fee category and description prefix of the emitted entry
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

    def _describe(self, period: Period) -> str:
        return f"{self._settings.aggregate_description_prefix} - {period.label}"

    def aggregate(self, period: Period, account_id: str) -> AggregationResult:
        """
        Fold the period's paid, unaggregated obligations into `account_id`.

        Returns a NOTHING_TO_AGGREGATE result, and writes no receipt, when
        the eligible set is empty.

        Raises:
            ConflictError: The period already has a receipt, or a
                concurrent run flagged some of the obligations first
        """
        correlation_id = create_correlation_id()
        now = self._clock()

        try:
            with self._storage.transaction() as tx:
                eligible = tx.list_obligations(
                    period,
                    status=ObligationStatus.PAID,
                    aggregated=False,
                    lock=True,
                )
                if not eligible:
                    result = AggregationResult(
                        period=period,
                        outcome=AggregationOutcome.NOTHING_TO_AGGREGATE,
                    )
                else:
                    total = sum((o.paid_amount for o in eligible), Decimal("0.00"))
                    entry = LedgerEntry(
                        account_id=account_id,
                        description=self._describe(period),
                        amount=total,
                        kind=EntryKind.INCOME,
                        category_id=self._settings.fees_category_id,
                        scope=Scope.BUSINESS,
                        occurred_on=now.date(),
                        created_at=now,
                        updated_at=now,
                    )
                    tx.add_entry(entry)

                    flagged = tx.mark_aggregated([o.id for o in eligible])
                    if flagged != len(eligible):
                        raise ConflictError(
                            f"{len(eligible) - flagged} obligations for {period} "
                            "were aggregated by a concurrent run"
                        )

                    receipt = AggregationReceipt(
                        month=period.month,
                        year=period.year,
                        total_amount=total,
                        payment_count=len(eligible),
                        entry_id=entry.id,
                        aggregated_at=now,
                    )
                    tx.add_receipt(receipt)

                    result = AggregationResult(
                        period=period,
                        outcome=AggregationOutcome.COMPLETED,
                        total_amount=total,
                        payment_count=len(eligible),
                        receipt=receipt,
                        entry=entry,
                    )
        except ConflictError as e:
            self._audit.log_aggregation_conflict(str(period), str(e), correlation_id=correlation_id)
            raise

        if result.outcome == AggregationOutcome.COMPLETED:
            logger.info(
                "period_aggregated",
                period=str(period),
                total_amount=str(result.total_amount),
                payment_count=result.payment_count,
            )
            self._audit.log_aggregation_completed(
                receipt_id=result.receipt.id,
                period=str(period),
                total_amount=result.total_amount,
                payment_count=result.payment_count,
                entry_id=result.entry.id,
                correlation_id=correlation_id,
            )
        else:
            self._audit.log_aggregation_skipped(
                str(period),
                "no paid obligations awaiting aggregation",
                correlation_id=correlation_id,
            )
        return result

    def auto_aggregate(self, account_id: str, today: Optional[date] = None) -> AggregationResult:
        """
        Aggregate the last full calendar month before `today`.

        Short-circuits with ALREADY_AGGREGATED when a receipt is found.
        A receipt inserted by a concurrent run after this check still
        makes aggregate() fail with ConflictError.
        """
        period = Period.previous(today or self._clock().date())

        with self._storage.transaction() as tx:
            existing = tx.get_receipt(period)

        if existing is not None:
            self._audit.log_aggregation_skipped(str(period), "already aggregated")
            return AggregationResult(
                period=period,
                outcome=AggregationOutcome.ALREADY_AGGREGATED,
                total_amount=existing.total_amount,
                payment_count=existing.payment_count,
                receipt=existing,
            )

        return self.aggregate(period, account_id)

    def history(self) -> list[AggregationReceipt]:
        """Every receipt, newest period first."""
        with self._storage.transaction() as tx:
            return tx.list_receipts()

    def get_receipt(self, period: Period) -> AggregationReceipt:
        with self._storage.transaction() as tx:
            receipt = tx.get_receipt(period)
        if receipt is None:
            raise NotFoundError(f"Period {period} has not been aggregated")
        return receipt

