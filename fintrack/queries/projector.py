"""
Balance Projector

DESIGN DECISION: Projections are DETERMINISTIC and stateless.
Every call recomputes from stored entries, rules and obligations; there
is no cache and nothing to invalidate.

GUARANTEES:
- Only returns figures derived from stored rows
- Empty sums resolve to zero, never to an error or None
- `overdue` is computed here from the period and today's date
"""

from datetime import date, datetime
from decimal import Decimal
from typing import Callable, Optional
from uuid import UUID

from fintrack.config.settings import LedgerSettings
from fintrack.exceptions import NotFoundError
from fintrack.models.ledger import EntryKind
from fintrack.models.obligation import (
    Obligation,
    ObligationBalance,
    ObligationStatus,
    ObligationSummary,
    Period,
    RosterRow,
)
from fintrack.models.recurrence import DueRule
from fintrack.models.reports import AccountBalance, CategorySpending, EntryStats
from fintrack.recurrence.calculator import arrears, is_due_soon, is_expired, next_due
from fintrack.services.storage import StorageInterface

ZERO = Decimal("0.00")


class BalanceProjector:
    """Read-only views over the ledger and the obligation ledger."""

    def __init__(
        self,
        storage: StorageInterface,
        settings: LedgerSettings,
        clock: Callable[[], datetime] = datetime.utcnow,
    ):
        self._storage = storage
        self._settings = settings
        self._clock = clock

    def _today(self, today: Optional[date]) -> date:
        return today or self._clock().date()

    # -------------------------------------------------------------------------
    # Ledger projections
    # -------------------------------------------------------------------------

    def account_balance(self, account_id: str) -> AccountBalance:
        """Income minus expenses for an account."""
        with self._storage.transaction() as tx:
            totals = tx.sum_entries_by_kind(account_id)
        return AccountBalance(
            account_id=account_id,
            total_income=totals.get(EntryKind.INCOME, ZERO),
            total_expenses=totals.get(EntryKind.EXPENSE, ZERO),
            total_investments=totals.get(EntryKind.INVESTMENT, ZERO),
        )

    def category_spending(
        self,
        account_id: str,
        date_from: date,
        date_to: date,
    ) -> list[CategorySpending]:
        with self._storage.transaction() as tx:
            return tx.category_spending(account_id, date_from, date_to)

    def entry_stats(self, account_id: str) -> EntryStats:
        with self._storage.transaction() as tx:
            return tx.entry_stats(account_id)

    def due_soon(self, account_id: str, today: Optional[date] = None) -> list[DueRule]:
        """
        Rules whose next occurrence falls within the lookahead window.

        Rules that have not started or have expired are left out. Sorted
        by days past due (most overdue first), then by next due date.
        """
        today = self._today(today)
        window = self._settings.due_soon_window_days

        with self._storage.transaction() as tx:
            rules = tx.list_rules(account_id)

        due = []
        for rule in rules:
            if rule.start_date > today or is_expired(rule.end_date, today):
                continue
            upcoming = next_due(rule.frequency, rule.anchor)
            if not is_due_soon(upcoming, today, window):
                continue
            due.append(DueRule(
                rule_id=rule.id,
                account_id=rule.account_id,
                description=rule.description,
                amount=rule.amount,
                kind=rule.kind,
                frequency=rule.frequency,
                next_due=upcoming,
                days_past_due=arrears(rule.frequency, rule.anchor, today),
            ))

        due.sort(key=lambda row: (-row.days_past_due, row.next_due))
        return due

    # -------------------------------------------------------------------------
    # Obligation projections
    # -------------------------------------------------------------------------

    def effective_status(self, obligation: Obligation, today: Optional[date] = None) -> ObligationStatus:
        return obligation.effective_status(self._today(today))

    def obligation_balance(self, debtor_id: UUID) -> ObligationBalance:
        """
        Active monthly fees minus everything the debtor has paid so far,
        floored at zero.
        """
        with self._storage.transaction() as tx:
            if tx.get_debtor(debtor_id) is None:
                raise NotFoundError(f"Debtor not found: {debtor_id}")
            total_fee = tx.active_fee_total(debtor_id)
            total_paid = tx.total_paid(debtor_id)

        return ObligationBalance(
            debtor_id=debtor_id,
            total_fee=total_fee,
            total_paid=total_paid,
            remaining_balance=max(total_fee - total_paid, ZERO),
        )

    def monthly_summary(self, period: Period) -> ObligationSummary:
        """Expected, collected and pending totals over a period's obligations."""
        with self._storage.transaction() as tx:
            obligations = tx.list_obligations(period)

        return ObligationSummary(
            period=period,
            total_expected=sum((o.total_amount for o in obligations), ZERO),
            total_collected=sum((o.paid_amount for o in obligations), ZERO),
            total_pending=sum((o.remaining for o in obligations), ZERO),
            debtor_count=len(obligations),
        )

    def period_roster(self, period: Period, today: Optional[date] = None) -> list[RosterRow]:
        """
        One row per debtor for a period.

        Debtors with an obligation show it; active debtors without one get
        a synthetic pending row priced at their current monthly fee.
        Active debtors with nothing owed are left out.
        """
        today = self._today(today)
        rows = []

        with self._storage.transaction() as tx:
            by_debtor = {o.debtor_id: o for o in tx.list_obligations(period)}

            for debtor in tx.list_debtors():
                obligation = by_debtor.get(debtor.id)
                if obligation is not None:
                    rows.append(RosterRow(
                        debtor_id=debtor.id,
                        debtor_name=debtor.name,
                        period=period,
                        obligation_id=obligation.id,
                        total_amount=obligation.total_amount,
                        paid_amount=obligation.paid_amount,
                        status=obligation.effective_status(today),
                        payment_date=obligation.payment_date,
                        payment_method=obligation.payment_method,
                        notes=obligation.notes,
                    ))
                    continue

                if not debtor.is_active:
                    continue
                fee = tx.active_fee_total(debtor.id)
                if fee <= 0:
                    continue
                status = ObligationStatus.OVERDUE if period.has_closed(today) else ObligationStatus.PENDING
                rows.append(RosterRow(
                    debtor_id=debtor.id,
                    debtor_name=debtor.name,
                    period=period,
                    total_amount=fee,
                    status=status,
                ))

        return rows
