"""
SQLAlchemy Storage Implementation

DESIGN DECISION: A relational store gives us the three things the core
depends on:
1. Atomic multi-row writes (one session transaction per unit of work)
2. Uniqueness constraints usable as idempotency keys
3. Range queries by date

SQLite is the default backend. For SQLite we take the write lock when the
transaction begins (BEGIN IMMEDIATE), which serializes read-modify-write
payment updates. Other dialects use SELECT ... FOR UPDATE on the
obligation row.

The implementation follows the abstract interface, so services never see
a Session or a SQL statement.
"""

import json
from contextlib import contextmanager
from datetime import date, datetime
from decimal import Decimal
from typing import Iterator, Optional
from uuid import UUID

import structlog
from sqlalchemy import and_, case, create_engine, delete, event, exists, func, select, update
from sqlalchemy.engine import Engine, make_url
from sqlalchemy.exc import IntegrityError, OperationalError, SQLAlchemyError
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool
from tenacity import Retrying, retry_if_exception_type, stop_after_attempt, wait_exponential

from fintrack.config.settings import DatabaseSettings
from fintrack.exceptions import ConflictError, ConnectionError, NotFoundError, StorageError
from fintrack.models.aggregation import AggregationReceipt
from fintrack.models.audit import AuditEvent, AuditEventType, AuditSeverity
from fintrack.models.ledger import (
    EntryKind,
    LedgerEntry,
    LedgerFilter,
    Reference,
    ReferenceType,
    Scope,
    Split,
)
from fintrack.models.obligation import (
    Debtor,
    DebtorStatus,
    Obligation,
    ObligationStatus,
    PaymentMethod,
    Period,
    Subscription,
    SubscriptionStatus,
)
from fintrack.models.recurrence import Frequency, RecurrenceRule
from fintrack.models.reports import CategorySpending, EntryStats
from fintrack.services.storage.interface import (
    AuditStorageInterface,
    StorageInterface,
    StorageTransaction,
)
from fintrack.services.storage.tables import (
    AuditEventRow,
    Base,
    DebtorRow,
    EntryRow,
    EntryTagRow,
    ObligationRow,
    ReceiptRow,
    RuleRow,
    RuleTagRow,
    SplitRow,
    SubscriptionRow,
)

logger = structlog.get_logger(__name__)

TWO_PLACES = Decimal("0.01")


def _money(value) -> Decimal:
    """Coerce a column or aggregate value to a 2-place Decimal. NULL is zero."""
    if value is None:
        return Decimal("0.00")
    if not isinstance(value, Decimal):
        value = Decimal(str(value))
    return value.quantize(TWO_PLACES)


def _is_unique_violation(exc: IntegrityError) -> bool:
    message = str(exc.orig).lower()
    return "unique" in message or "duplicate" in message


def _as_date(value) -> Optional[date]:
    # MIN()/MAX() over a DATE column can come back as text on SQLite
    if value is None or isinstance(value, date):
        return value
    return date.fromisoformat(str(value)[:10])


class SqlTransaction(StorageTransaction):
    """Unit of work bound to one SQLAlchemy session transaction."""

    def __init__(self, session: Session):
        self._session = session

    def _flush(self) -> None:
        """Flush pending rows so constraint violations surface here."""
        try:
            self._session.flush()
        except IntegrityError as e:
            if _is_unique_violation(e):
                raise ConflictError(f"Uniqueness constraint rejected write: {e.orig}") from e
            raise StorageError(f"Constraint violation: {e.orig}") from e

    # -------------------------------------------------------------------------
    # Row <-> model conversion
    # -------------------------------------------------------------------------

    @staticmethod
    def _entry_values(entry: LedgerEntry) -> dict:
        ref = entry.reference
        return {
            "description": entry.description,
            "amount": entry.amount,
            "kind": entry.kind.value,
            "category_id": entry.category_id,
            "scope": entry.scope.value,
            "occurred_on": entry.occurred_on,
            "is_split": entry.is_split,
            "reference_type": ref.type.value if ref else None,
            "reference_number": ref.number if ref else None,
            "reference_notes": ref.notes if ref else None,
            "reference_attachment": ref.attachment if ref else None,
            "updated_at": entry.updated_at,
        }

    @staticmethod
    def _row_to_entry(
        row: EntryRow,
        splits: list[SplitRow],
        tags: list[str],
    ) -> LedgerEntry:
        reference = None
        if row.reference_type:
            reference = Reference(
                type=ReferenceType(row.reference_type),
                number=row.reference_number,
                notes=row.reference_notes,
                attachment=row.reference_attachment,
            )
        return LedgerEntry(
            id=row.id,
            account_id=row.account_id,
            description=row.description,
            amount=_money(row.amount),
            kind=EntryKind(row.kind),
            category_id=row.category_id,
            scope=Scope(row.scope),
            occurred_on=row.occurred_on,
            is_split=bool(row.is_split),
            reference=reference,
            splits=[
                Split(
                    id=s.id,
                    amount=_money(s.amount),
                    category_id=s.category_id,
                    scope=Scope(s.scope),
                    note=s.note,
                )
                for s in splits
            ],
            tags=tags,
            created_at=row.created_at,
            updated_at=row.updated_at,
        )

    @staticmethod
    def _row_to_rule(row: RuleRow, tags: list[str]) -> RecurrenceRule:
        return RecurrenceRule(
            id=row.id,
            account_id=row.account_id,
            description=row.description,
            amount=_money(row.amount),
            kind=EntryKind(row.kind),
            category_id=row.category_id,
            scope=Scope(row.scope),
            frequency=Frequency(row.frequency),
            start_date=row.start_date,
            end_date=row.end_date,
            last_processed=row.last_processed,
            tags=tags,
            created_at=row.created_at,
            updated_at=row.updated_at,
        )

    @staticmethod
    def _row_to_debtor(row: DebtorRow) -> Debtor:
        return Debtor(
            id=row.id,
            name=row.name,
            status=DebtorStatus(row.status),
            created_at=row.created_at,
        )

    @staticmethod
    def _row_to_subscription(row: SubscriptionRow) -> Subscription:
        return Subscription(
            id=row.id,
            debtor_id=row.debtor_id,
            name=row.name,
            fee=_money(row.fee),
            start_date=row.start_date,
            end_date=row.end_date,
            status=SubscriptionStatus(row.status),
            created_at=row.created_at,
        )

    @staticmethod
    def _row_to_obligation(row: ObligationRow) -> Obligation:
        return Obligation(
            id=row.id,
            debtor_id=row.debtor_id,
            month=row.month,
            year=row.year,
            total_amount=_money(row.total_amount),
            paid_amount=_money(row.paid_amount),
            status=ObligationStatus(row.status),
            payment_date=row.payment_date,
            payment_method=PaymentMethod(row.payment_method) if row.payment_method else None,
            notes=row.notes,
            aggregated=bool(row.aggregated),
            created_at=row.created_at,
            updated_at=row.updated_at,
        )

    @staticmethod
    def _obligation_values(obligation: Obligation) -> dict:
        return {
            "total_amount": obligation.total_amount,
            "paid_amount": obligation.paid_amount,
            "status": obligation.status.value,
            "payment_date": obligation.payment_date,
            "payment_method": obligation.payment_method.value if obligation.payment_method else None,
            "notes": obligation.notes,
            "aggregated": obligation.aggregated,
            "updated_at": obligation.updated_at,
        }

    @staticmethod
    def _row_to_receipt(row: ReceiptRow) -> AggregationReceipt:
        return AggregationReceipt(
            id=row.id,
            month=row.month,
            year=row.year,
            total_amount=_money(row.total_amount),
            payment_count=row.payment_count,
            entry_id=row.entry_id,
            aggregated_at=row.aggregated_at,
        )

    # -------------------------------------------------------------------------
    # Ledger entries
    # -------------------------------------------------------------------------

    def _insert_splits(self, entry_id: UUID, splits: list[Split]) -> None:
        for position, split in enumerate(splits):
            self._session.add(SplitRow(
                id=split.id,
                entry_id=entry_id,
                position=position,
                amount=split.amount,
                category_id=split.category_id,
                scope=split.scope.value,
                note=split.note,
            ))

    def _insert_entry_tags(self, entry_id: UUID, tags: list[str]) -> None:
        for tag in tags:
            self._session.add(EntryTagRow(entry_id=entry_id, tag=tag))

    def _load_entries(self, rows: list[EntryRow]) -> list[LedgerEntry]:
        if not rows:
            return []
        ids = [row.id for row in rows]

        splits_by_entry: dict[UUID, list[SplitRow]] = {entry_id: [] for entry_id in ids}
        split_rows = self._session.scalars(
            select(SplitRow)
            .where(SplitRow.entry_id.in_(ids))
            .order_by(SplitRow.entry_id, SplitRow.position)
        )
        for split in split_rows:
            splits_by_entry[split.entry_id].append(split)

        tags_by_entry: dict[UUID, list[str]] = {entry_id: [] for entry_id in ids}
        tag_rows = self._session.execute(
            select(EntryTagRow.entry_id, EntryTagRow.tag)
            .where(EntryTagRow.entry_id.in_(ids))
            .order_by(EntryTagRow.entry_id, EntryTagRow.tag)
        )
        for entry_id, tag in tag_rows:
            tags_by_entry[entry_id].append(tag)

        return [
            self._row_to_entry(row, splits_by_entry[row.id], tags_by_entry[row.id])
            for row in rows
        ]

    def add_entry(self, entry: LedgerEntry) -> None:
        self._session.add(EntryRow(
            id=entry.id,
            account_id=entry.account_id,
            created_at=entry.created_at,
            **self._entry_values(entry),
        ))
        # Header first so the children's foreign keys resolve
        self._flush()
        self._insert_splits(entry.id, entry.splits)
        self._insert_entry_tags(entry.id, entry.tags)
        self._flush()

    def get_entry(self, entry_id: UUID) -> Optional[LedgerEntry]:
        row = self._session.get(EntryRow, entry_id)
        if row is None:
            return None
        return self._load_entries([row])[0]

    def save_entry_header(self, entry: LedgerEntry) -> None:
        row = self._session.get(EntryRow, entry.id)
        if row is None:
            raise NotFoundError(f"Ledger entry not found: {entry.id}")
        for column, value in self._entry_values(entry).items():
            setattr(row, column, value)
        self._flush()

    def replace_splits(self, entry_id: UUID, splits: list[Split]) -> None:
        self._session.execute(delete(SplitRow).where(SplitRow.entry_id == entry_id))
        self._insert_splits(entry_id, splits)
        self._flush()

    def replace_entry_tags(self, entry_id: UUID, tags: list[str]) -> None:
        self._session.execute(delete(EntryTagRow).where(EntryTagRow.entry_id == entry_id))
        self._insert_entry_tags(entry_id, tags)
        self._flush()

    def delete_entry(self, entry_id: UUID) -> bool:
        self._session.execute(delete(EntryTagRow).where(EntryTagRow.entry_id == entry_id))
        self._session.execute(delete(SplitRow).where(SplitRow.entry_id == entry_id))
        result = self._session.execute(delete(EntryRow).where(EntryRow.id == entry_id))
        return result.rowcount > 0

    def list_entries(
        self,
        account_id: str,
        entry_filter: LedgerFilter,
    ) -> list[LedgerEntry]:
        stmt = select(EntryRow).where(EntryRow.account_id == account_id)

        if entry_filter.date_from:
            stmt = stmt.where(EntryRow.occurred_on >= entry_filter.date_from)
        if entry_filter.date_to:
            stmt = stmt.where(EntryRow.occurred_on <= entry_filter.date_to)
        if entry_filter.kinds:
            stmt = stmt.where(EntryRow.kind.in_([k.value for k in entry_filter.kinds]))
        if entry_filter.category_ids:
            stmt = stmt.where(EntryRow.category_id.in_(sorted(entry_filter.category_ids)))
        if entry_filter.scopes:
            stmt = stmt.where(EntryRow.scope.in_([s.value for s in entry_filter.scopes]))
        if entry_filter.tag:
            stmt = stmt.where(exists().where(and_(
                EntryTagRow.entry_id == EntryRow.id,
                EntryTagRow.tag == entry_filter.tag,
            )))

        stmt = stmt.order_by(EntryRow.occurred_on.desc(), EntryRow.created_at.desc())
        return self._load_entries(list(self._session.scalars(stmt)))

    def sum_entries_by_kind(self, account_id: str) -> dict[EntryKind, Decimal]:
        totals = {kind: Decimal("0.00") for kind in EntryKind}
        rows = self._session.execute(
            select(EntryRow.kind, func.sum(EntryRow.amount))
            .where(EntryRow.account_id == account_id)
            .group_by(EntryRow.kind)
        )
        for kind, total in rows:
            totals[EntryKind(kind)] = _money(total)
        return totals

    def category_spending(
        self,
        account_id: str,
        date_from: date,
        date_to: date,
    ) -> list[CategorySpending]:
        total = func.sum(EntryRow.amount)
        rows = self._session.execute(
            select(
                EntryRow.scope,
                EntryRow.category_id,
                total,
                func.count(EntryRow.id),
            )
            .where(
                EntryRow.account_id == account_id,
                EntryRow.kind == EntryKind.EXPENSE.value,
                EntryRow.occurred_on >= date_from,
                EntryRow.occurred_on <= date_to,
            )
            .group_by(EntryRow.scope, EntryRow.category_id)
            .order_by(total.desc())
        )
        return [
            CategorySpending(
                scope=Scope(scope),
                category_id=category_id,
                amount=_money(amount),
                entry_count=count or 0,
            )
            for scope, category_id, amount, count in rows
        ]

    def entry_stats(self, account_id: str) -> EntryStats:
        row = self._session.execute(
            select(
                func.count(EntryRow.id),
                func.sum(case((EntryRow.kind == EntryKind.INCOME.value, EntryRow.amount), else_=0)),
                func.sum(case((EntryRow.kind == EntryKind.EXPENSE.value, EntryRow.amount), else_=0)),
                func.avg(EntryRow.amount),
                func.min(EntryRow.occurred_on),
                func.max(EntryRow.occurred_on),
            ).where(EntryRow.account_id == account_id)
        ).one()
        count, income, expenses, average, oldest, newest = row

        most_used = self._session.execute(
            select(EntryRow.category_id)
            .where(EntryRow.account_id == account_id)
            .group_by(EntryRow.category_id)
            .order_by(func.count(EntryRow.id).desc(), EntryRow.category_id)
            .limit(1)
        ).scalar_one_or_none()

        return EntryStats(
            account_id=account_id,
            entry_count=count or 0,
            total_income=_money(income),
            total_expenses=_money(expenses),
            average_amount=_money(average),
            most_used_category=most_used,
            oldest_entry=_as_date(oldest),
            newest_entry=_as_date(newest),
        )

    # -------------------------------------------------------------------------
    # Recurring rules
    # -------------------------------------------------------------------------

    @staticmethod
    def _rule_values(rule: RecurrenceRule) -> dict:
        return {
            "account_id": rule.account_id,
            "description": rule.description,
            "amount": rule.amount,
            "kind": rule.kind.value,
            "category_id": rule.category_id,
            "scope": rule.scope.value,
            "frequency": rule.frequency.value,
            "start_date": rule.start_date,
            "end_date": rule.end_date,
            "last_processed": rule.last_processed,
            "updated_at": rule.updated_at,
        }

    def _rule_tags(self, rule_id: UUID) -> list[str]:
        return list(self._session.scalars(
            select(RuleTagRow.tag).where(RuleTagRow.rule_id == rule_id).order_by(RuleTagRow.tag)
        ))

    def add_rule(self, rule: RecurrenceRule) -> None:
        self._session.add(RuleRow(id=rule.id, created_at=rule.created_at, **self._rule_values(rule)))
        self._flush()
        for tag in rule.tags:
            self._session.add(RuleTagRow(rule_id=rule.id, tag=tag))
        self._flush()

    def get_rule(self, rule_id: UUID) -> Optional[RecurrenceRule]:
        row = self._session.get(RuleRow, rule_id)
        if row is None:
            return None
        return self._row_to_rule(row, self._rule_tags(rule_id))

    def save_rule(self, rule: RecurrenceRule) -> None:
        row = self._session.get(RuleRow, rule.id)
        if row is None:
            raise NotFoundError(f"Recurring rule not found: {rule.id}")
        for column, value in self._rule_values(rule).items():
            setattr(row, column, value)
        self._session.execute(delete(RuleTagRow).where(RuleTagRow.rule_id == rule.id))
        for tag in rule.tags:
            self._session.add(RuleTagRow(rule_id=rule.id, tag=tag))
        self._flush()

    def delete_rule(self, rule_id: UUID) -> bool:
        return self.delete_rules([rule_id]) > 0

    def list_rules(self, account_id: Optional[str] = None) -> list[RecurrenceRule]:
        stmt = select(RuleRow)
        if account_id is not None:
            stmt = stmt.where(RuleRow.account_id == account_id)
        rows = list(self._session.scalars(stmt.order_by(RuleRow.start_date.desc(), RuleRow.created_at)))
        if not rows:
            return []

        tags_by_rule: dict[UUID, list[str]] = {row.id: [] for row in rows}
        tag_rows = self._session.execute(
            select(RuleTagRow.rule_id, RuleTagRow.tag)
            .where(RuleTagRow.rule_id.in_(list(tags_by_rule)))
            .order_by(RuleTagRow.rule_id, RuleTagRow.tag)
        )
        for rule_id, tag in tag_rows:
            tags_by_rule[rule_id].append(tag)
        return [self._row_to_rule(row, tags_by_rule[row.id]) for row in rows]

    def find_expired_rules(self, today: date) -> list[UUID]:
        return list(self._session.scalars(
            select(RuleRow.id).where(RuleRow.end_date.is_not(None), RuleRow.end_date < today)
        ))

    def delete_rules(self, rule_ids: list[UUID]) -> int:
        if not rule_ids:
            return 0
        self._session.execute(delete(RuleTagRow).where(RuleTagRow.rule_id.in_(rule_ids)))
        result = self._session.execute(delete(RuleRow).where(RuleRow.id.in_(rule_ids)))
        return result.rowcount

    # -------------------------------------------------------------------------
    # Debtors and subscriptions
    # -------------------------------------------------------------------------

    def add_debtor(self, debtor: Debtor) -> None:
        self._session.add(DebtorRow(
            id=debtor.id,
            name=debtor.name,
            status=debtor.status.value,
            created_at=debtor.created_at,
        ))
        self._flush()

    def get_debtor(self, debtor_id: UUID) -> Optional[Debtor]:
        row = self._session.get(DebtorRow, debtor_id)
        return self._row_to_debtor(row) if row else None

    def save_debtor(self, debtor: Debtor) -> None:
        row = self._session.get(DebtorRow, debtor.id)
        if row is None:
            raise NotFoundError(f"Debtor not found: {debtor.id}")
        row.name = debtor.name
        row.status = debtor.status.value
        self._flush()

    def list_debtors(self, status: Optional[DebtorStatus] = None) -> list[Debtor]:
        stmt = select(DebtorRow)
        if status is not None:
            stmt = stmt.where(DebtorRow.status == status.value)
        return [self._row_to_debtor(row) for row in self._session.scalars(stmt.order_by(DebtorRow.name))]

    def add_subscription(self, subscription: Subscription) -> None:
        self._session.add(SubscriptionRow(
            id=subscription.id,
            debtor_id=subscription.debtor_id,
            name=subscription.name,
            fee=subscription.fee,
            start_date=subscription.start_date,
            end_date=subscription.end_date,
            status=subscription.status.value,
            created_at=subscription.created_at,
        ))
        self._flush()

    def get_subscription(self, subscription_id: UUID) -> Optional[Subscription]:
        row = self._session.get(SubscriptionRow, subscription_id)
        return self._row_to_subscription(row) if row else None

    def save_subscription(self, subscription: Subscription) -> None:
        row = self._session.get(SubscriptionRow, subscription.id)
        if row is None:
            raise NotFoundError(f"Subscription not found: {subscription.id}")
        row.name = subscription.name
        row.fee = subscription.fee
        row.end_date = subscription.end_date
        row.status = subscription.status.value
        self._flush()

    def list_subscriptions(
        self,
        debtor_id: UUID,
        active_only: bool = True,
    ) -> list[Subscription]:
        stmt = select(SubscriptionRow).where(SubscriptionRow.debtor_id == debtor_id)
        if active_only:
            stmt = stmt.where(SubscriptionRow.status == SubscriptionStatus.ACTIVE.value)
        stmt = stmt.order_by(SubscriptionRow.name)
        return [self._row_to_subscription(row) for row in self._session.scalars(stmt)]

    def active_fee_total(self, debtor_id: UUID) -> Decimal:
        total = self._session.execute(
            select(func.sum(SubscriptionRow.fee)).where(
                SubscriptionRow.debtor_id == debtor_id,
                SubscriptionRow.status == SubscriptionStatus.ACTIVE.value,
            )
        ).scalar_one()
        return _money(total)

    # -------------------------------------------------------------------------
    # Obligations
    # -------------------------------------------------------------------------

    def add_obligation(self, obligation: Obligation) -> None:
        self._session.add(ObligationRow(
            id=obligation.id,
            debtor_id=obligation.debtor_id,
            month=obligation.month,
            year=obligation.year,
            created_at=obligation.created_at,
            **self._obligation_values(obligation),
        ))
        self._flush()

    def get_obligation(
        self,
        debtor_id: UUID,
        period: Period,
        lock: bool = False,
    ) -> Optional[Obligation]:
        stmt = select(ObligationRow).where(
            ObligationRow.debtor_id == debtor_id,
            ObligationRow.month == period.month,
            ObligationRow.year == period.year,
        )
        if lock:
            stmt = stmt.with_for_update().execution_options(populate_existing=True)
        row = self._session.scalars(stmt).one_or_none()
        return self._row_to_obligation(row) if row else None

    def save_obligation(self, obligation: Obligation) -> None:
        row = self._session.get(ObligationRow, obligation.id)
        if row is None:
            raise NotFoundError(f"Obligation not found: {obligation.id}")
        for column, value in self._obligation_values(obligation).items():
            setattr(row, column, value)
        self._flush()

    def list_obligations(
        self,
        period: Period,
        status: Optional[ObligationStatus] = None,
        aggregated: Optional[bool] = None,
        lock: bool = False,
    ) -> list[Obligation]:
        stmt = select(ObligationRow).where(
            ObligationRow.month == period.month,
            ObligationRow.year == period.year,
        )
        if status is not None:
            stmt = stmt.where(ObligationRow.status == status.value)
        if aggregated is not None:
            stmt = stmt.where(ObligationRow.aggregated == aggregated)
        if lock:
            stmt = stmt.with_for_update().execution_options(populate_existing=True)
        stmt = stmt.order_by(ObligationRow.created_at, ObligationRow.id)
        return [self._row_to_obligation(row) for row in self._session.scalars(stmt)]

    def list_debtor_obligations(self, debtor_id: UUID) -> list[Obligation]:
        stmt = (
            select(ObligationRow)
            .where(ObligationRow.debtor_id == debtor_id)
            .order_by(ObligationRow.year.desc(), ObligationRow.month.desc())
        )
        return [self._row_to_obligation(row) for row in self._session.scalars(stmt)]

    def mark_aggregated(self, obligation_ids: list[UUID]) -> int:
        if not obligation_ids:
            return 0
        result = self._session.execute(
            update(ObligationRow)
            .where(
                ObligationRow.id.in_(obligation_ids),
                ObligationRow.aggregated.is_(False),
            )
            .values(aggregated=True, updated_at=datetime.utcnow())
            .execution_options(synchronize_session="fetch")
        )
        return result.rowcount

    def total_paid(self, debtor_id: UUID) -> Decimal:
        total = self._session.execute(
            select(func.sum(ObligationRow.paid_amount)).where(ObligationRow.debtor_id == debtor_id)
        ).scalar_one()
        return _money(total)

    # -------------------------------------------------------------------------
    # Aggregation receipts
    # -------------------------------------------------------------------------

    def get_receipt(self, period: Period) -> Optional[AggregationReceipt]:
        row = self._session.scalars(
            select(ReceiptRow).where(
                ReceiptRow.month == period.month,
                ReceiptRow.year == period.year,
            )
        ).one_or_none()
        return self._row_to_receipt(row) if row else None

    def add_receipt(self, receipt: AggregationReceipt) -> None:
        self._session.add(ReceiptRow(
            id=receipt.id,
            month=receipt.month,
            year=receipt.year,
            total_amount=receipt.total_amount,
            payment_count=receipt.payment_count,
            entry_id=receipt.entry_id,
            aggregated_at=receipt.aggregated_at,
        ))
        self._flush()

    def list_receipts(self) -> list[AggregationReceipt]:
        stmt = select(ReceiptRow).order_by(ReceiptRow.year.desc(), ReceiptRow.month.desc())
        return [self._row_to_receipt(row) for row in self._session.scalars(stmt)]


class SqlStorage(StorageInterface):
    """
    SQLAlchemy implementation of the store handle.

    Each call to transaction() opens a fresh session; nothing is shared
    between units of work except the engine and its pool.
    """

    def __init__(self, settings: Optional[DatabaseSettings] = None):
        self._settings = settings or DatabaseSettings()
        self._engine: Optional[Engine] = None
        self._session_factory: Optional[sessionmaker] = None

    def _create_engine(self) -> Engine:
        url = make_url(self._settings.url)
        kwargs = {"echo": self._settings.echo}
        is_sqlite = url.get_backend_name() == "sqlite"

        if is_sqlite:
            kwargs["connect_args"] = {"check_same_thread": False}
            if url.database in (None, "", ":memory:"):
                # One shared connection, or every session sees an empty database
                kwargs["poolclass"] = StaticPool

        engine = create_engine(url, **kwargs)

        if is_sqlite:
            @event.listens_for(engine, "connect")
            def _on_connect(dbapi_connection, connection_record):
                # Let SQLAlchemy emit BEGIN itself (see _on_begin)
                dbapi_connection.isolation_level = None
                cursor = dbapi_connection.cursor()
                cursor.execute("PRAGMA foreign_keys=ON")
                cursor.close()

            @event.listens_for(engine, "begin")
            def _on_begin(conn):
                conn.exec_driver_sql("BEGIN IMMEDIATE")

        return engine

    def connect(self) -> Engine:
        """
        Create the engine and the schema.

        Transient connection failures are retried with exponential backoff.
        """
        if self._engine is None:
            retrying = Retrying(
                stop=stop_after_attempt(self._settings.connect_retries),
                wait=wait_exponential(multiplier=1, min=2, max=10),
                retry=retry_if_exception_type(OperationalError),
                reraise=True,
            )
            try:
                for attempt in retrying:
                    with attempt:
                        engine = self._create_engine()
                        Base.metadata.create_all(engine)
            except OperationalError as e:
                raise ConnectionError(f"Failed to connect to database: {e}") from e

            self._engine = engine
            self._session_factory = sessionmaker(
                bind=engine,
                autoflush=False,
                expire_on_commit=False,
            )
            logger.info("storage_connected", backend=engine.dialect.name)

        return self._engine

    def session(self) -> Session:
        """A raw session, for collaborators that share this engine."""
        self.connect()
        return self._session_factory()

    @contextmanager
    def transaction(self) -> Iterator[SqlTransaction]:
        session = self.session()
        try:
            with session.begin():
                yield SqlTransaction(session)
        except IntegrityError as e:
            if _is_unique_violation(e):
                raise ConflictError(f"Uniqueness constraint rejected write: {e.orig}") from e
            raise StorageError(f"Constraint violation: {e.orig}") from e
        except SQLAlchemyError as e:
            raise StorageError(f"Storage operation failed: {e}") from e
        finally:
            session.close()

    def dispose(self) -> None:
        if self._engine is not None:
            self._engine.dispose()
            self._engine = None
            self._session_factory = None


class SqlAuditStorage(AuditStorageInterface):
    """
    Audit log stored in the same database as the ledger.

    Each append runs in its own short transaction, after the business
    transaction it describes has committed.
    """

    def __init__(self, storage: SqlStorage):
        self._storage = storage

    @staticmethod
    def _row_to_event(row: AuditEventRow) -> AuditEvent:
        return AuditEvent(
            event_id=row.event_id,
            timestamp=row.timestamp,
            event_type=AuditEventType(row.event_type),
            severity=AuditSeverity(row.severity),
            entity_type=row.entity_type,
            entity_id=row.entity_id,
            correlation_id=row.correlation_id,
            description=row.description,
            details=json.loads(row.details_json) if row.details_json else {},
            error_code=row.error_code,
            error_message=row.error_message,
        )

    def append_event(self, event: AuditEvent) -> bool:
        """Append an audit event."""
        session = self._storage.session()
        try:
            with session.begin():
                session.add(AuditEventRow(
                    event_id=event.event_id,
                    timestamp=event.timestamp,
                    event_type=event.event_type.value,
                    severity=event.severity.value,
                    entity_type=event.entity_type,
                    entity_id=event.entity_id,
                    correlation_id=event.correlation_id,
                    description=event.description,
                    details_json=event.details_json() or None,
                    error_code=event.error_code,
                    error_message=event.error_message,
                ))
            return True
        except SQLAlchemyError as e:
            # Audit logging must not break the main flow
            logger.warning("audit_write_failed", error=str(e), event_id=str(event.event_id))
            return False
        finally:
            session.close()

    def _query(self, stmt) -> list[AuditEvent]:
        session = self._storage.session()
        try:
            return [self._row_to_event(row) for row in session.scalars(stmt)]
        except SQLAlchemyError as e:
            raise StorageError(f"Failed to get audit events: {e}") from e
        finally:
            session.close()

    def get_events_by_correlation_id(
        self,
        correlation_id: UUID,
    ) -> list[AuditEvent]:
        return self._query(
            select(AuditEventRow)
            .where(AuditEventRow.correlation_id == correlation_id)
            .order_by(AuditEventRow.timestamp)
        )

    def get_events_by_entity(
        self,
        entity_type: str,
        entity_id: UUID,
    ) -> list[AuditEvent]:
        return self._query(
            select(AuditEventRow)
            .where(
                AuditEventRow.entity_type == entity_type,
                AuditEventRow.entity_id == entity_id,
            )
            .order_by(AuditEventRow.timestamp)
        )

    def get_recent_events(
        self,
        limit: int = 100,
    ) -> list[AuditEvent]:
        return self._query(
            select(AuditEventRow)
            .order_by(AuditEventRow.timestamp.desc())
            .limit(limit)
        )
