"""
Storage Contract

Components receive a StorageInterface at construction and do every read
and write inside a unit of work from `transaction()`. A unit commits on
clean exit and rolls back on any exception, so a multi-row write (entry
header with splits and tags, or aggregation entry with obligation flags
and receipt) lands completely or not at all.

The SQL implementation lives in sql.py; tests run it over in-memory SQLite.
"""

from abc import ABC, abstractmethod
from contextlib import AbstractContextManager
from datetime import date
from decimal import Decimal
from typing import Optional
from uuid import UUID

from fintrack.exceptions import (  # noqa: F401  (re-exported)
    ConflictError,
    ConnectionError,
    NotFoundError,
    StorageError,
)
from fintrack.models.aggregation import AggregationReceipt
from fintrack.models.audit import AuditEvent
from fintrack.models.ledger import (
    EntryKind,
    LedgerEntry,
    LedgerFilter,
    Split,
)
from fintrack.models.obligation import (
    Debtor,
    DebtorStatus,
    Obligation,
    ObligationStatus,
    Period,
    Subscription,
)
from fintrack.models.recurrence import RecurrenceRule
from fintrack.models.reports import CategorySpending, EntryStats


class StorageTransaction(ABC):
    """
    One unit of work against the store.

    Implementations raise ConflictError when a uniqueness constraint
    rejects a write, and StorageError for any other store failure.
    """

    # -------------------------------------------------------------------------
    # Ledger entries
    # -------------------------------------------------------------------------

    @abstractmethod
    def add_entry(self, entry: LedgerEntry) -> None:
        """Insert an entry header with all of its splits and tags."""
        pass

    @abstractmethod
    def get_entry(self, entry_id: UUID) -> Optional[LedgerEntry]:
        """Load an entry with its children, or None."""
        pass

    @abstractmethod
    def save_entry_header(self, entry: LedgerEntry) -> None:
        """Overwrite the mutable header columns of an existing entry."""
        pass

    @abstractmethod
    def replace_splits(self, entry_id: UUID, splits: list[Split]) -> None:
        """Delete every split of the entry and insert `splits`."""
        pass

    @abstractmethod
    def replace_entry_tags(self, entry_id: UUID, tags: list[str]) -> None:
        """Delete every tag of the entry and insert `tags`."""
        pass

    @abstractmethod
    def delete_entry(self, entry_id: UUID) -> bool:
        """
        Delete an entry and its children.

        Returns:
            True if a header was deleted, False if it did not exist
        """
        pass

    @abstractmethod
    def list_entries(
        self,
        account_id: str,
        entry_filter: LedgerFilter,
    ) -> list[LedgerEntry]:
        """Entries of an account, newest occurrence first."""
        pass

    @abstractmethod
    def sum_entries_by_kind(self, account_id: str) -> dict[EntryKind, Decimal]:
        """Total amount per kind; kinds without entries map to zero."""
        pass

    @abstractmethod
    def category_spending(
        self,
        account_id: str,
        date_from: date,
        date_to: date,
    ) -> list[CategorySpending]:
        """Expense totals per (scope, category), largest first."""
        pass

    @abstractmethod
    def entry_stats(self, account_id: str) -> EntryStats:
        """Counts, totals and date bounds of an account's entries."""
        pass

    # -------------------------------------------------------------------------
    # Recurring rules
    # -------------------------------------------------------------------------

    @abstractmethod
    def add_rule(self, rule: RecurrenceRule) -> None:
        pass

    @abstractmethod
    def get_rule(self, rule_id: UUID) -> Optional[RecurrenceRule]:
        pass

    @abstractmethod
    def save_rule(self, rule: RecurrenceRule) -> None:
        """Overwrite the rule row and replace its tags."""
        pass

    @abstractmethod
    def delete_rule(self, rule_id: UUID) -> bool:
        pass

    @abstractmethod
    def list_rules(self, account_id: Optional[str] = None) -> list[RecurrenceRule]:
        """Rules ordered by start date, newest first."""
        pass

    @abstractmethod
    def find_expired_rules(self, today: date) -> list[UUID]:
        """Ids of rules whose end date is before `today`."""
        pass

    @abstractmethod
    def delete_rules(self, rule_ids: list[UUID]) -> int:
        """Delete rules by id. Returns the number deleted."""
        pass

    # -------------------------------------------------------------------------
    # Debtors and subscriptions
    # -------------------------------------------------------------------------

    @abstractmethod
    def add_debtor(self, debtor: Debtor) -> None:
        pass

    @abstractmethod
    def get_debtor(self, debtor_id: UUID) -> Optional[Debtor]:
        pass

    @abstractmethod
    def save_debtor(self, debtor: Debtor) -> None:
        pass

    @abstractmethod
    def list_debtors(self, status: Optional[DebtorStatus] = None) -> list[Debtor]:
        """Debtors ordered by name."""
        pass

    @abstractmethod
    def add_subscription(self, subscription: Subscription) -> None:
        pass

    @abstractmethod
    def get_subscription(self, subscription_id: UUID) -> Optional[Subscription]:
        pass

    @abstractmethod
    def save_subscription(self, subscription: Subscription) -> None:
        pass

    @abstractmethod
    def list_subscriptions(
        self,
        debtor_id: UUID,
        active_only: bool = True,
    ) -> list[Subscription]:
        pass

    @abstractmethod
    def active_fee_total(self, debtor_id: UUID) -> Decimal:
        """Sum of active subscription fees; zero when there are none."""
        pass

    # -------------------------------------------------------------------------
    # Obligations
    # -------------------------------------------------------------------------

    @abstractmethod
    def add_obligation(self, obligation: Obligation) -> None:
        """
        Insert an obligation.

        Raises:
            ConflictError: An obligation already exists for the debtor and period
        """
        pass

    @abstractmethod
    def get_obligation(
        self,
        debtor_id: UUID,
        period: Period,
        lock: bool = False,
    ) -> Optional[Obligation]:
        """
        Load the debtor's obligation for a period.

        With lock=True the row is locked until the unit of work ends,
        serializing read-modify-write payment updates.
        """
        pass

    @abstractmethod
    def save_obligation(self, obligation: Obligation) -> None:
        pass

    @abstractmethod
    def list_obligations(
        self,
        period: Period,
        status: Optional[ObligationStatus] = None,
        aggregated: Optional[bool] = None,
        lock: bool = False,
    ) -> list[Obligation]:
        pass

    @abstractmethod
    def list_debtor_obligations(self, debtor_id: UUID) -> list[Obligation]:
        """A debtor's obligations, newest period first."""
        pass

    @abstractmethod
    def mark_aggregated(self, obligation_ids: list[UUID]) -> int:
        """
        Flag obligations as folded into the ledger.

        Only rows still unflagged are touched. Returns the number flagged.
        """
        pass

    @abstractmethod
    def total_paid(self, debtor_id: UUID) -> Decimal:
        """Paid amount across every period of a debtor."""
        pass

    # -------------------------------------------------------------------------
    # Aggregation receipts
    # -------------------------------------------------------------------------

    @abstractmethod
    def get_receipt(self, period: Period) -> Optional[AggregationReceipt]:
        pass

    @abstractmethod
    def add_receipt(self, receipt: AggregationReceipt) -> None:
        """
        Insert a receipt.

        Raises:
            ConflictError: The period already has a receipt
        """
        pass

    @abstractmethod
    def list_receipts(self) -> list[AggregationReceipt]:
        """Receipts, newest period first."""
        pass


class StorageInterface(ABC):
    """
    Handle to a transactional store.

    Any storage implementation (SQLite, PostgreSQL, ...) must implement this.
    """

    @abstractmethod
    def transaction(self) -> AbstractContextManager[StorageTransaction]:
        """
        Open a unit of work.

        Commits on clean exit and rolls back when the block raises.
        """
        pass


class AuditStorageInterface(ABC):
    """Insert-only store for AuditEvent rows."""

    @abstractmethod
    def append_event(self, event: AuditEvent) -> bool:
        """Insert one event. Returns False instead of raising on failure."""
        pass

    @abstractmethod
    def get_events_by_correlation_id(
        self,
        correlation_id: UUID,
    ) -> list[AuditEvent]:
        """Related events in chronological order."""
        pass

    @abstractmethod
    def get_events_by_entity(
        self,
        entity_type: str,
        entity_id: UUID,
    ) -> list[AuditEvent]:
        """Events for one entity in chronological order."""
        pass

    @abstractmethod
    def get_recent_events(
        self,
        limit: int = 100,
    ) -> list[AuditEvent]:
        """Most recent events, newest first."""
        pass
