"""
Ledger Entry Service

Write and read contract for the ledger entry aggregate (header + splits +
tags). Every write runs as one unit of work: a failure on any row rolls
back the header and all of its children.

Update semantics for children are carried by LedgerEntryUpdate:
- splits/tags omitted  -> existing children preserved
- splits/tags = []     -> existing children deleted
- splits/tags = [...]  -> existing children replaced wholesale
"""

from __future__ import annotations

from datetime import datetime
from typing import Any, Callable, Iterable, Optional, Union
from uuid import UUID

import structlog
from pydantic import ValidationError as PydanticValidationError

from fintrack.audit.logger import AuditLogger
from fintrack.exceptions import NotFoundError, ValidationError
from fintrack.models.ledger import (
    LedgerEntry,
    LedgerEntryCreate,
    LedgerEntryUpdate,
    LedgerFilter,
    Split,
    SplitCreate,
    normalize_tags,
)
from fintrack.services.storage import StorageInterface
from fintrack.validation import LedgerEntryValidator

logger = structlog.get_logger(__name__)


class LedgerService:
    """
    Ledger entries keyed by account.

    An entry is visible only to the account that owns it: reads, updates
    and deletes with another account id behave as if it did not exist.
    """

    def __init__(
        self,
        storage: StorageInterface,
        validator: LedgerEntryValidator,
        audit_logger: AuditLogger,
        clock: Callable[[], datetime] = datetime.utcnow,
    ):
        self._storage = storage
        self._validator = validator
        self._audit = audit_logger
        self._clock = clock

    def create(
        self,
        entry: Union[LedgerEntryCreate, dict[str, Any]],
        splits: Iterable[Union[SplitCreate, dict[str, Any]]] = (),
        tags: Iterable[str] = (),
    ) -> LedgerEntry:
        """
        Persist a header with its splits and tags atomically.

        Raises:
            ValidationError: Malformed input, amount <= 0, splits that
                do not match the header, or tags passed as a bare string
        """
        if isinstance(tags, str):
            raise ValidationError.single("tags", "invalid_type", "Tags must be a list of strings, not a single string")
        header = self._validator.parse(LedgerEntryCreate, entry)
        split_requests = [self._validator.parse(SplitCreate, split) for split in splits]
        self._validator.ensure_valid(self._validator.validate_entry(header, split_requests))

        now = self._clock()
        stored = LedgerEntry(
            **header.model_dump(),
            splits=[Split(**split.model_dump()) for split in split_requests],
            tags=normalize_tags(list(tags)),
            created_at=now,
            updated_at=now,
        )

        with self._storage.transaction() as tx:
            tx.add_entry(stored)

        self._audit.log_entry_created(
            entry_id=stored.id,
            account_id=stored.account_id,
            amount=stored.amount,
            kind=stored.kind.value,
        )
        return stored

    def get(self, account_id: str, entry_id: UUID) -> LedgerEntry:
        with self._storage.transaction() as tx:
            entry = tx.get_entry(entry_id)
        if entry is None or entry.account_id != account_id:
            raise NotFoundError(f"Ledger entry not found: {entry_id}")
        return entry

    def update(
        self,
        account_id: str,
        entry_id: UUID,
        changes: Union[LedgerEntryUpdate, dict[str, Any]],
    ) -> LedgerEntry:
        """
        Apply an explicit update request.

        The merged entry (stored state plus supplied fields) is validated
        as a whole, so a split entry cannot drift away from its splits.

        Raises:
            NotFoundError: No such entry for this account
            ValidationError: The merged entry is invalid
        """
        request = self._validator.parse(LedgerEntryUpdate, changes)

        with self._storage.transaction() as tx:
            current = tx.get_entry(entry_id)
            if current is None or current.account_id != account_id:
                raise NotFoundError(f"Ledger entry not found: {entry_id}")

            merged_fields = {**current.model_dump(), **request.header_changes()}
            if request.replaces_splits:
                merged_fields["splits"] = [Split(**split.model_dump()) for split in request.splits]
            if request.replaces_tags:
                merged_fields["tags"] = request.tags
            merged_fields["updated_at"] = self._clock()

            try:
                merged = LedgerEntry.model_validate(merged_fields)
            except PydanticValidationError as e:
                raise ValidationError.from_pydantic(e) from e
            self._validator.ensure_valid(self._validator.validate_entry(merged, merged.splits))

            tx.save_entry_header(merged)
            if request.replaces_splits:
                tx.replace_splits(entry_id, merged.splits)
            if request.replaces_tags:
                tx.replace_entry_tags(entry_id, merged.tags)

        self._audit.log_entry_updated(entry_id, sorted(request.model_fields_set))
        return merged

    def delete(self, account_id: str, entry_id: UUID) -> bool:
        """
        Remove an entry and all of its children.

        Idempotent: deleting an absent entry returns False and does nothing.
        """
        with self._storage.transaction() as tx:
            current = tx.get_entry(entry_id)
            if current is None or current.account_id != account_id:
                deleted = False
            else:
                deleted = tx.delete_entry(entry_id)

        if deleted:
            self._audit.log_entry_deleted(entry_id, existed=True)
        else:
            logger.info("entry_delete_ignored", entry_id=str(entry_id), account_id=account_id)
        return deleted

    def list(
        self,
        account_id: str,
        entry_filter: Optional[Union[LedgerFilter, dict[str, Any]]] = None,
    ) -> list[LedgerEntry]:
        """Entries of an account matching every supplied predicate, newest first."""
        criteria = self._validator.parse(LedgerFilter, entry_filter or {})
        with self._storage.transaction() as tx:
            return tx.list_entries(account_id, criteria)
