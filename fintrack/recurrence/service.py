"""
Recurring Rule Service

CRUD for recurring rules, materialization of due occurrences into ledger
entries, and the maintenance sweep that deletes expired rules.

Every write runs as one unit of work. Materialization inserts the new
entries and advances `last_processed` in the same transaction, so a
failure never leaves an occurrence recorded twice or not at all.
"""

from __future__ import annotations

from datetime import date, datetime
from typing import Any, Callable, Optional, Union
from uuid import UUID

import structlog
from pydantic import ValidationError as PydanticValidationError

from fintrack.audit.logger import AuditLogger, create_correlation_id
from fintrack.exceptions import NotFoundError, ValidationError
from fintrack.models.audit import AuditEventType
from fintrack.models.ledger import LedgerEntry
from fintrack.models.recurrence import (
    MaterializationResult,
    RecurrenceRule,
    RecurrenceRuleCreate,
    RecurrenceRuleUpdate,
)
from fintrack.recurrence.calculator import occurrences_due
from fintrack.services.storage import StorageInterface
from fintrack.validation import LedgerEntryValidator

logger = structlog.get_logger(__name__)


class RecurringRuleService:
    """Owns the lifecycle of recurring rules."""

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

    def create(self, rule: Union[RecurrenceRuleCreate, dict[str, Any]]) -> RecurrenceRule:
        """
        Create a recurring rule.

        Raises:
            ValidationError: Malformed input or a non-positive amount
        """
        request = self._validator.parse(RecurrenceRuleCreate, rule)
        self._validator.ensure_valid(self._validator.validate_rule(request), "rule")

        now = self._clock()
        stored = RecurrenceRule(**request.model_dump(), created_at=now, updated_at=now)

        with self._storage.transaction() as tx:
            tx.add_rule(stored)

        self._audit.log_rule_changed(
            AuditEventType.RULE_CREATED,
            stored.id,
            f"Recurring rule created: {stored.description} ({stored.frequency.value})",
            details={"account_id": stored.account_id, "amount": str(stored.amount)},
        )
        return stored

    def get(self, rule_id: UUID) -> RecurrenceRule:
        with self._storage.transaction() as tx:
            rule = tx.get_rule(rule_id)
        if rule is None:
            raise NotFoundError(f"Recurring rule not found: {rule_id}")
        return rule

    def list(self, account_id: Optional[str] = None) -> list[RecurrenceRule]:
        """Rules ordered by start date, newest first."""
        with self._storage.transaction() as tx:
            return tx.list_rules(account_id)

    def update(
        self,
        rule_id: UUID,
        changes: Union[RecurrenceRuleUpdate, dict[str, Any]],
    ) -> RecurrenceRule:
        """
        Apply an explicit update request.

        Supplied template fields replace the stored ones. Tags are replaced
        wholesale when supplied and preserved when omitted.

        Raises:
            NotFoundError: No rule with this id
            ValidationError: The merged rule is invalid
        """
        request = self._validator.parse(RecurrenceRuleUpdate, changes)

        with self._storage.transaction() as tx:
            current = tx.get_rule(rule_id)
            if current is None:
                raise NotFoundError(f"Recurring rule not found: {rule_id}")

            merged_fields = {**current.model_dump(), **request.changes()}
            if request.tags is not None:
                merged_fields["tags"] = request.tags
            merged_fields["updated_at"] = self._clock()

            try:
                merged = RecurrenceRule.model_validate(merged_fields)
            except PydanticValidationError as e:
                raise ValidationError.from_pydantic(e) from e
            self._validator.ensure_valid(self._validator.validate_rule(merged), "rule")

            tx.save_rule(merged)

        self._audit.log_rule_changed(
            AuditEventType.RULE_UPDATED,
            rule_id,
            f"Recurring rule updated: {merged.description}",
            details={"fields": sorted(request.model_fields_set)},
        )
        return merged

    def delete(self, rule_id: UUID) -> bool:
        """Delete a rule. Deleting an absent rule is a no-op returning False."""
        with self._storage.transaction() as tx:
            deleted = tx.delete_rule(rule_id)

        if deleted:
            self._audit.log_rule_changed(
                AuditEventType.RULE_DELETED,
                rule_id,
                "Recurring rule deleted",
            )
        return deleted

    def materialize(self, rule_id: UUID, today: date) -> MaterializationResult:
        """
        Turn every due occurrence of a rule into a ledger entry.

        One entry per occurrence dated on or before `today` (and not past
        the rule's end date). `last_processed` moves to the last
        materialized occurrence.

        Raises:
            NotFoundError: No rule with this id
        """
        with self._storage.transaction() as tx:
            rule = tx.get_rule(rule_id)
            if rule is None:
                raise NotFoundError(f"Recurring rule not found: {rule_id}")

            now = self._clock()
            entries = [
                LedgerEntry(
                    account_id=rule.account_id,
                    description=rule.description,
                    amount=rule.amount,
                    kind=rule.kind,
                    category_id=rule.category_id,
                    scope=rule.scope,
                    occurred_on=occurrence,
                    tags=list(rule.tags),
                    created_at=now,
                    updated_at=now,
                )
                for occurrence in occurrences_due(rule, today)
            ]

            if not entries:
                return MaterializationResult(rule_id=rule_id, last_processed=rule.last_processed)

            for entry in entries:
                tx.add_entry(entry)

            last_processed = entries[-1].occurred_on
            tx.save_rule(rule.model_copy(update={
                "last_processed": last_processed,
                "updated_at": now,
            }))

        logger.info(
            "rule_materialized",
            rule_id=str(rule_id),
            created=len(entries),
            last_processed=last_processed.isoformat(),
        )
        self._audit.log_rule_changed(
            AuditEventType.RULE_MATERIALIZED,
            rule_id,
            f"Materialized {len(entries)} occurrences of {rule.description}",
            details={
                "entry_ids": [str(entry.id) for entry in entries],
                "last_processed": last_processed.isoformat(),
            },
        )
        return MaterializationResult(rule_id=rule_id, entries=entries, last_processed=last_processed)

    def materialize_due(self, account_id: str, today: date) -> list[MaterializationResult]:
        """Materialize every rule of an account; rules with nothing due are left out."""
        results = []
        for rule in self.list(account_id):
            result = self.materialize(rule.id, today)
            if result.created_count:
                results.append(result)
        return results

    def purge_expired(self, today: date) -> int:
        """
        Delete every rule whose end date is before `today`.

        This is irreversible. The rules about to go are written to the
        audit log before the delete executes.

        Returns:
            Number of rules deleted
        """
        correlation_id = create_correlation_id()

        with self._storage.transaction() as tx:
            expired = tx.find_expired_rules(today)
        if not expired:
            return 0

        logger.warning(
            "expired_rules_purge_starting",
            cutoff=today.isoformat(),
            rule_ids=[str(rule_id) for rule_id in expired],
        )
        self._audit.log_purge_started(today.isoformat(), expired, correlation_id=correlation_id)

        with self._storage.transaction() as tx:
            # Only rules that were logged above and are still expired
            still_expired = set(tx.find_expired_rules(today))
            deleted = tx.delete_rules([rule_id for rule_id in expired if rule_id in still_expired])

        self._audit.log_purge_completed(deleted, correlation_id=correlation_id)
        return deleted
