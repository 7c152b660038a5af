"""
Write Validation

Entries and rules are checked in two passes before anything is written.

Schema pass: pydantic parses the request (types, required fields, kind,
scope and frequency membership). Failures become a domain ValidationError.

Semantic pass, only on schema-valid input:
- the amount is strictly positive
- an is_split entry has at least one split and the splits sum to the
  amount; an entry that is not split has no splits

Nothing is corrected on the caller's behalf. A rejected write raises
ValidationError with every issue found.
"""

from decimal import Decimal
from typing import Any, Sequence, Type, TypeVar, Union

from pydantic import BaseModel
from pydantic import ValidationError as PydanticValidationError

from fintrack.exceptions import ValidationError
from fintrack.models.ledger import LedgerEntry, LedgerEntryCreate, SplitCreate
from fintrack.models.recurrence import RecurrenceRuleCreate
from fintrack.models.validation import ValidationIssue, ValidationResult

ModelT = TypeVar("ModelT", bound=BaseModel)

EntryHeader = Union[LedgerEntryCreate, LedgerEntry]


class LedgerEntryValidator:
    """
    Validates ledger entries and recurring rules before they are written.

    Stage 1: Schema validation (pydantic)
    Stage 2: Semantic validation (amount and split invariants)
    """

    def parse(self, model_cls: Type[ModelT], data: Any) -> ModelT:
        """
        Stage 1: coerce raw input into a request model.

        Instances of `model_cls` pass through untouched.

        Raises:
            ValidationError: Input does not match the schema
        """
        if isinstance(data, model_cls):
            return data
        try:
            return model_cls.model_validate(data)
        except PydanticValidationError as e:
            raise ValidationError.from_pydantic(e) from e

    def _validate_amount(self, amount: Decimal) -> list[ValidationIssue]:
        if amount <= 0:
            return [ValidationIssue(
                field="amount",
                issue_type="invalid_value",
                message="Amount must be greater than zero",
                suggested_fix="Record the direction of money through the kind, not the sign",
            )]
        return []

    def _validate_splits(
        self,
        amount: Decimal,
        is_split: bool,
        splits: Sequence[SplitCreate],
    ) -> list[ValidationIssue]:
        issues = []

        if not is_split:
            if splits:
                issues.append(ValidationIssue(
                    field="splits",
                    issue_type="unexpected_splits",
                    message="Splits supplied for an entry that is not split",
                    suggested_fix="Set is_split or drop the splits",
                ))
            return issues

        if not splits:
            issues.append(ValidationIssue(
                field="splits",
                issue_type="missing",
                message="A split entry needs at least one split",
            ))
            return issues

        for index, split in enumerate(splits):
            if split.amount <= 0:
                issues.append(ValidationIssue(
                    field=f"splits.{index}.amount",
                    issue_type="invalid_value",
                    message="Split amount must be greater than zero",
                ))

        split_total = sum((s.amount for s in splits), Decimal("0"))
        if split_total != amount:
            issues.append(ValidationIssue(
                field="splits",
                issue_type="split_mismatch",
                message=f"Splits total {split_total} but the entry amount is {amount}",
                suggested_fix="Adjust the splits so they add up to the entry amount",
            ))

        return issues

    def _validate_semantic(
        self,
        header: EntryHeader,
        splits: Sequence[SplitCreate],
    ) -> tuple[bool, list[ValidationIssue]]:
        """Semantic pass. Returns (is_valid, issues)."""
        issues = self._validate_amount(header.amount)
        issues.extend(self._validate_splits(header.amount, header.is_split, splits))

        is_valid = not any(issue.is_error for issue in issues)
        return is_valid, issues

    def validate_entry(
        self,
        header: EntryHeader,
        splits: Sequence[SplitCreate] = (),
    ) -> ValidationResult:
        """
        Validate an entry header together with the splits it will carry.

        The header is already schema-valid (it is a model instance), so
        only the semantic stage can fail here.
        """
        semantic_valid, issues = self._validate_semantic(header, splits)
        return ValidationResult(
            schema_valid=True,
            semantic_valid=semantic_valid,
            issues=issues,
        )

    def validate_rule(self, rule: RecurrenceRuleCreate) -> ValidationResult:
        issues = self._validate_amount(rule.amount)
        return ValidationResult(
            schema_valid=True,
            semantic_valid=not issues,
            issues=issues,
        )

    def ensure_valid(self, result: ValidationResult, subject: str = "entry") -> None:
        """Raise ValidationError if the result carries any error-level issue."""
        if result.is_valid:
            return
        summary = "; ".join(issue.message for issue in result.errors)
        raise ValidationError(f"Invalid {subject}: {summary}", issues=result.issues)
