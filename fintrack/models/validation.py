"""
Validation Result Models

Shared by the write validator and the error taxonomy.
"""

from datetime import datetime
from enum import Enum
from typing import Optional

from pydantic import BaseModel, Field


class IssueSeverity(str, Enum):
    ERROR = "error"
    WARNING = "warning"
    INFO = "info"


class ValidationIssue(BaseModel):
    """One problem found with a write request."""

    field: str
    issue_type: str = Field(
        ...,
        description="Machine-readable code, e.g. 'split_mismatch' or 'overpayment'"
    )
    message: str
    severity: IssueSeverity = IssueSeverity.ERROR
    suggested_fix: Optional[str] = None

    @property
    def is_error(self) -> bool:
        return self.severity == IssueSeverity.ERROR


class ValidationResult(BaseModel):
    """
    Outcome of checking one entry or rule before it is written.

    Stage 1: Schema (types, enums, required fields)
    Stage 2: Semantic (positive amounts, split invariants)
    """

    schema_valid: bool
    semantic_valid: bool
    issues: list[ValidationIssue] = Field(default_factory=list)
    validated_at: datetime = Field(default_factory=datetime.utcnow)

    @property
    def errors(self) -> list[ValidationIssue]:
        return [issue for issue in self.issues if issue.is_error]

    @property
    def has_errors(self) -> bool:
        return bool(self.errors)

    @property
    def error_count(self) -> int:
        return len(self.errors)

    @property
    def is_valid(self) -> bool:
        return self.schema_valid and self.semantic_valid and not self.has_errors
