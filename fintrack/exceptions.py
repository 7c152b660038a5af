"""
Error Taxonomy

Every error the core surfaces to the routing layer is one of these.

- ValidationError: malformed or policy-violating input. Never retried.
- NotFoundError: the entity does not exist. Never retried.
- ConflictError: a uniqueness guard fired (duplicate aggregation receipt,
  duplicate obligation). 409-equivalent; callers must not retry blindly.
- StorageError: any other store failure. Opaque to the caller.
"""

from typing import Optional

from fintrack.models.validation import ValidationIssue


class FinTrackError(Exception):
    """Base exception for all ledger engine errors."""
    pass


class ValidationError(FinTrackError, ValueError):
    """Input was rejected before anything was written."""

    def __init__(
        self,
        message: str,
        issues: Optional[list[ValidationIssue]] = None,
    ):
        self.issues = issues or []
        super().__init__(message)

    @classmethod
    def single(
        cls,
        field: str,
        issue_type: str,
        message: str,
    ) -> "ValidationError":
        """Build an error carrying exactly one error-level issue."""
        return cls(
            message,
            issues=[
                ValidationIssue(
                    field=field,
                    issue_type=issue_type,
                    message=message,
                )
            ],
        )

    @classmethod
    def from_pydantic(cls, exc) -> "ValidationError":
        """Convert a pydantic ValidationError raised by a request model."""
        issues = []
        for err in exc.errors():
            field = ".".join(str(part) for part in err.get("loc", ())) or "__root__"
            issues.append(ValidationIssue(
                field=field,
                issue_type=err.get("type", "invalid"),
                message=err.get("msg", "Invalid value"),
            ))
        summary = "; ".join(f"{i.field}: {i.message}" for i in issues)
        return cls(f"Invalid input: {summary}", issues=issues)


class NotFoundError(FinTrackError):
    """Entity not found in storage."""
    pass


class ConflictError(FinTrackError):
    """A uniqueness constraint rejected the write."""
    pass


class StorageError(FinTrackError):
    """Base exception for storage operations that are not otherwise classified."""
    pass


class ConnectionError(StorageError):
    """Could not connect to storage backend."""
    pass
