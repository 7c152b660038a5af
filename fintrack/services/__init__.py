"""Services package."""

from fintrack.services.storage import (
    AuditStorageInterface,
    ConflictError,
    ConnectionError,
    NotFoundError,
    SqlAuditStorage,
    SqlStorage,
    StorageError,
    StorageInterface,
    StorageTransaction,
)

__all__ = [
    "AuditStorageInterface",
    "ConflictError",
    "ConnectionError",
    "NotFoundError",
    "SqlAuditStorage",
    "SqlStorage",
    "StorageError",
    "StorageInterface",
    "StorageTransaction",
]
