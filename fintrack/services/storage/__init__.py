"""
Storage Services Package

Provides abstract interfaces and concrete implementations for data storage.
Currently implements SQLAlchemy (SQLite by default) as the backend, but
designed to be swappable.
"""

from fintrack.services.storage.interface import (
    AuditStorageInterface,
    ConflictError,
    ConnectionError,
    NotFoundError,
    StorageError,
    StorageInterface,
    StorageTransaction,
)
from fintrack.services.storage.sql import (
    SqlAuditStorage,
    SqlStorage,
    SqlTransaction,
)

__all__ = [
    # Interfaces
    "AuditStorageInterface",
    "StorageInterface",
    "StorageTransaction",
    # Exceptions
    "ConflictError",
    "ConnectionError",
    "NotFoundError",
    "StorageError",
    # SQLAlchemy implementation
    "SqlAuditStorage",
    "SqlStorage",
    "SqlTransaction",
]
