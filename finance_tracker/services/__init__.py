"""Services package."""

from finance_tracker.services.storage import (
    AuditStorageInterface,
    ConnectionError,
    DuplicateError,
    ExpenseStoreInterface,
    OwnerSummaryStoreInterface,
    StorageError,
    UserStoreInterface,
)

__all__ = [
    # Storage interfaces
    "AuditStorageInterface",
    "ExpenseStoreInterface",
    "OwnerSummaryStoreInterface",
    "UserStoreInterface",
    # Storage exceptions
    "ConnectionError",
    "DuplicateError",
    "StorageError",
]
