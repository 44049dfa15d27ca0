"""
Storage Services Package

Provides abstract interfaces and concrete implementations for data storage.
MongoDB is the production backend; the in-memory backend serves tests
and database-less local runs.
"""

from finance_tracker.services.storage.interface import (
    AuditStorageInterface,
    ConnectionError,
    DuplicateError,
    ExpenseStoreInterface,
    OwnerSummaryStoreInterface,
    StorageError,
    UserStoreInterface,
)
from finance_tracker.services.storage.memory import (
    InMemoryAuditStorage,
    InMemoryDatabase,
    InMemoryExpenseStore,
    InMemoryOwnerSummaryStore,
    InMemoryUserStore,
)
from finance_tracker.services.storage.mongo import (
    MongoAuditStorage,
    MongoConnection,
    MongoExpenseStore,
    MongoOwnerSummaryStore,
    MongoUserStore,
)

__all__ = [
    # Interfaces
    "AuditStorageInterface",
    "ExpenseStoreInterface",
    "OwnerSummaryStoreInterface",
    "UserStoreInterface",
    # Exceptions
    "ConnectionError",
    "DuplicateError",
    "StorageError",
    # In-memory implementation
    "InMemoryAuditStorage",
    "InMemoryDatabase",
    "InMemoryExpenseStore",
    "InMemoryOwnerSummaryStore",
    "InMemoryUserStore",
    # MongoDB implementation
    "MongoAuditStorage",
    "MongoConnection",
    "MongoExpenseStore",
    "MongoOwnerSummaryStore",
    "MongoUserStore",
]
