"""
Component Wiring for the Finance Tracker

This module ties together all the components: storage, audit logging,
the consistency engine, read queries, accounts and reconciliation.

DESIGN DECISION: Components are built once per process and shared.
None of them hold per-request state, and the storage handles they
wrap are safe to use from many threads at once.

DESIGN DECISION: The storage backend is chosen explicitly.
If MongoDB is configured but unreachable, startup fails. There is no
silent fallback to memory storage, which would accept writes and then
lose them.
"""

from typing import NamedTuple, Optional

import structlog

from finance_tracker.audit import AuditLogger, configure_logging
from finance_tracker.config import check_production_secrets, get_settings
from finance_tracker.consistency import ExpenseConsistencyEngine
from finance_tracker.queries import ExpenseQueries
from finance_tracker.services.accounts import AccountService
from finance_tracker.services.storage import (
    AuditStorageInterface,
    ExpenseStoreInterface,
    InMemoryAuditStorage,
    InMemoryDatabase,
    InMemoryExpenseStore,
    InMemoryOwnerSummaryStore,
    InMemoryUserStore,
    MongoAuditStorage,
    MongoConnection,
    MongoExpenseStore,
    MongoOwnerSummaryStore,
    MongoUserStore,
    OwnerSummaryStoreInterface,
    UserStoreInterface,
)
from finance_tracker.validation import SummaryReconciler


logger = structlog.get_logger(__name__)


class AppComponents(NamedTuple):
    """Everything the API needs, built over one storage backend."""
    engine: ExpenseConsistencyEngine
    queries: ExpenseQueries
    accounts: AccountService
    reconciler: SummaryReconciler
    audit_logger: AuditLogger
    connection: Optional[MongoConnection] = None

    def close(self) -> None:
        if self.connection is not None:
            self.connection.close()


def build_components(
    expense_store: ExpenseStoreInterface,
    summary_store: OwnerSummaryStoreInterface,
    user_store: UserStoreInterface,
    audit_storage: Optional[AuditStorageInterface] = None,
    connection: Optional[MongoConnection] = None,
) -> AppComponents:
    """Assemble the services over already-constructed stores."""
    audit_logger = AuditLogger(audit_storage)
    return AppComponents(
        engine=ExpenseConsistencyEngine(
            expense_store,
            summary_store,
            audit_logger=audit_logger,
        ),
        queries=ExpenseQueries(expense_store, user_store),
        accounts=AccountService(user_store, audit_logger=audit_logger),
        reconciler=SummaryReconciler(
            expense_store,
            user_store,
            summary_store,
            audit_logger=audit_logger,
        ),
        audit_logger=audit_logger,
        connection=connection,
    )


def create_app_components(backend: Optional[str] = None) -> AppComponents:
    """
    Factory function to create all application components.

    Args:
        backend: "mongo" or "memory". Defaults to AppSettings.storage_backend.

    Returns:
        AppComponents; call close() on shutdown

    Raises:
        ValueError: unknown backend, or the development JWT secret outside
            development
        ConnectionError: MongoDB could not be reached
        StorageError: indexes could not be created
    """
    settings = get_settings()
    app_settings = settings.app
    configure_logging(app_settings.log_level)
    check_production_secrets(settings)
    backend = backend or app_settings.storage_backend

    if backend == "memory":
        database = InMemoryDatabase()
        audit_storage = InMemoryAuditStorage(database) if app_settings.persist_audit_events else None
        logger.info("components_created", backend=backend)
        return build_components(
            InMemoryExpenseStore(database),
            InMemoryOwnerSummaryStore(database),
            InMemoryUserStore(database),
            audit_storage=audit_storage,
        )

    if backend != "mongo":
        raise ValueError(f"Unknown storage backend: {backend}")

    connection = MongoConnection(settings.mongo)
    connection.connect()
    connection.ensure_indexes()
    audit_storage = MongoAuditStorage(connection) if app_settings.persist_audit_events else None
    logger.info("components_created", backend=backend)
    return build_components(
        MongoExpenseStore(connection),
        MongoOwnerSummaryStore(connection),
        MongoUserStore(connection),
        audit_storage=audit_storage,
        connection=connection,
    )
