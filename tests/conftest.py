"""
Shared fixtures.

Everything runs over the in-memory backend; no database or network
is touched. Fault injection is done by subclassing the memory stores.
"""

import pytest

from finance_tracker.audit import AuditLogger
from finance_tracker.config import AuthSettings
from finance_tracker.consistency import ExpenseConsistencyEngine
from finance_tracker.models.audit import AuditEventType
from finance_tracker.models.user import User
from finance_tracker.services.accounts import AccountService
from finance_tracker.services.storage import (
    InMemoryAuditStorage,
    InMemoryDatabase,
    InMemoryExpenseStore,
    InMemoryOwnerSummaryStore,
    InMemoryUserStore,
)
from finance_tracker.validation import SummaryReconciler


@pytest.fixture
def database():
    return InMemoryDatabase()


@pytest.fixture
def expense_store(database):
    return InMemoryExpenseStore(database)


@pytest.fixture
def summary_store(database):
    return InMemoryOwnerSummaryStore(database)


@pytest.fixture
def user_store(database):
    return InMemoryUserStore(database)


@pytest.fixture
def audit_storage(database):
    return InMemoryAuditStorage(database)


@pytest.fixture
def audit_logger(audit_storage):
    return AuditLogger(audit_storage)


@pytest.fixture
def engine(expense_store, summary_store, audit_logger):
    return ExpenseConsistencyEngine(expense_store, summary_store, audit_logger=audit_logger)


@pytest.fixture
def reconciler(expense_store, user_store, summary_store, audit_logger):
    return SummaryReconciler(expense_store, user_store, summary_store, audit_logger=audit_logger)


@pytest.fixture
def auth_settings():
    # Minimum bcrypt cost keeps the suite fast
    return AuthSettings(
        jwt_secret="test-secret-for-the-suite-0123456789abcdef",
        bcrypt_rounds=4,
        token_expire_minutes=30,
    )


@pytest.fixture
def accounts(user_store, auth_settings, audit_logger):
    return AccountService(user_store, settings=auth_settings, audit_logger=audit_logger)


@pytest.fixture
def owner(user_store):
    user = User(name="Alice", email="alice@example.com", password_hash="not-a-real-hash")
    user_store.create_user(user)
    return user


@pytest.fixture
def recorded_divergences(audit_storage):
    """Callable returning the divergence events logged so far, oldest first."""
    def _divergences():
        events = audit_storage.get_events_by_type(AuditEventType.CONSISTENCY_DIVERGENCE)
        return list(reversed(events))
    return _divergences
