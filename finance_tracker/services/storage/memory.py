"""
In-Memory Storage Implementation

Used by the test suite and for running the API without a database
(STORAGE_BACKEND=memory).

Each operation holds the database lock for its whole read-modify-write,
which gives the same guarantee MongoDB gives: single-document
operations are atomic, nothing spans two documents.
Stored models are copied on the way in and on the way out so callers
can never mutate stored state by accident.
"""

from __future__ import annotations

import threading
from decimal import Decimal
from typing import Any, Optional
from uuid import UUID

from finance_tracker.models.audit import AuditEvent, AuditEventType
from finance_tracker.models.expense import Expense, ExpenseSummary
from finance_tracker.models.user import User
from finance_tracker.services.storage.interface import (
    AuditStorageInterface,
    DuplicateError,
    ExpenseStoreInterface,
    OwnerSummaryStoreInterface,
    UserStoreInterface,
    check_expense_fields,
)


class InMemoryDatabase:
    """The shared state behind the in-memory stores."""

    def __init__(self):
        self.lock = threading.RLock()
        self.expenses: dict[str, Expense] = {}
        self.users: dict[str, User] = {}
        self.audit_events: list[AuditEvent] = []


class InMemoryExpenseStore(ExpenseStoreInterface):
    """Canonical expenses kept in a dict keyed by id."""

    def __init__(self, database: InMemoryDatabase):
        self._db = database

    def create(self, expense: Expense) -> str:
        with self._db.lock:
            if expense.id in self._db.expenses:
                raise DuplicateError(f"Expense already exists: {expense.id}")
            self._db.expenses[expense.id] = expense.model_copy(deep=True)
        return expense.id

    def get(self, expense_id: str) -> Optional[Expense]:
        with self._db.lock:
            expense = self._db.expenses.get(expense_id)
            return expense.model_copy(deep=True) if expense else None

    def update(self, expense_id: str, fields: dict[str, Any]) -> bool:
        check_expense_fields(fields)
        with self._db.lock:
            expense = self._db.expenses.get(expense_id)
            if expense is None:
                return False
            self._db.expenses[expense_id] = expense.model_copy(update=fields)
            return True

    def delete(self, expense_id: str) -> bool:
        with self._db.lock:
            return self._db.expenses.pop(expense_id, None) is not None

    def list(self) -> list[Expense]:
        with self._db.lock:
            return [e.model_copy(deep=True) for e in self._db.expenses.values()]

    def list_by_owner(self, owner_id: str) -> list[Expense]:
        return [e for e in self.list() if e.owner_id == owner_id]


class InMemoryOwnerSummaryStore(OwnerSummaryStoreInterface):
    """Summaries embedded in the in-memory user documents."""

    def __init__(self, database: InMemoryDatabase):
        self._db = database

    def append_summary(self, owner_id: str, summary: ExpenseSummary) -> bool:
        with self._db.lock:
            user = self._db.users.get(owner_id)
            if user is None:
                return False
            if user.find_summary(summary.id) is None:
                user.expense_summaries.append(summary.model_copy())
            return True

    def update_summary_cost(
        self,
        owner_id: str,
        expense_id: str,
        new_cost: Decimal,
    ) -> bool:
        with self._db.lock:
            user = self._db.users.get(owner_id)
            if user is None:
                return False
            for idx, summary in enumerate(user.expense_summaries):
                if summary.id == expense_id:
                    user.expense_summaries[idx] = summary.model_copy(update={"cost": new_cost})
                    return True
            return False

    def remove_summary(self, owner_id: str, expense_id: str) -> bool:
        with self._db.lock:
            user = self._db.users.get(owner_id)
            if user is None:
                return False
            remaining = [s for s in user.expense_summaries if s.id != expense_id]
            if len(remaining) == len(user.expense_summaries):
                return False
            user.expense_summaries = remaining
            return True


class InMemoryUserStore(UserStoreInterface):
    """User accounts; e-mail uniqueness is checked under the lock."""

    def __init__(self, database: InMemoryDatabase):
        self._db = database

    def create_user(self, user: User) -> str:
        with self._db.lock:
            if user.id in self._db.users:
                raise DuplicateError(f"User already exists: {user.id}")
            email = user.email.lower()
            if any(u.email.lower() == email for u in self._db.users.values()):
                raise DuplicateError(f"E-mail already registered: {user.email}")
            self._db.users[user.id] = user.model_copy(deep=True)
        return user.id

    def get_user(self, user_id: str) -> Optional[User]:
        with self._db.lock:
            user = self._db.users.get(user_id)
            return user.model_copy(deep=True) if user else None

    def get_user_by_email(self, email: str) -> Optional[User]:
        email = email.lower()
        with self._db.lock:
            for user in self._db.users.values():
                if user.email.lower() == email:
                    return user.model_copy(deep=True)
        return None

    def list_users(self) -> list[User]:
        with self._db.lock:
            return [u.model_copy(deep=True) for u in self._db.users.values()]


class InMemoryAuditStorage(AuditStorageInterface):
    """Append-only list of audit events."""

    def __init__(self, database: InMemoryDatabase):
        self._db = database

    def append_event(self, event: AuditEvent) -> bool:
        with self._db.lock:
            self._db.audit_events.append(event)
        return True

    def get_events_by_correlation_id(
        self,
        correlation_id: UUID,
    ) -> list[AuditEvent]:
        with self._db.lock:
            events = [e for e in self._db.audit_events if e.correlation_id == correlation_id]
        events.sort(key=lambda e: e.timestamp)
        return events

    def get_events_by_type(
        self,
        event_type: AuditEventType,
        limit: int = 100,
    ) -> list[AuditEvent]:
        with self._db.lock:
            events = [e for e in self._db.audit_events if e.event_type == event_type]
        events.sort(key=lambda e: e.timestamp, reverse=True)
        return events[:limit]

    def get_recent_events(
        self,
        limit: int = 100,
    ) -> list[AuditEvent]:
        with self._db.lock:
            events = list(self._db.audit_events)
        events.sort(key=lambda e: e.timestamp, reverse=True)
        return events[:limit]
