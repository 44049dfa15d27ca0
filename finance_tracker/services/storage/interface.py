"""
Abstract Storage Interface

DESIGN DECISION: We define an abstract interface for storage operations.
This allows us to:
1. Run the same consistency engine on MongoDB or in memory
2. Use in-memory storage for testing (including fault injection)
3. Keep the engine decoupled from the driver

Every operation touches exactly one document and is therefore atomic
at the store level. Absence of a target is a normal outcome reported
as None / False, never an exception. Exceptions mean the storage
itself failed.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from decimal import Decimal
from typing import Any, Optional
from uuid import UUID

from finance_tracker.models.audit import AuditEvent, AuditEventType
from finance_tracker.models.expense import Expense, ExpenseSummary
from finance_tracker.models.user import User


# Fields of an expense that may never change after creation
IMMUTABLE_EXPENSE_FIELDS = frozenset({"id", "owner_id"})
MUTABLE_EXPENSE_FIELDS = frozenset({"name", "cost"})


def check_expense_fields(fields: dict[str, Any]) -> None:
    """Reject updates that touch immutable or unknown expense fields."""
    immutable = IMMUTABLE_EXPENSE_FIELDS.intersection(fields)
    if immutable:
        raise ValueError(f"Expense fields are immutable: {sorted(immutable)}")
    unknown = set(fields) - MUTABLE_EXPENSE_FIELDS
    if unknown:
        raise ValueError(f"Unknown expense fields: {sorted(unknown)}")


class ExpenseStoreInterface(ABC):
    """
    Abstract interface for the canonical expense records.

    Only the consistency engine creates, updates or deletes through this.
    """

    @abstractmethod
    def create(self, expense: Expense) -> str:
        """
        Insert a canonical expense record.

        Args:
            expense: The record, with its id already minted

        Returns:
            The expense id

        Raises:
            DuplicateError: If the id is already taken
            StorageError: If the write fails
        """
        pass

    @abstractmethod
    def get(self, expense_id: str) -> Optional[Expense]:
        """
        Retrieve an expense by its ID.

        Returns:
            The expense if found, None otherwise
        """
        pass

    @abstractmethod
    def update(self, expense_id: str, fields: dict[str, Any]) -> bool:
        """
        Set mutable fields (name, cost) on an expense.

        Args:
            expense_id: The expense's identifier
            fields: Field name to new value

        Returns:
            True if a matching document existed

        Raises:
            ValueError: If fields name an immutable or unknown field
        """
        pass

    @abstractmethod
    def delete(self, expense_id: str) -> bool:
        """
        Delete an expense by ID.

        Returns:
            True if a document was deleted
        """
        pass

    @abstractmethod
    def list(self) -> list[Expense]:
        """List every canonical expense."""
        pass

    @abstractmethod
    def list_by_owner(self, owner_id: str) -> list[Expense]:
        """List the canonical expenses of one owner."""
        pass


class OwnerSummaryStoreInterface(ABC):
    """
    Abstract interface for the expense summaries embedded in user documents.
    """

    @abstractmethod
    def append_summary(self, owner_id: str, summary: ExpenseSummary) -> bool:
        """
        Add a summary to the owner's list.

        Set semantics: if an entry with the same id is already present
        this is a no-op that still reports True.

        Returns:
            True if the owner exists
        """
        pass

    @abstractmethod
    def update_summary_cost(
        self,
        owner_id: str,
        expense_id: str,
        new_cost: Decimal,
    ) -> bool:
        """
        Change the cost on the owner's summary entry.

        Returns:
            False if the owner or the entry does not exist
        """
        pass

    @abstractmethod
    def remove_summary(self, owner_id: str, expense_id: str) -> bool:
        """
        Remove every summary entry with this expense id from the owner.

        Returns:
            False if the owner or the entry does not exist
        """
        pass


class UserStoreInterface(ABC):
    """
    Abstract interface for user accounts.

    E-mail uniqueness is enforced by the storage itself, never by a
    check-then-insert in calling code.
    """

    @abstractmethod
    def create_user(self, user: User) -> str:
        """
        Insert a new user.

        Returns:
            The user id

        Raises:
            DuplicateError: If the e-mail is already registered
        """
        pass

    @abstractmethod
    def get_user(self, user_id: str) -> Optional[User]:
        pass

    @abstractmethod
    def get_user_by_email(self, email: str) -> Optional[User]:
        pass

    @abstractmethod
    def list_users(self) -> list[User]:
        pass


class AuditStorageInterface(ABC):
    """
    Abstract interface for audit log storage.

    Audit logs are append-only - we never delete or modify them.
    """

    @abstractmethod
    def append_event(self, event: AuditEvent) -> bool:
        """
        Append an audit event to the log.

        Returns:
            True if logged successfully
        """
        pass

    @abstractmethod
    def get_events_by_correlation_id(
        self,
        correlation_id: UUID,
    ) -> list[AuditEvent]:
        """
        Get all events for a correlation ID (one engine operation).

        Returns:
            List of related events in chronological order
        """
        pass

    @abstractmethod
    def get_events_by_type(
        self,
        event_type: AuditEventType,
        limit: int = 100,
    ) -> list[AuditEvent]:
        """
        Get events of one type, newest first.

        Reconciliation uses this to find recorded divergences.
        """
        pass

    @abstractmethod
    def get_recent_events(
        self,
        limit: int = 100,
    ) -> list[AuditEvent]:
        """
        Get the most recent audit events.

        Returns:
            List of recent events (newest first)
        """
        pass


class StorageError(Exception):
    """Base exception for storage operations."""
    pass


class DuplicateError(StorageError):
    """Attempted to insert a duplicate entity."""
    pass


class ConnectionError(StorageError):
    """Could not connect to storage backend."""
    pass
