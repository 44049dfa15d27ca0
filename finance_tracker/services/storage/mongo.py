"""
MongoDB Storage Implementation

DESIGN DECISION: MongoDB is the production backend.
Canonical expenses live in "Expenses"; each user document in "Users"
embeds an `expense_summaries` array.

TRADEOFFS:
- Every operation here is a single-document write, atomic on its own
- No multi-document transactions (the consistency engine handles this
  with careful ordering and compensation)
- The connection is a process-wide resource with an explicit
  lifecycle: connect() at startup, close() at shutdown

Ids are opaque strings to the rest of the system. A 24-hex string is
stored as an ObjectId (the reference deployment); anything else is
stored as the plain string.
"""

from __future__ import annotations

from decimal import Decimal
from typing import Any, Optional, Union
from uuid import UUID

import structlog
from bson import Decimal128, ObjectId
from pymongo import ASCENDING, DESCENDING, MongoClient
from pymongo.collection import Collection
from pymongo.database import Database
from pymongo.errors import DuplicateKeyError, PyMongoError
from tenacity import retry, stop_after_attempt, wait_exponential

from finance_tracker.config import MongoSettings, get_settings
from finance_tracker.models.audit import AuditEvent, AuditEventType
from finance_tracker.models.expense import Expense, ExpenseSummary
from finance_tracker.models.user import User
from finance_tracker.services.storage.interface import (
    AuditStorageInterface,
    ConnectionError,
    DuplicateError,
    ExpenseStoreInterface,
    OwnerSummaryStoreInterface,
    StorageError,
    UserStoreInterface,
    check_expense_fields,
)


logger = structlog.get_logger(__name__)

SUMMARIES = "expense_summaries"


def to_key(identifier: str) -> Union[ObjectId, str]:
    """Map an opaque id to the value stored in `_id`."""
    if ObjectId.is_valid(identifier) and len(identifier) == 24:
        return ObjectId(identifier)
    return identifier


def _to_decimal(value: Any) -> Decimal:
    if isinstance(value, Decimal128):
        return value.to_decimal()
    return Decimal(str(value))


def _summary_to_doc(summary: ExpenseSummary) -> dict:
    return {
        "id": to_key(summary.id),
        "name": summary.name,
        "cost": Decimal128(summary.cost),
    }


def _doc_to_summary(doc: dict) -> ExpenseSummary:
    return ExpenseSummary(
        id=str(doc["id"]),
        name=doc["name"],
        cost=_to_decimal(doc["cost"]),
    )


class MongoConnection:
    """
    Process-wide MongoDB handle.

    Opened once, injected into every store, closed at shutdown.
    Connection establishment is retried; individual operations are not.
    """

    def __init__(self, settings: Optional[MongoSettings] = None):
        self._client: Optional[MongoClient] = None
        self._settings = settings or get_settings().mongo
        self._indexes_ready = False

    @retry(
        stop=stop_after_attempt(3),
        wait=wait_exponential(multiplier=1, min=2, max=10),
        reraise=True,
    )
    def connect(self) -> MongoClient:
        """
        Establish the connection and verify it with a ping.
        """
        if self._client is None:
            client = MongoClient(
                self._settings.url,
                serverSelectionTimeoutMS=self._settings.server_selection_timeout_ms,
                socketTimeoutMS=self._settings.socket_timeout_ms,
                tz_aware=True,
            )
            try:
                client.admin.command("ping")
            except PyMongoError as e:
                client.close()
                raise ConnectionError(f"Failed to connect to MongoDB: {e}") from e
            self._client = client
            logger.info("mongo_connected", database=self._settings.database)
        return self._client

    def close(self) -> None:
        if self._client is not None:
            self._client.close()
            self._client = None
            logger.info("mongo_closed")

    def get_database(self) -> Database:
        return self.connect()[self._settings.database]

    def ensure_indexes(self) -> None:
        """Create the indexes the stores rely on (idempotent)."""
        if self._indexes_ready:
            return
        db = self.get_database()
        try:
            db[self._settings.users_collection].create_index(
                [("email", ASCENDING)], unique=True, name="email_unique"
            )
            db[self._settings.users_collection].create_index(
                [(f"{SUMMARIES}.id", ASCENDING)], name="summary_id"
            )
            db[self._settings.expenses_collection].create_index(
                [("owner_id", ASCENDING)], name="owner_id"
            )
            db[self._settings.audit_collection].create_index(
                [("event_type", ASCENDING), ("timestamp", DESCENDING)], name="type_time"
            )
        except PyMongoError as e:
            raise StorageError(f"Failed to create indexes: {e}") from e
        self._indexes_ready = True

    def get_expenses_collection(self) -> Collection:
        return self.get_database()[self._settings.expenses_collection]

    def get_users_collection(self) -> Collection:
        return self.get_database()[self._settings.users_collection]

    def get_audit_collection(self) -> Collection:
        return self.get_database()[self._settings.audit_collection]


class MongoExpenseStore(ExpenseStoreInterface):
    """
    Canonical expenses, one document per expense.

    Document shape: {_id, owner_id, name, cost: Decimal128}
    """

    def __init__(self, connection: MongoConnection):
        self._connection = connection

    @property
    def _collection(self) -> Collection:
        return self._connection.get_expenses_collection()

    def _expense_to_doc(self, expense: Expense) -> dict:
        return {
            "_id": to_key(expense.id),
            "owner_id": to_key(expense.owner_id),
            "name": expense.name,
            "cost": Decimal128(expense.cost),
        }

    def _doc_to_expense(self, doc: dict) -> Expense:
        return Expense(
            id=str(doc["_id"]),
            owner_id=str(doc["owner_id"]),
            name=doc["name"],
            cost=_to_decimal(doc["cost"]),
        )

    def create(self, expense: Expense) -> str:
        try:
            self._collection.insert_one(self._expense_to_doc(expense))
        except DuplicateKeyError as e:
            raise DuplicateError(f"Expense already exists: {expense.id}") from e
        except PyMongoError as e:
            raise StorageError(f"Failed to create expense: {e}") from e
        return expense.id

    def get(self, expense_id: str) -> Optional[Expense]:
        try:
            doc = self._collection.find_one({"_id": to_key(expense_id)})
        except PyMongoError as e:
            raise StorageError(f"Failed to get expense: {e}") from e
        return self._doc_to_expense(doc) if doc else None

    def update(self, expense_id: str, fields: dict[str, Any]) -> bool:
        check_expense_fields(fields)
        changes = {
            key: Decimal128(value) if key == "cost" else value
            for key, value in fields.items()
        }
        try:
            result = self._collection.update_one(
                {"_id": to_key(expense_id)},
                {"$set": changes},
            )
        except PyMongoError as e:
            raise StorageError(f"Failed to update expense: {e}") from e
        return result.matched_count == 1

    def delete(self, expense_id: str) -> bool:
        try:
            result = self._collection.delete_one({"_id": to_key(expense_id)})
        except PyMongoError as e:
            raise StorageError(f"Failed to delete expense: {e}") from e
        return result.deleted_count == 1

    def list(self) -> list[Expense]:
        return self._find({})

    def list_by_owner(self, owner_id: str) -> list[Expense]:
        return self._find({"owner_id": to_key(owner_id)})

    def _find(self, query: dict) -> list[Expense]:
        try:
            return [self._doc_to_expense(doc) for doc in self._collection.find(query)]
        except PyMongoError as e:
            raise StorageError(f"Failed to list expenses: {e}") from e


class MongoOwnerSummaryStore(OwnerSummaryStoreInterface):
    """
    The `expense_summaries` array on user documents.

    Each method is one update_one on one user document.
    """

    def __init__(self, connection: MongoConnection):
        self._connection = connection

    @property
    def _collection(self) -> Collection:
        return self._connection.get_users_collection()

    def append_summary(self, owner_id: str, summary: ExpenseSummary) -> bool:
        owner_key = to_key(owner_id)
        summary_key = to_key(summary.id)
        try:
            result = self._collection.update_one(
                {"_id": owner_key, f"{SUMMARIES}.id": {"$ne": summary_key}},
                {"$push": {SUMMARIES: _summary_to_doc(summary)}},
            )
            if result.matched_count == 1:
                return True
            # Either the owner is missing or the summary is already there
            return self._collection.count_documents({"_id": owner_key}, limit=1) > 0
        except PyMongoError as e:
            raise StorageError(f"Failed to append expense summary: {e}") from e

    def update_summary_cost(
        self,
        owner_id: str,
        expense_id: str,
        new_cost: Decimal,
    ) -> bool:
        summary_key = to_key(expense_id)
        try:
            result = self._collection.update_one(
                {"_id": to_key(owner_id), f"{SUMMARIES}.id": summary_key},
                {"$set": {f"{SUMMARIES}.$[entry].cost": Decimal128(new_cost)}},
                array_filters=[{"entry.id": summary_key}],
            )
        except PyMongoError as e:
            raise StorageError(f"Failed to update expense summary: {e}") from e
        return result.matched_count == 1

    def remove_summary(self, owner_id: str, expense_id: str) -> bool:
        summary_key = to_key(expense_id)
        try:
            result = self._collection.update_one(
                {"_id": to_key(owner_id), f"{SUMMARIES}.id": summary_key},
                {"$pull": {SUMMARIES: {"id": summary_key}}},
            )
        except PyMongoError as e:
            raise StorageError(f"Failed to remove expense summary: {e}") from e
        return result.matched_count == 1


class MongoUserStore(UserStoreInterface):
    """
    User account documents.

    E-mail uniqueness comes from the unique index created by
    MongoConnection.ensure_indexes().
    """

    def __init__(self, connection: MongoConnection):
        self._connection = connection

    @property
    def _collection(self) -> Collection:
        return self._connection.get_users_collection()

    def _user_to_doc(self, user: User) -> dict:
        return {
            "_id": to_key(user.id),
            "name": user.name,
            "email": user.email.lower(),
            "password_hash": user.password_hash,
            "yearly_income": (
                Decimal128(user.yearly_income) if user.yearly_income is not None else None
            ),
            SUMMARIES: [_summary_to_doc(s) for s in user.expense_summaries],
        }

    def _doc_to_user(self, doc: dict) -> User:
        income = doc.get("yearly_income")
        return User(
            id=str(doc["_id"]),
            name=doc["name"],
            email=doc["email"],
            password_hash=doc["password_hash"],
            yearly_income=_to_decimal(income) if income is not None else None,
            expense_summaries=[_doc_to_summary(s) for s in doc.get(SUMMARIES, [])],
        )

    def create_user(self, user: User) -> str:
        try:
            self._collection.insert_one(self._user_to_doc(user))
        except DuplicateKeyError as e:
            raise DuplicateError(f"E-mail already registered: {user.email}") from e
        except PyMongoError as e:
            raise StorageError(f"Failed to create user: {e}") from e
        return user.id

    def get_user(self, user_id: str) -> Optional[User]:
        return self._find_one({"_id": to_key(user_id)})

    def get_user_by_email(self, email: str) -> Optional[User]:
        return self._find_one({"email": email.lower()})

    def list_users(self) -> list[User]:
        try:
            return [self._doc_to_user(doc) for doc in self._collection.find({})]
        except PyMongoError as e:
            raise StorageError(f"Failed to list users: {e}") from e

    def _find_one(self, query: dict) -> Optional[User]:
        try:
            doc = self._collection.find_one(query)
        except PyMongoError as e:
            raise StorageError(f"Failed to get user: {e}") from e
        return self._doc_to_user(doc) if doc else None


class MongoAuditStorage(AuditStorageInterface):
    """
    Audit events in their own collection.

    Audit events are append-only.
    """

    def __init__(self, connection: MongoConnection):
        self._connection = connection

    @property
    def _collection(self) -> Collection:
        return self._connection.get_audit_collection()

    def append_event(self, event: AuditEvent) -> bool:
        try:
            self._collection.insert_one(event.to_document())
            return True
        except PyMongoError as e:
            # Don't raise - audit logging should not break the main flow
            logger.warning("audit_event_write_failed", error=str(e), event_id=str(event.event_id))
            return False

    def get_events_by_correlation_id(
        self,
        correlation_id: UUID,
    ) -> list[AuditEvent]:
        return self._find(
            {"correlation_id": str(correlation_id)},
            sort=[("timestamp", ASCENDING)],
        )

    def get_events_by_type(
        self,
        event_type: AuditEventType,
        limit: int = 100,
    ) -> list[AuditEvent]:
        return self._find(
            {"event_type": event_type.value},
            sort=[("timestamp", DESCENDING)],
            limit=limit,
        )

    def get_recent_events(
        self,
        limit: int = 100,
    ) -> list[AuditEvent]:
        return self._find({}, sort=[("timestamp", DESCENDING)], limit=limit)

    def _find(self, query: dict, sort: list, limit: int = 0) -> list[AuditEvent]:
        try:
            cursor = self._collection.find(query, sort=sort, limit=limit)
            return [AuditEvent.from_document(doc) for doc in cursor]
        except PyMongoError as e:
            raise StorageError(f"Failed to get audit events: {e}") from e
