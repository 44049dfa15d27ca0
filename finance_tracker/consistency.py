"""
Expense Consistency Engine

Every expense exists twice: the canonical record in the Expenses
collection and a summary embedded in the owner's user document.
MongoDB gives no atomic write across the two, so this engine is the
only code allowed to change both, and it does so in a fixed order:

    add:     canonical insert  ->  summary append   (compensate on missing owner)
    reprice: canonical update  ->  summary update
    delete:  canonical delete  ->  summary remove

DESIGN DECISION: Canonical first, summary second.
The only transient state this can produce is a canonical record with
no summary. That record is inert and easy to detect. The opposite
order could leave a summary pointing at an expense that does not
exist.

Failure rules:
- Validation happens before any write
- A missing owner on add is compensated by deleting the canonical record
- A second step that finds nothing to change is not a failure: the
  canonical record is the source of truth. It is recorded as a
  ConsistencyDivergence for offline reconciliation
- Storage errors propagate unmodified; nothing is retried here, since
  add is not idempotent

No locks, queues or transactions are used. Concurrent operations on the
same expense resolve as last-write-wins or as a missed second step,
both covered by the rules above.
"""

from typing import Any, Callable, Optional
from uuid import UUID

from pydantic import ValidationError as PydanticValidationError

from finance_tracker.audit import AuditLogger, create_correlation_id
from finance_tracker.models.divergence import (
    ConsistencyDivergence,
    DivergenceKind,
    DivergenceOperation,
)
from finance_tracker.models.expense import CostChange, Expense, ExpenseDraft, new_object_id
from finance_tracker.services.storage import (
    ExpenseStoreInterface,
    OwnerSummaryStoreInterface,
    StorageError,
)


class ExpenseEngineError(Exception):
    """Base error for consistency engine operations."""
    pass


class ValidationError(ExpenseEngineError):
    """Input rejected before any storage was touched."""

    def __init__(self, message: str, issues: Optional[list[dict[str, Any]]] = None):
        super().__init__(message)
        self.issues = issues or []


class OwnerNotFound(ExpenseEngineError):
    """The user an expense should belong to does not exist."""

    def __init__(self, owner_id: str):
        super().__init__(f"Owner not found: {owner_id}")
        self.owner_id = owner_id


class ExpenseNotFound(ExpenseEngineError):
    """No canonical expense record with this id."""

    def __init__(self, expense_id: str):
        super().__init__(f"Expense not found: {expense_id}")
        self.expense_id = expense_id


def _validation_error(error: PydanticValidationError) -> ValidationError:
    issues = [
        {
            "field": ".".join(str(part) for part in item["loc"]),
            "message": item["msg"],
        }
        for item in error.errors()
    ]
    message = "; ".join(f"{i['field']}: {i['message']}" for i in issues)
    return ValidationError(message, issues)


class ExpenseConsistencyEngine:
    """
    Orchestrates expense writes across the expense and summary stores.

    Holds no per-request state; one instance serves every request.
    """

    def __init__(
        self,
        expense_store: ExpenseStoreInterface,
        summary_store: OwnerSummaryStoreInterface,
        audit_logger: Optional[AuditLogger] = None,
        id_factory: Callable[[], str] = new_object_id,
    ):
        self._expenses = expense_store
        self._summaries = summary_store
        # Divergences must always be recorded, so fall back to local-only logging
        self._audit_logger = audit_logger or AuditLogger()
        self._id_factory = id_factory

    def add_expense(self, owner_id: str, name: str, cost: Any) -> Expense:
        """
        Create an expense and its owner summary.

        Raises:
            ValidationError: name empty or cost negative / over two decimals
            OwnerNotFound: the owner does not exist (canonical record removed)
            StorageError: the store failed
        """
        try:
            draft = ExpenseDraft(name=name, cost=cost)
            expense = Expense(
                id=self._id_factory(),
                owner_id=owner_id,
                name=draft.name,
                cost=draft.cost,
            )
        except PydanticValidationError as e:
            raise _validation_error(e) from e

        correlation_id = create_correlation_id()

        self._expenses.create(expense)

        try:
            matched = self._summaries.append_summary(owner_id, expense.to_summary())
        except StorageError as e:
            self._record(
                DivergenceKind.UNCONFIRMED_SUMMARY_WRITE,
                DivergenceOperation.ADD_EXPENSE,
                expense,
                "Summary append failed after canonical insert",
                correlation_id,
                error_message=str(e),
            )
            raise

        if not matched:
            self._compensate_missing_owner(expense, correlation_id)
            raise OwnerNotFound(owner_id)

        self._audit_logger.log_expense_added(
            expense_id=expense.id,
            owner_id=owner_id,
            name=expense.name,
            cost=str(expense.cost),
            correlation_id=correlation_id,
        )
        return expense

    def update_expense_cost(self, expense_id: str, new_cost: Any) -> Expense:
        """
        Reprice an expense and its owner summary.

        A summary that cannot be found is recorded as a divergence;
        the canonical update still counts as success.

        Raises:
            ValidationError: cost negative / over two decimals
            ExpenseNotFound: no canonical record
            StorageError: the store failed
        """
        try:
            cost = CostChange(cost=new_cost).cost
        except PydanticValidationError as e:
            raise _validation_error(e) from e

        correlation_id = create_correlation_id()

        # owner_id is immutable, so reading it before the write is safe
        current = self._expenses.get(expense_id)
        if current is None or not self._expenses.update(expense_id, {"cost": cost}):
            raise ExpenseNotFound(expense_id)
        updated = current.model_copy(update={"cost": cost})

        try:
            matched = self._summaries.update_summary_cost(updated.owner_id, expense_id, cost)
        except StorageError as e:
            self._record(
                DivergenceKind.UNCONFIRMED_SUMMARY_WRITE,
                DivergenceOperation.UPDATE_EXPENSE_COST,
                updated,
                "Summary cost update failed after canonical update",
                correlation_id,
                error_message=str(e),
            )
            raise

        if not matched:
            self._record(
                DivergenceKind.MISSING_SUMMARY,
                DivergenceOperation.UPDATE_EXPENSE_COST,
                updated,
                "No summary entry to reprice; canonical cost applied",
                correlation_id,
            )

        self._audit_logger.log_expense_cost_updated(
            expense_id=expense_id,
            owner_id=updated.owner_id,
            cost=str(cost),
            correlation_id=correlation_id,
        )
        return updated

    def delete_expense(self, expense_id: str) -> None:
        """
        Delete an expense, then its owner summary.

        Deleting twice raises ExpenseNotFound the second time and
        changes nothing.

        Raises:
            ExpenseNotFound: no canonical record
            StorageError: the store failed
        """
        correlation_id = create_correlation_id()

        current = self._expenses.get(expense_id)
        if current is None or not self._expenses.delete(expense_id):
            raise ExpenseNotFound(expense_id)

        try:
            matched = self._summaries.remove_summary(current.owner_id, expense_id)
        except StorageError as e:
            self._record(
                DivergenceKind.UNCONFIRMED_SUMMARY_WRITE,
                DivergenceOperation.DELETE_EXPENSE,
                current,
                "Summary removal failed after canonical delete",
                correlation_id,
                error_message=str(e),
            )
            raise

        if not matched:
            # Canonical record is gone, which is what "deleted" means
            self._record(
                DivergenceKind.MISSING_SUMMARY,
                DivergenceOperation.DELETE_EXPENSE,
                current,
                "No summary entry to remove; canonical record deleted",
                correlation_id,
            )

        self._audit_logger.log_expense_deleted(
            expense_id=expense_id,
            owner_id=current.owner_id,
            correlation_id=correlation_id,
        )

    def _compensate_missing_owner(self, expense: Expense, correlation_id: UUID) -> None:
        """Undo the canonical insert of an add whose owner does not exist."""
        error_message = None
        try:
            deleted = self._expenses.delete(expense.id)
        except StorageError as e:
            deleted = False
            error_message = str(e)

        if deleted:
            self._audit_logger.log_compensation_applied(
                expense_id=expense.id,
                owner_id=expense.owner_id,
                correlation_id=correlation_id,
            )
            return

        self._record(
            DivergenceKind.ORPHAN_CANONICAL,
            DivergenceOperation.ADD_EXPENSE,
            expense,
            "Owner not found and compensating delete failed; canonical record orphaned",
            correlation_id,
            error_message=error_message,
        )

    def _record(
        self,
        kind: DivergenceKind,
        operation: DivergenceOperation,
        expense: Expense,
        detail: str,
        correlation_id: UUID,
        error_message: Optional[str] = None,
    ) -> None:
        divergence = ConsistencyDivergence(
            kind=kind,
            operation=operation,
            expense_id=expense.id,
            owner_id=expense.owner_id,
            detail=detail,
        )
        self._audit_logger.log_divergence(
            divergence,
            correlation_id=correlation_id,
            error_message=error_message,
        )
