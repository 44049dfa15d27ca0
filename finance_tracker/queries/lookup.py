"""
Read-Only Expense Lookups

Reads go straight to one store. They never touch both, and they never
write, so they need none of the ordering rules of the consistency
engine.

The canonical Expenses collection answers "does this expense exist
and what does it cost". A user's embedded summaries answer "what
does this user's list look like" without a second query.
"""

from typing import Optional

from finance_tracker.models.expense import Expense, ExpenseSummary
from finance_tracker.models.user import User
from finance_tracker.services.storage import ExpenseStoreInterface, UserStoreInterface


class ExpenseQueries:
    """Lookups by id and list-all over expenses and users."""

    def __init__(
        self,
        expense_store: ExpenseStoreInterface,
        user_store: UserStoreInterface,
    ):
        self._expenses = expense_store
        self._users = user_store

    def get_expense(self, expense_id: str) -> Optional[Expense]:
        return self._expenses.get(expense_id)

    def list_expenses(self, owner_id: Optional[str] = None) -> list[Expense]:
        """All canonical expenses, or only those of one owner."""
        if owner_id is None:
            return self._expenses.list()
        return self._expenses.list_by_owner(owner_id)

    def get_user(self, user_id: str) -> Optional[User]:
        return self._users.get_user(user_id)

    def list_users(self) -> list[User]:
        return self._users.list_users()

    def get_expense_summaries(self, owner_id: str) -> Optional[list[ExpenseSummary]]:
        """The owner's embedded summaries, or None if the owner does not exist."""
        user = self._users.get_user(owner_id)
        if user is None:
            return None
        return user.expense_summaries
