"""Read-only query package."""

from finance_tracker.queries.lookup import ExpenseQueries

__all__ = ["ExpenseQueries"]
