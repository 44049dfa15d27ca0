"""
Tests for the expense consistency engine

Runs the engine over the in-memory stores and checks both copies of
every expense after each operation, including the failure paths.
"""

import pytest
from decimal import Decimal

from finance_tracker.audit import AuditLogger
from finance_tracker.consistency import (
    ExpenseConsistencyEngine,
    ExpenseNotFound,
    OwnerNotFound,
    ValidationError,
)
from finance_tracker.models.audit import AuditEventType, AuditSeverity
from finance_tracker.models.divergence import DivergenceKind
from finance_tracker.models.expense import ExpenseSummary
from finance_tracker.models.user import User
from finance_tracker.services.storage import (
    InMemoryExpenseStore,
    InMemoryOwnerSummaryStore,
    StorageError,
)


class FailingSummaryStore(InMemoryOwnerSummaryStore):
    """Summary store whose every write fails."""

    def append_summary(self, owner_id, summary):
        raise StorageError("summary write timed out")

    def update_summary_cost(self, owner_id, expense_id, new_cost):
        raise StorageError("summary write timed out")

    def remove_summary(self, owner_id, expense_id):
        raise StorageError("summary write timed out")


class FailingDeleteExpenseStore(InMemoryExpenseStore):
    """Expense store whose deletes fail."""

    def delete(self, expense_id):
        raise StorageError("delete rejected")


class VanishingDeleteExpenseStore(InMemoryExpenseStore):
    """Expense store whose deletes report that nothing was removed."""

    def delete(self, expense_id):
        return False


class InterleavingExpenseStore(InMemoryExpenseStore):
    """Expense store that lets another operation run right after its first write."""

    def __init__(self, database, interleave):
        super().__init__(database)
        self._interleave = interleave

    def _run_interleaved(self, expense_id):
        interleave, self._interleave = self._interleave, None
        if interleave is not None:
            interleave(expense_id)

    def update(self, expense_id, fields):
        updated = super().update(expense_id, fields)
        self._run_interleaved(expense_id)
        return updated

    def delete(self, expense_id):
        deleted = super().delete(expense_id)
        self._run_interleaved(expense_id)
        return deleted


def event_types(audit_storage):
    return [e.event_type for e in reversed(audit_storage.get_recent_events())]


class TestAddExpense:
    """Tests for add_expense."""

    def test_add_creates_both_copies(self, engine, expense_store, user_store, owner):
        """Canonical record and summary exist and agree after an add."""
        expense = engine.add_expense(owner.id, "Coffee", Decimal("3.50"))

        assert expense_store.get(expense.id) == expense
        stored_owner = user_store.get_user(owner.id)
        assert len(stored_owner.expense_summaries) == 1
        assert stored_owner.find_summary(expense.id).matches(expense)

    def test_add_returns_normalized_values(self, engine, owner):
        expense = engine.add_expense(owner.id, "  Coffee ", "3.5")
        assert expense.name == "Coffee"
        assert str(expense.cost) == "3.50"
        assert expense.owner_id == owner.id

    def test_add_zero_cost_is_allowed(self, engine, owner):
        expense = engine.add_expense(owner.id, "Free sample", 0)
        assert expense.cost == Decimal("0.00")

    def test_add_uses_id_factory(self, expense_store, summary_store, owner):
        engine = ExpenseConsistencyEngine(
            expense_store,
            summary_store,
            id_factory=lambda: "expense-1",
        )
        expense = engine.add_expense(owner.id, "Coffee", Decimal("1.00"))
        assert expense.id == "expense-1"
        assert expense_store.get("expense-1") is not None

    def test_add_logs_expense_added(self, engine, audit_storage, owner):
        engine.add_expense(owner.id, "Coffee", Decimal("3.50"))
        assert event_types(audit_storage) == [AuditEventType.EXPENSE_ADDED]

    @pytest.mark.parametrize("name,cost", [
        ("Refund", Decimal("-1.00")),
        ("Fuel", Decimal("1.005")),
        ("   ", Decimal("1.00")),
        ("Fuel", "not a number"),
        ("Yacht", Decimal("1e30")),
        ("Yacht", 1e30),
    ])
    def test_invalid_input_writes_nothing(self, engine, expense_store, user_store, owner, name, cost):
        """Validation happens before any storage write."""
        with pytest.raises(ValidationError) as exc_info:
            engine.add_expense(owner.id, name, cost)

        assert exc_info.value.issues
        assert expense_store.list() == []
        assert user_store.get_user(owner.id).expense_summaries == []

    def test_blank_owner_id_is_invalid(self, engine, expense_store):
        with pytest.raises(ValidationError):
            engine.add_expense("", "Coffee", Decimal("1.00"))
        assert expense_store.list() == []


class TestAddToMissingOwner:
    """The compensation path."""

    def test_missing_owner_is_compensated(self, engine, expense_store, audit_storage):
        """No canonical record survives an add to a user that does not exist."""
        with pytest.raises(OwnerNotFound) as exc_info:
            engine.add_expense("no-such-user", "Coffee", Decimal("3.50"))

        assert exc_info.value.owner_id == "no-such-user"
        assert expense_store.list() == []
        assert event_types(audit_storage) == [AuditEventType.COMPENSATION_APPLIED]

    def test_failed_compensation_records_orphan(self, database, audit_logger, recorded_divergences):
        """If the compensating delete fails the orphan is recorded, and OwnerNotFound still wins."""
        expense_store = FailingDeleteExpenseStore(database)
        engine = ExpenseConsistencyEngine(
            expense_store,
            InMemoryOwnerSummaryStore(database),
            audit_logger=audit_logger,
        )

        with pytest.raises(OwnerNotFound):
            engine.add_expense("no-such-user", "Coffee", Decimal("3.50"))

        orphans = expense_store.list()
        assert len(orphans) == 1
        [event] = recorded_divergences()
        assert event.error_code == DivergenceKind.ORPHAN_CANONICAL.value
        assert event.severity == AuditSeverity.CRITICAL
        assert event.entity_id == orphans[0].id
        assert event.error_message == "delete rejected"

    def test_compensation_finding_nothing_records_orphan(self, database, audit_logger, recorded_divergences):
        engine = ExpenseConsistencyEngine(
            VanishingDeleteExpenseStore(database),
            InMemoryOwnerSummaryStore(database),
            audit_logger=audit_logger,
        )

        with pytest.raises(OwnerNotFound):
            engine.add_expense("no-such-user", "Coffee", Decimal("3.50"))

        [event] = recorded_divergences()
        assert event.error_code == DivergenceKind.ORPHAN_CANONICAL.value


class TestUpdateExpenseCost:
    """Tests for update_expense_cost."""

    def test_update_changes_both_copies(self, engine, expense_store, user_store, owner):
        expense = engine.add_expense(owner.id, "Lunch", Decimal("12.00"))

        updated = engine.update_expense_cost(expense.id, Decimal("15.25"))

        assert updated.cost == Decimal("15.25")
        assert updated.name == "Lunch"
        assert expense_store.get(expense.id).cost == Decimal("15.25")
        assert user_store.get_user(owner.id).find_summary(expense.id).cost == Decimal("15.25")

    def test_update_is_idempotent(self, engine, expense_store, user_store, owner):
        expense = engine.add_expense(owner.id, "Lunch", Decimal("12.00"))

        first = engine.update_expense_cost(expense.id, Decimal("9.99"))
        second = engine.update_expense_cost(expense.id, Decimal("9.99"))

        assert first == second
        summary = user_store.get_user(owner.id).find_summary(expense.id)
        assert summary.matches(expense_store.get(expense.id))

    def test_update_unknown_expense(self, engine):
        with pytest.raises(ExpenseNotFound) as exc_info:
            engine.update_expense_cost("no-such-expense", Decimal("1.00"))
        assert exc_info.value.expense_id == "no-such-expense"

    def test_invalid_cost_is_checked_first(self, engine, expense_store, owner):
        """Validation wins over existence, and nothing changes."""
        expense = engine.add_expense(owner.id, "Lunch", Decimal("12.00"))

        with pytest.raises(ValidationError):
            engine.update_expense_cost("no-such-expense", Decimal("-5"))
        with pytest.raises(ValidationError):
            engine.update_expense_cost(expense.id, Decimal("0.001"))

        assert expense_store.get(expense.id).cost == Decimal("12.00")

    @pytest.mark.parametrize("cost", [Decimal("1e30"), 1e30])
    def test_oversized_cost_is_invalid(self, engine, expense_store, user_store, owner, cost):
        expense = engine.add_expense(owner.id, "Lunch", Decimal("12.00"))

        with pytest.raises(ValidationError):
            engine.update_expense_cost(expense.id, cost)

        assert expense_store.get(expense.id).cost == Decimal("12.00")
        assert user_store.get_user(owner.id).find_summary(expense.id).cost == Decimal("12.00")

    def test_missing_summary_is_recorded_not_raised(
        self, engine, expense_store, summary_store, owner, recorded_divergences
    ):
        """The canonical update stands when the summary has gone missing."""
        expense = engine.add_expense(owner.id, "Lunch", Decimal("12.00"))
        summary_store.remove_summary(owner.id, expense.id)

        updated = engine.update_expense_cost(expense.id, Decimal("20.00"))

        assert updated.cost == Decimal("20.00")
        assert expense_store.get(expense.id).cost == Decimal("20.00")
        [event] = recorded_divergences()
        assert event.error_code == DivergenceKind.MISSING_SUMMARY.value
        assert event.details["operation"] == "update_expense_cost"
        assert event.details["owner_id"] == owner.id

    def test_summary_storage_error_propagates(self, database, owner, audit_logger, recorded_divergences):
        """A failed second step is recorded as unconfirmed and re-raised."""
        expense_store = InMemoryExpenseStore(database)
        good = ExpenseConsistencyEngine(expense_store, InMemoryOwnerSummaryStore(database))
        expense = good.add_expense(owner.id, "Lunch", Decimal("12.00"))

        engine = ExpenseConsistencyEngine(
            expense_store,
            FailingSummaryStore(database),
            audit_logger=audit_logger,
        )
        with pytest.raises(StorageError):
            engine.update_expense_cost(expense.id, Decimal("20.00"))

        assert expense_store.get(expense.id).cost == Decimal("20.00")
        [event] = recorded_divergences()
        assert event.error_code == DivergenceKind.UNCONFIRMED_SUMMARY_WRITE.value
        assert event.error_message == "summary write timed out"


class TestDeleteExpense:
    """Tests for delete_expense."""

    def test_delete_removes_both_copies(self, engine, expense_store, user_store, owner):
        expense = engine.add_expense(owner.id, "Lunch", Decimal("12.00"))
        other = engine.add_expense(owner.id, "Dinner", Decimal("30.00"))

        engine.delete_expense(expense.id)

        assert expense_store.get(expense.id) is None
        summaries = user_store.get_user(owner.id).expense_summaries
        assert [s.id for s in summaries] == [other.id]

    def test_second_delete_raises_and_changes_nothing(self, engine, expense_store, owner):
        expense = engine.add_expense(owner.id, "Lunch", Decimal("12.00"))
        engine.delete_expense(expense.id)

        with pytest.raises(ExpenseNotFound):
            engine.delete_expense(expense.id)

        assert expense_store.list() == []

    def test_missing_summary_is_recorded_not_raised(
        self, engine, expense_store, summary_store, owner, recorded_divergences
    ):
        expense = engine.add_expense(owner.id, "Lunch", Decimal("12.00"))
        summary_store.remove_summary(owner.id, expense.id)

        engine.delete_expense(expense.id)

        assert expense_store.get(expense.id) is None
        [event] = recorded_divergences()
        assert event.error_code == DivergenceKind.MISSING_SUMMARY.value
        assert event.details["operation"] == "delete_expense"

    def test_owner_deleted_meanwhile(self, engine, database, expense_store, owner, recorded_divergences):
        """An owner document that disappeared is a missing summary, not an error."""
        expense = engine.add_expense(owner.id, "Lunch", Decimal("12.00"))
        with database.lock:
            del database.users[owner.id]

        engine.delete_expense(expense.id)

        assert expense_store.get(expense.id) is None
        [event] = recorded_divergences()
        assert event.error_code == DivergenceKind.MISSING_SUMMARY.value


class TestAddSummaryFailure:
    """A storage error on the summary append."""

    def test_append_failure_keeps_canonical_and_reraises(
        self, database, owner, audit_logger, recorded_divergences
    ):
        expense_store = InMemoryExpenseStore(database)
        engine = ExpenseConsistencyEngine(
            expense_store,
            FailingSummaryStore(database),
            audit_logger=audit_logger,
        )

        with pytest.raises(StorageError):
            engine.add_expense(owner.id, "Coffee", Decimal("3.50"))

        # State unknown, so no compensation is attempted
        assert len(expense_store.list()) == 1
        [event] = recorded_divergences()
        assert event.error_code == DivergenceKind.UNCONFIRMED_SUMMARY_WRITE.value
        assert event.severity == AuditSeverity.ERROR


class TestCorrelation:
    """All events of one operation share a correlation id."""

    def test_compensation_events_share_correlation_id(self, database, audit_logger, audit_storage):
        engine = ExpenseConsistencyEngine(
            FailingDeleteExpenseStore(database),
            InMemoryOwnerSummaryStore(database),
            audit_logger=audit_logger,
        )
        with pytest.raises(OwnerNotFound):
            engine.add_expense("no-such-user", "Coffee", Decimal("3.50"))

        [event] = audit_storage.get_recent_events()
        related = audit_storage.get_events_by_correlation_id(event.correlation_id)
        assert related == [event]

    def test_each_operation_gets_its_own_id(self, engine, audit_storage, owner):
        expense = engine.add_expense(owner.id, "Lunch", Decimal("12.00"))
        engine.update_expense_cost(expense.id, Decimal("13.00"))
        engine.delete_expense(expense.id)

        ids = {e.correlation_id for e in audit_storage.get_recent_events()}
        assert len(ids) == 3


class TestInvariant:
    """After any sequence of successful operations both copies agree."""

    def test_mixed_sequence_leaves_stores_consistent(self, engine, user_store, reconciler, owner):
        second = User(name="Bob", email="bob@example.com", password_hash="x")
        user_store.create_user(second)

        kept = engine.add_expense(owner.id, "Rent", Decimal("1200.00"))
        dropped = engine.add_expense(owner.id, "Gym", Decimal("40.00"))
        other = engine.add_expense(second.id, "Books", Decimal("25.10"))
        engine.update_expense_cost(kept.id, Decimal("1150.00"))
        engine.delete_expense(dropped.id)
        engine.update_expense_cost(other.id, Decimal("0"))
        with pytest.raises(OwnerNotFound):
            engine.add_expense("ghost", "Nothing", Decimal("1.00"))

        report = reconciler.scan()
        assert report.is_consistent
        assert report.checked_expenses == 2
        assert report.checked_owners == 2

    def test_engine_without_audit_storage(self, expense_store, summary_store, owner):
        """Local-only logging is enough to run."""
        engine = ExpenseConsistencyEngine(expense_store, summary_store, audit_logger=AuditLogger())
        expense = engine.add_expense(owner.id, "Coffee", Decimal("3.50"))
        engine.delete_expense(expense.id)
        assert expense_store.list() == []


class TestConcurrentOperations:
    """Same-id operations overlapping between their two steps."""

    def interleaved_engine(self, database, audit_logger, interleave):
        return ExpenseConsistencyEngine(
            InterleavingExpenseStore(database, interleave),
            InMemoryOwnerSummaryStore(database),
            audit_logger=audit_logger,
        )

    def test_delete_between_reprice_steps(
        self, database, engine, expense_store, user_store, reconciler, audit_logger, owner, recorded_divergences
    ):
        """The reprice finds no summary to update and records it."""
        expense = engine.add_expense(owner.id, "Coffee", Decimal("3.50"))
        repricer = self.interleaved_engine(database, audit_logger, engine.delete_expense)

        updated = repricer.update_expense_cost(expense.id, Decimal("4.25"))

        assert updated.cost == Decimal("4.25")
        assert expense_store.get(expense.id) is None
        assert user_store.get_user(owner.id).expense_summaries == []
        [event] = recorded_divergences()
        assert event.error_code == DivergenceKind.MISSING_SUMMARY.value
        assert event.details["operation"] == "update_expense_cost"
        assert reconciler.scan().is_consistent

    def test_reprice_between_delete_steps(
        self, database, engine, expense_store, user_store, reconciler, audit_logger, owner, recorded_divergences
    ):
        """The reprice loses with ExpenseNotFound and the delete completes."""
        expense = engine.add_expense(owner.id, "Coffee", Decimal("3.50"))
        losers = []

        def reprice(expense_id):
            try:
                engine.update_expense_cost(expense_id, Decimal("4.25"))
            except ExpenseNotFound as e:
                losers.append(e)

        deleter = self.interleaved_engine(database, audit_logger, reprice)
        deleter.delete_expense(expense.id)

        assert [e.expense_id for e in losers] == [expense.id]
        assert expense_store.get(expense.id) is None
        assert user_store.get_user(owner.id).expense_summaries == []
        assert recorded_divergences() == []
        assert reconciler.scan().is_consistent

    def test_reprice_between_reprice_steps(
        self, database, engine, expense_store, user_store, reconciler, audit_logger, owner
    ):
        """Last write wins on each copy; the reconciler brings the summary back in line."""
        expense = engine.add_expense(owner.id, "Coffee", Decimal("3.50"))

        def reprice(expense_id):
            engine.update_expense_cost(expense_id, Decimal("5.00"))

        first = self.interleaved_engine(database, audit_logger, reprice)
        first.update_expense_cost(expense.id, Decimal("4.25"))

        assert expense_store.get(expense.id).cost == Decimal("5.00")
        assert user_store.get_user(owner.id).find_summary(expense.id).cost == Decimal("4.25")
        [divergence] = reconciler.scan().divergences
        assert divergence.kind == DivergenceKind.FIELD_MISMATCH

        assert reconciler.repair().repaired == 1
        assert user_store.get_user(owner.id).find_summary(expense.id).cost == Decimal("5.00")

    def test_delete_between_delete_steps(self, database, engine, expense_store, user_store, audit_logger, owner):
        """The second delete finds nothing and changes nothing."""
        expense = engine.add_expense(owner.id, "Coffee", Decimal("3.50"))
        losers = []

        def delete(expense_id):
            try:
                engine.delete_expense(expense_id)
            except ExpenseNotFound as e:
                losers.append(e)

        self.interleaved_engine(database, audit_logger, delete).delete_expense(expense.id)

        assert len(losers) == 1
        assert expense_store.list() == []
        assert user_store.get_user(owner.id).expense_summaries == []


class TestScenarios:
    """The reference walk-through: add, reprice, delete twice, unknown owner."""

    @pytest.fixture
    def u1(self, user_store):
        user = User(id="u1", name="U One", email="u1@example.com", password_hash="x")
        user_store.create_user(user)
        return user

    @pytest.fixture
    def scenario_engine(self, expense_store, summary_store, audit_logger):
        return ExpenseConsistencyEngine(
            expense_store,
            summary_store,
            audit_logger=audit_logger,
            id_factory=lambda: "e1",
        )

    def test_add_reprice_delete(self, scenario_engine, expense_store, user_store, u1):
        added = scenario_engine.add_expense("u1", "coffee", 3.50)
        assert (added.id, added.owner_id, added.name, added.cost) == ("e1", "u1", "coffee", Decimal("3.50"))
        assert user_store.get_user("u1").expense_summaries == [
            ExpenseSummary(id="e1", name="coffee", cost=Decimal("3.50"))
        ]

        scenario_engine.update_expense_cost("e1", 4.25)
        assert expense_store.get("e1").cost == Decimal("4.25")
        assert user_store.get_user("u1").find_summary("e1").cost == Decimal("4.25")

        scenario_engine.delete_expense("e1")
        assert expense_store.get("e1") is None
        assert user_store.get_user("u1").find_summary("e1") is None
        with pytest.raises(ExpenseNotFound):
            scenario_engine.delete_expense("e1")

    def test_add_to_nonexistent_owner(self, scenario_engine, expense_store):
        with pytest.raises(OwnerNotFound) as exc_info:
            scenario_engine.add_expense("nonexistent-owner", "rent", 1200.00)

        assert exc_info.value.owner_id == "nonexistent-owner"
        assert not [
            e for e in expense_store.list()
            if e.name == "rent" and e.cost == Decimal("1200.00")
        ]
