"""
Summary Reconciliation

The engine never retries or repairs a half-finished write; it records a
divergence and moves on. This module is the out-of-band pass that
closes those gaps.

DESIGN DECISION: Scan and repair are separate steps.

SCAN:
- Reads every canonical expense and every user document in scope
- Compares them and lists what disagrees
- Changes nothing

REPAIR:
- Runs a scan, then fixes each divergence from the canonical record
- Re-reads the canonical record right before each fix, since the scan
  result may be stale by then
- Only ever writes summaries. The canonical record is the source of
  truth and is never touched
- Orphans (canonical record, no owner document) are reported but never
  fixed: deleting them loses data and nothing else can host them

IMPORTANT: A fix never leaves a summary pointing at nothing. Field
repairs remove the entry first and append a fresh one second, so an
interrupted repair degrades to a missing summary, which the next run
fixes. Every append is followed by one more read of the canonical
record, and the entry is withdrawn if a delete got there first.
"""

from collections import Counter
from typing import Optional

from pydantic import BaseModel, Field, computed_field

from finance_tracker.audit import AuditLogger, create_correlation_id
from finance_tracker.models.audit import AuditEvent, AuditEventType
from finance_tracker.models.divergence import (
    ConsistencyDivergence,
    DivergenceKind,
    DivergenceOperation,
)
from finance_tracker.models.expense import Expense
from finance_tracker.models.user import User
from finance_tracker.services.storage import (
    ExpenseStoreInterface,
    OwnerSummaryStoreInterface,
    UserStoreInterface,
)


class ReconciliationReport(BaseModel):
    """What one scan (and optional repair) found."""

    checked_owners: int = 0
    checked_expenses: int = 0
    divergences: list[ConsistencyDivergence] = Field(default_factory=list)
    repaired: int = 0

    @computed_field
    @property
    def is_consistent(self) -> bool:
        return not self.divergences

    def by_kind(self, kind: DivergenceKind) -> list[ConsistencyDivergence]:
        return [d for d in self.divergences if d.kind == kind]


def _divergence(
    kind: DivergenceKind,
    expense_id: str,
    owner_id: str,
    detail: str,
) -> ConsistencyDivergence:
    return ConsistencyDivergence(
        kind=kind,
        operation=DivergenceOperation.RECONCILIATION,
        expense_id=expense_id,
        owner_id=owner_id,
        detail=detail,
    )


class SummaryReconciler:
    """
    Detects and repairs disagreements between canonical expenses and
    the summaries embedded in user documents.
    """

    def __init__(
        self,
        expense_store: ExpenseStoreInterface,
        user_store: UserStoreInterface,
        summary_store: OwnerSummaryStoreInterface,
        audit_logger: Optional[AuditLogger] = None,
    ):
        self._expenses = expense_store
        self._users = user_store
        self._summaries = summary_store
        self._audit_logger = audit_logger or AuditLogger()

    def scan(self, owner_id: Optional[str] = None) -> ReconciliationReport:
        """
        Compare both stores, for one owner or for everyone.

        Returns:
            A report listing every divergence found; nothing is written
        """
        report = self._scan(owner_id)
        self._audit_logger.log_reconciliation_completed(
            checked_expenses=report.checked_expenses,
            checked_owners=report.checked_owners,
            divergence_count=len(report.divergences),
            repaired_count=0,
            correlation_id=create_correlation_id(),
        )
        return report

    def repair(self, owner_id: Optional[str] = None) -> ReconciliationReport:
        """
        Scan, then rebuild every repairable summary from its canonical record.

        Returns:
            The scan report with `repaired` set to the number of fixes applied
        """
        correlation_id = create_correlation_id()
        report = self._scan(owner_id)

        repaired = 0
        for divergence in report.divergences:
            if not divergence.is_repairable:
                continue
            if self._repair_one(divergence):
                repaired += 1
                self._audit_logger.log_summary_repaired(divergence, correlation_id)

        report.repaired = repaired
        self._audit_logger.log_reconciliation_completed(
            checked_expenses=report.checked_expenses,
            checked_owners=report.checked_owners,
            divergence_count=len(report.divergences),
            repaired_count=repaired,
            correlation_id=correlation_id,
        )
        return report

    def recorded_divergences(self, limit: int = 100) -> list[AuditEvent]:
        """Divergences the engine has logged, newest first. Empty without audit storage."""
        storage = self._audit_logger.storage
        if storage is None:
            return []
        return storage.get_events_by_type(AuditEventType.CONSISTENCY_DIVERGENCE, limit=limit)

    def _load(self, owner_id: Optional[str]) -> tuple[list[User], list[Expense]]:
        if owner_id is None:
            return self._users.list_users(), self._expenses.list()
        user = self._users.get_user(owner_id)
        users = [user] if user is not None else []
        return users, self._expenses.list_by_owner(owner_id)

    def _scan(self, owner_id: Optional[str]) -> ReconciliationReport:
        users, expenses = self._load(owner_id)
        canonical = {e.id: e for e in expenses}
        users_by_id = {u.id: u for u in users}
        divergences: list[ConsistencyDivergence] = []

        # Summary side: every embedded entry needs one live canonical twin
        for user in users:
            counts = Counter(s.id for s in user.expense_summaries)
            seen: set[str] = set()
            for summary in user.expense_summaries:
                if summary.id in seen:
                    continue
                seen.add(summary.id)

                expense = canonical.get(summary.id)
                if expense is None or expense.owner_id != user.id:
                    divergences.append(_divergence(
                        DivergenceKind.DANGLING_SUMMARY,
                        summary.id,
                        user.id,
                        "Summary has no canonical record on this owner",
                    ))
                elif counts[summary.id] > 1:
                    divergences.append(_divergence(
                        DivergenceKind.DUPLICATE_SUMMARY,
                        summary.id,
                        user.id,
                        f"Summary embedded {counts[summary.id]} times",
                    ))
                elif not summary.matches(expense):
                    divergences.append(_divergence(
                        DivergenceKind.FIELD_MISMATCH,
                        summary.id,
                        user.id,
                        f"Summary ({summary.name}, {summary.cost}) differs from "
                        f"canonical ({expense.name}, {expense.cost})",
                    ))

        # Canonical side: every record needs an owner holding its summary
        for expense in expenses:
            owner = users_by_id.get(expense.owner_id)
            if owner is None:
                divergences.append(_divergence(
                    DivergenceKind.ORPHAN_CANONICAL,
                    expense.id,
                    expense.owner_id,
                    "Canonical record whose owner document does not exist",
                ))
            elif owner.find_summary(expense.id) is None:
                divergences.append(_divergence(
                    DivergenceKind.MISSING_SUMMARY,
                    expense.id,
                    expense.owner_id,
                    "Canonical record has no summary on its owner",
                ))

        return ReconciliationReport(
            checked_owners=len(users),
            checked_expenses=len(expenses),
            divergences=divergences,
        )

    def _repair_one(self, divergence: ConsistencyDivergence) -> bool:
        """Apply one fix. Returns False when the state moved on and nothing was needed."""
        owner_id = divergence.owner_id
        expense = self._expenses.get(divergence.expense_id)
        live = expense is not None and expense.owner_id == owner_id

        if divergence.kind == DivergenceKind.MISSING_SUMMARY:
            if not live:
                return False
            return self._append_confirmed(owner_id, expense)

        if divergence.kind == DivergenceKind.DANGLING_SUMMARY:
            if live:
                return False
            return self._summaries.remove_summary(owner_id, divergence.expense_id)

        # FIELD_MISMATCH and DUPLICATE_SUMMARY: rebuild a single entry
        removed = self._summaries.remove_summary(owner_id, divergence.expense_id)
        if not live:
            return removed
        return self._append_confirmed(owner_id, expense)

    def _append_confirmed(self, owner_id: str, expense: Expense) -> bool:
        """
        Append a summary, then make sure its canonical record survived.

        A delete can land between the re-read and the append. The
        canonical record is read once more afterwards and the fresh
        entry is taken back out if the record is gone or has moved.
        """
        if not self._summaries.append_summary(owner_id, expense.to_summary()):
            return False

        current = self._expenses.get(expense.id)
        if current is None or current.owner_id != owner_id:
            self._summaries.remove_summary(owner_id, expense.id)
            return False
        return True
