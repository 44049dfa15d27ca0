"""
Divergence Models

A divergence is a state where a canonical expense and its owner's
summary disagree, or one exists without the other.

DESIGN DECISION: A ConsistencyDivergence is a record, not an exception.
It is never raised to the caller of an engine operation. It is written
to the audit log so an out-of-band reconciliation can repair it.
"""

from datetime import datetime, timezone
from enum import Enum
from typing import Any, Optional

from pydantic import BaseModel, Field


class DivergenceKind(str, Enum):
    """What kind of disagreement was observed."""
    # Canonical record left behind with no summary and no way to add one
    ORPHAN_CANONICAL = "orphan_canonical"
    # Canonical record exists, owner exists, summary entry does not
    MISSING_SUMMARY = "missing_summary"
    # Second-step write raised; summary state unknown
    UNCONFIRMED_SUMMARY_WRITE = "unconfirmed_summary_write"
    # Summary entry with no live canonical record on that owner
    DANGLING_SUMMARY = "dangling_summary"
    # Both exist but name or cost differ
    FIELD_MISMATCH = "field_mismatch"
    # Same expense id embedded more than once on one owner
    DUPLICATE_SUMMARY = "duplicate_summary"


class DivergenceOperation(str, Enum):
    """Which operation observed the divergence."""
    ADD_EXPENSE = "add_expense"
    UPDATE_EXPENSE_COST = "update_expense_cost"
    DELETE_EXPENSE = "delete_expense"
    RECONCILIATION = "reconciliation"


class ConsistencyDivergence(BaseModel):
    """A detected divergence between the two stores."""

    kind: DivergenceKind
    operation: DivergenceOperation
    expense_id: str
    owner_id: Optional[str] = None
    detail: str = Field(
        default="",
        max_length=500,
        description="Human-readable description of what was observed"
    )
    detected_at: datetime = Field(
        default_factory=lambda: datetime.now(timezone.utc)
    )

    @property
    def is_repairable(self) -> bool:
        """Orphans need a human decision; everything else is rebuilt from the canonical record."""
        return self.kind not in (
            DivergenceKind.ORPHAN_CANONICAL,
            DivergenceKind.UNCONFIRMED_SUMMARY_WRITE,
        )

    def to_details(self) -> dict[str, Any]:
        return {
            "kind": self.kind.value,
            "operation": self.operation.value,
            "expense_id": self.expense_id,
            "owner_id": self.owner_id,
            "detail": self.detail,
        }
