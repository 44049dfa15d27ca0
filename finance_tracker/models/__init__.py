"""
Data Models Package

This package contains all Pydantic models used in the Finance Tracker.
All data flowing through the system must conform to these schemas.
"""

from finance_tracker.models.expense import (
    CostChange,
    Expense,
    ExpenseDraft,
    ExpenseSummary,
    new_object_id,
    quantize_cost,
)
from finance_tracker.models.user import (
    User,
    UserPublic,
    UserRegistration,
)
from finance_tracker.models.divergence import (
    ConsistencyDivergence,
    DivergenceKind,
    DivergenceOperation,
)
from finance_tracker.models.audit import (
    AuditEvent,
    AuditEventBuilder,
    AuditEventType,
    AuditSeverity,
)

__all__ = [
    # Expense models
    "CostChange",
    "Expense",
    "ExpenseDraft",
    "ExpenseSummary",
    "new_object_id",
    "quantize_cost",
    # User models
    "User",
    "UserPublic",
    "UserRegistration",
    # Divergence models
    "ConsistencyDivergence",
    "DivergenceKind",
    "DivergenceOperation",
    # Audit models
    "AuditEvent",
    "AuditEventBuilder",
    "AuditEventType",
    "AuditSeverity",
]
