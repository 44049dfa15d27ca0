"""
Audit Models for the Finance Tracker

Every expense mutation and every detected divergence is logged.
This provides:
1. Complete traceability of all writes across both collections
2. The raw material for offline reconciliation of divergences
3. Debugging information when a two-step write is interrupted

DESIGN DECISION: Audit logs are append-only. We never delete or modify them.
"""

from datetime import datetime, timezone
from enum import Enum
from typing import Any, Optional
from uuid import UUID, uuid4

from pydantic import BaseModel, Field

from finance_tracker.models.divergence import ConsistencyDivergence, DivergenceKind


class AuditEventType(str, Enum):
    """Types of events we audit."""
    # Expense lifecycle
    EXPENSE_ADDED = "expense_added"
    EXPENSE_COST_UPDATED = "expense_cost_updated"
    EXPENSE_DELETED = "expense_deleted"
    COMPENSATION_APPLIED = "compensation_applied"

    # Consistency
    CONSISTENCY_DIVERGENCE = "consistency_divergence"
    RECONCILIATION_COMPLETED = "reconciliation_completed"
    SUMMARY_REPAIRED = "summary_repaired"

    # Accounts
    USER_REGISTERED = "user_registered"

    # System events
    SYSTEM_ERROR = "system_error"


class AuditSeverity(str, Enum):
    """Severity level for audit events."""
    DEBUG = "debug"
    INFO = "info"
    WARNING = "warning"
    ERROR = "error"
    CRITICAL = "critical"


# An orphan is the one divergence nothing repairs automatically.
DIVERGENCE_SEVERITY = {
    DivergenceKind.ORPHAN_CANONICAL: AuditSeverity.CRITICAL,
    DivergenceKind.UNCONFIRMED_SUMMARY_WRITE: AuditSeverity.ERROR,
    DivergenceKind.MISSING_SUMMARY: AuditSeverity.WARNING,
    DivergenceKind.DANGLING_SUMMARY: AuditSeverity.WARNING,
    DivergenceKind.FIELD_MISMATCH: AuditSeverity.WARNING,
    DivergenceKind.DUPLICATE_SUMMARY: AuditSeverity.WARNING,
}


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class AuditEvent(BaseModel):
    """
    A single audit event.

    This is the core unit of our audit trail.
    Every significant action creates one of these.
    """

    # Identity
    event_id: UUID = Field(
        default_factory=uuid4,
        description="Unique event identifier"
    )
    timestamp: datetime = Field(
        default_factory=_utcnow,
        description="When the event occurred (UTC)"
    )

    # Event classification
    event_type: AuditEventType = Field(
        ...,
        description="Type of event"
    )
    severity: AuditSeverity = Field(
        default=AuditSeverity.INFO,
        description="Event severity"
    )

    # Context - what entity is this about?
    entity_type: Optional[str] = Field(
        default=None,
        description="Type of entity (e.g., 'expense', 'user')"
    )
    entity_id: Optional[str] = Field(
        default=None,
        description="ID of the entity this event relates to"
    )

    # Correlation - for tracking related events
    correlation_id: Optional[UUID] = Field(
        default=None,
        description="ID to correlate the events of one engine operation"
    )

    # Event details
    description: str = Field(
        ...,
        max_length=500,
        description="Human-readable description of what happened"
    )

    # Additional data (event-specific)
    details: dict[str, Any] = Field(
        default_factory=dict,
        description="Additional event-specific data"
    )

    # Error information (if applicable)
    error_code: Optional[str] = None
    error_message: Optional[str] = None

    def to_log_dict(self) -> dict:
        """
        Convert to a dictionary suitable for structured logging.
        """
        return {
            "event_id": str(self.event_id),
            "timestamp": self.timestamp.isoformat(),
            "event_type": self.event_type.value,
            "severity": self.severity.value,
            "entity_type": self.entity_type,
            "entity_id": self.entity_id,
            "correlation_id": str(self.correlation_id) if self.correlation_id else None,
            "description": self.description,
            "details": self.details,
            "error_code": self.error_code,
            "error_message": self.error_message,
        }

    def to_document(self) -> dict:
        """
        Convert to a document for the audit collection.

        Ids become strings; the event id is the document key.
        """
        document = self.to_log_dict()
        document["_id"] = document.pop("event_id")
        document["timestamp"] = self.timestamp
        return document

    @classmethod
    def from_document(cls, document: dict) -> "AuditEvent":
        data = dict(document)
        data["event_id"] = data.pop("_id")
        return cls(**data)


class AuditEventBuilder:
    """
    Helper class to build audit events with common patterns.

    Usage:
        event = AuditEventBuilder.expense_added(expense, correlation_id)
        event = AuditEventBuilder.divergence(divergence, correlation_id)
    """

    @staticmethod
    def expense_added(
        expense_id: str,
        owner_id: str,
        name: str,
        cost: str,
        correlation_id: UUID
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.EXPENSE_ADDED,
            entity_type="expense",
            entity_id=expense_id,
            correlation_id=correlation_id,
            description=f"Expense added: {name} - {cost}",
            details={
                "owner_id": owner_id,
                "name": name,
                "cost": cost,
            },
        )

    @staticmethod
    def expense_cost_updated(
        expense_id: str,
        owner_id: str,
        cost: str,
        correlation_id: UUID
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.EXPENSE_COST_UPDATED,
            entity_type="expense",
            entity_id=expense_id,
            correlation_id=correlation_id,
            description=f"Expense cost updated to {cost}",
            details={
                "owner_id": owner_id,
                "cost": cost,
            },
        )

    @staticmethod
    def expense_deleted(
        expense_id: str,
        owner_id: str,
        correlation_id: UUID
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.EXPENSE_DELETED,
            entity_type="expense",
            entity_id=expense_id,
            correlation_id=correlation_id,
            description="Expense deleted",
            details={
                "owner_id": owner_id,
            },
        )

    @staticmethod
    def compensation_applied(
        expense_id: str,
        owner_id: str,
        correlation_id: UUID
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.COMPENSATION_APPLIED,
            severity=AuditSeverity.WARNING,
            entity_type="expense",
            entity_id=expense_id,
            correlation_id=correlation_id,
            description="Canonical expense removed after owner was not found",
            details={
                "owner_id": owner_id,
            },
        )

    @staticmethod
    def divergence(
        divergence: ConsistencyDivergence,
        correlation_id: Optional[UUID] = None,
        error_message: Optional[str] = None,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.CONSISTENCY_DIVERGENCE,
            severity=DIVERGENCE_SEVERITY[divergence.kind],
            entity_type="expense",
            entity_id=divergence.expense_id,
            correlation_id=correlation_id,
            description=f"Consistency divergence ({divergence.kind.value}) during {divergence.operation.value}",
            details=divergence.to_details(),
            error_code=divergence.kind.value,
            error_message=error_message,
        )

    @staticmethod
    def reconciliation_completed(
        checked_expenses: int,
        checked_owners: int,
        divergence_count: int,
        repaired_count: int,
        correlation_id: UUID
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.RECONCILIATION_COMPLETED,
            severity=AuditSeverity.WARNING if divergence_count else AuditSeverity.INFO,
            entity_type="reconciliation",
            correlation_id=correlation_id,
            description=(
                f"Reconciliation checked {checked_expenses} expenses across "
                f"{checked_owners} owners: {divergence_count} divergences, "
                f"{repaired_count} repaired"
            ),
            details={
                "checked_expenses": checked_expenses,
                "checked_owners": checked_owners,
                "divergence_count": divergence_count,
                "repaired_count": repaired_count,
            },
        )

    @staticmethod
    def summary_repaired(
        divergence: ConsistencyDivergence,
        correlation_id: UUID
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.SUMMARY_REPAIRED,
            entity_type="expense",
            entity_id=divergence.expense_id,
            correlation_id=correlation_id,
            description=f"Summary repaired ({divergence.kind.value})",
            details=divergence.to_details(),
        )

    @staticmethod
    def user_registered(
        user_id: str,
        email: str,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.USER_REGISTERED,
            entity_type="user",
            entity_id=user_id,
            description=f"User registered: {email}",
            details={
                "email": email,
            },
        )

    @staticmethod
    def system_error(
        error_type: str,
        error_message: str,
        details: Optional[dict] = None,
        correlation_id: Optional[UUID] = None
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.SYSTEM_ERROR,
            severity=AuditSeverity.ERROR,
            description=f"System error: {error_type}",
            error_message=error_message,
            details=details or {},
            correlation_id=correlation_id,
        )
