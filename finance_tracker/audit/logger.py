"""
Audit Logger

DESIGN DECISION: Every expense mutation and every detected divergence
is logged. This provides:
1. Complete traceability of two-step writes
2. The record offline reconciliation works from
3. Debugging capability when a write is interrupted halfway

The audit logger:
- Always logs locally through structlog
- Persists to audit storage when one is configured
- Gracefully handles storage failures (never breaks the calling operation)
- Supports correlation IDs to trace the events of one operation
"""

import logging
from typing import Optional
from uuid import UUID, uuid4

import structlog

from finance_tracker.models.audit import AuditEvent, AuditEventBuilder, AuditSeverity
from finance_tracker.models.divergence import ConsistencyDivergence
from finance_tracker.services.storage import AuditStorageInterface


def configure_logging(level: str = "INFO") -> None:
    """Configure stdlib logging and structlog to emit JSON lines."""
    logging.basicConfig(format="%(message)s")
    logging.getLogger().setLevel(getattr(logging, level, logging.INFO))
    structlog.configure(
        processors=[
            structlog.stdlib.filter_by_level,
            structlog.stdlib.add_logger_name,
            structlog.stdlib.add_log_level,
            structlog.stdlib.PositionalArgumentsFormatter(),
            structlog.processors.TimeStamper(fmt="iso"),
            structlog.processors.StackInfoRenderer(),
            structlog.processors.format_exc_info,
            structlog.processors.UnicodeDecoder(),
            structlog.processors.JSONRenderer()
        ],
        wrapper_class=structlog.stdlib.BoundLogger,
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )


configure_logging()


class AuditLogger:
    """
    Central audit logging service.

    Logs events both to:
    1. Structured local log (for debugging and log shipping)
    2. Audit storage (for reconciliation and history)
    """

    def __init__(
        self,
        storage: Optional[AuditStorageInterface] = None,
    ):
        """
        Initialize audit logger.

        Args:
            storage: Storage backend for persistence.
                    If None, only logs locally.
        """
        self._storage = storage
        self._logger = structlog.get_logger("finance_tracker.audit")

    @property
    def storage(self) -> Optional[AuditStorageInterface]:
        return self._storage

    def log(self, event: AuditEvent) -> bool:
        """
        Log an audit event.

        Always logs locally. Persists to storage if available.

        Returns True if storage write succeeded (or no storage configured).
        """
        log_dict = event.to_log_dict()

        if event.severity == AuditSeverity.CRITICAL:
            self._logger.critical("audit_event", **log_dict)
        elif event.severity == AuditSeverity.ERROR:
            self._logger.error("audit_event", **log_dict)
        elif event.severity == AuditSeverity.WARNING:
            self._logger.warning("audit_event", **log_dict)
        else:
            self._logger.info("audit_event", **log_dict)

        if self._storage:
            try:
                return self._storage.append_event(event)
            except Exception as e:
                # Log failure but don't raise
                self._logger.error(
                    "audit_storage_failed",
                    error=str(e),
                    event_id=str(event.event_id),
                )
                return False

        return True

    def log_expense_added(
        self,
        expense_id: str,
        owner_id: str,
        name: str,
        cost: str,
        correlation_id: UUID,
    ) -> None:
        """Log a completed add."""
        event = AuditEventBuilder.expense_added(
            expense_id=expense_id,
            owner_id=owner_id,
            name=name,
            cost=cost,
            correlation_id=correlation_id,
        )
        self.log(event)

    def log_expense_cost_updated(
        self,
        expense_id: str,
        owner_id: str,
        cost: str,
        correlation_id: UUID,
    ) -> None:
        """Log a completed reprice."""
        event = AuditEventBuilder.expense_cost_updated(
            expense_id=expense_id,
            owner_id=owner_id,
            cost=cost,
            correlation_id=correlation_id,
        )
        self.log(event)

    def log_expense_deleted(
        self,
        expense_id: str,
        owner_id: str,
        correlation_id: UUID,
    ) -> None:
        """Log a completed delete."""
        event = AuditEventBuilder.expense_deleted(
            expense_id=expense_id,
            owner_id=owner_id,
            correlation_id=correlation_id,
        )
        self.log(event)

    def log_compensation_applied(
        self,
        expense_id: str,
        owner_id: str,
        correlation_id: UUID,
    ) -> None:
        """Log a successful compensating delete."""
        event = AuditEventBuilder.compensation_applied(
            expense_id=expense_id,
            owner_id=owner_id,
            correlation_id=correlation_id,
        )
        self.log(event)

    def log_divergence(
        self,
        divergence: ConsistencyDivergence,
        correlation_id: Optional[UUID] = None,
        error_message: Optional[str] = None,
    ) -> None:
        """Record a consistency divergence for offline reconciliation."""
        event = AuditEventBuilder.divergence(
            divergence=divergence,
            correlation_id=correlation_id,
            error_message=error_message,
        )
        self.log(event)

    def log_summary_repaired(
        self,
        divergence: ConsistencyDivergence,
        correlation_id: UUID,
    ) -> None:
        event = AuditEventBuilder.summary_repaired(
            divergence=divergence,
            correlation_id=correlation_id,
        )
        self.log(event)

    def log_reconciliation_completed(
        self,
        checked_expenses: int,
        checked_owners: int,
        divergence_count: int,
        repaired_count: int,
        correlation_id: UUID,
    ) -> None:
        event = AuditEventBuilder.reconciliation_completed(
            checked_expenses=checked_expenses,
            checked_owners=checked_owners,
            divergence_count=divergence_count,
            repaired_count=repaired_count,
            correlation_id=correlation_id,
        )
        self.log(event)

    def log_user_registered(self, user_id: str, email: str) -> None:
        self.log(AuditEventBuilder.user_registered(user_id=user_id, email=email))

    def log_error(
        self,
        error_type: str,
        error_message: str,
        details: Optional[dict] = None,
        correlation_id: Optional[UUID] = None,
    ) -> None:
        """Log an error."""
        event = AuditEventBuilder.system_error(
            error_type=error_type,
            error_message=error_message,
            details=details,
            correlation_id=correlation_id,
        )
        self.log(event)


def create_correlation_id() -> UUID:
    """
    Create a new correlation ID for tracking related events.

    Use this at the start of each engine operation and pass it
    through every event that operation logs.
    """
    return uuid4()
