"""Reconciliation package."""

from finance_tracker.validation.reconciler import ReconciliationReport, SummaryReconciler

__all__ = ["ReconciliationReport", "SummaryReconciler"]
