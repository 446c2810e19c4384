"""Maintenance jobs for aimo."""

from aimo.maintenance.reconcile import ReconcileReport, VectorReconciler

__all__ = ["ReconcileReport", "VectorReconciler"]
