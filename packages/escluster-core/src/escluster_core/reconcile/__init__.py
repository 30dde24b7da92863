"""Reconciliation: one bounded pass per cluster, driven by the control loop."""

from escluster_core.reconcile.loop import ControllerLoop
from escluster_core.reconcile.reconciler import ReconcileResult, Reconciler

__all__ = ["ControllerLoop", "ReconcileResult", "Reconciler"]
