"""Core sync protocol components for Delta Sync."""

from delta_sync.core.changeset import ValidatedChanges, validate_changeset
from delta_sync.core.clock import ServerClock
from delta_sync.core.delta import ChangeKind, DeltaComputer, classify
from delta_sync.core.orchestrator import SyncOrchestrator
from delta_sync.core.reconciler import Reconciler, ReconcileStats

__all__ = [
    "ChangeKind",
    "DeltaComputer",
    "Reconciler",
    "ReconcileStats",
    "ServerClock",
    "SyncOrchestrator",
    "ValidatedChanges",
    "classify",
    "validate_changeset",
]
