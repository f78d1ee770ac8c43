"""Device side of the sync protocol."""

from delta_sync.client.pending import PendingChange, PendingChanges, PendingOp
from delta_sync.client.replica import LocalReplica
from delta_sync.client.retry import RetryPolicy
from delta_sync.client.state import ReplicaState, StateManager
from delta_sync.client.sync_client import SyncClient, SyncResult, SyncStatus
from delta_sync.client.transport import InProcessTransport, SyncTransport

__all__ = [
    "InProcessTransport",
    "LocalReplica",
    "PendingChange",
    "PendingChanges",
    "PendingOp",
    "ReplicaState",
    "RetryPolicy",
    "StateManager",
    "SyncClient",
    "SyncResult",
    "SyncStatus",
    "SyncTransport",
]
