"""
Replica State Manager - Persistence for the device side replica.

Provides persistent state for:
- The local replica (rows, watermark)
- Pending local mutations awaiting a push
- Outcome of the last sync run
"""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from pathlib import Path
from typing import Any

from delta_sync.client.replica import LocalReplica

logger = logging.getLogger(__name__)


@dataclass
class ReplicaState:
    """Complete replica state for persistence."""

    owner_id: str
    replica: LocalReplica = field(default_factory=LocalReplica)
    status: str = "initial"  # initial, synced, failed
    last_sync_at: str | None = None
    last_error: str | None = None
    updated_at: str = ""

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for JSON serialization."""
        return {
            "owner_id": self.owner_id,
            "status": self.status,
            "last_sync_at": self.last_sync_at,
            "last_error": self.last_error,
            "updated_at": self.updated_at,
            "replica": self.replica.to_dict(),
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "ReplicaState":
        """Create from dictionary."""
        return cls(
            owner_id=data["owner_id"],
            replica=LocalReplica.from_dict(data.get("replica", {})),
            status=data.get("status", "initial"),
            last_sync_at=data.get("last_sync_at"),
            last_error=data.get("last_error"),
            updated_at=data.get("updated_at", ""),
        )


class StateManager:
    """
    Replica state persistence manager.

    Example:
        state_mgr = StateManager(Path(".delta-sync-replica.json"))
        state = state_mgr.get_or_create_state("user-1")

        state.replica.create("projects", {"name": "Inbox"})
        state_mgr.save()
    """

    def __init__(self, state_file: Path | str) -> None:
        self.state_file = Path(state_file)
        self._state: ReplicaState | None = None

    @property
    def state(self) -> ReplicaState | None:
        """Current state or None if not initialized."""
        return self._state

    def load(self) -> ReplicaState | None:
        """Load state from file if it exists."""
        if not self.state_file.exists():
            return None

        try:
            data = json.loads(self.state_file.read_text())
            self._state = ReplicaState.from_dict(data)
            return self._state
        except (json.JSONDecodeError, KeyError, ValueError) as e:
            logger.warning("Could not load replica state file %s: %s", self.state_file, e)
            return None

    def save(self) -> None:
        """Save current state to file."""
        if self._state is None:
            return

        self._state.updated_at = datetime.now(timezone.utc).isoformat()
        self.state_file.parent.mkdir(parents=True, exist_ok=True)
        tmp_file = self.state_file.with_suffix(self.state_file.suffix + ".tmp")
        tmp_file.write_text(json.dumps(self._state.to_dict(), indent=2))
        tmp_file.replace(self.state_file)

    def get_or_create_state(self, owner_id: str) -> ReplicaState:
        """
        Get the stored replica for owner_id or start a fresh one.

        A state file written for a different owner is never reused. It may
        hold unpushed changes, so it is moved aside rather than overwritten,
        as is a file that cannot be read.
        """
        existing = self.load()
        if existing and existing.owner_id == owner_id:
            return existing

        if self.state_file.exists():
            reason = "belongs to another owner" if existing else "is unreadable"
            backup = self._set_aside()
            logger.warning(
                "Replica state in %s %s; moved to %s and starting fresh",
                self.state_file,
                reason,
                backup,
            )

        self._state = ReplicaState(owner_id=owner_id)
        return self._state

    def _set_aside(self) -> Path:
        stamp = datetime.now(timezone.utc).strftime("%Y%m%dT%H%M%S%f")
        backup = self.state_file.with_name(f"{self.state_file.name}.{stamp}.bak")
        self.state_file.replace(backup)
        return backup

    def mark_sync(self, status: str, error: str | None = None) -> None:
        """Record the outcome of a sync run and save."""
        if self._state is None:
            return

        self._state.status = status
        self._state.last_error = error
        if status == "synced":
            self._state.last_sync_at = datetime.now(timezone.utc).isoformat()
        self.save()

    def clear_state(self) -> None:
        """Clear all state and delete state file."""
        self._state = None
        if self.state_file.exists():
            self.state_file.unlink()

    def get_summary(self) -> dict[str, Any]:
        """Get a summary of current state for display."""
        if self._state is None:
            return {}

        replica = self._state.replica
        return {
            "owner_id": self._state.owner_id,
            "status": self._state.status,
            "watermark_ms": replica.watermark_ms,
            "last_sync_at": self._state.last_sync_at,
            "last_error": self._state.last_error,
            "pending": len(replica.pending),
            "tables": {table: len(replica.records[table]) for table in replica.tables},
        }
