"""
Sync Orchestrator - Protocol entry point.

Coordinates the components serving one pull or push:
- Server clock for snapshot and push timestamps
- Delta computer for pulls
- Changeset validation and reconciler for pushes

The orchestrator holds no per-client state; callers pass the authenticated
owner id with every request. Pushes are serialized: each one takes its
timestamp and commits its writes before the next push or pull snapshot
reads the clock.
"""

from __future__ import annotations

import logging
import threading
from typing import Any

from pydantic import ValidationError

from delta_sync.config import Settings
from delta_sync.connectors.sqlite import ChangeLogStore
from delta_sync.core.changeset import format_validation_errors, validate_changeset
from delta_sync.core.clock import ServerClock
from delta_sync.core.delta import DeltaComputer
from delta_sync.core.reconciler import Reconciler, ReconcileStats
from delta_sync.errors import MalformedChangeSet, MalformedRequest, StorageUnavailable
from delta_sync.models import PullRequest, PullResponse, PushRequest, PushResponse

logger = logging.getLogger(__name__)


class SyncOrchestrator:
    """
    Pull/push protocol service.

    Example:
        store = ChangeLogStore(Path("server.db"))
        store.create_schema()
        sync = SyncOrchestrator(store)

        response = sync.pull("user-1", PullRequest(watermark_ms=0))
        sync.push("user-1", PushRequest(changes={...}))
    """

    def __init__(
        self,
        store: ChangeLogStore,
        clock: ServerClock | None = None,
    ) -> None:
        """
        Initialize the orchestrator.

        Args:
            store: Change log store shared by all requests
            clock: Authoritative clock (defaults to a wall clock)
        """
        self.store = store
        self.tables = store.tables
        self.clock = clock or ServerClock()
        self.delta = DeltaComputer(store)
        self.reconciler = Reconciler(store)
        self._write_lock = threading.Lock()

    @classmethod
    def from_settings(cls, settings: Settings, readonly: bool = False) -> "SyncOrchestrator":
        """
        Open the configured store and seed the clock from it.

        A writable store gets its schema created. A read-only store must
        already exist and can serve pulls only.
        """
        store = ChangeLogStore.from_settings(settings, readonly=readonly)
        if not readonly:
            store.create_schema()
        clock = ServerClock()
        clock.seed(store.max_updated_at())
        return cls(store, clock)

    # =========================================================================
    # Pull
    # =========================================================================
    def pull(self, owner_id: str, request: PullRequest) -> PullResponse:
        """
        Return everything the owner touched after the request watermark.

        The snapshot timestamp is taken before any range query and never
        while a push is in flight, so every push is either committed before
        the queries run or stamped above the returned timestamp.
        """
        _require_owner(owner_id)
        with self._write_lock:
            server_timestamp_ms = self.clock.now_ms()

        try:
            changes = {
                table.name: self.delta.compute(table, owner_id, request.watermark_ms)
                for table in self.tables
            }
        except StorageUnavailable:
            logger.error("Pull for watermark %d failed", request.watermark_ms)
            raise

        response = PullResponse(changes=changes, server_timestamp_ms=server_timestamp_ms)
        logger.info(
            "Pull since %d (schema v%d) -> %d: %s",
            request.watermark_ms,
            request.schema_version,
            server_timestamp_ms,
            {name: c.counts() for name, c in changes.items()},
            extra={
                "watermark_ms": request.watermark_ms,
                "server_timestamp_ms": server_timestamp_ms,
            },
        )
        return response

    def pull_raw(self, owner_id: str, payload: dict[str, Any]) -> dict[str, Any]:
        """Pull from a decoded JSON body, returning a JSON-ready response."""
        try:
            request = PullRequest.model_validate(payload)
        except ValidationError as e:
            raise MalformedRequest(
                "Invalid pull request", errors=format_validation_errors(e)
            ) from e
        return self.pull(owner_id, request).to_wire()

    # =========================================================================
    # Push
    # =========================================================================
    def push(self, owner_id: str, request: PushRequest) -> PushResponse:
        """
        Reconcile a client changeset.

        The whole changeset is validated before the first write. All tables
        share one server timestamp and are applied parents first. Pushes are
        applied one at a time, in timestamp order. Any storage failure fails
        the whole push; replaying it is safe.
        """
        _require_owner(owner_id)
        validated = validate_changeset(request.changes, self.tables)

        results: list[ReconcileStats] = []
        try:
            with self._write_lock:
                now_ms = self.clock.now_ms()
                for table in self.tables:
                    changes = validated.get(table.name)
                    if not changes:
                        continue
                    results.append(self.reconciler.apply_changes(owner_id, changes, now_ms))
        except StorageUnavailable:
            logger.error(
                "Push at %d failed after %d table(s); client should retry",
                now_ms,
                len(results),
            )
            raise

        logger.info(
            "Push at %d: %s",
            now_ms,
            {s.table: {"applied": s.applied, "skipped": s.skipped} for s in results},
            extra={"now_ms": now_ms},
        )
        return PushResponse(success=True)

    def push_raw(self, owner_id: str, payload: dict[str, Any]) -> dict[str, Any]:
        """Push from a decoded JSON body, returning a JSON-ready response."""
        try:
            request = PushRequest.model_validate(payload)
        except ValidationError as e:
            raise MalformedChangeSet(
                "Invalid push request", errors=format_validation_errors(e)
            ) from e
        return self.push(owner_id, request).to_wire()

    # =========================================================================
    # Reads
    # =========================================================================
    def current_state(self, owner_id: str, table: str) -> list[dict[str, Any]]:
        """Live rows of one table for an owner, tombstones excluded."""
        _require_owner(owner_id)
        spec = self.store.table(table)
        return [spec.to_wire(record) for record in self.store.current_records(table, owner_id)]


def _require_owner(owner_id: str) -> None:
    if not owner_id:
        raise ValueError("owner_id is required")
