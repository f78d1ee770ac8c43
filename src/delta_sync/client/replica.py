"""
Local replica - Device side copy of the owner's dataset.

Local mutations are applied optimistically and queued as pending changes.
Pulled deltas are merged in, except that a row with a pending local
mutation keeps its local copy until that mutation has been pushed and a
later pull returns the server's version. Remote deletions always win.
"""

from __future__ import annotations

import logging
import uuid
from typing import Any

from delta_sync.client.pending import PendingChanges
from delta_sync.models import PullResponse
from delta_sync.tables import SYNC_TABLES

logger = logging.getLogger(__name__)


class LocalReplica:
    """
    In-memory replica with a watermark and a pending-changes queue.

    The watermark only moves when a pull is applied.

    Example:
        replica = LocalReplica()
        project = replica.create("projects", {"name": "Inbox"})
        replica.update("projects", project["id"], name="Today")
        replica.apply_pull(response)
    """

    def __init__(
        self,
        tables: list[str] | None = None,
        watermark_ms: int = 0,
        records: dict[str, dict[str, dict[str, Any]]] | None = None,
        pending: PendingChanges | None = None,
    ) -> None:
        self.tables = tables or [table.name for table in SYNC_TABLES]
        self.watermark_ms = watermark_ms
        self.records: dict[str, dict[str, dict[str, Any]]] = {
            table: {} for table in self.tables
        }
        for table, rows in (records or {}).items():
            self.records.setdefault(table, {}).update(rows)
        self.pending = pending or PendingChanges()

    def _rows(self, table: str) -> dict[str, dict[str, Any]]:
        if table not in self.records:
            raise KeyError(f"Unknown table: {table}")
        return self.records[table]

    # =========================================================================
    # Local reads
    # =========================================================================
    def get(self, table: str, record_id: str) -> dict[str, Any] | None:
        row = self._rows(table).get(record_id)
        return dict(row) if row is not None else None

    def rows(self, table: str) -> list[dict[str, Any]]:
        return [dict(row) for row in self._rows(table).values()]

    # =========================================================================
    # Local (optimistic) mutations
    # =========================================================================
    def create(self, table: str, fields: dict[str, Any]) -> dict[str, Any]:
        """Create a row locally; an id is generated when fields carry none."""
        rows = self._rows(table)
        row = dict(fields)
        row.setdefault("id", uuid.uuid4().hex)
        if row["id"] in rows:
            raise ValueError(f"{table}/{row['id']} already exists")
        self.pending.record_create(table, row)
        rows[row["id"]] = row
        return dict(row)

    def update(self, table: str, record_id: str, **fields: Any) -> dict[str, Any]:
        """Merge fields into an existing row and queue the full row."""
        rows = self._rows(table)
        if record_id not in rows:
            raise KeyError(f"{table}/{record_id} not found")
        row = {**rows[record_id], **fields, "id": record_id}
        self.pending.record_update(table, row)
        rows[record_id] = row
        return dict(row)

    def delete(self, table: str, record_id: str) -> None:
        """Remove a row locally. Dependents are not deleted."""
        rows = self._rows(table)
        if record_id not in rows:
            raise KeyError(f"{table}/{record_id} not found")
        self.pending.record_delete(table, record_id)
        del rows[record_id]

    def queue_changes(self, changes: dict[str, dict[str, list[Any]]]) -> int:
        """Apply a wire-shaped changeset as local mutations. Returns mutations applied."""
        applied = 0
        for table, buckets in changes.items():
            for row in buckets.get("created", []):
                self.create(table, row)
                applied += 1
            for row in buckets.get("updated", []):
                fields = {k: v for k, v in row.items() if k != "id"}
                self.update(table, row["id"], **fields)
                applied += 1
            for record_id in buckets.get("deleted", []):
                self.delete(table, record_id)
                applied += 1
        return applied

    # =========================================================================
    # Server state
    # =========================================================================
    def apply_pull(self, response: PullResponse) -> int:
        """
        Merge a pulled delta and advance the watermark.

        Returns:
            Number of rows changed locally
        """
        changed = 0
        for table, changes in response.changes.items():
            rows = self.records.setdefault(table, {})

            for row in [*changes.created, *changes.updated]:
                if self.pending.get(table, row["id"]) is not None:
                    logger.debug("Keeping local copy of %s/%s", table, row["id"])
                    continue
                rows[row["id"]] = dict(row)
                changed += 1

            for record_id in changes.deleted:
                self.pending.discard(table, record_id)
                if rows.pop(record_id, None) is not None:
                    changed += 1

        self.watermark_ms = response.server_timestamp_ms
        return changed

    # =========================================================================
    # Persistence
    # =========================================================================
    def to_dict(self) -> dict[str, Any]:
        return {
            "watermark_ms": self.watermark_ms,
            "records": self.records,
            "pending": self.pending.to_list(),
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "LocalReplica":
        return cls(
            tables=list(data.get("records", {}).keys()) or None,
            watermark_ms=data.get("watermark_ms", 0),
            records=data.get("records", {}),
            pending=PendingChanges.from_list(data.get("pending", [])),
        )
