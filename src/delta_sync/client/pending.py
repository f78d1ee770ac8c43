"""
Pending changes queue.

Local mutations that the server has not confirmed yet, keyed by
(table, record id). Successive mutations of one record coalesce so a push
carries at most one entry per record:

    create + update  -> create (latest fields)
    create + delete  -> nothing
    update + update  -> update (latest fields)
    update + delete  -> delete
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Any, Iterator

PendingKey = tuple[str, str]


class PendingOp(str, Enum):
    """Kind of unconfirmed local mutation."""

    CREATED = "created"
    UPDATED = "updated"
    DELETED = "deleted"


@dataclass(frozen=True)
class PendingChange:
    table: str
    record_id: str
    op: PendingOp
    row: dict[str, Any] | None = None

    @property
    def key(self) -> PendingKey:
        return (self.table, self.record_id)

    def to_dict(self) -> dict[str, Any]:
        return {
            "table": self.table,
            "record_id": self.record_id,
            "op": self.op.value,
            "row": self.row,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "PendingChange":
        return cls(
            table=data["table"],
            record_id=data["record_id"],
            op=PendingOp(data["op"]),
            row=data.get("row"),
        )


class PendingChanges:
    """
    Coalescing queue of local mutations awaiting a successful push.

    Example:
        pending = PendingChanges()
        pending.record_create("projects", {"id": "p1", "name": "A"})
        pending.record_update("projects", {"id": "p1", "name": "B"})

        sent = pending.snapshot()
        await transport.push(PushRequest(changes=pending.to_changes(["projects"])))
        pending.acknowledge(sent)
    """

    def __init__(self) -> None:
        self._changes: dict[PendingKey, PendingChange] = {}

    def __len__(self) -> int:
        return len(self._changes)

    def __iter__(self) -> Iterator[PendingChange]:
        return iter(list(self._changes.values()))

    def __contains__(self, key: object) -> bool:
        return key in self._changes

    def get(self, table: str, record_id: str) -> PendingChange | None:
        return self._changes.get((table, record_id))

    def record_create(self, table: str, row: dict[str, Any]) -> None:
        record_id = row["id"]
        if (table, record_id) in self._changes:
            raise ValueError(f"{table}/{record_id} already has a pending change")
        self._put(PendingChange(table, record_id, PendingOp.CREATED, dict(row)))

    def record_update(self, table: str, row: dict[str, Any]) -> None:
        record_id = row["id"]
        current = self._changes.get((table, record_id))
        if current is None or current.op is PendingOp.UPDATED:
            self._put(PendingChange(table, record_id, PendingOp.UPDATED, dict(row)))
        elif current.op is PendingOp.CREATED:
            self._put(PendingChange(table, record_id, PendingOp.CREATED, dict(row)))
        else:
            raise ValueError(f"{table}/{record_id} is pending deletion")

    def record_delete(self, table: str, record_id: str) -> None:
        current = self._changes.get((table, record_id))
        if current is None or current.op is PendingOp.UPDATED:
            self._put(PendingChange(table, record_id, PendingOp.DELETED))
        elif current.op is PendingOp.CREATED:
            # Never reached the server; nothing to tell it.
            del self._changes[(table, record_id)]

    def discard(self, table: str, record_id: str) -> None:
        """Forget any pending change for a record."""
        self._changes.pop((table, record_id), None)

    def _put(self, change: PendingChange) -> None:
        self._changes[change.key] = change

    def snapshot(self) -> dict[PendingKey, PendingChange]:
        """Current entries, to be acknowledged once a push carrying them succeeds."""
        return dict(self._changes)

    def acknowledge(self, sent: dict[PendingKey, PendingChange]) -> int:
        """
        Drop the entries a successful push carried.

        Entries mutated again after the snapshot are kept for the next push.

        Returns:
            Number of entries removed
        """
        removed = 0
        for key, change in sent.items():
            if self._changes.get(key) is change:
                del self._changes[key]
                removed += 1
        return removed

    def to_changes(
        self,
        tables: list[str],
        sent: dict[PendingKey, PendingChange] | None = None,
    ) -> dict[str, dict[str, list[Any]]]:
        """Render entries (all, or a snapshot) as a wire changeset covering every table."""
        entries = (sent if sent is not None else self._changes).values()
        changes: dict[str, dict[str, list[Any]]] = {
            table: {"created": [], "updated": [], "deleted": []} for table in tables
        }
        for change in entries:
            bucket = changes.setdefault(
                change.table, {"created": [], "updated": [], "deleted": []}
            )
            if change.op is PendingOp.DELETED:
                bucket["deleted"].append(change.record_id)
            else:
                bucket[change.op.value].append(change.row)
        return changes

    def to_list(self) -> list[dict[str, Any]]:
        return [change.to_dict() for change in self._changes.values()]

    @classmethod
    def from_list(cls, data: list[dict[str, Any]]) -> "PendingChanges":
        pending = cls()
        for item in data:
            pending._put(PendingChange.from_dict(item))
        return pending
