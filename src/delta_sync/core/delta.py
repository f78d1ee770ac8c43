"""
Delta Computer - Watermark based change classification.

Partitions the rows an owner touched after a watermark into the
created/updated/deleted buckets of a pull response.
"""

from __future__ import annotations

import logging
from enum import Enum

from delta_sync.connectors.sqlite import ChangeLogStore
from delta_sync.models import StoredRecord, TableChanges
from delta_sync.tables import SyncTable

logger = logging.getLogger(__name__)


class ChangeKind(str, Enum):
    """Bucket a changed row is reported in."""

    CREATED = "created"
    UPDATED = "updated"
    DELETED = "deleted"


def classify(record: StoredRecord, since_ms: int) -> ChangeKind:
    """
    Classify a row with updated_at_ms > since_ms.

    The tombstone check comes first so a row created and deleted inside the
    same window is only ever reported as a deletion.
    """
    if record.is_deleted:
        return ChangeKind.DELETED
    if record.created_at_ms > since_ms:
        return ChangeKind.CREATED
    return ChangeKind.UPDATED


class DeltaComputer:
    """
    Read-only delta computation over a change log store.

    Example:
        delta = DeltaComputer(store)
        changes = delta.compute(PROJECTS, "user-1", since_ms=0)
        print(changes.counts())
    """

    def __init__(self, store: ChangeLogStore) -> None:
        self.store = store

    def compute(self, table: SyncTable, owner_id: str, since_ms: int) -> TableChanges:
        """
        Compute the delta of one table for one owner.

        Args:
            table: Syncable table
            owner_id: Owner partition to read
            since_ms: Client watermark (0 = full initial sync)

        Returns:
            TableChanges with wire-shaped rows and deleted ids
        """
        if since_ms < 0:
            raise ValueError(f"since_ms must be >= 0, got {since_ms}")

        changes = TableChanges.empty()
        for record in self.store.changed_since(table.name, owner_id, since_ms):
            kind = classify(record, since_ms)
            if kind is ChangeKind.DELETED:
                changes.deleted.append(record.id)
            elif kind is ChangeKind.CREATED:
                changes.created.append(table.to_wire(record))
            else:
                changes.updated.append(table.to_wire(record))

        logger.debug(
            "Delta for %s since %d: %s",
            table.name,
            since_ms,
            changes.counts(),
            extra={"table": table.name, "watermark_ms": since_ms},
        )
        return changes
