"""
Reconciler - Push path.

Applies a validated changeset to the change log store:
- created: insert unless the id already exists (idempotent re-push)
- updated: overwrite fields of a live row owned by the caller
- deleted: tombstone a live row owned by the caller

Rows the caller does not own match nothing and are skipped silently.
Deleting a parent row does not touch its dependents.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass

from delta_sync.connectors.sqlite import ChangeLogStore
from delta_sync.core.changeset import ValidatedChanges

logger = logging.getLogger(__name__)


@dataclass
class ReconcileStats:
    """Outcome counters for one table of a push."""

    table: str
    created: int = 0
    updated: int = 0
    deleted: int = 0
    skipped: int = 0

    @property
    def applied(self) -> int:
        return self.created + self.updated + self.deleted


class Reconciler:
    """
    Ownership-scoped, idempotent writer for pushed changes.

    Example:
        reconciler = Reconciler(store)
        stats = reconciler.apply_changes("user-1", validated["projects"], now_ms)
        print(stats.applied, stats.skipped)
    """

    def __init__(self, store: ChangeLogStore) -> None:
        self.store = store

    def apply_changes(
        self,
        owner_id: str,
        changes: ValidatedChanges,
        now_ms: int,
    ) -> ReconcileStats:
        """
        Apply one table's changes under a single server timestamp.

        Each record is written and committed on its own; a storage failure
        propagates immediately, leaving earlier records committed.

        Args:
            owner_id: Authenticated caller; forced as owner of created rows
            changes: Validated created/updated/deleted groups
            now_ms: Server timestamp shared by the whole push

        Returns:
            ReconcileStats for the table
        """
        table = changes.table
        stats = ReconcileStats(table=table.name)

        for row in changes.created:
            if self.store.insert_if_absent(
                table.name, row.id, owner_id, table.to_columns(row), now_ms
            ):
                stats.created += 1
            else:
                stats.skipped += 1
                logger.debug("%s create %s skipped: id exists", table.name, row.id)

        for row in changes.updated:
            if self.store.update_owned(
                table.name, row.id, owner_id, table.to_columns(row), now_ms
            ):
                stats.updated += 1
            else:
                stats.skipped += 1
                logger.debug("%s update %s matched no row", table.name, row.id)

        for record_id in changes.deleted:
            if self.store.tombstone_owned(table.name, record_id, owner_id, now_ms):
                stats.deleted += 1
            else:
                stats.skipped += 1
                logger.debug("%s delete %s matched no row", table.name, record_id)

        return stats
