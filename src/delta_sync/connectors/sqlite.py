"""
SQLite Change Log Store.

Holds the syncable tables with their bookkeeping columns and provides:
- Schema creation for every registered table
- Range queries by modification time, scoped to one owner
- Per-row insert-if-absent, owned update and owned tombstone operations

Every write commits on its own, so each record operation is atomic while
a multi-record push is not. The shared connection is used by one thread at
a time, and a stored updated_at_ms never moves backwards.
"""

from __future__ import annotations

import logging
import sqlite3
import threading
from contextlib import contextmanager
from pathlib import Path
from typing import Any, Generator, Sequence

from delta_sync.config import Settings
from delta_sync.errors import StorageUnavailable, StoreReadOnly
from delta_sync.models import StoredRecord
from delta_sync.tables import SYNC_TABLES, SyncTable

logger = logging.getLogger(__name__)

MEMORY = ":memory:"

# Keeps a row's updated_at_ms strictly increasing even for an out-of-order now_ms
ADVANCE_UPDATED_AT = '"updated_at_ms" = MAX("updated_at_ms" + 1, ?)'


class ChangeLogStore:
    """
    Change log store backed by a SQLite database.

    Example:
        store = ChangeLogStore(Path("server.db"))
        store.create_schema()

        # Rows touched after a watermark
        for record in store.changed_since("projects", "user-1", 0):
            print(record.id, record.updated_at_ms)

        # Ownership-filtered writes
        store.insert_if_absent("projects", "p1", "user-1", {"name": "A"}, now_ms)
        store.tombstone_owned("projects", "p1", "user-1", now_ms)
    """

    def __init__(
        self,
        path: Path | str = MEMORY,
        tables: tuple[SyncTable, ...] = SYNC_TABLES,
        readonly: bool = False,
        timeout: float = 30.0,
    ) -> None:
        """
        Initialize the store.

        Args:
            path: Path to the SQLite file, or ":memory:"
            tables: Syncable tables held by this store
            readonly: Open in read-only mode
            timeout: Seconds to wait on a locked database
        """
        self.path = MEMORY if str(path) == MEMORY else Path(path)
        self.tables = tables
        self.readonly = readonly
        self.timeout = timeout
        self._connection: sqlite3.Connection | None = None
        self._lock = threading.RLock()
        self._by_name = {table.name: table for table in tables}

    @classmethod
    def from_settings(cls, settings: Settings, readonly: bool = False) -> "ChangeLogStore":
        """Create a store from settings."""
        return cls(
            settings.store.path,
            readonly=readonly,
            timeout=settings.store.timeout_seconds,
        )

    @contextmanager
    def connection(self) -> Generator[sqlite3.Connection, None, None]:
        """
        Get the shared database connection, mapping SQLite failures to StorageUnavailable.

        The connection is held exclusively for the duration of the block, so a
        rollback after a failure can only discard the failing caller's work.
        """
        with self._lock:
            try:
                if self._connection is None:
                    self._connection = self._create_connection()
                yield self._connection
            except sqlite3.Error as e:
                if self._connection is not None:
                    self._connection.rollback()
                raise StorageUnavailable(f"Change log store error: {e}") from e

    def _create_connection(self) -> sqlite3.Connection:
        """Create a new database connection."""
        if self.path == MEMORY:
            conn = sqlite3.connect(MEMORY, check_same_thread=False)
        else:
            if self.readonly:
                if not self.path.exists():
                    raise StorageUnavailable(f"Database not found: {self.path}")
                uri = f"file:{self.path}?mode=ro"
            else:
                self.path.parent.mkdir(parents=True, exist_ok=True)
                uri = f"file:{self.path}"

            conn = sqlite3.connect(
                uri,
                uri=True,
                check_same_thread=False,
                timeout=self.timeout,
            )
            if not self.readonly:
                conn.execute("PRAGMA journal_mode=WAL")
                conn.execute("PRAGMA synchronous=NORMAL")

        conn.row_factory = sqlite3.Row
        return conn

    def close(self) -> None:
        """Close the database connection."""
        with self._lock:
            if self._connection:
                self._connection.close()
                self._connection = None

    def __enter__(self) -> "ChangeLogStore":
        return self

    def __exit__(self, *args: Any) -> None:
        self.close()

    def table(self, name: str) -> SyncTable:
        """Get a registered table or raise KeyError."""
        try:
            return self._by_name[name]
        except KeyError:
            raise KeyError(f"Unknown syncable table: {name}") from None

    # =========================================================================
    # Schema
    # =========================================================================
    def create_schema(self) -> None:
        """Create every registered table and its owner/updated index."""
        for table in self.tables:
            for statement in table.create_statements():
                self._execute(statement)
        logger.debug("Schema ready for tables: %s", ", ".join(t.name for t in self.tables))

    def get_table_names(self) -> list[str]:
        """Names of the tables physically present in the database."""
        with self.connection() as conn:
            cursor = conn.execute(
                """
                SELECT name FROM sqlite_master
                WHERE type = 'table' AND name NOT LIKE 'sqlite_%'
                ORDER BY name
                """
            )
            return [row["name"] for row in cursor]

    # =========================================================================
    # Reads
    # =========================================================================
    def changed_since(
        self,
        table: str,
        owner_id: str,
        since_ms: int,
    ) -> list[StoredRecord]:
        """All rows of an owner, tombstones included, with updated_at_ms > since_ms."""
        return self._select(
            table,
            '"owner_id" = ? AND "updated_at_ms" > ?',
            (owner_id, since_ms),
        )

    def current_records(self, table: str, owner_id: str) -> list[StoredRecord]:
        """Live (non-tombstoned) rows of an owner."""
        return self._select(
            table,
            '"owner_id" = ? AND "is_deleted" = 0',
            (owner_id,),
        )

    def get(self, table: str, record_id: str) -> StoredRecord | None:
        """Fetch a row by id regardless of owner or tombstone state."""
        records = self._select(table, '"id" = ?', (record_id,))
        return records[0] if records else None

    def counts(self, table: str, owner_id: str) -> dict[str, int]:
        """Live and tombstoned row counts for an owner."""
        self.table(table)
        with self.connection() as conn:
            row = conn.execute(
                f"""
                SELECT
                    COALESCE(SUM(CASE WHEN "is_deleted" = 0 THEN 1 ELSE 0 END), 0) AS live,
                    COALESCE(SUM(CASE WHEN "is_deleted" = 1 THEN 1 ELSE 0 END), 0) AS tombstones
                FROM "{table}" WHERE "owner_id" = ?
                """,
                (owner_id,),
            ).fetchone()
            return {"live": row["live"], "tombstones": row["tombstones"]}

    def max_updated_at(self) -> int:
        """Highest updated_at_ms across all tables (0 for an empty store)."""
        highest = 0
        with self.connection() as conn:
            for table in self.tables:
                row = conn.execute(
                    f'SELECT MAX("updated_at_ms") AS highest FROM "{table.name}"'
                ).fetchone()
                if row and row["highest"] is not None:
                    highest = max(highest, row["highest"])
        return highest

    def _select(
        self,
        table: str,
        where: str,
        params: Sequence[Any],
    ) -> list[StoredRecord]:
        spec = self.table(table)
        columns = ", ".join(f'"{c}"' for c in spec.columns)
        query = (
            f'SELECT "id", "owner_id", {columns}, "created_at_ms", '
            f'"updated_at_ms", "is_deleted" FROM "{table}" '
            f'WHERE {where} ORDER BY "updated_at_ms", "id"'
        )
        with self.connection() as conn:
            cursor = conn.execute(query, params)
            return [self._to_record(spec, row) for row in cursor]

    @staticmethod
    def _to_record(spec: SyncTable, row: sqlite3.Row) -> StoredRecord:
        return StoredRecord(
            table=spec.name,
            id=row["id"],
            owner_id=row["owner_id"],
            fields={c: row[c] for c in spec.columns},
            created_at_ms=row["created_at_ms"],
            updated_at_ms=row["updated_at_ms"],
            is_deleted=bool(row["is_deleted"]),
        )

    # =========================================================================
    # Writes
    # =========================================================================
    def insert_if_absent(
        self,
        table: str,
        record_id: str,
        owner_id: str,
        fields: dict[str, Any],
        now_ms: int,
    ) -> bool:
        """
        Insert a new live row unless the id already exists in any owner's partition.

        Returns:
            True if a row was inserted
        """
        spec = self.table(table)
        columns = ["id", "owner_id", *spec.columns, "created_at_ms", "updated_at_ms", "is_deleted"]
        values = [record_id, owner_id, *(fields.get(c) for c in spec.columns), now_ms, now_ms, 0]
        col_str = ", ".join(f'"{c}"' for c in columns)
        placeholders = ", ".join("?" for _ in columns)
        sql = f'INSERT OR IGNORE INTO "{table}" ({col_str}) VALUES ({placeholders})'
        return self._execute(sql, values) == 1

    def update_owned(
        self,
        table: str,
        record_id: str,
        owner_id: str,
        fields: dict[str, Any],
        now_ms: int,
    ) -> bool:
        """
        Overwrite the domain fields of a live row owned by owner_id.

        A now_ms at or below the stored updated_at_ms still advances it by one.

        Returns:
            True if a row matched; foreign, missing and tombstoned ids match nothing
        """
        spec = self.table(table)
        assignments = ", ".join(f'"{c}" = ?' for c in spec.columns)
        sql = (
            f'UPDATE "{table}" SET {assignments}, {ADVANCE_UPDATED_AT} '
            f'WHERE "id" = ? AND "owner_id" = ? AND "is_deleted" = 0'
        )
        values = [*(fields.get(c) for c in spec.columns), now_ms, record_id, owner_id]
        return self._execute(sql, values) == 1

    def tombstone_owned(
        self,
        table: str,
        record_id: str,
        owner_id: str,
        now_ms: int,
    ) -> bool:
        """
        Flag a live row owned by owner_id as deleted, keeping the row.

        Returns:
            True if a row was tombstoned
        """
        self.table(table)
        sql = (
            f'UPDATE "{table}" SET "is_deleted" = 1, {ADVANCE_UPDATED_AT} '
            f'WHERE "id" = ? AND "owner_id" = ? AND "is_deleted" = 0'
        )
        return self._execute(sql, (now_ms, record_id, owner_id)) == 1

    def _execute(self, sql: str, params: Sequence[Any] = ()) -> int:
        """Execute and commit a single statement, returning the affected row count."""
        if self.readonly:
            raise StoreReadOnly("Cannot execute write operations in read-only mode")

        with self.connection() as conn:
            cursor = conn.execute(sql, params)
            conn.commit()
            return cursor.rowcount
