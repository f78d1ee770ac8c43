"""
Syncable table registry.

Each table maps its storage columns to wire fields and names the row model
used to validate pushed rows. Registry order is the push order: parent
tables come before the tables that reference them.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any

from delta_sync.models import ProjectRow, StoredRecord, TaskRow, WireRow


@dataclass(frozen=True)
class FieldSpec:
    """A domain column and its wire representation."""

    column: str
    wire: str
    sql_type: str = "TEXT"
    is_bool: bool = False


@dataclass(frozen=True)
class SyncTable:
    """Description of one syncable table."""

    name: str
    fields: tuple[FieldSpec, ...]
    row_model: type[WireRow]
    parent: str | None = None

    @property
    def columns(self) -> list[str]:
        return [f.column for f in self.fields]

    def create_statements(self) -> list[str]:
        """CREATE TABLE / CREATE INDEX statements for this table."""
        domain_cols = ",\n    ".join(
            f'"{f.column}" {f.sql_type}' for f in self.fields
        )
        return [
            f"""
            CREATE TABLE IF NOT EXISTS "{self.name}" (
                "id" TEXT PRIMARY KEY,
                "owner_id" TEXT NOT NULL,
                {domain_cols},
                "created_at_ms" INTEGER NOT NULL,
                "updated_at_ms" INTEGER NOT NULL,
                "is_deleted" INTEGER NOT NULL DEFAULT 0
            )
            """,
            f'CREATE INDEX IF NOT EXISTS "idx_{self.name}_owner_updated" '
            f'ON "{self.name}" ("owner_id", "updated_at_ms")',
        ]

    def to_wire(self, record: StoredRecord) -> dict[str, Any]:
        """Project a stored record onto the client-facing row shape."""
        row: dict[str, Any] = {"id": record.id}
        for f in self.fields:
            value = record.fields.get(f.column)
            row[f.wire] = bool(value) if f.is_bool and value is not None else value
        row["created_at"] = record.created_at_ms
        row["updated_at"] = record.updated_at_ms
        return row

    def to_columns(self, row: WireRow) -> dict[str, Any]:
        """Extract storage column values from a validated wire row."""
        return {f.column: getattr(row, f.wire) for f in self.fields}


PROJECTS = SyncTable(
    name="projects",
    fields=(
        FieldSpec("name", "name", "TEXT NOT NULL"),
        FieldSpec("description", "description"),
    ),
    row_model=ProjectRow,
)

TASKS = SyncTable(
    name="tasks",
    fields=(
        FieldSpec("title", "title", "TEXT NOT NULL"),
        FieldSpec("description", "description"),
        FieldSpec("is_completed", "is_completed", "INTEGER NOT NULL DEFAULT 0", is_bool=True),
        FieldSpec("project_id", "project_id"),
    ),
    row_model=TaskRow,
    parent="projects",
)

SYNC_TABLES: tuple[SyncTable, ...] = (PROJECTS, TASKS)
