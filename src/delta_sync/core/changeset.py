"""
Changeset validation.

A pushed changeset is validated in full before any storage mutation: every
table must be known, every row must match its table's row model, and an id
may appear in at most one bucket of a table.
"""

from __future__ import annotations

from dataclasses import dataclass, field

from pydantic import ValidationError

from delta_sync.errors import MalformedChangeSet
from delta_sync.models import TableChanges, WireRow
from delta_sync.tables import SyncTable


@dataclass
class ValidatedChanges:
    """Typed created/updated/deleted groups for one table."""

    table: SyncTable
    created: list[WireRow] = field(default_factory=list)
    updated: list[WireRow] = field(default_factory=list)
    deleted: list[str] = field(default_factory=list)

    def __len__(self) -> int:
        return len(self.created) + len(self.updated) + len(self.deleted)


def format_validation_errors(exc: ValidationError, prefix: str = "") -> list[str]:
    """Flatten a pydantic ValidationError into 'loc: message' strings."""
    messages = []
    for err in exc.errors():
        loc = ".".join(str(part) for part in err["loc"])
        location = f"{prefix}.{loc}" if prefix and loc else prefix or loc
        messages.append(f"{location}: {err['msg']}")
    return messages


def validate_changeset(
    changes: dict[str, TableChanges],
    tables: tuple[SyncTable, ...],
) -> dict[str, ValidatedChanges]:
    """
    Validate a push changeset against the table registry.

    Tables absent from the changeset are treated as having no changes.

    Returns:
        Validated changes keyed by table name, in registry order

    Raises:
        MalformedChangeSet: listing every problem found
    """
    known = {table.name for table in tables}
    errors = [
        f"changes.{name}: unknown table" for name in changes if name not in known
    ]
    validated: dict[str, ValidatedChanges] = {}

    for table in tables:
        table_changes = changes.get(table.name)
        if table_changes is None:
            continue

        result = ValidatedChanges(table=table)
        for bucket in ("created", "updated"):
            target = getattr(result, bucket)
            for index, raw in enumerate(getattr(table_changes, bucket)):
                try:
                    target.append(table.row_model.model_validate(raw))
                except ValidationError as e:
                    errors.extend(
                        format_validation_errors(e, f"changes.{table.name}.{bucket}[{index}]")
                    )

        for index, record_id in enumerate(table_changes.deleted):
            if not record_id:
                errors.append(f"changes.{table.name}.deleted[{index}]: empty id")
            else:
                result.deleted.append(record_id)

        seen: dict[str, str] = {}
        for bucket, ids in (
            ("created", [row.id for row in result.created]),
            ("updated", [row.id for row in result.updated]),
            ("deleted", result.deleted),
        ):
            for record_id in ids:
                if record_id in seen:
                    errors.append(
                        f"changes.{table.name}.{bucket}: id {record_id!r} "
                        f"already listed in {seen[record_id]}"
                    )
                else:
                    seen[record_id] = bucket

        validated[table.name] = result

    if errors:
        raise MalformedChangeSet(
            f"Invalid changeset ({len(errors)} problem(s))", errors=errors
        )
    return validated
