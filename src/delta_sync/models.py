"""
Wire and storage models for the sync protocol.

Wire payloads are Pydantic models; stored rows are plain dataclasses.
Wire field names follow the mobile client convention (``created_at``,
``watermarkMs``); storage uses ``*_ms`` column names.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any

from pydantic import AliasChoices, BaseModel, ConfigDict, Field, field_validator


@dataclass
class StoredRecord:
    """A row of a syncable table as held by the change log store."""

    table: str
    id: str
    owner_id: str
    fields: dict[str, Any] = field(default_factory=dict)
    created_at_ms: int = 0
    updated_at_ms: int = 0
    is_deleted: bool = False


# =============================================================================
# Row shapes
# =============================================================================
class WireRow(BaseModel):
    """Common wire fields. Client supplied timestamps are accepted and ignored."""

    model_config = ConfigDict(extra="ignore")

    id: str = Field(min_length=1)
    created_at: int | None = None
    updated_at: int | None = None


class ProjectRow(WireRow):
    name: str
    description: str | None = None


class TaskRow(WireRow):
    title: str
    description: str | None = None
    is_completed: bool = False
    project_id: str | None = None


# =============================================================================
# Changesets
# =============================================================================
class TableChanges(BaseModel):
    """Created/updated/deleted buckets for one table. All three are required."""

    model_config = ConfigDict(extra="forbid")

    created: list[dict[str, Any]]
    updated: list[dict[str, Any]]
    deleted: list[str]

    @classmethod
    def empty(cls) -> "TableChanges":
        return cls(created=[], updated=[], deleted=[])

    def is_empty(self) -> bool:
        return not (self.created or self.updated or self.deleted)

    def counts(self) -> dict[str, int]:
        return {
            "created": len(self.created),
            "updated": len(self.updated),
            "deleted": len(self.deleted),
        }


class PullRequest(BaseModel):
    """Body of a pull call."""

    model_config = ConfigDict(populate_by_name=True)

    watermark_ms: int = Field(
        default=0,
        ge=0,
        alias="watermarkMs",
        validation_alias=AliasChoices("watermarkMs", "lastPulledAt", "watermark_ms"),
    )
    schema_version: int = Field(
        default=1,
        alias="schemaVersion",
        validation_alias=AliasChoices("schemaVersion", "schema_version"),
    )
    migration: Any | None = None

    @field_validator("watermark_ms", mode="before")
    @classmethod
    def first_sync_watermark(cls, v: Any) -> Any:
        """A client that never pulled sends null."""
        return 0 if v is None else v

    def to_wire(self) -> dict[str, Any]:
        return self.model_dump(by_alias=True)


class PullResponse(BaseModel):
    """Delta for every syncable table plus the client's next watermark."""

    model_config = ConfigDict(populate_by_name=True)

    changes: dict[str, TableChanges]
    server_timestamp_ms: int = Field(
        alias="serverTimestampMs",
        validation_alias=AliasChoices(
            "serverTimestampMs", "timestamp", "server_timestamp_ms"
        ),
    )

    def is_empty(self) -> bool:
        return all(changes.is_empty() for changes in self.changes.values())

    def to_wire(self) -> dict[str, Any]:
        return self.model_dump(by_alias=True)


class PushRequest(BaseModel):
    """Body of a push call. The watermark, if sent, is informational only."""

    model_config = ConfigDict(populate_by_name=True)

    changes: dict[str, TableChanges]
    watermark_ms: Any | None = Field(
        default=None,
        alias="watermarkMs",
        validation_alias=AliasChoices("watermarkMs", "lastPulledAt", "watermark_ms"),
    )

    def to_wire(self) -> dict[str, Any]:
        return self.model_dump(by_alias=True, exclude_none=True)


class PushResponse(BaseModel):
    success: bool

    def to_wire(self) -> dict[str, Any]:
        return self.model_dump()
