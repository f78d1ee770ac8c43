"""
Delta Sync Configuration System.

This module provides a type-safe configuration system using Pydantic.
Settings can be loaded from:
1. Environment variables (prefixed with DELTA_SYNC_)
2. Config file (TOML or JSON)
3. CLI arguments (highest priority)

Example usage:
    from delta_sync.config import Settings

    # Load from environment
    settings = Settings()

    # Or with explicit values
    settings = Settings(store={"path": "server.db"}, retry={"max_attempts": 5})
"""

from __future__ import annotations

import json
import tomllib
from pathlib import Path
from typing import Any, Self

from pydantic import BaseModel, Field, SecretStr, field_validator, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class StoreConfig(BaseModel):
    """Change log store (SQLite) configuration."""

    path: Path = Field(
        default=Path("delta-sync.db"),
        description="Path to the SQLite file holding the change log tables",
    )
    timeout_seconds: float = Field(
        default=30.0,
        gt=0,
        description="How long a connection waits on a locked database",
    )


class RetryConfig(BaseModel):
    """Bounded retry policy applied around client pull/push calls."""

    max_attempts: int = Field(
        default=3,
        ge=1,
        le=10,
        description="Total attempts per call, including the first one",
    )
    base_delay_seconds: float = Field(
        default=0.5,
        ge=0,
        description="Delay before the first retry",
    )
    max_delay_seconds: float = Field(
        default=8.0,
        ge=0,
        description="Upper bound for a single backoff delay",
    )
    multiplier: float = Field(
        default=2.0,
        ge=1.0,
        description="Backoff growth factor between attempts",
    )

    @model_validator(mode="after")
    def validate_delays(self) -> Self:
        """Reject a base delay larger than the cap."""
        if self.base_delay_seconds > self.max_delay_seconds:
            raise ValueError("base_delay_seconds must not exceed max_delay_seconds")
        return self


class ClientConfig(BaseModel):
    """Device-side sync client configuration."""

    base_url: str = Field(
        default="",
        description="Base URL of the sync server (POST /sync/pull, /sync/push)",
    )
    api_token: SecretStr = Field(
        default=SecretStr(""),
        description="Bearer token issued by the authentication service",
    )
    state_file: Path = Field(
        default=Path(".delta-sync-replica.json"),
        description="Where the local replica and pending queue are persisted",
    )
    schema_version: int = Field(
        default=1,
        ge=1,
        description="Local schema version sent with every pull",
    )
    request_timeout_seconds: float = Field(
        default=30.0,
        gt=0,
        description="HTTP request timeout",
    )

    @field_validator("api_token", mode="before")
    @classmethod
    def validate_token(cls, v: Any) -> SecretStr:
        """Handle token from various sources."""
        if isinstance(v, SecretStr):
            return v
        if isinstance(v, str):
            return SecretStr(v)
        return SecretStr("")


class LoggingConfig(BaseModel):
    """Logging configuration."""

    level: str = Field(
        default="INFO",
        pattern="^(DEBUG|INFO|WARNING|ERROR|CRITICAL)$",
        description="Log level",
    )
    file: Path | None = Field(
        default=None,
        description="Log file path (None = console only)",
    )
    format: str = Field(
        default="rich",
        pattern="^(rich|json|simple)$",
        description="Log format: rich (colored), json, or simple",
    )
    max_file_size_mb: int = Field(
        default=10,
        ge=1,
        le=100,
        description="Max log file size before rotation",
    )
    backup_count: int = Field(
        default=3,
        ge=1,
        le=10,
        description="Number of rotated log files to keep",
    )


class Settings(BaseSettings):
    """
    Main settings class for Delta Sync.

    Settings are loaded in this priority (highest first):
    1. Explicit constructor arguments
    2. Environment variables (DELTA_SYNC_* prefix)
    3. Config file (if specified)
    4. Defaults

    Example:
        # From environment
        export DELTA_SYNC_STORE__PATH="server.db"
        export DELTA_SYNC_CLIENT__API_TOKEN="your-token"
        settings = Settings()

        # From config file
        settings = Settings.from_file("config.toml")
    """

    model_config = SettingsConfigDict(
        env_prefix="DELTA_SYNC_",
        env_nested_delimiter="__",
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    store: StoreConfig = Field(default_factory=StoreConfig)
    retry: RetryConfig = Field(default_factory=RetryConfig)
    client: ClientConfig = Field(default_factory=ClientConfig)
    logging: LoggingConfig = Field(default_factory=LoggingConfig)

    @classmethod
    def from_file(cls, path: Path | str) -> "Settings":
        """Load settings from a .toml or .json file."""
        return cls.model_validate(_read_config(Path(path)))

    def to_file(self, path: Path | str) -> None:
        """
        Write the current settings to a .toml or .json file.

        The API token is never written; a placeholder takes its place.
        """
        path = Path(path)
        data = self.model_dump(mode="json", exclude_none=True)
        data["client"]["api_token"] = REDACTED

        if path.suffix in TOML_SUFFIXES:
            path.write_text(_to_toml(data))
        else:
            path.write_text(json.dumps(data, indent=2) + "\n")

    def validate_client(self) -> list[str]:
        """Check the settings a remote sync needs. Returns a list of problems."""
        errors = []
        if not self.client.base_url:
            errors.append("client.base_url is required")
        if not self.client.api_token.get_secret_value():
            errors.append("client.api_token is required")
        return errors


REDACTED = "***REDACTED***"
TOML_SUFFIXES = (".toml", ".tml")


def _read_config(path: Path) -> dict[str, Any]:
    if not path.exists():
        raise FileNotFoundError(f"Config file not found: {path}")

    if path.suffix in TOML_SUFFIXES:
        return tomllib.loads(path.read_text())
    if path.suffix == ".json":
        return json.loads(path.read_text())
    raise ValueError(f"Unsupported config format: {path.suffix}")


def _to_toml(data: dict[str, Any]) -> str:
    """Render one level of [section] tables; values are JSON-compatible scalars."""
    lines = [f"{key} = {json.dumps(value)}" for key, value in data.items() if not isinstance(value, dict)]
    for section, values in data.items():
        if isinstance(values, dict):
            lines.append(f"\n[{section}]")
            lines.extend(f"{key} = {json.dumps(value)}" for key, value in values.items())
    return "\n".join(lines).lstrip() + "\n"


def _merge(base: dict[str, Any], overrides: dict[str, Any]) -> dict[str, Any]:
    merged = dict(base)
    for key, value in overrides.items():
        if isinstance(value, dict) and isinstance(merged.get(key), dict):
            merged[key] = _merge(merged[key], value)
        else:
            merged[key] = value
    return merged


def load_settings(
    config_file: Path | str | None = None,
    **overrides: Any,
) -> Settings:
    """
    Load settings from an optional config file, then apply overrides.

    Overrides are merged per section, so ``retry={"max_attempts": 5}`` keeps
    the file's other retry values.

    Args:
        config_file: Optional .toml or .json file
        **overrides: Section dicts taking precedence over the file

    Returns:
        Configured Settings instance
    """
    if not config_file:
        return Settings(**overrides)

    data = _read_config(Path(config_file))
    return Settings.model_validate(_merge(data, overrides))
