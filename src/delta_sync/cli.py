"""
Delta Sync CLI - Command Line Interface.

Operator and device tooling for the pull/push sync protocol.

Commands:
    init    Create the change log schema
    pull    Compute the delta for an owner since a watermark
    push    Apply a changeset file on behalf of an owner
    status  Show store counts and replica state
    sync    Run a device sync (pull, push, pull) for a persisted replica
    config  Manage configuration
"""

from __future__ import annotations

import asyncio
import json
from pathlib import Path
from typing import Any, Optional

import typer
from pydantic import SecretStr
from rich.console import Console
from rich.table import Table

from delta_sync import __version__
from delta_sync.client import (
    InProcessTransport,
    RetryPolicy,
    StateManager,
    SyncClient,
    SyncResult,
    SyncStatus,
)
from delta_sync.client.transport import SyncTransport
from delta_sync.config import Settings, load_settings
from delta_sync.connectors.http import HttpTransport, create_http_transport
from delta_sync.connectors.sqlite import ChangeLogStore
from delta_sync.core.orchestrator import SyncOrchestrator
from delta_sync.errors import MalformedRequest, SyncError
from delta_sync.models import PullResponse
from delta_sync.utils.display import (
    print_changes_summary,
    print_error,
    print_info,
    print_replica_summary,
    print_store_status,
    print_success,
    print_warning,
)
from delta_sync.utils.logger import setup_logging_from_config


app = typer.Typer(
    name="delta-sync",
    help="Watermark based pull/push synchronization for offline-first clients.",
    add_completion=True,
    rich_markup_mode="rich",
)

console = Console()

DB_OPTION = typer.Option(None, "--db", help="Path to the change log SQLite file (overrides config).")
CONFIG_OPTION = typer.Option(None, "--config", "-c", help="Path to config file.", exists=True)
OWNER_OPTION = typer.Option(..., "--owner", "-o", help="Authenticated owner id.")
QUIET_OPTION = typer.Option(False, "--quiet", "-q", help="Minimal output.")


def version_callback(value: bool) -> None:
    """Print version and exit."""
    if value:
        console.print(f"[bold cyan]delta-sync[/bold cyan] version {__version__}")
        raise typer.Exit()


@app.callback()
def main(
    version: bool = typer.Option(
        False,
        "--version",
        "-v",
        callback=version_callback,
        is_eager=True,
        help="Show version and exit.",
    ),
) -> None:
    """Delta Sync - pull/push delta synchronization."""


# =============================================================================
# INIT Command
# =============================================================================
@app.command()
def init(
    db: Optional[Path] = DB_OPTION,
    config_file: Optional[Path] = CONFIG_OPTION,
) -> None:
    """Create the change log tables and indexes."""
    settings = _load(config_file, quiet=True, db=db)
    try:
        with ChangeLogStore.from_settings(settings) as store:
            store.create_schema()
            tables = store.get_table_names()
    except SyncError as e:
        print_error(str(e))
        raise typer.Exit(1)

    print_success(f"Initialized {settings.store.path} ({', '.join(tables)})")


# =============================================================================
# PULL Command
# =============================================================================
@app.command()
def pull(
    owner: str = OWNER_OPTION,
    since: int = typer.Option(0, "--since", "-s", min=0, help="Watermark in epoch ms (0 = full sync)."),
    db: Optional[Path] = DB_OPTION,
    config_file: Optional[Path] = CONFIG_OPTION,
    as_json: bool = typer.Option(False, "--json", help="Print the raw pull response."),
    quiet: bool = QUIET_OPTION,
) -> None:
    """
    Compute the delta an owner would receive for a watermark.

    Example:
        delta-sync pull --db server.db --owner user-1 --since 0 --json
    """
    settings = _load(config_file, quiet=quiet or as_json, db=db)
    orchestrator = _open_orchestrator(settings, readonly=True)

    try:
        response = orchestrator.pull_raw(owner, {"watermarkMs": since})
    except SyncError as e:
        print_error(str(e))
        raise typer.Exit(1)
    finally:
        orchestrator.store.close()

    if as_json:
        typer.echo(json.dumps(response, indent=2))
        return

    parsed = PullResponse.model_validate(response)
    print_changes_summary(f"Delta since {since}", parsed.changes, parsed.server_timestamp_ms)


# =============================================================================
# PUSH Command
# =============================================================================
@app.command()
def push(
    owner: str = OWNER_OPTION,
    changes_file: Path = typer.Option(
        ...,
        "--file",
        "-f",
        help="JSON file holding a push body ({\"changes\": {...}}).",
        exists=True,
        dir_okay=False,
    ),
    db: Optional[Path] = DB_OPTION,
    config_file: Optional[Path] = CONFIG_OPTION,
    quiet: bool = QUIET_OPTION,
) -> None:
    """
    Apply a changeset file on behalf of an owner.

    Example:
        delta-sync push --db server.db --owner user-1 --file changes.json
    """
    settings = _load(config_file, quiet=quiet, db=db)

    try:
        payload = json.loads(changes_file.read_text())
    except json.JSONDecodeError as e:
        print_error(f"{changes_file} is not valid JSON: {e}")
        raise typer.Exit(1)

    orchestrator = _open_orchestrator(settings)
    try:
        orchestrator.push_raw(owner, payload)
    except MalformedRequest as e:
        print_error(str(e))
        for problem in e.errors[:10]:
            print_error(f"  • {problem}")
        if len(e.errors) > 10:
            print_info(f"  ... and {len(e.errors) - 10} more")
        raise typer.Exit(1)
    except SyncError as e:
        print_error(f"{e} (safe to retry)")
        raise typer.Exit(1)
    finally:
        orchestrator.store.close()

    print_success("Push applied")


# =============================================================================
# STATUS Command
# =============================================================================
@app.command()
def status(
    owner: Optional[str] = typer.Option(None, "--owner", "-o", help="Owner whose rows to count."),
    db: Optional[Path] = DB_OPTION,
    state_file: Optional[Path] = typer.Option(None, "--state-file", help="Replica state file to inspect."),
    config_file: Optional[Path] = CONFIG_OPTION,
) -> None:
    """Show store counts for an owner and/or a device replica's state."""
    settings = _load(config_file, quiet=True, db=db, state_file=state_file)
    shown = False

    if owner and settings.store.path.exists():
        try:
            with ChangeLogStore.from_settings(settings) as store:
                counts = {t.name: store.counts(t.name, owner) for t in store.tables}
        except SyncError as e:
            print_error(str(e))
            raise typer.Exit(1)
        print_store_status(owner, counts)
        shown = True
    elif owner and db:
        print_error(f"Database not found: {db}")
        raise typer.Exit(1)

    state_mgr = StateManager(settings.client.state_file)
    if state_mgr.load():
        console.print()
        print_replica_summary(state_mgr.get_summary())
        shown = True

    if not shown:
        print_info("Nothing to show. Pass --owner with --db, or --state-file.")


# =============================================================================
# SYNC Command
# =============================================================================
@app.command()
def sync(
    owner: str = OWNER_OPTION,
    db: Optional[Path] = typer.Option(
        None, "--db", help="Sync against a local change log file instead of a server."
    ),
    url: Optional[str] = typer.Option(None, "--url", help="Sync server base URL."),
    api_token: Optional[str] = typer.Option(
        None,
        "--api-token",
        envvar="DELTA_SYNC_CLIENT__API_TOKEN",
        help="Bearer token for the sync server.",
    ),
    state_file: Optional[Path] = typer.Option(None, "--state-file", help="Replica state file."),
    changes_file: Optional[Path] = typer.Option(
        None,
        "--queue",
        help="Queue a changeset file as local mutations before syncing.",
        exists=True,
        dir_okay=False,
    ),
    config_file: Optional[Path] = CONFIG_OPTION,
    quiet: bool = QUIET_OPTION,
) -> None:
    """
    Run pull, push, pull for a device replica persisted on disk.

    Example:
        delta-sync sync --owner user-1 --url https://api.example.com --state-file phone.json
    """
    settings = _load(
        config_file,
        quiet=quiet,
        db=db,
        url=url,
        api_token=api_token,
        state_file=state_file,
    )

    if db is None:
        errors = settings.validate_client()
        if errors:
            for err in errors:
                print_error(err)
            print_info("Pass --db for a local store or --url/--api-token for a server.")
            raise typer.Exit(1)

    state_mgr = StateManager(settings.client.state_file)
    state = state_mgr.get_or_create_state(owner)

    if changes_file:
        try:
            queued = state.replica.queue_changes(json.loads(changes_file.read_text())["changes"])
        except (json.JSONDecodeError, KeyError, ValueError) as e:
            print_error(f"Could not queue {changes_file}: {e}")
            raise typer.Exit(1)
        state_mgr.save()
        print_info(f"Queued {queued} local change(s)")

    orchestrator: SyncOrchestrator | None = None
    transport: SyncTransport
    if db is not None:
        orchestrator = _open_orchestrator(settings)
        transport = InProcessTransport(orchestrator, owner)
    else:
        transport = create_http_transport(settings)

    client = SyncClient(
        state.replica,
        transport,
        retry_policy=RetryPolicy.from_config(settings.retry),
        schema_version=settings.client.schema_version,
    )

    try:
        result = asyncio.run(_run_sync(client, transport))
    finally:
        if orchestrator is not None:
            orchestrator.store.close()

    if result.status is SyncStatus.SUCCESS:
        state_mgr.mark_sync("synced")
    else:
        state_mgr.mark_sync("failed", result.error)

    if not quiet:
        print_replica_summary(state_mgr.get_summary())

    if result.status is SyncStatus.FAILED:
        print_error(result.error or "Sync failed")
        print_warning("Pending changes were kept and will be pushed on the next run.")
        raise typer.Exit(1)

    print_success(
        f"Synced: {result.rows_pulled} row(s) pulled, "
        f"{result.changes_pushed} change(s) pushed, watermark {result.watermark_ms}"
    )


async def _run_sync(client: SyncClient, transport: SyncTransport) -> SyncResult:
    try:
        return await client.sync()
    finally:
        if isinstance(transport, HttpTransport):
            await transport.close()


# =============================================================================
# CONFIG Command
# =============================================================================
@app.command()
def config(
    show: bool = typer.Option(
        False,
        "--show",
        help="Show current configuration.",
    ),
    init: bool = typer.Option(
        False,
        "--init",
        help="Write a config file with the current settings.",
    ),
    output: Path = typer.Option(
        Path("delta-sync.toml"),
        "--output",
        "-o",
        help="Output path for config file.",
    ),
) -> None:
    """Manage configuration."""
    if init:
        Settings().to_file(output)
        print_success(f"Generated config file: {output}")
        return

    if show:
        settings = Settings()
        table = Table(title="Current Configuration", border_style="cyan")
        table.add_column("Setting", style="cyan")
        table.add_column("Value")

        table.add_row("Store Path", str(settings.store.path))
        table.add_row("Server URL", settings.client.base_url or "[dim]not set[/dim]")
        table.add_row(
            "API Token",
            "[dim]set[/dim]" if settings.client.api_token.get_secret_value() else "[dim]not set[/dim]",
        )
        table.add_row("State File", str(settings.client.state_file))
        table.add_row("Schema Version", str(settings.client.schema_version))
        table.add_row(
            "Retry",
            f"{settings.retry.max_attempts} attempts, "
            f"{settings.retry.base_delay_seconds}s → {settings.retry.max_delay_seconds}s",
        )
        table.add_row("Log Level", settings.logging.level)

        console.print(table)
        return

    console.print("Use --show to view config or --init to create config file.")


# =============================================================================
# Helper Functions
# =============================================================================
def _load(config_file: Path | None, quiet: bool = False, **overrides: Any) -> Settings:
    """Build settings, apply CLI overrides and configure logging."""
    try:
        settings = _build_settings(config_file, **overrides)
    except (ValueError, FileNotFoundError) as e:
        print_error(str(e))
        raise typer.Exit(1)

    setup_logging_from_config(settings.logging, level="WARNING" if quiet else None)
    return settings


def _open_orchestrator(settings: Settings, readonly: bool = False) -> SyncOrchestrator:
    try:
        return SyncOrchestrator.from_settings(settings, readonly=readonly)
    except SyncError as e:
        print_error(str(e))
        raise typer.Exit(1)


def _build_settings(
    config_file: Path | None = None,
    **overrides: Any,
) -> Settings:
    """Build settings from config file and overrides."""
    if config_file:
        settings = load_settings(config_file)
    else:
        settings = Settings()

    # Apply CLI overrides
    if overrides.get("db"):
        settings.store.path = overrides["db"]
    if overrides.get("url"):
        settings.client.base_url = overrides["url"]
    if overrides.get("api_token"):
        settings.client.api_token = SecretStr(overrides["api_token"])
    if overrides.get("state_file"):
        settings.client.state_file = overrides["state_file"]

    return settings


if __name__ == "__main__":
    app()
