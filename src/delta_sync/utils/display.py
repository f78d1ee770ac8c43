"""
Rich Terminal Display Components.

Provides console output for:
- Delta summaries after pull/push
- Store and replica status tables
- Status messages
"""

from __future__ import annotations

from typing import Any

from rich.console import Console
from rich.table import Table

from delta_sync.models import TableChanges


console = Console()


def print_changes_summary(
    title: str,
    changes: dict[str, TableChanges],
    timestamp_ms: int | None = None,
) -> None:
    """Print per-table created/updated/deleted counts."""
    table = Table(title=title, border_style="green")

    table.add_column("Table", style="cyan")
    table.add_column("Created", justify="right")
    table.add_column("Updated", justify="right")
    table.add_column("Deleted", justify="right")

    for name, table_changes in changes.items():
        counts = table_changes.counts()
        table.add_row(
            name,
            f"{counts['created']:,}",
            f"{counts['updated']:,}",
            f"{counts['deleted']:,}",
        )

    console.print(table)
    if timestamp_ms is not None:
        print_info(f"Server timestamp: {timestamp_ms}")


def print_store_status(owner_id: str, counts: dict[str, dict[str, int]]) -> None:
    """Print live/tombstone counts per table for one owner."""
    table = Table(title=f"Store Status ({owner_id})", border_style="blue")

    table.add_column("Table", style="cyan")
    table.add_column("Live", justify="right")
    table.add_column("Tombstones", justify="right")

    for name, table_counts in counts.items():
        table.add_row(
            name,
            f"{table_counts['live']:,}",
            f"{table_counts['tombstones']:,}",
        )

    console.print(table)


def print_replica_summary(summary: dict[str, Any]) -> None:
    """Print the replica state summary produced by StateManager.get_summary()."""
    table = Table(title="Replica", border_style="blue")
    table.add_column("Property", style="cyan")
    table.add_column("Value")

    table.add_row("Owner", summary.get("owner_id", ""))
    table.add_row("Status", format_status(summary.get("status", "")))
    table.add_row("Watermark", str(summary.get("watermark_ms", 0)))
    table.add_row("Last Sync", summary.get("last_sync_at") or "[dim]never[/dim]")
    table.add_row("Pending Changes", f"{summary.get('pending', 0):,}")
    for name, count in summary.get("tables", {}).items():
        table.add_row(f"Rows: {name}", f"{count:,}")
    if summary.get("last_error"):
        table.add_row("Last Error", f"[red]{summary['last_error']}[/red]")

    console.print(table)


def format_status(status: str) -> str:
    """Format status with color."""
    colors = {
        "synced": "[green]✓ synced[/green]",
        "failed": "[red]✗ failed[/red]",
        "initial": "[dim]initial[/dim]",
    }
    return colors.get(status, status)


def print_error(message: str) -> None:
    """Print an error message."""
    console.print(f"[red bold]Error:[/red bold] {message}")


def print_success(message: str) -> None:
    """Print a success message."""
    console.print(f"[green bold]✓[/green bold] {message}")


def print_warning(message: str) -> None:
    """Print a warning message."""
    console.print(f"[yellow bold]⚠[/yellow bold] {message}")


def print_info(message: str) -> None:
    """Print an info message."""
    console.print(f"[blue]ℹ[/blue] {message}")
