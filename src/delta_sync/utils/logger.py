"""
Logging setup for Delta Sync.

All modules log under the ``delta_sync`` namespace. Console output goes to
stderr so ``delta-sync pull --json`` keeps stdout clean. Protocol code
attaches watermarks and timestamps as ``extra`` fields, which the JSON
format emits as top-level keys.
"""

from __future__ import annotations

import json
import logging
import sys
from logging.handlers import RotatingFileHandler
from pathlib import Path

from rich.console import Console
from rich.logging import RichHandler

from delta_sync.config import LoggingConfig


console = Console(stderr=True)

logger = logging.getLogger("delta_sync")

# LogRecord attributes copied into JSON output when a call passes them in extra=
SYNC_FIELDS = (
    "table",
    "watermark_ms",
    "server_timestamp_ms",
    "now_ms",
    "attempt",
)

FILE_FORMAT = "%(asctime)s | %(levelname)-8s | %(name)s | %(message)s"
SIMPLE_FORMAT = "%(asctime)s | %(levelname)-8s | %(message)s"
DATE_FORMAT = "%Y-%m-%d %H:%M:%S"


def setup_logging(
    level: str = "INFO",
    log_file: Path | str | None = None,
    format_style: str = "rich",
    max_file_size_mb: int = 10,
    backup_count: int = 3,
) -> None:
    """
    Configure the ``delta_sync`` logger.

    Calling it again replaces the handlers installed by the previous call.

    Args:
        level: Log level (DEBUG, INFO, WARNING, ERROR, CRITICAL)
        log_file: Optional rotating log file
        format_style: "rich", "json", or "simple"
        max_file_size_mb: Size at which the log file rotates
        backup_count: Rotated files to keep
    """
    log_level = getattr(logging, level.upper(), logging.INFO)

    logger.handlers.clear()
    logger.setLevel(log_level)

    handlers = [_console_handler(format_style)]
    if log_file:
        handlers.append(_file_handler(Path(log_file), max_file_size_mb, backup_count))

    for handler in handlers:
        handler.setLevel(log_level)
        logger.addHandler(handler)

    # httpx logs every request at INFO
    for name in ("httpx", "httpcore"):
        logging.getLogger(name).setLevel(max(log_level, logging.WARNING))


def setup_logging_from_config(config: LoggingConfig, level: str | None = None) -> None:
    """Configure logging from a LoggingConfig, optionally overriding the level."""
    setup_logging(
        level=level or config.level,
        log_file=config.file,
        format_style=config.format,
        max_file_size_mb=config.max_file_size_mb,
        backup_count=config.backup_count,
    )


def _console_handler(format_style: str) -> logging.Handler:
    if format_style == "rich":
        handler: logging.Handler = RichHandler(
            console=console,
            rich_tracebacks=True,
            show_time=True,
            show_path=False,
        )
        handler.setFormatter(logging.Formatter("%(message)s"))
        return handler

    handler = logging.StreamHandler(sys.stderr)
    if format_style == "json":
        handler.setFormatter(JsonFormatter())
    else:
        handler.setFormatter(logging.Formatter(SIMPLE_FORMAT, datefmt=DATE_FORMAT))
    return handler


def _file_handler(path: Path, max_file_size_mb: int, backup_count: int) -> logging.Handler:
    path.parent.mkdir(parents=True, exist_ok=True)
    handler = RotatingFileHandler(
        path,
        maxBytes=max_file_size_mb * 1024 * 1024,
        backupCount=backup_count,
    )
    handler.setFormatter(logging.Formatter(FILE_FORMAT, datefmt=DATE_FORMAT))
    return handler


class JsonFormatter(logging.Formatter):
    """One JSON object per line, with sync context fields lifted to the top level."""

    def format(self, record: logging.LogRecord) -> str:
        log_data = {
            "timestamp": self.formatTime(record),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }
        for name in SYNC_FIELDS:
            value = getattr(record, name, None)
            if value is not None:
                log_data[name] = value

        if record.exc_info:
            log_data["exception"] = self.formatException(record.exc_info)

        return json.dumps(log_data, default=str)


def get_logger(name: str = "delta_sync") -> logging.Logger:
    """Get a logger in the delta_sync namespace."""
    return logging.getLogger(name)
