"""Shared fixtures for Delta Sync tests."""

from pathlib import Path
from typing import Iterator

import pytest

from delta_sync.connectors.sqlite import ChangeLogStore
from delta_sync.core.clock import ServerClock
from delta_sync.core.orchestrator import SyncOrchestrator

FROZEN_NOW = 1_700_000_000.0


@pytest.fixture
def clock() -> ServerClock:
    """Clock frozen at FROZEN_NOW; each call still returns a fresh, larger value."""
    return ServerClock(source=lambda: FROZEN_NOW)


@pytest.fixture
def store() -> Iterator[ChangeLogStore]:
    """In-memory change log store with the schema created."""
    store = ChangeLogStore()
    store.create_schema()
    yield store
    store.close()


@pytest.fixture
def file_store(tmp_path: Path) -> Iterator[ChangeLogStore]:
    """File-backed change log store with the schema created."""
    store = ChangeLogStore(tmp_path / "server.db")
    store.create_schema()
    yield store
    store.close()


@pytest.fixture
def orchestrator(store: ChangeLogStore, clock: ServerClock) -> SyncOrchestrator:
    return SyncOrchestrator(store, clock)
