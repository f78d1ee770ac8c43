"""Tests for the device side sync client."""

import asyncio
import json
from pathlib import Path

import pytest

from delta_sync.client import (
    InProcessTransport,
    LocalReplica,
    PendingChanges,
    PendingOp,
    RetryPolicy,
    StateManager,
    SyncClient,
    SyncStatus,
)
from delta_sync.core.orchestrator import SyncOrchestrator
from delta_sync.errors import MalformedChangeSet, RetryExhausted, TransportError
from delta_sync.models import PullRequest, PullResponse, PushRequest, PushResponse, TableChanges

OWNER = "user-1"
NO_WAIT = RetryPolicy(max_attempts=2, base_delay=0, max_delay=0)


def response(
    timestamp: int,
    projects: dict | None = None,
    tasks: dict | None = None,
) -> PullResponse:
    def build(buckets: dict | None) -> TableChanges:
        return TableChanges(**{"created": [], "updated": [], "deleted": [], **(buckets or {})})

    return PullResponse(
        changes={"projects": build(projects), "tasks": build(tasks)},
        server_timestamp_ms=timestamp,
    )


class FlakyTransport:
    """Wraps a transport, failing the first `failures` calls."""

    def __init__(self, inner: InProcessTransport, failures: int = 0, retryable: bool = True) -> None:
        self.inner = inner
        self.failures = failures
        self.retryable = retryable
        self.calls = 0

    async def _maybe_fail(self) -> None:
        self.calls += 1
        await asyncio.sleep(0)
        if self.failures > 0:
            self.failures -= 1
            raise TransportError("connection reset", status=503, retryable=self.retryable)

    async def pull(self, request: PullRequest) -> PullResponse:
        await self._maybe_fail()
        return await self.inner.pull(request)

    async def push(self, request: PushRequest) -> PushResponse:
        await self._maybe_fail()
        return await self.inner.push(request)


class RejectingPush(FlakyTransport):
    """Pulls work; every push is refused with a client error."""

    async def push(self, request: PushRequest) -> PushResponse:
        raise TransportError("HTTP 400", status=400)


class TestPendingChanges:
    """Coalescing rules of the pending queue."""

    def test_create_then_update_stays_create(self) -> None:
        pending = PendingChanges()
        pending.record_create("projects", {"id": "p1", "name": "A"})
        pending.record_update("projects", {"id": "p1", "name": "B"})

        change = pending.get("projects", "p1")
        assert change.op is PendingOp.CREATED
        assert change.row["name"] == "B"
        assert len(pending) == 1

    def test_create_then_delete_drops_entry(self) -> None:
        pending = PendingChanges()
        pending.record_create("projects", {"id": "p1", "name": "A"})
        pending.record_delete("projects", "p1")

        assert len(pending) == 0

    def test_update_then_delete_becomes_delete(self) -> None:
        pending = PendingChanges()
        pending.record_update("projects", {"id": "p1", "name": "B"})
        pending.record_delete("projects", "p1")

        change = pending.get("projects", "p1")
        assert change.op is PendingOp.DELETED
        assert change.row is None

    def test_update_after_delete_rejected(self) -> None:
        pending = PendingChanges()
        pending.record_delete("projects", "p1")

        with pytest.raises(ValueError):
            pending.record_update("projects", {"id": "p1", "name": "B"})

    def test_duplicate_create_rejected(self) -> None:
        pending = PendingChanges()
        pending.record_create("projects", {"id": "p1", "name": "A"})

        with pytest.raises(ValueError):
            pending.record_create("projects", {"id": "p1", "name": "A"})

    def test_to_changes_covers_every_table(self) -> None:
        pending = PendingChanges()
        pending.record_create("projects", {"id": "p1", "name": "A"})
        pending.record_delete("tasks", "t1")

        changes = pending.to_changes(["projects", "tasks"])

        assert changes == {
            "projects": {"created": [{"id": "p1", "name": "A"}], "updated": [], "deleted": []},
            "tasks": {"created": [], "updated": [], "deleted": ["t1"]},
        }

    def test_acknowledge_keeps_later_mutations(self) -> None:
        """Entries changed after the snapshot wait for the next push."""
        pending = PendingChanges()
        pending.record_update("projects", {"id": "p1", "name": "A"})
        pending.record_update("projects", {"id": "p2", "name": "B"})
        sent = pending.snapshot()

        pending.record_update("projects", {"id": "p2", "name": "B2"})

        assert pending.acknowledge(sent) == 1
        assert pending.get("projects", "p1") is None
        assert pending.get("projects", "p2").row["name"] == "B2"

    def test_list_round_trip(self) -> None:
        pending = PendingChanges()
        pending.record_create("projects", {"id": "p1", "name": "A"})
        pending.record_delete("tasks", "t1")

        restored = PendingChanges.from_list(json.loads(json.dumps(pending.to_list())))

        assert restored.to_changes(["projects", "tasks"]) == pending.to_changes(
            ["projects", "tasks"]
        )


class TestLocalReplica:
    """Optimistic local mutations and pull merging."""

    def test_create_generates_id(self) -> None:
        replica = LocalReplica()
        row = replica.create("projects", {"name": "Inbox"})

        assert row["id"]
        assert replica.get("projects", row["id"])["name"] == "Inbox"
        assert replica.pending.get("projects", row["id"]).op is PendingOp.CREATED

    def test_update_merges_fields(self) -> None:
        replica = LocalReplica()
        replica.create("projects", {"id": "p1", "name": "A", "description": "d"})

        row = replica.update("projects", "p1", name="B")

        assert row == {"id": "p1", "name": "B", "description": "d"}
        assert replica.pending.get("projects", "p1").row == row

    def test_unknown_rows_and_tables(self) -> None:
        replica = LocalReplica()

        with pytest.raises(KeyError):
            replica.update("projects", "missing", name="B")
        with pytest.raises(KeyError):
            replica.delete("projects", "missing")
        with pytest.raises(KeyError):
            replica.create("comments", {"body": "x"})

    def test_apply_pull_advances_watermark(self) -> None:
        replica = LocalReplica()

        changed = replica.apply_pull(
            response(500, projects={"created": [{"id": "p1", "name": "A"}]})
        )

        assert changed == 1
        assert replica.watermark_ms == 500
        assert replica.get("projects", "p1")["name"] == "A"
        assert len(replica.pending) == 0

    def test_pending_row_keeps_local_copy(self) -> None:
        replica = LocalReplica(records={"projects": {"p1": {"id": "p1", "name": "A"}}})
        replica.update("projects", "p1", name="mine")

        replica.apply_pull(response(500, projects={"updated": [{"id": "p1", "name": "theirs"}]}))

        assert replica.get("projects", "p1")["name"] == "mine"
        assert replica.watermark_ms == 500

    def test_remote_delete_wins(self) -> None:
        replica = LocalReplica(records={"projects": {"p1": {"id": "p1", "name": "A"}}})
        replica.update("projects", "p1", name="mine")

        replica.apply_pull(response(500, projects={"deleted": ["p1"]}))

        assert replica.get("projects", "p1") is None
        assert len(replica.pending) == 0

    def test_queue_changes(self) -> None:
        replica = LocalReplica(records={"projects": {"p1": {"id": "p1", "name": "A"}}})

        applied = replica.queue_changes(
            {
                "projects": {
                    "created": [{"id": "p2", "name": "B"}],
                    "updated": [{"id": "p1", "name": "A2"}],
                    "deleted": [],
                },
                "tasks": {"created": [], "updated": [], "deleted": []},
            }
        )

        assert applied == 2
        assert len(replica.pending) == 2

    def test_dict_round_trip(self) -> None:
        replica = LocalReplica(watermark_ms=42)
        replica.create("tasks", {"id": "t1", "title": "T"})

        restored = LocalReplica.from_dict(json.loads(json.dumps(replica.to_dict())))

        assert restored.watermark_ms == 42
        assert restored.get("tasks", "t1") == {"id": "t1", "title": "T"}
        assert restored.pending.get("tasks", "t1").op is PendingOp.CREATED


class TestRetryPolicy:
    """Bounded retry with exponential backoff."""

    def test_delays_grow_and_cap(self) -> None:
        policy = RetryPolicy(max_attempts=5, base_delay=1.0, max_delay=3.0, multiplier=2.0)

        assert [policy.delay_for(n) for n in range(1, 5)] == [1.0, 2.0, 3.0, 3.0]

    def test_retries_then_succeeds(self) -> None:
        policy = RetryPolicy(max_attempts=3, base_delay=0.5)
        delays: list[float] = []
        attempts = 0

        async def fake_sleep(delay: float) -> None:
            delays.append(delay)

        async def operation() -> str:
            nonlocal attempts
            attempts += 1
            if attempts < 3:
                raise TransportError("timeout", retryable=True)
            return "ok"

        result = asyncio.run(policy.run(operation, "pull", sleep=fake_sleep))

        assert result == "ok"
        assert attempts == 3
        assert delays == [0.5, 1.0]

    def test_non_retryable_raises_immediately(self) -> None:
        policy = RetryPolicy(max_attempts=3)
        attempts = 0

        async def operation() -> None:
            nonlocal attempts
            attempts += 1
            raise MalformedChangeSet("bad payload")

        with pytest.raises(MalformedChangeSet):
            asyncio.run(policy.run(operation, "push"))
        assert attempts == 1

    def test_exhausted(self) -> None:
        policy = RetryPolicy(max_attempts=2, base_delay=0)
        error = TransportError("HTTP 503", status=503, retryable=True)

        async def operation() -> None:
            raise error

        with pytest.raises(RetryExhausted) as exc_info:
            asyncio.run(policy.run(operation, "push"))

        assert exc_info.value.attempts == 2
        assert exc_info.value.last_error is error
        assert exc_info.value.__cause__ is error

    def test_invalid_attempts(self) -> None:
        with pytest.raises(ValueError):
            RetryPolicy(max_attempts=0)


class TestSyncClient:
    """Full pull/push/pull runs against an in-process server."""

    def test_first_sync_pushes_and_confirms(self, orchestrator: SyncOrchestrator) -> None:
        replica = LocalReplica()
        replica.create("projects", {"id": "p1", "name": "Inbox"})
        client = SyncClient(replica, InProcessTransport(orchestrator, OWNER), NO_WAIT)

        result = asyncio.run(client.sync())

        assert result.status is SyncStatus.SUCCESS
        assert result.changes_pushed == 1
        assert len(replica.pending) == 0
        stored = orchestrator.store.get("projects", "p1")
        assert replica.watermark_ms > stored.updated_at_ms
        assert replica.get("projects", "p1")["updated_at"] == stored.updated_at_ms
        assert client.last_sync is not None

    def test_two_devices_converge(self, orchestrator: SyncOrchestrator) -> None:
        phone = LocalReplica()
        tablet = LocalReplica()
        phone_client = SyncClient(phone, InProcessTransport(orchestrator, OWNER), NO_WAIT)
        tablet_client = SyncClient(tablet, InProcessTransport(orchestrator, OWNER), NO_WAIT)

        phone.create("projects", {"id": "p1", "name": "A"})
        asyncio.run(phone_client.sync())
        asyncio.run(tablet_client.sync())
        assert tablet.get("projects", "p1")["name"] == "A"

        tablet.update("projects", "p1", name="from tablet")
        phone.update("projects", "p1", name="from phone")
        asyncio.run(phone_client.sync())
        asyncio.run(tablet_client.sync())
        asyncio.run(phone_client.sync())

        assert phone.get("projects", "p1")["name"] == "from tablet"
        assert tablet.get("projects", "p1")["name"] == "from tablet"

    def test_delete_propagates(self, orchestrator: SyncOrchestrator) -> None:
        phone = LocalReplica()
        tablet = LocalReplica()
        phone_client = SyncClient(phone, InProcessTransport(orchestrator, OWNER), NO_WAIT)
        tablet_client = SyncClient(tablet, InProcessTransport(orchestrator, OWNER), NO_WAIT)

        phone.create("projects", {"id": "p1", "name": "A"})
        asyncio.run(phone_client.sync())
        asyncio.run(tablet_client.sync())

        phone.delete("projects", "p1")
        asyncio.run(phone_client.sync())
        asyncio.run(tablet_client.sync())

        assert tablet.get("projects", "p1") is None
        assert orchestrator.current_state(OWNER, "projects") == []

    def test_retry_recovers(self, orchestrator: SyncOrchestrator) -> None:
        replica = LocalReplica()
        replica.create("projects", {"id": "p1", "name": "A"})
        transport = FlakyTransport(InProcessTransport(orchestrator, OWNER), failures=1)

        result = asyncio.run(SyncClient(replica, transport, NO_WAIT).sync())

        assert result.status is SyncStatus.SUCCESS
        assert transport.calls == 4

    def test_failed_pull_keeps_watermark(self, orchestrator: SyncOrchestrator) -> None:
        replica = LocalReplica(watermark_ms=123)
        replica.create("projects", {"id": "p1", "name": "A"})
        transport = FlakyTransport(InProcessTransport(orchestrator, OWNER), failures=10)

        result = asyncio.run(SyncClient(replica, transport, NO_WAIT).sync())

        assert result.status is SyncStatus.FAILED
        assert "failed after 2 attempt(s)" in result.error
        assert replica.watermark_ms == 123
        assert len(replica.pending) == 1
        assert orchestrator.store.get("projects", "p1") is None

    def test_failed_push_keeps_pending(self, orchestrator: SyncOrchestrator) -> None:
        """A non-retryable push failure leaves the queue for the next run."""
        replica = LocalReplica()
        replica.create("projects", {"id": "p1", "name": "A"})
        transport = RejectingPush(InProcessTransport(orchestrator, OWNER))

        result = asyncio.run(SyncClient(replica, transport, NO_WAIT).sync())

        assert result.status is SyncStatus.FAILED
        assert replica.watermark_ms > 0
        assert replica.pending.get("projects", "p1") is not None

    def test_concurrent_sync_skipped(self, orchestrator: SyncOrchestrator) -> None:
        replica = LocalReplica()
        client = SyncClient(replica, FlakyTransport(InProcessTransport(orchestrator, OWNER)))

        async def run_both() -> list:
            return await asyncio.gather(client.sync(), client.sync())

        first, second = asyncio.run(run_both())

        assert first.status is SyncStatus.SUCCESS
        assert second.status is SyncStatus.SKIPPED
        assert not client.is_syncing


class TestStateManager:
    """Replica state persistence."""

    def test_save_and_load(self, tmp_path: Path) -> None:
        state_file = tmp_path / "replica.json"
        manager = StateManager(state_file)
        state = manager.get_or_create_state(OWNER)
        state.replica.create("projects", {"id": "p1", "name": "A"})
        state.replica.watermark_ms = 99
        manager.save()

        loaded = StateManager(state_file).get_or_create_state(OWNER)

        assert loaded.replica.watermark_ms == 99
        assert loaded.replica.get("projects", "p1")["name"] == "A"
        assert len(loaded.replica.pending) == 1
        assert not (tmp_path / "replica.json.tmp").exists()

    def test_other_owner_starts_fresh(self, tmp_path: Path) -> None:
        state_file = tmp_path / "replica.json"
        manager = StateManager(state_file)
        manager.get_or_create_state(OWNER).replica.watermark_ms = 99
        manager.save()

        state = StateManager(state_file).get_or_create_state("user-2")

        assert state.owner_id == "user-2"
        assert state.replica.watermark_ms == 0

    def test_other_owner_pending_survives(self, tmp_path: Path) -> None:
        """Unpushed changes of the previous owner are kept in a backup file."""
        state_file = tmp_path / "replica.json"
        manager = StateManager(state_file)
        manager.get_or_create_state(OWNER).replica.create("projects", {"id": "p1", "name": "A"})
        manager.save()

        other = StateManager(state_file)
        other.get_or_create_state("user-2")
        other.mark_sync("synced")

        backups = list(tmp_path.glob("replica.json.*.bak"))
        assert len(backups) == 1
        kept = json.loads(backups[0].read_text())
        assert kept["owner_id"] == OWNER
        assert [entry["record_id"] for entry in kept["replica"]["pending"]] == ["p1"]
        assert json.loads(state_file.read_text())["owner_id"] == "user-2"

    def test_corrupt_file(self, tmp_path: Path) -> None:
        state_file = tmp_path / "replica.json"
        state_file.write_text("{not json")

        assert StateManager(state_file).load() is None

    def test_corrupt_file_set_aside(self, tmp_path: Path) -> None:
        """An unreadable file is moved aside, not overwritten by the fresh state."""
        state_file = tmp_path / "replica.json"
        state_file.write_text("{not json")

        manager = StateManager(state_file)
        manager.get_or_create_state(OWNER)
        manager.save()

        backups = list(tmp_path.glob("replica.json.*.bak"))
        assert [b.read_text() for b in backups] == ["{not json"]
        assert json.loads(state_file.read_text())["owner_id"] == OWNER

    def test_mark_sync_and_summary(self, tmp_path: Path) -> None:
        manager = StateManager(tmp_path / "replica.json")
        manager.get_or_create_state(OWNER)

        manager.mark_sync("failed", "HTTP 503")
        summary = manager.get_summary()
        assert summary["status"] == "failed"
        assert summary["last_error"] == "HTTP 503"
        assert summary["last_sync_at"] is None

        manager.mark_sync("synced")
        summary = manager.get_summary()
        assert summary["status"] == "synced"
        assert summary["last_error"] is None
        assert summary["last_sync_at"] is not None
        assert summary["tables"] == {"projects": 0, "tasks": 0}

    def test_clear_state(self, tmp_path: Path) -> None:
        manager = StateManager(tmp_path / "replica.json")
        manager.get_or_create_state(OWNER)
        manager.save()

        manager.clear_state()

        assert manager.state is None
        assert not manager.state_file.exists()
        assert manager.get_summary() == {}
