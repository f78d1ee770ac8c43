"""
Sync client - Device side orchestration.

One sync run is pull -> push -> pull:
1. Pull everything after the stored watermark and merge it
2. Push the pending local mutations, if any
3. Pull again so the watermark only moves past the push once the server's
   own version of the pushed rows has been seen

Every call goes through the retry policy. A failed pull leaves the watermark
untouched; a failed push leaves the pending queue untouched.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from enum import Enum

from delta_sync.client.replica import LocalReplica
from delta_sync.client.retry import RetryPolicy
from delta_sync.client.transport import SyncTransport
from delta_sync.errors import SyncError
from delta_sync.models import PullRequest, PushRequest

logger = logging.getLogger(__name__)


class SyncStatus(str, Enum):
    """Status of a sync run."""

    SUCCESS = "success"
    FAILED = "failed"
    SKIPPED = "skipped"  # another run was in progress


@dataclass
class SyncResult:
    """Result of a sync run."""

    status: SyncStatus
    rows_pulled: int = 0
    changes_pushed: int = 0
    watermark_ms: int = 0
    error: str | None = None
    timestamp: datetime | None = None


class SyncClient:
    """
    Drives the pull/push protocol for one local replica.

    Example:
        client = SyncClient(replica, InProcessTransport(orchestrator, "user-1"))
        result = await client.sync()
        print(result.status, result.watermark_ms)
    """

    def __init__(
        self,
        replica: LocalReplica,
        transport: SyncTransport,
        retry_policy: RetryPolicy | None = None,
        schema_version: int = 1,
    ) -> None:
        self.replica = replica
        self.transport = transport
        self.retry_policy = retry_policy or RetryPolicy()
        self.schema_version = schema_version
        self._lock = asyncio.Lock()
        self._last_sync: datetime | None = None

    @property
    def is_syncing(self) -> bool:
        return self._lock.locked()

    @property
    def last_sync(self) -> datetime | None:
        """Timestamp of the last successful sync."""
        return self._last_sync

    async def pull(self) -> int:
        """Pull and merge changes after the current watermark. Returns rows changed."""
        request = PullRequest(
            watermark_ms=self.replica.watermark_ms,
            schema_version=self.schema_version,
        )
        response = await self.retry_policy.run(
            lambda: self.transport.pull(request), "pull"
        )
        changed = self.replica.apply_pull(response)
        logger.info(
            "Pulled since %d: %d row(s) changed, watermark now %d",
            request.watermark_ms,
            changed,
            self.replica.watermark_ms,
        )
        return changed

    async def push(self) -> int:
        """Push pending mutations. Returns the number of changes acknowledged."""
        sent = self.replica.pending.snapshot()
        if not sent:
            return 0

        request = PushRequest(
            changes=self.replica.pending.to_changes(self.replica.tables, sent),
            watermark_ms=self.replica.watermark_ms,
        )
        await self.retry_policy.run(lambda: self.transport.push(request), "push")
        acknowledged = self.replica.pending.acknowledge(sent)
        logger.info("Pushed %d change(s)", acknowledged)
        return acknowledged

    async def sync(self) -> SyncResult:
        """Run one full sync. Concurrent calls are skipped, not queued."""
        if self._lock.locked():
            logger.info("Sync already in progress, skipping")
            return SyncResult(
                status=SyncStatus.SKIPPED,
                watermark_ms=self.replica.watermark_ms,
            )

        async with self._lock:
            rows_pulled = 0
            changes_pushed = 0
            try:
                rows_pulled += await self.pull()
                changes_pushed = await self.push()
                if changes_pushed:
                    rows_pulled += await self.pull()
            except SyncError as e:
                logger.error("Sync failed: %s", e)
                return SyncResult(
                    status=SyncStatus.FAILED,
                    rows_pulled=rows_pulled,
                    changes_pushed=changes_pushed,
                    watermark_ms=self.replica.watermark_ms,
                    error=str(e),
                    timestamp=datetime.now(timezone.utc),
                )

            self._last_sync = datetime.now(timezone.utc)
            return SyncResult(
                status=SyncStatus.SUCCESS,
                rows_pulled=rows_pulled,
                changes_pushed=changes_pushed,
                watermark_ms=self.replica.watermark_ms,
                timestamp=self._last_sync,
            )
