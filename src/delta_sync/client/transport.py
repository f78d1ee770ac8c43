"""Transports carrying pull/push calls from a device to the server."""

from __future__ import annotations

from typing import Protocol

from delta_sync.core.orchestrator import SyncOrchestrator
from delta_sync.models import PullRequest, PullResponse, PushRequest, PushResponse


class SyncTransport(Protocol):
    """What the sync client needs from a connection to the server."""

    async def pull(self, request: PullRequest) -> PullResponse: ...

    async def push(self, request: PushRequest) -> PushResponse: ...


class InProcessTransport:
    """
    Calls an orchestrator living in the same process.

    The owner id stands in for the identity an HTTP server would take from
    the bearer token.
    """

    def __init__(self, orchestrator: SyncOrchestrator, owner_id: str) -> None:
        self.orchestrator = orchestrator
        self.owner_id = owner_id

    async def pull(self, request: PullRequest) -> PullResponse:
        return self.orchestrator.pull(self.owner_id, request)

    async def push(self, request: PushRequest) -> PushResponse:
        return self.orchestrator.push(self.owner_id, request)
