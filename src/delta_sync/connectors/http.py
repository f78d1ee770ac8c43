"""
Sync server HTTP client.

Talks to a sync server exposing:
- POST /sync/pull  (PullRequest -> PullResponse)
- POST /sync/push  (PushRequest -> PushResponse)

Authentication is a bearer token issued elsewhere. Failures are mapped to
TransportError with a retryable flag; retrying is left to the caller's
retry policy.
"""

from __future__ import annotations

import logging
from typing import Any

import httpx
from pydantic import ValidationError

from delta_sync.config import Settings
from delta_sync.errors import TransportError
from delta_sync.models import PullRequest, PullResponse, PushRequest, PushResponse

logger = logging.getLogger(__name__)

RETRYABLE_STATUS = {408, 429, 500, 502, 503, 504}


class HttpTransport:
    """
    HTTP transport for the sync protocol.

    Example:
        async with HttpTransport("https://api.example.com", token) as transport:
            response = await transport.pull(PullRequest(watermark_ms=0))
    """

    def __init__(
        self,
        base_url: str,
        api_token: str,
        timeout: float = 30.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        """
        Initialize the HTTP transport.

        Args:
            base_url: Server base URL
            api_token: Bearer token
            timeout: Request timeout in seconds
            transport: Optional httpx transport (e.g. httpx.MockTransport)
        """
        self.base_url = base_url.rstrip("/")
        self.api_token = api_token
        self.timeout = timeout
        self._transport = transport
        self._client: httpx.AsyncClient | None = None

    def _get_headers(self) -> dict[str, str]:
        """Get request headers with authentication."""
        return {
            "Authorization": f"Bearer {self.api_token}",
            "Content-Type": "application/json",
        }

    async def _get_client(self) -> httpx.AsyncClient:
        """Get or create HTTP client."""
        if self._client is None:
            self._client = httpx.AsyncClient(
                base_url=self.base_url,
                headers=self._get_headers(),
                timeout=httpx.Timeout(self.timeout, connect=10.0),
                transport=self._transport,
            )
        return self._client

    async def close(self) -> None:
        """Close the HTTP client."""
        if self._client:
            await self._client.aclose()
            self._client = None

    async def __aenter__(self) -> "HttpTransport":
        return self

    async def __aexit__(self, *args: Any) -> None:
        await self.close()

    async def _post(self, path: str, body: dict[str, Any]) -> dict[str, Any]:
        client = await self._get_client()

        try:
            response = await client.post(path, json=body)
        except httpx.TimeoutException as e:
            raise TransportError(f"Request to {path} timed out: {e}", retryable=True) from e
        except httpx.TransportError as e:
            raise TransportError(f"Connection error on {path}: {e}", retryable=True) from e

        logger.debug("POST %s -> HTTP %d", path, response.status_code)
        if response.status_code >= 400:
            raise TransportError(
                f"{path} returned HTTP {response.status_code}: {response.text[:200]}",
                status=response.status_code,
                retryable=response.status_code in RETRYABLE_STATUS,
            )

        try:
            return response.json()
        except ValueError as e:
            raise TransportError(f"{path} returned invalid JSON", status=response.status_code) from e

    async def pull(self, request: PullRequest) -> PullResponse:
        data = await self._post("/sync/pull", request.to_wire())
        try:
            return PullResponse.model_validate(data)
        except ValidationError as e:
            raise TransportError(f"Unexpected pull response: {e.error_count()} error(s)") from e

    async def push(self, request: PushRequest) -> PushResponse:
        data = await self._post("/sync/push", request.to_wire())
        try:
            response = PushResponse.model_validate(data)
        except ValidationError as e:
            raise TransportError(f"Unexpected push response: {e.error_count()} error(s)") from e
        if not response.success:
            raise TransportError("Server rejected the push", retryable=True)
        return response


def create_http_transport(settings: Settings) -> HttpTransport:
    """Create an HttpTransport from settings."""
    return HttpTransport(
        base_url=settings.client.base_url,
        api_token=settings.client.api_token.get_secret_value(),
        timeout=settings.client.request_timeout_seconds,
    )
