"""Bounded retry with exponential backoff for client sync calls."""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from typing import Awaitable, Callable, TypeVar

from delta_sync.config import RetryConfig
from delta_sync.errors import RetryExhausted, SyncError

logger = logging.getLogger(__name__)

T = TypeVar("T")

Sleep = Callable[[float], Awaitable[None]]


@dataclass
class RetryPolicy:
    """
    Retry retryable SyncErrors with exponentially growing delays.

    Non-retryable errors (malformed requests, 4xx responses) propagate on the
    first attempt.

    Example:
        policy = RetryPolicy(max_attempts=3, base_delay=0.5)
        response = await policy.run(lambda: transport.pull(request), "pull")
    """

    max_attempts: int = 3
    base_delay: float = 0.5
    max_delay: float = 8.0
    multiplier: float = 2.0

    def __post_init__(self) -> None:
        if self.max_attempts < 1:
            raise ValueError("max_attempts must be at least 1")

    @classmethod
    def from_config(cls, config: RetryConfig) -> "RetryPolicy":
        return cls(
            max_attempts=config.max_attempts,
            base_delay=config.base_delay_seconds,
            max_delay=config.max_delay_seconds,
            multiplier=config.multiplier,
        )

    def delay_for(self, attempt: int) -> float:
        """Delay after the given failed attempt (1-based)."""
        return min(self.base_delay * (self.multiplier ** (attempt - 1)), self.max_delay)

    async def run(
        self,
        operation: Callable[[], Awaitable[T]],
        description: str = "operation",
        sleep: Sleep = asyncio.sleep,
    ) -> T:
        """
        Run operation until it succeeds or attempts run out.

        Raises:
            RetryExhausted: after the last retryable failure
            SyncError: immediately for non-retryable failures
        """
        last_error: SyncError | None = None

        for attempt in range(1, self.max_attempts + 1):
            try:
                return await operation()
            except SyncError as e:
                if not e.retryable:
                    raise
                last_error = e

            if attempt < self.max_attempts:
                delay = self.delay_for(attempt)
                logger.warning(
                    "%s failed (%s), attempt %d/%d, retrying in %.1fs",
                    description,
                    last_error,
                    attempt,
                    self.max_attempts,
                    delay,
                    extra={"attempt": attempt},
                )
                await sleep(delay)

        raise RetryExhausted(description, self.max_attempts, last_error) from last_error
