"""Authoritative server clock."""

from __future__ import annotations

import threading
import time
from typing import Callable


class ServerClock:
    """
    Epoch-millisecond clock that never repeats or goes backwards.

    Every call returns a value strictly greater than the previous one, so a
    pull snapshot taken before a push is always below that push's timestamp.

    Example:
        clock = ServerClock()
        clock.seed(store.max_updated_at())
        now_ms = clock.now_ms()
    """

    def __init__(self, source: Callable[[], float] = time.time) -> None:
        """
        Args:
            source: Wall clock returning seconds since the epoch
        """
        self._source = source
        self._last = 0
        self._lock = threading.Lock()

    def seed(self, floor_ms: int) -> None:
        """Never hand out a value at or below floor_ms (e.g. after a restart)."""
        with self._lock:
            self._last = max(self._last, floor_ms)

    def now_ms(self) -> int:
        with self._lock:
            now = int(self._source() * 1000)
            if now <= self._last:
                now = self._last + 1
            self._last = now
            return now
