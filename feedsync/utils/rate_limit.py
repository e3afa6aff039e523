"""Shared request pacing."""

from __future__ import annotations

import asyncio
import time


class RateLimiter:
    """Single gate spacing every outbound call to ``rate`` requests per second."""

    def __init__(self, *, rate: float = 2.0) -> None:
        self.rate = rate
        self._lock = asyncio.Lock()
        self._last_request = 0.0

    @property
    def min_interval(self) -> float:
        if self.rate <= 0:
            return 0.0
        return 1.0 / self.rate

    async def wait(self) -> None:
        async with self._lock:
            elapsed = time.monotonic() - self._last_request
            if elapsed < self.min_interval:
                await asyncio.sleep(self.min_interval - elapsed)
            self._last_request = time.monotonic()
