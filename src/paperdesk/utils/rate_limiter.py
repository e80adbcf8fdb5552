"""Async interval rate limiter shared by the source adapters."""

from __future__ import annotations

import asyncio
import time
from collections.abc import Awaitable, Callable


class RateLimiter:
    """Spaces out requests so at most *requests_per_second* start per second.

    Parameters
    ----------
    requests_per_second : float
        Maximum sustained request rate. ``0`` disables limiting.
    now, sleep : callables
        Injected clock and sleeper, so tests can run without real delays.
    """

    def __init__(
        self,
        requests_per_second: float,
        *,
        now: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ) -> None:
        self.rate = requests_per_second
        self._interval = 1.0 / requests_per_second if requests_per_second > 0 else 0.0
        self._last_request: float | None = None
        self._now = now
        self._sleep = sleep
        self._lock = asyncio.Lock()

    @property
    def interval(self) -> float:
        return self._interval

    async def acquire(self) -> float:
        """Wait until a request slot is available. Returns the seconds waited."""
        if self._interval <= 0:
            return 0.0
        # Concurrent callers queue up so each one gets its own slot.
        async with self._lock:
            waited = 0.0
            if self._last_request is not None:
                elapsed = self._now() - self._last_request
                if elapsed < self._interval:
                    waited = self._interval - elapsed
                    await self._sleep(waited)
            self._last_request = self._now()
            return waited
