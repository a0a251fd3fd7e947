from __future__ import annotations

import asyncio
import time
from typing import Awaitable, Callable

from .. import config


class RateLimiter:
    """
    Minimum spacing between the *starts* of consecutive outbound requests.

    Not a token bucket: acquire() only guarantees that at least
    ``min_interval`` seconds separate two successful acquisitions. Concurrent
    callers queue on a lock and are released one spacing apart.
    """

    def __init__(
        self,
        min_interval: float = config.MIN_REQUEST_INTERVAL_MS / 1000,
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ) -> None:
        self.min_interval = min_interval
        self._clock = clock
        self._sleep = sleep
        self._lock = asyncio.Lock()
        self._last_acquired: float | None = None

    @property
    def last_acquired(self) -> float | None:
        return self._last_acquired

    async def acquire(self) -> None:
        async with self._lock:
            if self._last_acquired is not None:
                wait = self.min_interval - (self._clock() - self._last_acquired)
                if wait > 0:
                    await self._sleep(wait)
            self._last_acquired = self._clock()
