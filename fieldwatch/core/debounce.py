from __future__ import annotations

import asyncio
import logging
from typing import Awaitable, Callable, Optional

logger = logging.getLogger(__name__)


class Debouncer:
    """
    Runs ``action`` once a burst of trigger() calls has been quiet for
    ``delay`` seconds. A new trigger replaces a timer that has not fired yet;
    an action that already started is left to finish.
    """

    def __init__(self, delay: float, action: Callable[[], Awaitable[None]], name: str = "debounce") -> None:
        self.delay = delay
        self.action = action
        self.name = name
        self._timer: Optional[asyncio.TimerHandle] = None
        self._running: set[asyncio.Task] = set()

    @property
    def pending(self) -> bool:
        return self._timer is not None

    @property
    def in_flight(self) -> int:
        return len(self._running)

    def trigger(self) -> None:
        loop = asyncio.get_running_loop()
        if self._timer is not None:
            self._timer.cancel()
        self._timer = loop.call_later(self.delay, self._fire, loop)

    def _fire(self, loop: asyncio.AbstractEventLoop) -> None:
        self._timer = None
        task = loop.create_task(self._run())
        self._running.add(task)
        task.add_done_callback(self._running.discard)

    async def _run(self) -> None:
        try:
            await self.action()
        except Exception:
            logger.exception("[%s] debounced action failed", self.name)

    def cancel(self) -> None:
        """Drop the pending timer. In-flight actions keep running."""
        if self._timer is not None:
            self._timer.cancel()
            self._timer = None

    async def wait_idle(self) -> None:
        if self._running:
            await asyncio.gather(*list(self._running), return_exceptions=True)
