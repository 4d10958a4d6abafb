"""
Time source and periodic ticker.

Everything in the engine that waits or reads the time goes through a Clock,
so tests can swap in a synthetic one and run cycles without real delays.
"""

from __future__ import annotations

import asyncio
import json
import logging
import time
from typing import Awaitable, Callable, Optional

log = logging.getLogger("quotebot")


class Clock:
    """Monotonic seconds for elapsed-time checks plus an awaitable sleep."""

    def now(self) -> float:
        return time.monotonic()

    async def sleep(self, seconds: float) -> None:
        if seconds > 0:
            await asyncio.sleep(seconds)


class IntervalTicker:
    """
    Calls an async callback every `interval` seconds until stopped.

    The callback is awaited, so a slow tick delays the next one instead of
    overlapping it. Exceptions are logged and the ticker keeps running.

    Usage:
        ticker = IntervalTicker(5.0, engine.on_watchdog_tick, name="watchdog")
        ticker.start()
        ...
        await ticker.stop()
    """

    def __init__(
        self,
        interval: float,
        callback: Callable[[], Awaitable[None]],
        clock: Optional[Clock] = None,
        name: str = "ticker",
    ) -> None:
        if interval <= 0:
            raise ValueError("interval must be > 0")
        self.interval = interval
        self._callback = callback
        self._clock = clock or Clock()
        self._name = name
        self._task: Optional[asyncio.Task] = None
        self._ticks = 0

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    @property
    def ticks(self) -> int:
        return self._ticks

    def start(self) -> None:
        if self.running:
            return
        self._task = asyncio.create_task(self._run(), name=self._name)

    async def stop(self) -> None:
        task, self._task = self._task, None
        if task is None:
            return
        task.cancel()
        await asyncio.gather(task, return_exceptions=True)

    async def _run(self) -> None:
        while True:
            await self._clock.sleep(self.interval)
            self._ticks += 1
            try:
                await self._callback()
            except asyncio.CancelledError:
                raise
            except Exception as exc:
                log.error(json.dumps({"event": f"{self._name}_error", "err": str(exc)}))
