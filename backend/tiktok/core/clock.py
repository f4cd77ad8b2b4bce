"""Injectable time source and the timers built on it.

Every delay in the worker (backoff, cooldowns, polling) goes through a
``Clock`` so tests can drive time by hand.
"""

from __future__ import annotations

import asyncio
import logging
import time
from collections.abc import Callable
from datetime import datetime, timezone
from typing import Protocol

logger = logging.getLogger(__name__)


class Clock(Protocol):
    def monotonic(self) -> float: ...

    def now(self) -> datetime: ...

    async def sleep(self, seconds: float) -> None: ...


class SystemClock:
    """Wall clock plus asyncio.sleep."""

    def monotonic(self) -> float:
        return time.monotonic()

    def now(self) -> datetime:
        return datetime.now(timezone.utc)

    async def sleep(self, seconds: float) -> None:
        await asyncio.sleep(seconds)


class Timer:
    """A callback that fires once after ``delay`` seconds of clock time."""

    def __init__(
        self,
        scheduler: Scheduler,
        delay: float,
        callback: Callable[[], None],
        label: str = "",
    ) -> None:
        self.delay = delay
        self.label = label
        self._scheduler = scheduler
        self._callback = callback
        self._task = asyncio.create_task(self._run())

    async def _run(self) -> None:
        try:
            await self._scheduler.clock.sleep(self.delay)
            self._callback()
        finally:
            self._scheduler._timers.discard(self)

    def cancel(self) -> None:
        self._task.cancel()

    @property
    def done(self) -> bool:
        return self._task.done()


class Scheduler:
    """Owns the pending timers of one component so they can be dropped together."""

    def __init__(self, clock: Clock) -> None:
        self.clock = clock
        self._timers: set[Timer] = set()

    def call_later(self, delay: float, callback: Callable[[], None], label: str = "") -> Timer:
        timer = Timer(self, delay, callback, label)
        self._timers.add(timer)
        return timer

    def cancel_all(self) -> None:
        for timer in list(self._timers):
            timer.cancel()
        self._timers.clear()

    @property
    def pending(self) -> list[Timer]:
        return [t for t in self._timers if not t.done]
