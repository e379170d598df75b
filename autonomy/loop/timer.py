"""Cancellable repeating timer built on a single asyncio task."""

from __future__ import annotations

import asyncio
import logging
from typing import Awaitable, Callable

logger = logging.getLogger(__name__)

SleepFn = Callable[[float], Awaitable[None]]
TimerCallback = Callable[[], Awaitable[None]]


class RepeatingTimer:
    """Fires a callback every `interval` seconds until stopped.

    Each firing runs the callback as its own task, so a slow callback
    never delays the next firing. stop() cancels future firings only;
    callbacks already running finish on their own.

    The sleep primitive is injectable so tests can drive the timer from
    a virtual clock.
    """

    def __init__(
        self,
        interval: float,
        callback: TimerCallback,
        *,
        name: str = "timer",
        sleep: SleepFn = asyncio.sleep,
    ) -> None:
        if interval <= 0:
            raise ValueError(f"interval must be positive, got {interval}")
        self.interval = interval
        self.name = name
        self._callback = callback
        self._sleep = sleep
        self._task: asyncio.Task | None = None
        self._inflight: set[asyncio.Task] = set()
        self.fire_count = 0

    @property
    def active(self) -> bool:
        return self._task is not None and not self._task.done()

    @property
    def inflight(self) -> int:
        """Number of firings still running."""
        return len(self._inflight)

    def start(self) -> None:
        if self.active:
            return
        self._task = asyncio.create_task(self._run(), name=self.name)

    async def stop(self) -> None:
        if self._task is None:
            return
        self._task.cancel()
        try:
            await self._task
        except asyncio.CancelledError:
            pass
        self._task = None

    async def _run(self) -> None:
        while True:
            try:
                await self._sleep(self.interval)
            except asyncio.CancelledError:
                break
            self.fire_count += 1
            task = asyncio.create_task(
                self._fire(), name=f"{self.name}-{self.fire_count}"
            )
            self._inflight.add(task)
            task.add_done_callback(self._inflight.discard)

    async def _fire(self) -> None:
        try:
            await self._callback()
        except asyncio.CancelledError:
            raise
        except Exception:
            logger.exception("Timer %s callback failed", self.name)
