"""
Tick sources for time-driven playback work.

The crossfade ramp is driven by a fixed-step timer. Going through a
Scheduler keeps the timing injectable: production uses the event loop's
timers, tests use a virtual clock.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Callable
from typing import Protocol

logger = logging.getLogger(__name__)


class TickHandle(Protocol):
    def cancel(self) -> None: ...


class Scheduler(Protocol):
    def call_every(self, interval: float, callback: Callable[[], None]) -> TickHandle:
        """Call `callback` every `interval` seconds until the handle is cancelled."""
        ...


class RepeatingTimer:
    """
    Fixed-cadence timer on top of `loop.call_at`.

    Deadlines are computed from the start time, not from the previous
    callback, so a late tick does not push back every later one.
    """

    def __init__(
        self,
        loop: asyncio.AbstractEventLoop,
        interval: float,
        callback: Callable[[], None],
    ) -> None:
        if interval <= 0:
            raise ValueError("interval must be positive")
        self._loop = loop
        self._interval = interval
        self._callback = callback
        self._start = loop.time()
        self._ticks = 0
        self._cancelled = False
        self._handle: asyncio.TimerHandle | None = None
        self._schedule()

    @property
    def cancelled(self) -> bool:
        return self._cancelled

    def _schedule(self) -> None:
        deadline = self._start + (self._ticks + 1) * self._interval
        self._handle = self._loop.call_at(deadline, self._fire)

    def _fire(self) -> None:
        if self._cancelled:
            return
        self._ticks += 1
        try:
            self._callback()
        except Exception:
            logger.exception("Error in scheduled tick")
        if not self._cancelled:
            self._schedule()

    def cancel(self) -> None:
        self._cancelled = True
        if self._handle is not None:
            self._handle.cancel()
            self._handle = None


class AsyncioScheduler:
    """Scheduler backed by the running event loop."""

    def call_every(self, interval: float, callback: Callable[[], None]) -> RepeatingTimer:
        return RepeatingTimer(asyncio.get_running_loop(), interval, callback)
