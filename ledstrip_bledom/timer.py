"""Cancellable timers for the link lifecycle."""
from __future__ import annotations

import asyncio
import logging
from typing import Callable

_LOGGER = logging.getLogger(__name__)


class TimerHandle:
    """A single-shot timer on the running loop.

    ``reset`` always cancels the previous pending fire before scheduling a
    new one, so at most one callback is ever pending.
    """

    def __init__(self, callback: Callable[[], None]) -> None:
        self._callback = callback
        self._handle: asyncio.TimerHandle | None = None

    @property
    def pending(self) -> bool:
        return self._handle is not None

    def reset(self, delay: float) -> None:
        self.cancel()
        loop = asyncio.get_running_loop()
        self._handle = loop.call_later(delay, self._fire)

    def cancel(self) -> None:
        if self._handle:
            self._handle.cancel()
            self._handle = None

    def _fire(self) -> None:
        self._handle = None
        self._callback()


class IdleTimer:
    """Debounced inactivity watchdog.

    Every ``reset`` pushes the fire time ``delay`` seconds into the future.
    A delay of 0 disables the watchdog and keeps the link up.
    """

    def __init__(self, delay: float, on_idle: Callable[[], None]) -> None:
        self._delay = delay
        self._timer = TimerHandle(on_idle)

    @property
    def delay(self) -> float:
        return self._delay

    @property
    def pending(self) -> bool:
        return self._timer.pending

    def reset(self) -> None:
        if not self._delay:
            return
        _LOGGER.debug("Rescheduling idle disconnect in %ss", self._delay)
        self._timer.reset(self._delay)

    def cancel(self) -> None:
        self._timer.cancel()
