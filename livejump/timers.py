"""Timer bookkeeping for a stream attachment.

Every delay and interval created by the calibration components goes through a
:class:`TimerRegistry` so that detaching a stream cancels all of them and no
callback fires against a stale stream reference.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Callable
from typing import Any

logger = logging.getLogger(__name__)


class PeriodicTimer:
    """Repeating timer built from chained ``call_later`` handles."""

    def __init__(
        self,
        registry: TimerRegistry,
        interval: float,
        callback: Callable[[], Any],
        name: str,
    ) -> None:
        self._registry = registry
        self._interval = interval
        self._callback = callback
        self.name = name
        self._handle: asyncio.TimerHandle | None = None
        self._cancelled = False

    @property
    def interval(self) -> float:
        return self._interval

    @property
    def cancelled(self) -> bool:
        return self._cancelled

    def _schedule(self) -> None:
        self._handle = self._registry.call_later(self._interval, self._fire, name=self.name)

    def _fire(self) -> None:
        self._handle = None
        if self._cancelled:
            return
        try:
            self._callback()
        finally:
            # Reschedule even when the tick failed; the registry logs the error.
            if not self._cancelled:
                self._schedule()

    def cancel(self) -> None:
        """Stop the timer; safe to call more than once."""
        self._cancelled = True
        if self._handle is not None:
            self._registry.cancel(self._handle)
            self._handle = None
        self._registry.discard_periodic(self)


class TimerRegistry:
    """Owns every timer handle created for one attachment.

    Args:
        loop: Event loop providing ``call_later``.
    """

    def __init__(self, loop: asyncio.AbstractEventLoop) -> None:
        self._loop = loop
        self._handles: set[asyncio.TimerHandle] = set()
        self._periodic: set[PeriodicTimer] = set()
        self._closed = False

    @property
    def loop(self) -> asyncio.AbstractEventLoop:
        return self._loop

    @property
    def closed(self) -> bool:
        return self._closed

    def __len__(self) -> int:
        """Number of pending one-shot handles (periodic timers hold one each)."""
        return len(self._handles)

    def call_later(
        self, delay: float, callback: Callable[..., Any], *args: Any, name: str = "timer"
    ) -> asyncio.TimerHandle:
        """Schedule ``callback(*args)`` after ``delay`` seconds.

        Exceptions raised by the callback are logged, never propagated into the
        event loop.

        Raises:
            RuntimeError: If the registry has been closed.
        """
        if self._closed:
            raise RuntimeError("TimerRegistry is closed")

        handle: asyncio.TimerHandle | None = None

        def _run() -> None:
            self._handles.discard(handle)  # type: ignore[arg-type]
            try:
                callback(*args)
            except Exception:
                logger.exception("Timer callback %s failed", name)

        handle = self._loop.call_later(max(0.0, delay), _run)
        self._handles.add(handle)
        return handle

    def call_every(
        self, interval: float, callback: Callable[[], Any], *, name: str = "interval"
    ) -> PeriodicTimer:
        """Run ``callback`` every ``interval`` seconds until cancelled."""
        if interval <= 0:
            raise ValueError("interval must be positive")
        timer = PeriodicTimer(self, interval, callback, name)
        self._periodic.add(timer)
        timer._schedule()  # noqa: SLF001
        return timer

    def cancel(self, handle: asyncio.TimerHandle) -> None:
        """Cancel a single handle created by this registry."""
        handle.cancel()
        self._handles.discard(handle)

    def discard_periodic(self, timer: PeriodicTimer) -> None:
        self._periodic.discard(timer)

    def cancel_all(self) -> None:
        """Cancel every pending timer, one-shot and periodic."""
        for timer in list(self._periodic):
            timer.cancel()
        self._periodic.clear()
        for handle in list(self._handles):
            handle.cancel()
        count = len(self._handles)
        self._handles.clear()
        if count:
            logger.debug("Cancelled %d pending timers", count)

    def close(self) -> None:
        """Cancel everything and refuse new timers."""
        self.cancel_all()
        self._closed = True
