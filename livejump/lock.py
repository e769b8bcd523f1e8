"""Playback lock machine.

Derives a "locked" signal from playback events. While locked, neither Edge-Snap
nor the Live-PLL may touch the calibration offset.

Lock events bump a generation counter. A scheduled unlock remembers the
generation it was scheduled under and does nothing if a newer lock happened in
the meantime, so a stale ``seeked`` delay cannot release a lock taken by a
later ``waiting`` event.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Callable
from enum import Enum, auto
from typing import TYPE_CHECKING, Final

from livejump.stream import StreamEvent, StreamHandle

if TYPE_CHECKING:
    from livejump.events import DiagnosticEmitter
    from livejump.state import CalibrationState
    from livejump.timers import TimerRegistry

logger = logging.getLogger(__name__)

DEFAULT_LOCK_MS: Final[int] = 1500
"""Unlock delay after a completed seek."""
DEFAULT_PLAYING_UNLOCK_MS: Final[int] = 250
"""Unlock delay after playback (re)starts."""


class LockState(Enum):
    """Lock machine states."""

    UNLOCKED = auto()
    """Calibration adjustments allowed."""

    LOCKED = auto()
    """Seeking, buffering or stalled: calibration frozen."""


class PlaybackLockMachine:
    """Event driven lock/unlock with generation guarded delayed releases.

    Args:
        state: Calibration state whose ``locked`` flag mirrors this machine.
        timers: Registry owning the delayed unlock handles.
        seeked_unlock_ms: Delay before unlocking after ``seeked``.
        playing_unlock_ms: Delay before unlocking after ``playing``.
        emitter: Optional diagnostic event emitter.
    """

    def __init__(
        self,
        state: CalibrationState,
        timers: TimerRegistry,
        *,
        seeked_unlock_ms: int = DEFAULT_LOCK_MS,
        playing_unlock_ms: int = DEFAULT_PLAYING_UNLOCK_MS,
        emitter: DiagnosticEmitter | None = None,
    ) -> None:
        self._state = state
        self._timers = timers
        self._seeked_unlock_ms = seeked_unlock_ms
        self._playing_unlock_ms = playing_unlock_ms
        self._emitter = emitter
        self._generation = 0
        self._lock_state = LockState.UNLOCKED
        self._pending: set[asyncio.TimerHandle] = set()

    @property
    def lock_state(self) -> LockState:
        return self._lock_state

    @property
    def locked(self) -> bool:
        return self._lock_state is LockState.LOCKED

    @property
    def generation(self) -> int:
        """Number of lock acquisitions so far."""
        return self._generation

    @property
    def pending_unlocks(self) -> int:
        return len(self._pending)

    def bind(self, stream: StreamHandle) -> list[Callable[[], None]]:
        """Subscribe to the stream's playback events.

        Returns:
            Unsubscribe functions for every registered listener.
        """
        return [
            stream.add_event_listener(event, lambda event=event: self.handle_event(event))
            for event in StreamEvent
        ]

    def handle_event(self, event: StreamEvent) -> None:
        """Apply one playback event."""
        if event in (StreamEvent.SEEKING, StreamEvent.WAITING, StreamEvent.STALLED):
            self.lock(event.value)
        elif event is StreamEvent.SEEKED:
            self.release_after(self._seeked_unlock_ms, via="seeked+delay")
        elif event is StreamEvent.PLAYING:
            self.release_after(self._playing_unlock_ms, via="playing+delay")

    def lock(self, via: str) -> None:
        """Lock immediately and invalidate any scheduled unlock."""
        self._generation += 1
        self._set(LockState.LOCKED, via)

    def release_after(self, delay_ms: int, *, via: str) -> asyncio.TimerHandle:
        """Schedule an unlock tied to the current generation."""
        generation = self._generation
        handle: asyncio.TimerHandle | None = None

        def _release() -> None:
            self._pending.discard(handle)  # type: ignore[arg-type]
            if generation != self._generation:
                logger.debug(
                    "Ignoring stale unlock via %s (scheduled gen %d, current %d)",
                    via,
                    generation,
                    self._generation,
                )
                return
            self._set(LockState.UNLOCKED, via)

        handle = self._timers.call_later(delay_ms / 1000.0, _release, name=f"unlock:{via}")
        self._pending.add(handle)
        return handle

    def cancel_pending(self) -> None:
        """Cancel every scheduled unlock."""
        for handle in list(self._pending):
            self._timers.cancel(handle)
        self._pending.clear()

    def reset(self) -> None:
        """Cancel pending unlocks and return to ``UNLOCKED``."""
        self.cancel_pending()
        self._lock_state = LockState.UNLOCKED
        self._state.locked = False

    def _set(self, new_state: LockState, via: str) -> None:
        changed = new_state is not self._lock_state
        self._lock_state = new_state
        self._state.locked = new_state is LockState.LOCKED
        if changed:
            kind = "lock" if new_state is LockState.LOCKED else "unlock"
            logger.debug("%s via %s (generation %d)", kind, via, self._generation)
            if self._emitter is not None:
                self._emitter.emit(kind, via=via, generation=self._generation)
