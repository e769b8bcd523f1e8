"""Seek clamping and guarded position changes.

Live backends frequently refuse playback, or stall, exactly at the reported
seekable end, and landing past the buffered frontier stalls even when the
position is nominally seekable. Every seek therefore goes through
:func:`clamp_to_playable` and, when buffered data is known, a second clamp
against the buffered end.
"""

from __future__ import annotations

import inspect
import logging
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any, Final, Literal

from livejump.stream import (
    StreamHandle,
    get_buffered_end,
    get_current_position,
    get_seekable_end,
    get_seekable_start,
)
from livejump.utils import create_task, is_finite

if TYPE_CHECKING:
    from livejump.events import DiagnosticEmitter
    from livejump.timers import TimerRegistry

logger = logging.getLogger(__name__)

GUARD_SEC: Final[float] = 3.0
"""Default guard band subtracted from the seekable end."""
EDGE_BACKOFF_SEC: Final[float] = 0.75
"""Default distance kept from the buffered frontier."""
EDGE_RECHECK_MS: Final[int] = 250
"""Delay before re-checking playback after landing on the end edge."""

ClampReason = Literal["within", "start", "end"]


@dataclass(frozen=True, slots=True)
class PlayableRange:
    """Range a seek was clamped against; ``end`` already has the guard applied."""

    start: float
    end: float

    def to_dict(self) -> dict[str, float]:
        return {"start": self.start, "end": self.end}


@dataclass(frozen=True, slots=True)
class ClampResult:
    """Outcome of clamping a requested position."""

    target: float
    clamped: bool
    reason: ClampReason
    range: PlayableRange


@dataclass(frozen=True, slots=True)
class SeekResult:
    """Fully observable record of one seek."""

    target: float
    clamped: bool
    reason: ClampReason
    range: PlayableRange
    requested: float
    previous: float

    def to_dict(self) -> dict[str, Any]:
        return {
            "target": self.target,
            "clamped": self.clamped,
            "reason": self.reason,
            "range": self.range.to_dict(),
            "requested": self.requested,
            "previous": self.previous,
        }


def clamp_to_playable(
    target: float, start: float, end: float, guard_sec: float = GUARD_SEC
) -> ClampResult:
    """Clamp ``target`` into ``[start, end - guard_sec]``.

    The guarded end never drops below ``start``.
    """
    max_end = max(start, end - guard_sec)
    playable = PlayableRange(start, max_end)
    if target < start:
        return ClampResult(start, True, "start", playable)
    if target > max_end:
        return ClampResult(max_end, True, "end", playable)
    return ClampResult(target, False, "within", playable)


class SeekGuard:
    """Applies clamped seeks to a stream.

    Args:
        timers: Registry used for the post-seek playback re-check.
        guard_sec: Guard band at the seekable end.
        edge_backoff_sec: Distance kept from the buffered end.
        edge_recheck_ms: Delay of the re-check after an end-edge landing.
        emitter: Optional diagnostic event emitter.
    """

    def __init__(
        self,
        timers: TimerRegistry,
        *,
        guard_sec: float = GUARD_SEC,
        edge_backoff_sec: float = EDGE_BACKOFF_SEC,
        edge_recheck_ms: int = EDGE_RECHECK_MS,
        emitter: DiagnosticEmitter | None = None,
    ) -> None:
        self._timers = timers
        self.guard_sec = guard_sec
        self.edge_backoff_sec = edge_backoff_sec
        self._edge_recheck_ms = edge_recheck_ms
        self._emitter = emitter

    def clamp(self, stream: StreamHandle, target: float) -> ClampResult:
        """Clamp ``target`` against the stream's current window, without seeking."""
        start = get_seekable_start(stream)
        end = get_seekable_end(stream)
        result = clamp_to_playable(target, start, end, self.guard_sec)

        buffered_end = get_buffered_end(stream)
        if is_finite(buffered_end):
            cap = buffered_end - self.edge_backoff_sec
            # A buffered frontier behind the seekable start is stale data.
            if cap >= start and result.target > cap:
                result = ClampResult(
                    target=cap,
                    clamped=True,
                    reason="end",
                    range=PlayableRange(start, min(result.range.end, cap)),
                )
        return result

    def seek(self, stream: StreamHandle, target: float) -> SeekResult:
        """Clamp ``target`` and move the playhead there.

        Raises:
            ValueError: If ``target`` is not a finite number.
        """
        if not is_finite(target):
            raise ValueError(f"seek target must be finite, got {target!r}")

        previous = get_current_position(stream)
        clamp = self.clamp(stream, target)
        self._apply_position(stream, clamp.target)

        result = SeekResult(
            target=clamp.target,
            clamped=clamp.clamped,
            reason=clamp.reason,
            range=clamp.range,
            requested=target,
            previous=previous,
        )
        logger.debug(
            "Seek requested=%.3f applied=%.3f reason=%s range=[%.3f, %.3f]",
            target,
            clamp.target,
            clamp.reason,
            clamp.range.start,
            clamp.range.end,
        )
        if self._emitter is not None:
            self._emitter.seek(**result.to_dict())

        if clamp.reason == "end":
            # The backend may pause when parked on the edge.
            self._resume(stream)
            self._timers.call_later(
                self._edge_recheck_ms / 1000.0,
                self._recheck_playback,
                stream,
                name="seek-edge-recheck",
            )
        return result

    def _apply_position(self, stream: StreamHandle, position: float) -> None:
        fast_seek = getattr(stream, "fast_seek", None)
        try:
            if callable(fast_seek):
                fast_seek(position)
            else:
                stream.current_position = position
        except (ValueError, RuntimeError, OSError) as err:
            # Some backends reject positions at the very edge of the range.
            logger.warning("Stream rejected seek to %.3f: %s", position, err)

    def _resume(self, stream: StreamHandle) -> None:
        play = getattr(stream, "play", None)
        if not callable(play):
            return
        try:
            result = play()
        except (RuntimeError, OSError) as err:
            logger.debug("Resume after edge seek failed: %s", err)
            return
        if inspect.iscoroutine(result):
            create_task(result, loop=self._timers.loop, name="stream-resume")

    def _recheck_playback(self, stream: StreamHandle) -> None:
        if self._timers.closed:
            return
        if getattr(stream, "paused", False):
            logger.debug("Stream paused at live edge, resuming")
            self._resume(stream)
