"""Edge-Snap calibration.

Edge-Snap establishes the offset ``C`` between the stream time axis and epoch
time in one shot, anchored at the live edge under an assumed broadcast
latency::

    C = (now - latency) - effective_end

It is a full overwrite, never an incremental update, and it is refused while
playback is locked. While the stream is uncalibrated an edge monitor retries
the snap every second and gently nudges the playhead toward the edge when it
is close but not close enough.
"""

from __future__ import annotations

import logging
import math
import time
from collections.abc import Callable
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any

from livejump.stream import (
    StreamHandle,
    effective_end,
    get_buffered_end,
    get_current_position,
    get_seekable_end,
    get_seekable_start,
    is_at_edge,
    is_near_live_edge,
)
from livejump.utils import is_finite

if TYPE_CHECKING:
    from livejump.config import CalibrationConfig
    from livejump.events import DiagnosticEmitter
    from livejump.seek import SeekGuard, SeekResult
    from livejump.state import CalibrationState
    from livejump.timers import PeriodicTimer, TimerRegistry

logger = logging.getLogger(__name__)


@dataclass(frozen=True, slots=True)
class SnapResult:
    """Outcome of one Edge-Snap attempt."""

    ok: bool
    reason: str
    offset: float | None = None
    effective_end: float | None = None
    d: float | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "ok": self.ok,
            "reason": self.reason,
            "offset": self.offset,
            "effectiveEnd": self.effective_end,
            "D": self.d,
        }


class CalibrationEstimator:
    """Edge-Snap estimator and live-edge monitor for one attachment.

    Args:
        stream: The attached stream.
        state: Calibration state to write.
        config: Static configuration.
        timers: Registry for the edge monitor.
        seek_guard: Used by the live-edge nudge.
        emitter: Optional diagnostic event emitter.
        clock: Wall clock returning epoch seconds.
    """

    def __init__(
        self,
        stream: StreamHandle,
        state: CalibrationState,
        config: CalibrationConfig,
        timers: TimerRegistry,
        seek_guard: SeekGuard,
        *,
        emitter: DiagnosticEmitter | None = None,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self._stream: StreamHandle | None = stream
        self._state = state
        self._config = config
        self._timers = timers
        self._seek_guard = seek_guard
        self._emitter = emitter
        self._clock = clock
        self._monitor: PeriodicTimer | None = None
        self._last_nudge_ms: float | None = None

    def effective_end(self) -> float:
        """Live edge used for calibration, NaN without a usable stream."""
        if self._stream is None:
            return math.nan
        return effective_end(self._stream, self._config.prefer_buffered_threshold_sec)

    def near_edge(self) -> bool:
        """Whether the playhead sits at the buffered frontier or near the seekable end."""
        stream = self._stream
        if stream is None:
            return False
        return is_at_edge(stream, self._config.edge_slack_sec) or is_near_live_edge(
            stream, self._config.near_live_threshold_sec
        )

    def snap(self, *, manual: bool = False) -> SnapResult:
        """Run Edge-Snap.

        Args:
            manual: The caller asserts the playhead is at the live edge, so the
                near-edge test is skipped.
        """
        stream = self._stream
        if stream is None:
            return self._skip("no-stream")
        if self._state.locked:
            return self._skip("locked")
        if not manual and not self.near_edge():
            return self._skip("not-at-edge")

        end = self.effective_end()
        if not is_finite(end) or end <= 0:
            return self._skip("invalid-ends")

        now = self._clock()
        previous = self._state.c
        offset = (now - self._config.latency_sec) - end
        seek_end = get_seekable_end(stream)
        # D keeps e = (seekable_end + D + C) - (now - L) at zero right after the snap.
        d = end - seek_end if seek_end > 0 else 0.0

        self._state.snap_offset(offset)
        self._state.set_skew(d)

        logger.info(
            "Edge-Snap %s: C=%.3f (was %s) effective_end=%.3f D=%.3f",
            "manual" if manual else "auto",
            offset,
            "none" if previous is None else f"{previous:.3f}",
            end,
            d,
        )
        if self._emitter is not None:
            self._emitter.emit(
                "edge-snap",
                manual=manual,
                prev_c=previous,
                c=offset,
                d=d,
                effective_end=end,
                seekable_end=seek_end,
                buffered_end=get_buffered_end(stream),
                position=get_current_position(stream),
            )
        return SnapResult(True, "snapped", offset=offset, effective_end=end, d=d)

    def provisional_offset(self) -> float | None:
        """Session pinned provisional offset, computed on first use.

        Uses the Edge-Snap formula but never writes ``C``. Once pinned the
        value is reused for the rest of the attachment so repeated jumps share
        one reference.
        """
        pinned = self._state.provisional_offset
        if pinned is not None:
            return pinned
        end = self.effective_end()
        if not is_finite(end) or end <= 0:
            return None
        pinned = (self._clock() - self._config.latency_sec) - end
        self._state.provisional_offset = pinned
        logger.debug("Pinned provisional offset %.3f (effective_end=%.3f)", pinned, end)
        if self._emitter is not None:
            self._emitter.emit("provisional-pin", offset=pinned, effective_end=end)
        return pinned

    def start(self) -> None:
        """Start the edge monitor and pin a provisional offset if configured."""
        if self._monitor is not None:
            return
        if self._config.provisional_on_start and not self._state.is_calibrated:
            self.provisional_offset()
        self._monitor = self._timers.call_every(
            self._config.edge_monitor_interval_ms / 1000.0,
            self._monitor_tick,
            name="edge-monitor",
        )
        logger.debug("Edge monitor started")

    def stop(self) -> None:
        if self._monitor is not None:
            self._monitor.cancel()
            self._monitor = None
        self._stream = None

    def _monitor_tick(self) -> None:
        if self._stream is None or self._state.is_calibrated:
            return
        result = self.snap()
        if not result.ok and result.reason == "not-at-edge":
            self.nudge_to_live_edge()

    def nudge_to_live_edge(self) -> SeekResult | None:
        """Seek just behind the buffered frontier when already close to the edge.

        Skipped while locked, within the cooldown, or when the playhead is
        further than ``near_live_slack_sec`` from the seekable end.
        """
        stream = self._stream
        if stream is None or self._state.locked:
            return None
        now_ms = self._clock() * 1000.0
        if (
            self._last_nudge_ms is not None
            and now_ms - self._last_nudge_ms < self._config.nudge_cooldown_ms
        ):
            return None
        end = get_seekable_end(stream)
        position = get_current_position(stream)
        if not is_finite(position) or end <= 0:
            return None
        distance = end - position
        if distance < 0 or distance > self._config.near_live_slack_sec:
            return None
        buffered_end = get_buffered_end(stream)
        if not is_finite(buffered_end):
            return None
        target = max(get_seekable_start(stream), buffered_end - self._config.nudge_backoff_sec)
        result = self._seek_guard.seek(stream, target)
        self._last_nudge_ms = now_ms
        logger.debug("Nudged toward live edge: target=%.3f distance=%.3f", target, distance)
        if self._emitter is not None:
            self._emitter.emit("nudge", target=result.target, distance=distance)
        return result

    def _skip(self, reason: str) -> SnapResult:
        logger.debug("Edge-Snap skipped: %s", reason)
        if self._emitter is not None:
            self._emitter.emit("edge-snap-skip", reason=reason)
        return SnapResult(False, reason)
