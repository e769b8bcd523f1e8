"""Seekable anomaly probe.

Some live backends report a seekable end about an hour ahead of anything that
can actually be played. The probe samples the window every few seconds and
records whether the raw calibration error sits near that one hour mark, which
is what the skew fallback pipeline in :mod:`livejump.pll` compensates for.
"""

from __future__ import annotations

import logging
import math
import time
from collections.abc import Callable
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any, Final

from livejump.stream import StreamHandle, get_current_position, read_window
from livejump.utils import is_finite

if TYPE_CHECKING:
    from livejump.events import DiagnosticEmitter
    from livejump.state import CalibrationState
    from livejump.timers import PeriodicTimer, TimerRegistry

logger = logging.getLogger(__name__)

PROBE_INTERVAL_SEC: Final[float] = 5.0
HOUR_LEAD_SEC: Final[float] = 3600.0
HOUR_TOLERANCE_SEC: Final[float] = 180.0
SUMMARY_INTERVAL_SEC: Final[float] = 60.0
SIGNIFICANT_SKEW_CHANGE_SEC: Final[float] = 60.0


@dataclass(frozen=True, slots=True)
class ProbeSample:
    """One probe measurement."""

    latency_sec: float
    start: float
    end: float
    buffered_end: float
    position: float
    d_cur: float
    """Buffered end minus seekable end; negative when the seekable end leads."""
    future_lead: float
    lag_to_buffered: float
    c: float
    d: float
    e_raw: float
    e_with_d: float
    approx_hour: bool | None
    """Whether ``e_raw`` is within tolerance of one hour, None while uncalibrated."""

    def to_dict(self) -> dict[str, Any]:
        return {
            "L": self.latency_sec,
            "start": self.start,
            "end": self.end,
            "bufferedEnd": self.buffered_end,
            "currentTime": self.position,
            "D_cur": self.d_cur,
            "futureLeadSec": self.future_lead,
            "lagToBufferedSec": self.lag_to_buffered,
            "C": self.c,
            "D": self.d,
            "e_raw": self.e_raw,
            "e_withD": self.e_with_d,
            "approx60_hypothesis": self.approx_hour,
        }


class SeekableAnomalyProbe:
    """Periodic window sampler for one attachment."""

    def __init__(
        self,
        stream: StreamHandle,
        state: CalibrationState,
        timers: TimerRegistry,
        *,
        latency_sec: float,
        interval_sec: float = PROBE_INTERVAL_SEC,
        emitter: DiagnosticEmitter | None = None,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self._stream: StreamHandle | None = stream
        self._state = state
        self._timers = timers
        self._latency_sec = latency_sec
        self._interval_sec = interval_sec
        self._emitter = emitter
        self._clock = clock
        self._timer: PeriodicTimer | None = None
        self._prev_d_cur: float | None = None
        self._prev_approx: bool | None = None
        self._last_summary: float | None = None
        self.last_sample: ProbeSample | None = None

    def start(self) -> None:
        """Take a sample now and then every ``interval_sec``."""
        if self._timer is not None:
            return
        logger.info("Seekable probe started (latency %.1fs)", self._latency_sec)
        self.tick()
        self._timer = self._timers.call_every(self._interval_sec, self.tick, name="seekable-probe")

    def stop(self) -> None:
        if self._timer is not None:
            self._timer.cancel()
            self._timer = None
        self._stream = None

    def tick(self) -> ProbeSample | None:
        stream = self._stream
        if stream is None:
            return None
        sample = self._measure(stream)
        self.last_sample = sample
        if self._emitter is not None:
            self._emitter.emit("seekable-probe", **sample.to_dict())

        now = self._clock()
        if self._last_summary is None or now - self._last_summary >= SUMMARY_INTERVAL_SEC:
            self._last_summary = now
            logger.info(
                "Seekable probe: D_cur=%.1f future_lead=%.1f lag=%.1f end=%.1f buffered=%.1f",
                sample.d_cur,
                sample.future_lead,
                sample.lag_to_buffered,
                sample.end,
                sample.buffered_end,
            )

        significant = is_finite(sample.d_cur) and (
            self._prev_d_cur is None
            or abs(sample.d_cur - self._prev_d_cur) >= SIGNIFICANT_SKEW_CHANGE_SEC
        )
        if significant or sample.approx_hour != self._prev_approx:
            logger.info(
                "Seekable probe update: D_cur=%.1f approx_hour=%s e_raw=%.1f e_withD=%.1f",
                sample.d_cur,
                sample.approx_hour,
                sample.e_raw,
                sample.e_with_d,
            )
        if is_finite(sample.d_cur):
            self._prev_d_cur = sample.d_cur
        self._prev_approx = sample.approx_hour
        return sample

    def _measure(self, stream: StreamHandle) -> ProbeSample:
        window = read_window(stream)
        position = get_current_position(stream)
        c = self._state.c
        d = self._state.d

        live = self._clock() - self._latency_sec
        e_raw = (window.end + c) - live if c is not None else math.nan
        e_with_d = (window.end + d + c) - live if c is not None else math.nan
        d_cur = window.buffered_end - window.end if window.has_buffered else math.nan
        lag = window.buffered_end - position if window.has_buffered else math.nan
        approx_hour = (
            abs(e_raw - HOUR_LEAD_SEC) <= HOUR_TOLERANCE_SEC if is_finite(e_raw) else None
        )

        return ProbeSample(
            latency_sec=self._latency_sec,
            start=window.start,
            end=window.end,
            buffered_end=window.buffered_end,
            position=position,
            d_cur=d_cur,
            future_lead=window.future_lead,
            lag_to_buffered=lag,
            c=c if c is not None else math.nan,
            d=d,
            e_raw=e_raw,
            e_with_d=e_with_d,
            approx_hour=approx_hour,
        )
