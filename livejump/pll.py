"""Live-PLL drift correction.

Once Edge-Snap has established ``C`` the Live-PLL keeps it honest. Every tick
it measures::

    e = (seekable_end + D_eff + C) - (now - latency)

and, after ``consec_n`` consecutive ticks outside the hysteresis band, moves
``C`` a small, rate limited step toward zero error. Single wild readings
(outliers) and small jitter (hysteresis) never touch ``C``, so playback never
sees a visible jump.

The tick also runs the skew fallback pipeline: some backends report a
seekable end 50 to 70 minutes ahead of the buffered end. When five
consecutive "future lead" samples fall in that band and no confirmed ``D``
exists, ``-median(samples)`` is used as a provisional ``D`` for three minutes.
"""

from __future__ import annotations

import logging
import math
import time
from collections.abc import Callable
from dataclasses import dataclass
from enum import Enum, auto
from typing import TYPE_CHECKING

from livejump.errors import CalibrationLockedError
from livejump.stream import StreamHandle, get_buffered_end, get_seekable_end
from livejump.utils import is_finite, robust_median

if TYPE_CHECKING:
    from livejump.config import CalibrationConfig
    from livejump.events import DiagnosticEmitter
    from livejump.state import CalibrationState
    from livejump.timers import PeriodicTimer, TimerRegistry

logger = logging.getLogger(__name__)


class PllAction(Enum):
    """What a single tick did."""

    SKIPPED = auto()
    OUTLIER = auto()
    WITHIN_HYSTERESIS = auto()
    ACCUMULATING = auto()
    ADJUSTED = auto()


@dataclass(frozen=True, slots=True)
class PllTickResult:
    """Observable result of one tick."""

    action: PllAction
    error: float | None = None
    delta: float = 0.0
    reason: str | None = None


class DriftCorrector:
    """Periodic bounded-rate corrector for the calibration offset.

    Args:
        stream: The attached stream.
        state: Calibration state to read and adjust.
        config: Static configuration (``config.pll`` holds the loop parameters).
        timers: Registry for the tick interval.
        emitter: Optional diagnostic event emitter.
        clock: Wall clock returning epoch seconds.
    """

    def __init__(
        self,
        stream: StreamHandle,
        state: CalibrationState,
        config: CalibrationConfig,
        timers: TimerRegistry,
        *,
        emitter: DiagnosticEmitter | None = None,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self._stream: StreamHandle | None = stream
        self._state = state
        self._config = config
        self._timers = timers
        self._emitter = emitter
        self._clock = clock
        self._interval: PeriodicTimer | None = None

    @property
    def running(self) -> bool:
        return self._interval is not None

    def start(self) -> None:
        """Start ticking every ``pll.interval_ms``."""
        if self._interval is not None:
            return
        self._interval = self._timers.call_every(
            self._config.pll.interval_ms / 1000.0, self.tick, name="live-pll"
        )
        logger.debug("Live-PLL started (interval %d ms)", self._config.pll.interval_ms)

    def stop(self) -> None:
        if self._interval is not None:
            self._interval.cancel()
            self._interval = None
        self._stream = None

    def tick(self) -> PllTickResult:
        """Run one measurement and, if warranted, one correction."""
        state = self._state
        pll = self._config.pll
        stream = self._stream

        if stream is None:
            return self._skipped("no-stream")
        if state.locked:
            return self._skipped("locked")
        if not state.is_calibrated:
            return self._skipped("uncalibrated")

        seekable_end = get_seekable_end(stream)
        if not is_finite(seekable_end):
            return self._skipped("invalid-seekable")

        now = self._clock()
        now_ms = now * 1000.0
        self._update_skew_fallback(stream, seekable_end, now_ms)

        d_eff = state.effective_skew(now_ms)
        current = state.require_c()
        error = (seekable_end + d_eff + current) - (now - self._config.latency_sec)

        if abs(error) > pll.outlier_e_sec:
            state.consecutive_error_count = 0
            logger.debug("Live-PLL outlier e=%.3f (threshold %.1f)", error, pll.outlier_e_sec)
            self._emit("pll-outlier", e=error, threshold=pll.outlier_e_sec)
            return PllTickResult(PllAction.OUTLIER, error=error)

        if abs(error) <= pll.hys_sec:
            state.consecutive_error_count = 0
            return PllTickResult(PllAction.WITHIN_HYSTERESIS, error=error)

        state.consecutive_error_count += 1
        if state.consecutive_error_count < pll.consec_n:
            self._emit(
                "pll-accumulating",
                e=error,
                consec=state.consecutive_error_count,
                needed=pll.consec_n,
            )
            return PllTickResult(PllAction.ACCUMULATING, error=error)

        state.consecutive_error_count = 0
        target = current - pll.alpha * error
        max_step = pll.max_step_sec
        delta = max(-max_step, min(max_step, target - current))
        try:
            new_c = state.adjust_offset(delta)
        except CalibrationLockedError:
            return self._skipped("locked")

        logger.debug(
            "Live-PLL adjust e=%.3f C %.4f -> %.4f (delta %.4f)", error, current, new_c, delta
        )
        self._emit(
            "pll-adjust",
            e=error,
            prev_c=current,
            new_c=new_c,
            delta=delta,
            target_c=target,
            seekable_end=seekable_end,
            d_eff=d_eff,
        )
        return PllTickResult(PllAction.ADJUSTED, error=error, delta=delta)

    def _update_skew_fallback(
        self, stream: StreamHandle, seekable_end: float, now_ms: float
    ) -> None:
        state = self._state
        cfg = self._config

        if state.d != 0:
            # A confirmed D always wins; no blending with the fallback.
            if state.d_fallback.value is not None:
                self._emit(
                    "dfallback-clear", reason="D-confirmed", dfallback=state.d_fallback.value
                )
            state.clear_fallback()
            state.lead_samples.clear()
            return

        buffered_end = get_buffered_end(stream)
        future_lead = seekable_end - buffered_end if is_finite(buffered_end) else math.nan
        if not is_finite(future_lead):
            return

        if cfg.lead_band_min_sec <= future_lead <= cfg.lead_band_max_sec:
            state.lead_samples.append(future_lead)
        else:
            state.lead_samples.clear()

        fallback = state.d_fallback
        expired = fallback.value is not None and now_ms > fallback.until_ms
        if expired:
            self._emit("dfallback-clear", reason="ttl-expired", dfallback=fallback.value)
            state.clear_fallback()
            return

        if fallback.value is None and len(state.lead_samples) >= cfg.lead_sample_count:
            value = -robust_median(state.lead_samples)
            state.d_fallback.value = value
            state.d_fallback.until_ms = now_ms + cfg.d_fallback_ttl_sec * 1000.0
            logger.info(
                "Adopted provisional skew D=%.1f from %d samples", value, len(state.lead_samples)
            )
            self._emit("dfallback-adopt", dfallback=value, samples=list(state.lead_samples))

    def _skipped(self, reason: str) -> PllTickResult:
        if reason == "locked":
            self._emit("pll-skip", reason=reason)
        return PllTickResult(PllAction.SKIPPED, reason=reason)

    def _emit(self, kind: str, **data: object) -> None:
        if self._emitter is not None:
            self._emitter.emit(kind, **data)
