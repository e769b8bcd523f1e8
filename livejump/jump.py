"""Wall clock jump resolution.

Turns "jump to 21:30 Tokyo time" into a seek on the stream's own time axis:

1. normalize the typed time and expand it into today/yesterday/tomorrow
   candidates in the requested zone;
2. map each candidate to a stream position ``t = epoch - C`` and pick the one
   inside the playable window (or the one closest to it);
3. seek there through the :class:`~livejump.seek.SeekGuard`.

Without a calibration offset the resolver falls back to a session pinned
provisional offset and a window anchored at ``now - latency``.
"""

from __future__ import annotations

import datetime as dt
import logging
import time
from collections.abc import Callable, Sequence
from dataclasses import dataclass
from enum import Enum
from typing import TYPE_CHECKING, Any, Final

from livejump.errors import InputError
from livejump.stream import StreamHandle, read_window
from livejump.timeparse import ParseError, parse_and_normalize_24h
from livejump.timezone import EpochCandidate, epoch_candidates, today_in_zone
from livejump.utils import is_finite

if TYPE_CHECKING:
    from livejump.calibration import CalibrationEstimator
    from livejump.config import CalibrationConfig
    from livejump.events import DiagnosticEmitter
    from livejump.lock import PlaybackLockMachine
    from livejump.seek import SeekGuard, SeekResult
    from livejump.state import CalibrationState

logger = logging.getLogger(__name__)

PROVISIONAL_MIN_WIDTH_SEC: Final[float] = 5.0
"""A skew corrected provisional window narrower than this is ignored."""


class JumpDecision(str, Enum):
    """How a jump request was resolved."""

    SEEK_IN_RANGE = "seek-in-range"
    JUMP_START = "jump-start"
    JUMP_END = "jump-end"
    PARSE_ERROR = "parse-error"


@dataclass(frozen=True, slots=True)
class JumpOutcome:
    """Result of one jump request. A new instance is returned for every call."""

    ok: bool
    decision: JumpDecision
    reason: str | None = None
    normalized: str | None = None
    epoch: int | None = None
    applied_target: float | None = None
    clamp_info: SeekResult | None = None
    ambiguous: bool = False
    gap: bool = False
    candidate: str | None = None
    provisional: bool = False
    offset: float | None = None
    """Offset used to map the epoch onto the stream axis."""

    @property
    def flags(self) -> dict[str, bool]:
        return {"ambiguous": self.ambiguous, "gap": self.gap}

    def to_dict(self) -> dict[str, Any]:
        return {
            "ok": self.ok,
            "decision": self.decision.value,
            "reason": self.reason,
            "normalized": self.normalized,
            "epoch": self.epoch,
            "appliedTarget": self.applied_target,
            "clampInfo": self.clamp_info.to_dict() if self.clamp_info is not None else None,
            "flags": self.flags,
            "candidate": self.candidate,
            "provisional": self.provisional,
            "offset": self.offset,
        }


def distance_to_interval(value: float, lo: float, hi: float) -> float:
    """Distance from ``value`` to ``[lo, hi]``, 0 inside."""
    if value < lo:
        return lo - value
    if value > hi:
        return value - hi
    return 0.0


def select_calibrated_candidate(
    candidates: Sequence[EpochCandidate], offset: float, start: float, end_guard: float
) -> tuple[EpochCandidate, float]:
    """Pick a candidate using a known offset.

    The first candidate (in the given order) whose stream position falls in
    ``[start, end_guard]`` wins; otherwise the one closest to that window.

    Returns:
        The chosen candidate and its stream position.
    """
    if not candidates:
        raise ValueError("no candidates to choose from")
    positions = [(candidate, candidate.epoch - offset) for candidate in candidates]
    for candidate, position in positions:
        if start <= position <= end_guard:
            return candidate, position
    # min() keeps the earliest candidate on ties.
    return min(positions, key=lambda item: distance_to_interval(item[1], start, end_guard))


def select_provisional_candidate(
    candidates: Sequence[EpochCandidate], window_start: float, window_end: float
) -> EpochCandidate:
    """Pick a candidate against an epoch window ending at "now".

    Inside the window the candidate closest to ``window_end`` wins, else the
    one closest to the window.
    """
    if not candidates:
        raise ValueError("no candidates to choose from")
    inside = [c for c in candidates if window_start <= c.epoch <= window_end]
    if inside:
        return min(inside, key=lambda c: abs(window_end - c.epoch))
    return min(candidates, key=lambda c: distance_to_interval(c.epoch, window_start, window_end))


class JumpResolver:
    """Resolves local time requests into guarded seeks for one attachment."""

    def __init__(
        self,
        stream: StreamHandle,
        state: CalibrationState,
        config: CalibrationConfig,
        estimator: CalibrationEstimator,
        seek_guard: SeekGuard,
        *,
        lock_machine: PlaybackLockMachine | None = None,
        is_ad_active: Callable[[], bool] | None = None,
        emitter: DiagnosticEmitter | None = None,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self._stream: StreamHandle | None = stream
        self._state = state
        self._config = config
        self._estimator = estimator
        self._seek_guard = seek_guard
        self._lock_machine = lock_machine
        self._is_ad_active = is_ad_active or (lambda: False)
        self._emitter = emitter
        self._clock = clock

    def stop(self) -> None:
        self._stream = None

    def resolve_and_jump(
        self,
        text: str,
        zone: str,
        *,
        date: dt.date | None = None,
        c_override: float | None = None,
    ) -> JumpOutcome:
        """Jump the stream to local time ``text`` in ``zone``.

        Args:
            text: Free form 24 hour time, see
                :func:`~livejump.timeparse.parse_and_normalize_24h`.
            zone: IANA zone identifier.
            date: Calendar date to interpret ``text`` on; today in ``zone``
                by default.
            c_override: Use this offset instead of the calibrated one.

        Returns:
            A structured outcome. Errors never propagate out of this method.
        """
        if self._is_ad_active():
            logger.info("Jump to %s refused: ad playing", text)
            return self._fail("ad-active")
        stream = self._stream
        if stream is None:
            return self._fail("no-stream")

        parsed = parse_and_normalize_24h(text)
        if isinstance(parsed, ParseError):
            return self._fail(parsed.category)
        try:
            base = date if date is not None else today_in_zone(zone, self._clock())
            candidates = epoch_candidates(zone, parsed.hms, base, day_offset=parsed.day_offset)
        except InputError as err:
            return self._fail(err.category, normalized=parsed.normalized)

        if c_override is not None and not is_finite(c_override):
            return self._fail("invalid-offset", normalized=parsed.normalized)

        offset = c_override if c_override is not None else self._state.c
        if offset is None and not self._state.locked and self._estimator.near_edge():
            snapped = self._estimator.snap()
            if snapped.ok:
                offset = self._state.c

        window = read_window(stream)
        start = window.start
        end_guard = max(start, window.end - self._seek_guard.guard_sec)
        if not is_finite(start) or not is_finite(end_guard):
            return self._fail("invalid-window", normalized=parsed.normalized)

        provisional = False
        if offset is not None:
            chosen, position = select_calibrated_candidate(candidates, offset, start, end_guard)
        else:
            offset = self._estimator.provisional_offset()
            if offset is None:
                return self._fail("uncalibrated", normalized=parsed.normalized)
            window_end = self._clock() - self._config.latency_sec
            width = self._provisional_width(start, end_guard)
            chosen = select_provisional_candidate(candidates, window_end - width, window_end)
            position = chosen.epoch - offset
            provisional = True

        if not is_finite(position):
            return self._fail("invalid-window", normalized=parsed.normalized)

        if start <= position <= end_guard:
            decision = JumpDecision.SEEK_IN_RANGE
        elif position < start:
            decision = JumpDecision.JUMP_START
        else:
            decision = JumpDecision.JUMP_END

        if self._lock_machine is not None:
            self._lock_machine.lock("jump")
            self._lock_machine.release_after(self._config.seeked_unlock_ms, via="jump+delay")
        seek_result = self._seek_guard.seek(stream, position)

        outcome = JumpOutcome(
            ok=True,
            decision=decision,
            normalized=parsed.normalized,
            epoch=chosen.epoch,
            applied_target=seek_result.target,
            clamp_info=seek_result,
            ambiguous=chosen.ambiguous,
            gap=chosen.gap,
            candidate=chosen.tag,
            provisional=provisional,
            offset=offset,
        )
        logger.info(
            "Jump %s %s -> %s (%s, epoch=%d, t=%.3f%s)",
            parsed.normalized,
            zone,
            decision.value,
            chosen.tag,
            chosen.epoch,
            seek_result.target,
            ", provisional" if provisional else "",
        )
        if self._emitter is not None:
            self._emitter.jump(zone=zone, wall=chosen.resolved.wall, **outcome.to_dict())
        return outcome

    def _provisional_width(self, start: float, end_guard: float) -> float:
        width = max(0.0, end_guard - start)
        skew = self._state.effective_skew(self._clock() * 1000.0)
        # A seekable end running ahead of the buffered one (negative skew)
        # narrows the window, unless that would leave almost nothing.
        if skew != 0 and width + skew > PROVISIONAL_MIN_WIDTH_SEC:
            width += skew
        return width

    def _fail(self, reason: str, *, normalized: str | None = None) -> JumpOutcome:
        logger.debug("Jump failed: %s", reason)
        outcome = JumpOutcome(
            ok=False, decision=JumpDecision.PARSE_ERROR, reason=reason, normalized=normalized
        )
        if self._emitter is not None:
            self._emitter.jump(**outcome.to_dict())
        return outcome
