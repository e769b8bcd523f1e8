"""Stream handle contract and guarded window readers.

The player backend (a browser video element, an mpv instance, the simulator in
:mod:`livejump.simulator`) is an external collaborator. This module describes
what livejump needs from it and reads its seekable/buffered extents without
ever raising. Internally a failed or empty read is an
:class:`~livejump.errors.UnavailableRangeError`; the public readers turn it
into their "no data" value (0 for the seekable start, the duration for the
seekable end, NaN for the buffered end).
"""

from __future__ import annotations

import logging
import math
from collections.abc import Callable, Sequence
from dataclasses import dataclass
from enum import Enum
from typing import Protocol, runtime_checkable

from livejump.errors import UnavailableRangeError
from livejump.utils import is_finite

logger = logging.getLogger(__name__)


class StreamEvent(str, Enum):
    """Playback events a stream emits."""

    SEEKING = "seeking"
    SEEKED = "seeked"
    WAITING = "waiting"
    STALLED = "stalled"
    PLAYING = "playing"


@dataclass(frozen=True, slots=True)
class TimeRange:
    """A ``[start, end]`` interval on the stream's time axis."""

    start: float
    end: float


@runtime_checkable
class StreamHandle(Protocol):
    """What livejump consumes from a player.

    Backends may additionally provide ``fast_seek(position)`` and ``play()``;
    both are looked up dynamically.
    """

    current_position: float
    paused: bool

    @property
    def seekable_ranges(self) -> Sequence[TimeRange]:
        """Seek-capable intervals, in any order."""

    @property
    def buffered_ranges(self) -> Sequence[TimeRange]:
        """Intervals with data already downloaded."""

    @property
    def duration(self) -> float:
        """Nominal duration; may be infinite for live streams."""

    def add_event_listener(
        self, event: StreamEvent, callback: Callable[[], None]
    ) -> Callable[[], None]:
        """Register ``callback`` for ``event`` and return an unsubscribe function."""


@dataclass(frozen=True, slots=True)
class StreamWindowSnapshot:
    """Seekable extents and buffered frontier at one instant."""

    start: float
    end: float
    buffered_end: float

    @property
    def has_buffered(self) -> bool:
        return is_finite(self.buffered_end)

    @property
    def future_lead(self) -> float:
        """Seekable end minus buffered end, NaN without buffered data."""
        if not self.has_buffered or not is_finite(self.end):
            return math.nan
        return self.end - self.buffered_end


def _read_ranges(stream: StreamHandle, attr: str) -> list[TimeRange]:
    """Finite ranges reported under ``attr``.

    Raises:
        UnavailableRangeError: When the attribute cannot be read or holds no
            finite range.
    """
    try:
        ranges = [
            r for r in getattr(stream, attr) or () if is_finite(r.start) and is_finite(r.end)
        ]
    except Exception as err:  # noqa: BLE001
        logger.debug("Could not read %s from stream", attr, exc_info=True)
        raise UnavailableRangeError(f"could not read {attr}") from err
    if not ranges:
        raise UnavailableRangeError(f"no {attr} reported")
    return ranges


def get_seekable_start(stream: StreamHandle) -> float:
    """Smallest start across all seekable ranges, 0 when none are reported."""
    try:
        ranges = _read_ranges(stream, "seekable_ranges")
    except UnavailableRangeError:
        return 0.0
    return float(min(r.start for r in ranges))


def get_seekable_end(stream: StreamHandle) -> float:
    """Largest end across all seekable ranges.

    Falls back to the stream duration, then to 0.
    """
    try:
        ranges = _read_ranges(stream, "seekable_ranges")
    except UnavailableRangeError:
        return _duration_or_zero(stream)
    return float(max(r.end for r in ranges))


def _duration_or_zero(stream: StreamHandle) -> float:
    try:
        duration = stream.duration
    except Exception:  # noqa: BLE001
        logger.debug("Could not read duration from stream", exc_info=True)
        return 0.0
    return float(duration) if is_finite(duration) else 0.0


def get_buffered_end(stream: StreamHandle) -> float:
    """Largest buffered end, NaN when nothing is buffered."""
    try:
        ranges = _read_ranges(stream, "buffered_ranges")
    except UnavailableRangeError:
        return math.nan
    return float(max(r.end for r in ranges))


def get_current_position(stream: StreamHandle) -> float:
    """Current playhead, NaN when unreadable."""
    try:
        position = stream.current_position
    except Exception:  # noqa: BLE001
        logger.debug("Could not read current position", exc_info=True)
        return math.nan
    return float(position) if is_finite(position) else math.nan


def read_window(stream: StreamHandle) -> StreamWindowSnapshot:
    """Take a fresh snapshot of the stream's window."""
    return StreamWindowSnapshot(
        start=get_seekable_start(stream),
        end=get_seekable_end(stream),
        buffered_end=get_buffered_end(stream),
    )


def effective_end(stream: StreamHandle, prefer_buffered_threshold_sec: float = 120.0) -> float:
    """Live edge to calibrate against.

    Some backends report a seekable end roughly an hour ahead of anything that
    can actually be buffered. When the seekable end exceeds the buffered end by
    more than ``prefer_buffered_threshold_sec`` (or is unusable) the buffered
    end wins; otherwise the seekable end is used. Returns NaN when neither is
    usable.
    """
    seek_end = get_seekable_end(stream)
    buf_end = get_buffered_end(stream)
    if is_finite(buf_end) and buf_end > 0:
        if seek_end <= 0 or seek_end - buf_end > prefer_buffered_threshold_sec:
            return buf_end
    if seek_end > 0:
        return seek_end
    return buf_end if is_finite(buf_end) else math.nan


def is_near_live_edge(stream: StreamHandle, threshold_sec: float = 5.0) -> bool:
    """True when the playhead is within ``threshold_sec`` of the seekable end."""
    end = get_seekable_end(stream)
    position = get_current_position(stream)
    if not is_finite(position) or end <= 0:
        return False
    return end - position <= threshold_sec


def is_at_edge(stream: StreamHandle, slack_sec: float = 2.0) -> bool:
    """True when the playhead is within ``slack_sec`` of the buffered frontier."""
    buf_end = get_buffered_end(stream)
    position = get_current_position(stream)
    if not is_finite(buf_end) or not is_finite(position):
        return False
    return buf_end - position <= slack_sec
