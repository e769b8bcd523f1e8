"""Time zone resolution with explicit DST handling.

A local date-time maps to zero, one or two instants in a zone:

* zero (spring-forward gap): snap forward as if the clock had run through the
  gap, so 02:30 in a one hour gap becomes 03:30;
* two (fall-back overlap): the earlier instant wins;
* one: used as is.

Both cases are flagged on the result so callers can tell the user.
"""

from __future__ import annotations

import datetime as dt
import logging
import math
import time
from dataclasses import dataclass
from typing import Final
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from livejump.errors import InputError, UnknownZoneError
from livejump.timeparse import Hms

logger = logging.getLogger(__name__)

DEFAULT_ZONE: Final[str] = "Europe/Amsterdam"
PRESET_ZONES: Final[tuple[str, ...]] = (
    "Asia/Tokyo",
    "Asia/Seoul",
    "Europe/Amsterdam",
    "Africa/Windhoek",
    "Africa/Nairobi",
    "America/New_York",
    "America/Los_Angeles",
    "Pacific/Honolulu",
    "Europe/Copenhagen",
    "Europe/London",
    "Europe/Berlin",
    "Australia/Sydney",
    "UTC",
    "Asia/Singapore",
)

_UTC: Final = dt.timezone.utc


@dataclass(frozen=True, slots=True)
class ZonedEpoch:
    """A local time resolved to an instant."""

    epoch: int
    """Epoch seconds."""
    ambiguous: bool
    """The local time occurred twice; the earlier instant was chosen."""
    gap: bool
    """The local time never occurred; it was shifted forward."""
    wall: str
    """Resolved local wall time, ``YYYY-MM-DDTHH:MM:SS``."""


@dataclass(frozen=True, slots=True)
class EpochCandidate:
    """One interpretation of an ambiguous local time."""

    tag: str
    """``today``, ``yesterday`` or ``tomorrow``."""
    date: dt.date
    resolved: ZonedEpoch

    @property
    def epoch(self) -> int:
        return self.resolved.epoch

    @property
    def ambiguous(self) -> bool:
        return self.resolved.ambiguous

    @property
    def gap(self) -> bool:
        return self.resolved.gap


def get_zone(zone: str) -> ZoneInfo:
    """Look up an IANA zone.

    Raises:
        UnknownZoneError: If the identifier is not known.
    """
    try:
        return ZoneInfo(zone)
    except (ZoneInfoNotFoundError, ValueError) as err:
        raise UnknownZoneError(zone) from err


def today_in_zone(zone: str, now: float | None = None) -> dt.date:
    """Calendar date in ``zone`` at epoch ``now`` (defaults to the current time)."""
    tz = get_zone(zone)
    ts = time.time() if now is None else now
    return dt.datetime.fromtimestamp(ts, tz).date()


def _possible_instants(naive: dt.datetime, tz: ZoneInfo) -> list[dt.datetime]:
    """All UTC instants whose local wall time in ``tz`` equals ``naive``."""
    found: list[dt.datetime] = []
    for fold in (0, 1):
        candidate = naive.replace(tzinfo=tz, fold=fold).astimezone(_UTC)
        roundtrip = candidate.astimezone(tz).replace(tzinfo=None, fold=0)
        if roundtrip == naive and candidate not in found:
            found.append(candidate)
    found.sort()
    return found


def to_epoch_in_zone(zone: str, hms: Hms, date: dt.date | None = None) -> ZonedEpoch:
    """Resolve ``hms`` on ``date`` (default: today in the zone) to epoch seconds.

    Raises:
        UnknownZoneError: For an unknown zone.
        InputError: When the fields do not form a valid date-time.
    """
    tz = get_zone(zone)
    day = date if date is not None else today_in_zone(zone)
    try:
        naive = dt.datetime(day.year, day.month, day.day, hms.hh, hms.mm, hms.ss)
    except ValueError as err:
        raise InputError("invalid-time", str(err)) from err

    instants = _possible_instants(naive, tz)
    ambiguous = len(instants) == 2
    gap = len(instants) == 0

    if instants:
        chosen = instants[0]
    else:
        # fold=0 inside a gap applies the pre-transition offset, which lands
        # after the gap: the "compatible" forward snap.
        chosen = naive.replace(tzinfo=tz, fold=0).astimezone(_UTC)

    local = chosen.astimezone(tz)
    epoch = math.floor(chosen.timestamp())
    if gap or ambiguous:
        logger.debug(
            "Resolved %s %s in %s: gap=%s ambiguous=%s wall=%s",
            day.isoformat(),
            naive.time().isoformat(),
            zone,
            gap,
            ambiguous,
            local.strftime("%Y-%m-%dT%H:%M:%S"),
        )
    return ZonedEpoch(
        epoch=epoch,
        ambiguous=ambiguous,
        gap=gap,
        wall=local.strftime("%Y-%m-%dT%H:%M:%S"),
    )


def epoch_candidates(
    zone: str,
    hms: Hms,
    date: dt.date | None = None,
    *,
    day_offset: int = 0,
) -> list[EpochCandidate]:
    """Today, yesterday and tomorrow interpretations of ``hms`` in ``zone``.

    ``day_offset`` (from a parse that ran past midnight) shifts the base date.

    Raises:
        UnknownZoneError: For an unknown zone.
        InputError: When a candidate date falls outside the supported calendar.
    """
    start = date if date is not None else today_in_zone(zone)
    candidates = []
    try:
        base = start + dt.timedelta(days=day_offset)
        for tag, delta in (("today", 0), ("yesterday", -1), ("tomorrow", 1)):
            day = base + dt.timedelta(days=delta)
            candidates.append(EpochCandidate(tag, day, to_epoch_in_zone(zone, hms, day)))
    except OverflowError as err:
        raise InputError(
            "invalid-date", f"{start.isoformat()} shifted by {day_offset} days is out of range"
        ) from err
    return candidates


def utc_offset_minutes(zone: str, now: float | None = None) -> int:
    """Current UTC offset of ``zone`` in minutes (east positive)."""
    tz = get_zone(zone)
    ts = time.time() if now is None else now
    offset = dt.datetime.fromtimestamp(ts, tz).utcoffset()
    return int(offset.total_seconds() // 60) if offset is not None else 0


def format_utc_offset(minutes: int) -> str:
    """Format an offset in minutes as ``+HH:MM`` / ``-HH:MM``."""
    sign = "-" if minutes < 0 else "+"
    total = abs(int(minutes))
    return f"{sign}{total // 60:02d}:{total % 60:02d}"
