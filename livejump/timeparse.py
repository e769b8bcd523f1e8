"""Free-form 24 hour time input normalization.

Accepted forms: ``HH:mm``, ``HH:mm:ss``, ``HHmm``, ``HHmmss`` and a bare one or
two digit hour. Overlong fields carry over (``08:80`` is ``09:20:00``) and
hours past midnight carry into a day offset (``24:10`` is ``00:10:00`` on the
next day).

Failures are returned, never raised.
"""

from __future__ import annotations

import re
from dataclasses import dataclass
from typing import Final, Literal

ErrorCategory = Literal["empty-input", "non-digit", "bad-field-count", "bad-digit-length"]

_DIGITS: Final = re.compile(r"^[0-9]+$")
_ALLOWED: Final = re.compile(r"^[0-9:]+$")

_MESSAGES: Final[dict[str, str]] = {
    "empty-input": "Empty input",
    "non-digit": "Input contains characters other than digits and ':'",
    "bad-field-count": "Expected HH:mm or HH:mm:ss",
    "bad-digit-length": "Expected 1, 2, 4 or 6 digits",
}


@dataclass(frozen=True, slots=True)
class Hms:
    """Hour, minute and second of a wall clock time."""

    hh: int
    mm: int
    ss: int


@dataclass(frozen=True, slots=True)
class ParseOk:
    """Successfully normalized time."""

    hh: int
    mm: int
    ss: int
    normalized: str
    overflow: bool
    """True when the input ran past 24:00."""
    day_offset: int
    """Whole days carried out of the hour field."""

    ok: Literal[True] = True

    @property
    def hms(self) -> Hms:
        return Hms(self.hh, self.mm, self.ss)


@dataclass(frozen=True, slots=True)
class ParseError:
    """Rejected input."""

    category: ErrorCategory
    error: str

    ok: Literal[False] = False


ParseResult = ParseOk | ParseError


def parse_and_normalize_24h(text: str | None) -> ParseResult:
    """Parse and normalize a 24 hour time string."""
    raw = (text or "").strip()
    if not raw:
        return _err("empty-input")
    if not _ALLOWED.match(raw):
        return _err("non-digit")

    if ":" in raw:
        parts = raw.split(":")
        if not 2 <= len(parts) <= 3:
            return _err("bad-field-count")
        if any(not _DIGITS.match(p) for p in parts):
            # Empty fields such as "7::5" land here.
            return _err("non-digit")
        nums = [int(p) for p in parts]
        return _normalize(nums[0], nums[1], nums[2] if len(nums) == 3 else 0)

    if len(raw) <= 2:
        return _normalize(int(raw), 0, 0)
    if len(raw) == 4:
        return _normalize(int(raw[:2]), int(raw[2:4]), 0)
    if len(raw) == 6:
        return _normalize(int(raw[:2]), int(raw[2:4]), int(raw[4:6]))
    return _err("bad-digit-length")


def _normalize(hh: int, mm: int, ss: int) -> ParseOk:
    if ss >= 60:
        mm += ss // 60
        ss %= 60
    if mm >= 60:
        hh += mm // 60
        mm %= 60

    overflow = False
    day_offset = 0
    if hh >= 24:
        overflow = True
        day_offset = hh // 24
        hh %= 24

    return ParseOk(
        hh=hh,
        mm=mm,
        ss=ss,
        normalized=f"{hh:02d}:{mm:02d}:{ss:02d}",
        overflow=overflow,
        day_offset=day_offset,
    )


def _err(category: ErrorCategory) -> ParseError:
    return ParseError(category=category, error=_MESSAGES[category])
