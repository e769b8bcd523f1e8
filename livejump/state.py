"""Calibration state shared by Edge-Snap, the Live-PLL and the jump resolver.

One ``CalibrationState`` exists per stream attachment. The offset ``C`` maps
the stream's time axis to epoch seconds (``epoch ~ stream_end + D + C``) and
is an explicit ``Uncalibrated | Calibrated`` value rather than a nullable
float.
"""

from __future__ import annotations

import collections
import logging
from dataclasses import dataclass, field
from typing import Any, Final

from livejump.errors import CalibrationLockedError, UncalibratedError
from livejump.utils import is_finite

logger = logging.getLogger(__name__)

LEAD_SAMPLE_CAPACITY: Final[int] = 5


@dataclass(frozen=True, slots=True)
class Uncalibrated:
    """No offset has been established yet."""


@dataclass(frozen=True, slots=True)
class Calibrated:
    """An established stream-axis to epoch offset."""

    value: float


Offset = Uncalibrated | Calibrated

UNCALIBRATED: Final = Uncalibrated()


@dataclass(slots=True)
class DFallback:
    """Provisional skew estimate with an expiry time (epoch milliseconds)."""

    value: float | None = None
    until_ms: float = 0.0

    def active(self, now_ms: float) -> bool:
        """Whether the fallback holds a value that has not expired."""
        return self.value is not None and now_ms <= self.until_ms


@dataclass(frozen=True, slots=True)
class CalibrationSnapshot:
    """Read-only view of the calibration for diagnostics and telemetry."""

    C: float | None  # noqa: N815
    D: float  # noqa: N815
    locked: bool
    consecutive_error_count: int
    d_fallback: float | None = None
    provisional_offset: float | None = None

    def to_dict(self) -> dict[str, Any]:
        """Convert to a JSON friendly dictionary."""
        return {
            "C": self.C,
            "D": self.D,
            "locked": self.locked,
            "consecutiveErrorCount": self.consecutive_error_count,
            "dFallback": self.d_fallback,
            "provisionalOffset": self.provisional_offset,
        }


@dataclass
class CalibrationState:
    """Mutable calibration for a single stream attachment.

    ``offset`` is only changed through :meth:`snap_offset` (Edge-Snap, full
    overwrite) and :meth:`adjust_offset` (Live-PLL, bounded delta). Both refuse
    to run while ``locked``.
    """

    offset: Offset = UNCALIBRATED
    d: float = 0.0
    d_fallback: DFallback = field(default_factory=DFallback)
    consecutive_error_count: int = 0
    lead_samples: collections.deque[float] = field(
        default_factory=lambda: collections.deque(maxlen=LEAD_SAMPLE_CAPACITY)
    )
    locked: bool = False
    provisional_offset: float | None = None
    """Session pinned offset used for jumps before any calibration exists."""

    @property
    def is_calibrated(self) -> bool:
        """Whether an offset has been established."""
        return isinstance(self.offset, Calibrated)

    @property
    def c(self) -> float | None:
        """The offset value, or None while uncalibrated."""
        if isinstance(self.offset, Calibrated):
            return self.offset.value
        return None

    def require_c(self) -> float:
        """Return the offset value.

        Raises:
            UncalibratedError: If no offset is established.
        """
        if isinstance(self.offset, Calibrated):
            return self.offset.value
        raise UncalibratedError("calibration offset not established")

    def snap_offset(self, value: float) -> None:
        """Overwrite the offset (Edge-Snap)."""
        if self.locked:
            raise CalibrationLockedError
        if not is_finite(value):
            raise ValueError(f"offset must be finite, got {value!r}")
        self.offset = Calibrated(float(value))
        self.consecutive_error_count = 0

    def adjust_offset(self, delta: float) -> float:
        """Apply a bounded correction (Live-PLL) and return the new offset."""
        if self.locked:
            raise CalibrationLockedError
        if not is_finite(delta):
            raise ValueError(f"offset delta must be finite, got {delta!r}")
        current = self.require_c()
        self.offset = Calibrated(current + delta)
        return current + delta

    def set_skew(self, d: float) -> None:
        """Record a confirmed skew ``D``."""
        if self.locked:
            raise CalibrationLockedError
        self.d = float(d) if is_finite(d) else 0.0

    def clear_fallback(self) -> None:
        self.d_fallback = DFallback()

    def effective_skew(self, now_ms: float) -> float:
        """Skew in use: confirmed D, else a live fallback, else 0."""
        if self.d != 0:
            return self.d
        fallback = self.d_fallback.value
        if fallback is not None and now_ms <= self.d_fallback.until_ms:
            return fallback
        return 0.0

    def reset(self) -> None:
        """Return to the freshly attached state."""
        self.offset = UNCALIBRATED
        self.d = 0.0
        self.d_fallback = DFallback()
        self.consecutive_error_count = 0
        self.lead_samples.clear()
        self.locked = False
        self.provisional_offset = None
        logger.debug("Calibration state reset")

    def snapshot(self) -> CalibrationSnapshot:
        """Return a read-only snapshot."""
        return CalibrationSnapshot(
            C=self.c,
            D=self.d,
            locked=self.locked,
            consecutive_error_count=self.consecutive_error_count,
            d_fallback=self.d_fallback.value,
            provisional_offset=self.provisional_offset,
        )
