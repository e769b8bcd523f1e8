"""Exception hierarchy for livejump.

None of these are fatal: the jump API converts them into structured
outcomes, and timer driven components log and carry on.
"""

from __future__ import annotations


class LiveJumpError(Exception):
    """Base class for all livejump errors."""


class InputError(LiveJumpError):
    """Malformed user input (time string, zone identifier, date)."""

    def __init__(self, category: str, message: str) -> None:
        super().__init__(message)
        self.category = category


class UnknownZoneError(InputError):
    """The zone identifier is not in the IANA database."""

    def __init__(self, zone: str) -> None:
        super().__init__("unknown-zone", f"Unknown time zone: {zone!r}")
        self.zone = zone


class UnavailableRangeError(LiveJumpError):
    """The stream reported no usable seekable or buffered data."""


class UncalibratedError(LiveJumpError):
    """No calibration offset is available yet."""


class SuspendedError(LiveJumpError):
    """Playback is suspended (ad break or lock) and the action was refused."""

    def __init__(self, reason: str) -> None:
        super().__init__(reason)
        self.reason = reason


class CalibrationLockedError(SuspendedError):
    """An attempt was made to mutate the calibration while playback is locked."""

    def __init__(self) -> None:
        super().__init__("locked")


class ConfigError(LiveJumpError, ValueError):
    """Invalid calibration configuration."""
