"""Relative seek commands (keyboard shortcuts in a player UI)."""

from __future__ import annotations

import logging
from enum import Enum
from typing import TYPE_CHECKING

from livejump.stream import StreamHandle, get_current_position
from livejump.utils import is_finite

if TYPE_CHECKING:
    from livejump.seek import SeekGuard, SeekResult

logger = logging.getLogger(__name__)


class SeekCommand(str, Enum):
    """Named relative seeks."""

    BACKWARD_60 = "seek-backward-60"
    BACKWARD_10 = "seek-backward-10"
    FORWARD_10 = "seek-forward-10"
    FORWARD_60 = "seek-forward-60"

    @property
    def delta_sec(self) -> float:
        return _DELTAS_SEC[self]


_DELTAS_SEC: dict[SeekCommand, float] = {
    SeekCommand.BACKWARD_60: -60 * 60.0,
    SeekCommand.BACKWARD_10: -10 * 60.0,
    SeekCommand.FORWARD_10: 10 * 60.0,
    SeekCommand.FORWARD_60: 60 * 60.0,
}


def handle_seek_command(
    stream: StreamHandle, guard: SeekGuard, command: SeekCommand | str
) -> SeekResult | None:
    """Seek ``stream`` relative to its current position.

    Returns:
        The seek record, or None when the current position is unreadable.

    Raises:
        ValueError: For an unknown command name.
    """
    command = SeekCommand(command)
    position = get_current_position(stream)
    if not is_finite(position):
        logger.warning("Ignoring %s: current position unavailable", command.value)
        return None
    result = guard.seek(stream, position + command.delta_sec)
    logger.info(
        "Seek command %s: requested=%.3f applied=%.3f clamped=%s reason=%s",
        command.value,
        result.requested,
        result.target,
        result.clamped,
        result.reason,
    )
    return result
