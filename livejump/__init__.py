"""Calibration and time resolution engine for jumping live DVR streams to wall clock times."""

from livejump.config import CalibrationConfig, PllConfig
from livejump.jump import JumpDecision, JumpOutcome
from livejump.session import StreamSession

__all__ = [
    "CalibrationConfig",
    "JumpDecision",
    "JumpOutcome",
    "PllConfig",
    "StreamSession",
]
