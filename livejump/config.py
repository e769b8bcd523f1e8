"""Immutable calibration configuration.

All thresholds used by Edge-Snap, the Live-PLL, the seek guard and the lock
machine live here, validated once at construction.
"""

from __future__ import annotations

import logging
from collections.abc import Mapping
from dataclasses import asdict, dataclass, field, fields, replace
from typing import Any

from livejump.errors import ConfigError

logger = logging.getLogger(__name__)


@dataclass(frozen=True, slots=True)
class PllConfig:
    """Live-PLL drift correction parameters.

    Attributes:
        hys_sec: Errors at or below this magnitude are treated as noise.
        consec_n: Consecutive ticks past hysteresis required before correcting.
        alpha: Loop gain applied to the measured error.
        max_rate_per_sec: Upper bound on the correction per second of tick interval.
        outlier_e_sec: Errors beyond this magnitude are ignored entirely.
        interval_ms: Tick interval.
    """

    hys_sec: float = 2.5
    consec_n: int = 5
    alpha: float = 0.02
    max_rate_per_sec: float = 0.5 / 60
    outlier_e_sec: float = 4000.0
    interval_ms: int = 1000

    def __post_init__(self) -> None:
        if self.hys_sec < 0:
            raise ConfigError("pll.hys_sec must be >= 0")
        if self.consec_n < 1:
            raise ConfigError("pll.consec_n must be >= 1")
        if not 0 < self.alpha <= 1:
            raise ConfigError("pll.alpha must be in (0, 1]")
        if self.max_rate_per_sec <= 0:
            raise ConfigError("pll.max_rate_per_sec must be > 0")
        if self.outlier_e_sec <= self.hys_sec:
            raise ConfigError("pll.outlier_e_sec must exceed pll.hys_sec")
        if self.interval_ms <= 0:
            raise ConfigError("pll.interval_ms must be > 0")

    @property
    def max_step_sec(self) -> float:
        """Largest change to C a single tick may apply."""
        return self.max_rate_per_sec * self.interval_ms / 1000.0


@dataclass(frozen=True, slots=True)
class CalibrationConfig:
    """Static configuration for one stream attachment."""

    latency_sec: float = 20.0
    """Assumed end-to-end broadcast delay."""
    edge_slack_sec: float = 12.0
    """Buffered-end slack for the "at edge" test."""
    near_live_slack_sec: float = 18.0
    """Seekable-end distance within which the edge monitor nudges toward the edge."""
    near_live_threshold_sec: float = 5.0
    """Seekable-end distance counting as "near the live edge" for automatic snaps."""
    guard_sec: float = 3.0
    """Guard band subtracted from the seekable end before seeking."""
    edge_backoff_sec: float = 0.75
    """Distance kept from the buffered frontier when seeking."""
    prefer_buffered_threshold_sec: float = 120.0
    """Seekable-over-buffered excess above which the buffered end is trusted."""
    seeked_unlock_ms: int = 1500
    playing_unlock_ms: int = 250
    edge_recheck_ms: int = 250
    edge_monitor_interval_ms: int = 1000
    nudge_cooldown_ms: int = 5000
    nudge_backoff_sec: float = 0.5
    provisional_on_start: bool = True
    lead_band_min_sec: float = 3000.0
    lead_band_max_sec: float = 4200.0
    lead_sample_count: int = 5
    d_fallback_ttl_sec: float = 180.0
    pll: PllConfig = field(default_factory=PllConfig)

    def __post_init__(self) -> None:
        if self.latency_sec < 0:
            raise ConfigError("latency_sec must be >= 0")
        for name in (
            "edge_slack_sec",
            "near_live_slack_sec",
            "near_live_threshold_sec",
            "guard_sec",
            "edge_backoff_sec",
        ):
            if getattr(self, name) < 0:
                raise ConfigError(f"{name} must be >= 0")
        if self.prefer_buffered_threshold_sec <= 0:
            raise ConfigError("prefer_buffered_threshold_sec must be > 0")
        for name in (
            "seeked_unlock_ms",
            "playing_unlock_ms",
            "edge_recheck_ms",
            "edge_monitor_interval_ms",
            "nudge_cooldown_ms",
        ):
            if getattr(self, name) < 0:
                raise ConfigError(f"{name} must be >= 0")
        if self.edge_monitor_interval_ms == 0:
            raise ConfigError("edge_monitor_interval_ms must be > 0")
        if self.lead_band_min_sec >= self.lead_band_max_sec:
            raise ConfigError("lead_band_min_sec must be below lead_band_max_sec")
        if self.lead_sample_count < 1:
            raise ConfigError("lead_sample_count must be >= 1")
        if self.d_fallback_ttl_sec <= 0:
            raise ConfigError("d_fallback_ttl_sec must be > 0")

    def with_overrides(self, overrides: Mapping[str, Any] | None) -> CalibrationConfig:
        """Return a copy with ``overrides`` merged in.

        The nested ``pll`` mapping is merged key by key rather than replaced.

        Raises:
            ConfigError: On unknown keys or values failing validation.
        """
        if not overrides:
            return self
        known = {f.name for f in fields(self)}
        updates: dict[str, Any] = {}
        for key, value in overrides.items():
            if key not in known:
                raise ConfigError(f"Unknown configuration key: {key}")
            if key == "pll":
                if isinstance(value, PllConfig):
                    updates["pll"] = value
                    continue
                if not isinstance(value, Mapping):
                    raise ConfigError("pll override must be a mapping")
                pll_known = {f.name for f in fields(PllConfig)}
                unknown = set(value) - pll_known
                if unknown:
                    raise ConfigError(f"Unknown pll keys: {', '.join(sorted(unknown))}")
                updates["pll"] = replace(self.pll, **value)
            else:
                updates[key] = value
        merged = replace(self, **updates)
        logger.debug("Configuration overrides applied: %s", overrides)
        return merged

    def to_dict(self) -> dict[str, Any]:
        """Plain dictionary form, suitable for JSON."""
        return asdict(self)


DEFAULT_CONFIG = CalibrationConfig()
