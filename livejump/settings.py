"""Persisted user preferences.

Preferences are stored as JSON under ``~/.config/livejump``. Reads happen in
an executor; writes are coalesced with a ``call_later`` debounce so a burst of
changes (stepping the latency up a few times) turns into one write, and
:meth:`LiveJumpSettings.flush` forces the pending write on shutdown.
"""

from __future__ import annotations

import asyncio
import json
import logging
import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Final

from livejump.config import DEFAULT_CONFIG, CalibrationConfig
from livejump.timezone import DEFAULT_ZONE

logger = logging.getLogger(__name__)

SAVE_DEBOUNCE_SECONDS: Final[float] = 10.0
"""Quiet period after the last change before the file is rewritten."""

SETTINGS_FILENAME: Final[str] = "settings.json"

_PERSISTED: Final[tuple[str, ...]] = (
    "log_level",
    "listen_port",
    "default_zone",
    "latency_sec",
    "overrides",
)

_EXPECTED_TYPES: Final[dict[str, tuple[type, ...]]] = {
    "log_level": (str,),
    "listen_port": (int,),
    "default_zone": (str,),
    "latency_sec": (int, float),
    "overrides": (dict,),
}


@dataclass
class LiveJumpSettings:
    """Preferences for the CLI and control server.

    ``overrides`` holds raw :class:`~livejump.config.CalibrationConfig`
    overrides, including a nested ``pll`` mapping. They are only validated when
    :meth:`calibration_config` builds the effective configuration.
    """

    log_level: str | None = None
    listen_port: int | None = None
    default_zone: str = DEFAULT_ZONE
    latency_sec: float | None = None
    overrides: dict[str, Any] = field(default_factory=dict)

    path: Path | None = field(default=None, repr=False, compare=False)
    _save_handle: asyncio.TimerHandle | None = field(
        default=None, init=False, repr=False, compare=False
    )

    @property
    def save_pending(self) -> bool:
        return self._save_handle is not None

    def to_dict(self) -> dict[str, Any]:
        return {key: getattr(self, key) for key in _PERSISTED}

    def calibration_config(self, base: CalibrationConfig = DEFAULT_CONFIG) -> CalibrationConfig:
        """Apply the stored overrides, then ``latency_sec``, on top of ``base``.

        Raises:
            ConfigError: If the stored overrides are invalid.
        """
        config = base.with_overrides(self.overrides)
        if self.latency_sec is not None:
            config = config.with_overrides({"latency_sec": self.latency_sec})
        return config

    def update(self, **changes: Any) -> bool:
        """Set the given preferences; None values are ignored.

        Schedules a debounced save when anything actually changed. Must be
        called from the event loop.

        Returns:
            Whether any value changed.

        Raises:
            TypeError: For a name that is not a persisted preference.
        """
        unknown = set(changes) - set(_PERSISTED)
        if unknown:
            raise TypeError(f"Unknown settings: {', '.join(sorted(unknown))}")
        changed = [
            key
            for key, value in changes.items()
            if value is not None and getattr(self, key) != value
        ]
        for key in changed:
            setattr(self, key, changes[key])
        if changed:
            logger.debug("Settings changed: %s", ", ".join(changed))
            self._schedule_save()
        return bool(changed)

    async def load(self) -> None:
        await asyncio.get_running_loop().run_in_executor(None, self._read)

    async def flush(self) -> None:
        """Write now if a debounced save is pending."""
        handle, self._save_handle = self._save_handle, None
        if handle is None:
            return
        handle.cancel()
        await asyncio.get_running_loop().run_in_executor(None, self._write)

    def _schedule_save(self) -> None:
        loop = asyncio.get_running_loop()
        if self._save_handle is not None:
            self._save_handle.cancel()
        self._save_handle = loop.call_later(SAVE_DEBOUNCE_SECONDS, self._save_now, loop)

    def _save_now(self, loop: asyncio.AbstractEventLoop) -> None:
        self._save_handle = None
        loop.run_in_executor(None, self._write)

    def _read(self) -> None:
        """Blocking read of :attr:`path`; a missing file keeps the defaults."""
        if self.path is None or not self.path.is_file():
            logger.debug("No settings file at %s", self.path)
            return
        try:
            data = json.loads(self.path.read_text(encoding="utf-8"))
        except (OSError, UnicodeDecodeError, json.JSONDecodeError) as err:
            logger.warning("Ignoring unreadable settings file %s: %s", self.path, err)
            return
        if not isinstance(data, dict):
            logger.warning("Ignoring settings file %s: not a JSON object", self.path)
            return

        for key in _PERSISTED:
            value = data.get(key)
            if value is None:
                continue
            if isinstance(value, bool) or not isinstance(value, _EXPECTED_TYPES[key]):
                logger.warning("Ignoring malformed %s in %s: %r", key, self.path, value)
                continue
            setattr(self, key, value)
        logger.info(
            "Loaded settings from %s (zone %s, latency %s)",
            self.path,
            self.default_zone,
            self.latency_sec,
        )

    def _write(self) -> None:
        """Blocking write of :attr:`path` through a temporary file."""
        if self.path is None:
            return
        tmp = self.path.with_suffix(".tmp")
        try:
            self.path.parent.mkdir(parents=True, exist_ok=True)
            tmp.write_text(json.dumps(self.to_dict(), indent=2) + "\n", encoding="utf-8")
            os.replace(tmp, self.path)
        except OSError as err:
            logger.warning("Could not write settings to %s: %s", self.path, err)
            return
        logger.debug("Wrote settings to %s", self.path)


async def get_settings(config_dir: str | os.PathLike[str] | None = None) -> LiveJumpSettings:
    """Load settings from ``config_dir`` (default ``~/.config/livejump``)."""
    directory = Path(config_dir) if config_dir else Path.home() / ".config" / "livejump"
    settings = LiveJumpSettings(path=directory / SETTINGS_FILENAME)
    await settings.load()
    return settings
