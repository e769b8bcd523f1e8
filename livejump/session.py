"""Stream attachment context.

A :class:`StreamSession` owns everything that lives for the duration of one
stream attachment: the calibration state, the timer registry and the
components that read and write them. Detaching cancels every timer and
listener, so nothing fires against a stale stream.
"""

from __future__ import annotations

import asyncio
import datetime as dt
import logging
import time
from collections.abc import Callable
from dataclasses import dataclass, field

from livejump.calibration import CalibrationEstimator, SnapResult
from livejump.commands import SeekCommand, handle_seek_command
from livejump.config import DEFAULT_CONFIG, CalibrationConfig
from livejump.events import DiagnosticEmitter, EventLog, EventSink
from livejump.jump import JumpDecision, JumpOutcome, JumpResolver
from livejump.lock import PlaybackLockMachine
from livejump.pll import DriftCorrector
from livejump.probe import SeekableAnomalyProbe
from livejump.seek import SeekGuard, SeekResult
from livejump.state import CalibrationSnapshot, CalibrationState
from livejump.stream import StreamHandle, StreamWindowSnapshot, read_window
from livejump.timers import TimerRegistry

logger = logging.getLogger(__name__)


@dataclass
class _Attachment:
    """Components bound to one attached stream."""

    stream: StreamHandle
    timers: TimerRegistry
    seek_guard: SeekGuard
    lock_machine: PlaybackLockMachine
    estimator: CalibrationEstimator
    drift: DriftCorrector
    resolver: JumpResolver
    probe: SeekableAnomalyProbe | None
    unsubscribers: list[Callable[[], None]] = field(default_factory=list)


class StreamSession:
    """Calibration and jump engine for a single stream.

    Args:
        loop: Event loop that runs every timer.
        config: Static configuration.
        clock: Wall clock returning epoch seconds.
        is_ad_active: Polled before every jump; jumps are refused while True.
        sinks: Extra diagnostic sinks besides the built in :class:`EventLog`.
        enable_probe: Run the seekable anomaly probe while attached.
    """

    def __init__(
        self,
        loop: asyncio.AbstractEventLoop,
        config: CalibrationConfig = DEFAULT_CONFIG,
        *,
        clock: Callable[[], float] = time.time,
        is_ad_active: Callable[[], bool] | None = None,
        sinks: tuple[EventSink, ...] = (),
        enable_probe: bool = True,
    ) -> None:
        self._loop = loop
        self._config = config
        self._clock = clock
        self._is_ad_active = is_ad_active or (lambda: False)
        self._enable_probe = enable_probe
        self.event_log = EventLog(clock=clock)
        self.emitter = DiagnosticEmitter(self.event_log, *sinks)
        self.state = CalibrationState()
        self._attachment: _Attachment | None = None

    @property
    def config(self) -> CalibrationConfig:
        return self._config

    @property
    def attached(self) -> bool:
        return self._attachment is not None

    @property
    def stream(self) -> StreamHandle | None:
        return self._attachment.stream if self._attachment is not None else None

    @property
    def lock_machine(self) -> PlaybackLockMachine | None:
        return self._attachment.lock_machine if self._attachment is not None else None

    @property
    def drift(self) -> DriftCorrector | None:
        return self._attachment.drift if self._attachment is not None else None

    @property
    def estimator(self) -> CalibrationEstimator | None:
        return self._attachment.estimator if self._attachment is not None else None

    @property
    def pending_timers(self) -> int:
        return len(self._attachment.timers) if self._attachment is not None else 0

    def attach(self, stream: StreamHandle) -> None:
        """Bind to ``stream``, replacing any previous attachment."""
        if self._attachment is not None:
            self.detach()

        config = self._config
        self.state.reset()
        timers = TimerRegistry(self._loop)
        seek_guard = SeekGuard(
            timers,
            guard_sec=config.guard_sec,
            edge_backoff_sec=config.edge_backoff_sec,
            edge_recheck_ms=config.edge_recheck_ms,
            emitter=self.emitter,
        )
        lock_machine = PlaybackLockMachine(
            self.state,
            timers,
            seeked_unlock_ms=config.seeked_unlock_ms,
            playing_unlock_ms=config.playing_unlock_ms,
            emitter=self.emitter,
        )
        estimator = CalibrationEstimator(
            stream,
            self.state,
            config,
            timers,
            seek_guard,
            emitter=self.emitter,
            clock=self._clock,
        )
        drift = DriftCorrector(
            stream, self.state, config, timers, emitter=self.emitter, clock=self._clock
        )
        resolver = JumpResolver(
            stream,
            self.state,
            config,
            estimator,
            seek_guard,
            lock_machine=lock_machine,
            is_ad_active=self._is_ad_active,
            emitter=self.emitter,
            clock=self._clock,
        )
        probe = (
            SeekableAnomalyProbe(
                stream,
                self.state,
                timers,
                latency_sec=config.latency_sec,
                emitter=self.emitter,
                clock=self._clock,
            )
            if self._enable_probe
            else None
        )

        attachment = _Attachment(
            stream=stream,
            timers=timers,
            seek_guard=seek_guard,
            lock_machine=lock_machine,
            estimator=estimator,
            drift=drift,
            resolver=resolver,
            probe=probe,
        )
        attachment.unsubscribers.extend(lock_machine.bind(stream))
        self._attachment = attachment

        estimator.start()
        drift.start()
        if probe is not None:
            probe.start()
        logger.info("Attached stream (latency %.1fs)", config.latency_sec)
        self.emitter.status("attached")

    def detach(self) -> None:
        """Release the stream, cancelling every timer and listener."""
        attachment = self._attachment
        if attachment is None:
            return
        self._attachment = None

        for unsubscribe in attachment.unsubscribers:
            try:
                unsubscribe()
            except Exception:
                logger.exception("Failed to remove stream listener")
        attachment.estimator.stop()
        attachment.drift.stop()
        attachment.resolver.stop()
        if attachment.probe is not None:
            attachment.probe.stop()
        attachment.lock_machine.reset()
        attachment.timers.close()
        self.state.reset()
        logger.info("Detached stream")
        self.emitter.status("detached")

    def resolve_and_jump(
        self,
        text: str,
        zone: str,
        *,
        date: dt.date | None = None,
        c_override: float | None = None,
    ) -> JumpOutcome:
        """Jump to local time ``text`` in ``zone``; see :class:`JumpResolver`."""
        if self._attachment is None:
            if self._is_ad_active():
                return JumpOutcome(False, JumpDecision.PARSE_ERROR, reason="ad-active")
            return JumpOutcome(False, JumpDecision.PARSE_ERROR, reason="no-stream")
        return self._attachment.resolver.resolve_and_jump(
            text, zone, date=date, c_override=c_override
        )

    def edge_snap(self, *, manual: bool = True) -> SnapResult:
        """Run Edge-Snap now. ``manual`` asserts the playhead is at the live edge."""
        if self._attachment is None:
            return SnapResult(False, "no-stream")
        return self._attachment.estimator.snap(manual=manual)

    def seek_command(self, command: SeekCommand | str) -> SeekResult | None:
        """Apply a relative seek command.

        Raises:
            ValueError: For an unknown command name.
        """
        command = SeekCommand(command)
        if self._attachment is None:
            return None
        return handle_seek_command(self._attachment.stream, self._attachment.seek_guard, command)

    def window(self) -> StreamWindowSnapshot | None:
        if self._attachment is None:
            return None
        return read_window(self._attachment.stream)

    def snapshot(self) -> CalibrationSnapshot:
        """Read-only view of the calibration."""
        return self.state.snapshot()
