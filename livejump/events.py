"""Diagnostic events for seeks, jumps and calibration changes.

Events are fire-and-forget: a failing sink is logged and otherwise ignored,
so the calibration core never depends on a consumer being healthy.
"""

from __future__ import annotations

import collections
import logging
import time
from collections.abc import Callable, Mapping
from dataclasses import dataclass, field
from typing import Any, Final

logger = logging.getLogger(__name__)

EventSink = Callable[[str, Mapping[str, Any]], None]
"""Callable receiving ``(kind, data)`` for each diagnostic event."""

LOG_CAPACITY: Final[int] = 200


@dataclass(frozen=True, slots=True)
class LogEvent:
    """One recorded diagnostic event."""

    ts_ms: float
    kind: str
    data: Mapping[str, Any] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        return {"ts": self.ts_ms, "kind": self.kind, "data": dict(self.data)}


class EventLog:
    """Fixed size in-memory ring of recent events with change subscribers."""

    def __init__(
        self, capacity: int = LOG_CAPACITY, clock: Callable[[], float] = time.time
    ) -> None:
        self._events: collections.deque[LogEvent] = collections.deque(maxlen=capacity)
        self._listeners: list[Callable[[], None]] = []
        self._clock = clock

    def __call__(self, kind: str, data: Mapping[str, Any]) -> None:
        """Record an event; lets the log be used directly as an :data:`EventSink`."""
        self.log(kind, data)

    def __len__(self) -> int:
        return len(self._events)

    def log(self, kind: str, data: Mapping[str, Any] | None = None) -> None:
        self._events.append(LogEvent(self._clock() * 1000.0, kind, dict(data or {})))
        self._notify()

    def clear(self) -> None:
        self._events.clear()
        self._notify()

    def get_all(self, kind: str | None = None) -> list[LogEvent]:
        """Events oldest first, optionally filtered by kind."""
        if kind is None:
            return list(self._events)
        return [e for e in self._events if e.kind == kind]

    def subscribe(self, listener: Callable[[], None]) -> Callable[[], None]:
        """Register a change listener and return its unsubscribe function."""
        self._listeners.append(listener)

        def unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return unsubscribe

    def _notify(self) -> None:
        for listener in list(self._listeners):
            try:
                listener()
            except Exception:
                logger.exception("Event log listener failed")


class DiagnosticEmitter:
    """Fans diagnostic events out to any number of sinks."""

    def __init__(self, *sinks: EventSink) -> None:
        self._sinks: list[EventSink] = list(sinks)

    def add_sink(self, sink: EventSink) -> Callable[[], None]:
        self._sinks.append(sink)

        def remove() -> None:
            if sink in self._sinks:
                self._sinks.remove(sink)

        return remove

    def emit(self, kind: str, **data: Any) -> None:
        logger.debug("event %s %s", kind, data)
        for sink in list(self._sinks):
            try:
                sink(kind, data)
            except Exception as err:  # noqa: BLE001
                logger.warning("Diagnostic sink failed for %s: %s", kind, err)

    def seek(self, **data: Any) -> None:
        self.emit("seek", **data)

    def jump(self, **data: Any) -> None:
        self.emit("jump", **data)

    def ad(self, *, active: bool) -> None:
        self.emit("ad", active=active)

    def status(self, status: str, **details: Any) -> None:
        self.emit("status", status=status, details=details)
