"""Simulated live DVR stream.

Stands in for a real player when running the control server locally. The
stream axis starts at ``epoch_origin`` and its live edge trails wall clock
time by ``latency_sec``. Optionally the reported seekable end runs ahead of
the playable data by ``anomaly_lead_sec``, reproducing the one hour
over-report seen on some live backends.
"""

from __future__ import annotations

import logging
import time
from collections import defaultdict
from collections.abc import Callable

from livejump.stream import StreamEvent, TimeRange

logger = logging.getLogger(__name__)


class SimulatedLiveStream:
    """In-process implementation of :class:`~livejump.stream.StreamHandle`."""

    def __init__(
        self,
        *,
        epoch_origin: float,
        latency_sec: float = 20.0,
        window_sec: float = 4 * 3600.0,
        anomaly_lead_sec: float = 0.0,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self._epoch_origin = epoch_origin
        self._latency_sec = latency_sec
        self._window_sec = window_sec
        self._anomaly_lead_sec = anomaly_lead_sec
        self._clock = clock
        self._listeners: defaultdict[StreamEvent, list[Callable[[], None]]] = defaultdict(list)
        self.paused = False
        self._anchor_position = self.live_edge
        self._anchor_wall = clock()

    @property
    def live_edge(self) -> float:
        """Newest playable stream position."""
        return max(0.0, self._clock() - self._latency_sec - self._epoch_origin)

    @property
    def seekable_ranges(self) -> list[TimeRange]:
        edge = self.live_edge
        return [TimeRange(max(0.0, edge - self._window_sec), edge + self._anomaly_lead_sec)]

    @property
    def buffered_ranges(self) -> list[TimeRange]:
        edge = self.live_edge
        return [TimeRange(max(0.0, edge - self._window_sec), edge)]

    @property
    def duration(self) -> float:
        return float("inf")

    @property
    def current_position(self) -> float:
        if self.paused:
            return self._anchor_position
        elapsed = self._clock() - self._anchor_wall
        return min(self._anchor_position + elapsed, self.live_edge)

    @current_position.setter
    def current_position(self, value: float) -> None:
        self._dispatch(StreamEvent.SEEKING)
        start = self.seekable_ranges[0].start
        self._anchor_position = min(max(float(value), start), self.live_edge)
        self._anchor_wall = self._clock()
        logger.debug("Simulated stream moved to %.3f", self._anchor_position)
        self._dispatch(StreamEvent.SEEKED)
        if not self.paused:
            self._dispatch(StreamEvent.PLAYING)

    def play(self) -> None:
        if not self.paused:
            return
        self._anchor_wall = self._clock()
        self.paused = False
        self._dispatch(StreamEvent.PLAYING)

    def pause(self) -> None:
        if self.paused:
            return
        self._anchor_position = self.current_position
        self.paused = True

    def stall(self) -> None:
        """Pretend the network stalled."""
        self._dispatch(StreamEvent.STALLED)

    def add_event_listener(
        self, event: StreamEvent, callback: Callable[[], None]
    ) -> Callable[[], None]:
        self._listeners[event].append(callback)

        def unsubscribe() -> None:
            if callback in self._listeners[event]:
                self._listeners[event].remove(callback)

        return unsubscribe

    def listener_count(self) -> int:
        return sum(len(callbacks) for callbacks in self._listeners.values())

    def _dispatch(self, event: StreamEvent) -> None:
        for callback in list(self._listeners[event]):
            callback()
