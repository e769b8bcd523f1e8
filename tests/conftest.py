# tests/conftest.py
from __future__ import annotations

import heapq
import math
from collections import defaultdict
from collections.abc import Callable, Iterable
from typing import Any

import pytest

from livejump.config import CalibrationConfig
from livejump.events import DiagnosticEmitter, EventLog
from livejump.seek import SeekGuard
from livejump.state import CalibrationState
from livejump.stream import StreamEvent, TimeRange
from livejump.timers import TimerRegistry

WALL_ORIGIN = 1_700_000_000.0
"""Wall clock at fake loop time 0 (2023-11-14T22:13:20Z)."""


class FakeHandle:
    def __init__(self, when: float, callback: Callable[..., Any], args: tuple[Any, ...]) -> None:
        self.when = when
        self._callback = callback
        self._args = args
        self._cancelled = False

    def cancel(self) -> None:
        self._cancelled = True

    def cancelled(self) -> bool:
        return self._cancelled

    def _run(self) -> None:
        self._callback(*self._args)


class FakeLoop:
    """Deterministic stand-in for the parts of an event loop the engine uses."""

    def __init__(self, wall_origin: float = WALL_ORIGIN) -> None:
        self._now = 0.0
        self._wall_origin = wall_origin
        self._queue: list[tuple[float, int, FakeHandle]] = []
        self._seq = 0

    def time(self) -> float:
        return self._now

    def wall(self) -> float:
        """Epoch seconds, advancing with the loop."""
        return self._wall_origin + self._now

    def call_later(self, delay: float, callback: Callable[..., Any], *args: Any) -> FakeHandle:
        handle = FakeHandle(self._now + delay, callback, args)
        self._seq += 1
        heapq.heappush(self._queue, (handle.when, self._seq, handle))
        return handle

    def create_task(self, coro: Any, **kwargs: Any) -> None:
        coro.close()

    def advance(self, seconds: float) -> None:
        target = self._now + seconds
        while self._queue and self._queue[0][0] <= target + 1e-9:
            when, _, handle = heapq.heappop(self._queue)
            self._now = max(self._now, when)
            if not handle.cancelled():
                handle._run()
        self._now = target

    @property
    def pending(self) -> int:
        return sum(1 for _, _, handle in self._queue if not handle.cancelled())


class FakeStream:
    """Scriptable stream handle."""

    def __init__(
        self,
        seekable: Iterable[tuple[float, float]] = ((0.0, 10000.0),),
        buffered: Iterable[tuple[float, float]] = (),
        position: float = 0.0,
        duration: float = math.inf,
    ) -> None:
        self.seekable_ranges = [TimeRange(s, e) for s, e in seekable]
        self.buffered_ranges = [TimeRange(s, e) for s, e in buffered]
        self.duration = duration
        self.paused = False
        self.seeks: list[float] = []
        self.play_calls = 0
        self._position = position
        self._listeners: defaultdict[StreamEvent, list[Callable[[], None]]] = defaultdict(list)

    @property
    def current_position(self) -> float:
        return self._position

    @current_position.setter
    def current_position(self, value: float) -> None:
        self.seeks.append(value)
        self._position = value

    def set_window(
        self, start: float, end: float, buffered_end: float | None = None
    ) -> None:
        self.seekable_ranges = [TimeRange(start, end)]
        self.buffered_ranges = [] if buffered_end is None else [TimeRange(start, buffered_end)]

    def play(self) -> None:
        self.play_calls += 1
        self.paused = False

    def add_event_listener(
        self, event: StreamEvent, callback: Callable[[], None]
    ) -> Callable[[], None]:
        self._listeners[event].append(callback)

        def unsubscribe() -> None:
            if callback in self._listeners[event]:
                self._listeners[event].remove(callback)

        return unsubscribe

    def fire(self, event: StreamEvent) -> None:
        for callback in list(self._listeners[event]):
            callback()

    @property
    def listener_count(self) -> int:
        return sum(len(callbacks) for callbacks in self._listeners.values())


@pytest.fixture
def loop() -> FakeLoop:
    return FakeLoop()


@pytest.fixture
def timers(loop: FakeLoop) -> TimerRegistry:
    return TimerRegistry(loop)  # type: ignore[arg-type]


@pytest.fixture
def event_log(loop: FakeLoop) -> EventLog:
    return EventLog(clock=loop.wall)


@pytest.fixture
def emitter(event_log: EventLog) -> DiagnosticEmitter:
    return DiagnosticEmitter(event_log)


@pytest.fixture
def state() -> CalibrationState:
    return CalibrationState()


@pytest.fixture
def config() -> CalibrationConfig:
    return CalibrationConfig()


@pytest.fixture
def seek_guard(timers: TimerRegistry, emitter: DiagnosticEmitter) -> SeekGuard:
    return SeekGuard(timers, emitter=emitter)
