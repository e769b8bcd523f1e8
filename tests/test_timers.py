from __future__ import annotations

import logging

import pytest

from livejump.timers import TimerRegistry

from tests.conftest import FakeLoop


def test_call_later_runs_once(loop: FakeLoop, timers: TimerRegistry) -> None:
    calls: list[str] = []
    timers.call_later(0.5, calls.append, "a")
    assert len(timers) == 1
    loop.advance(0.4)
    assert calls == []
    loop.advance(0.2)
    assert calls == ["a"]
    assert len(timers) == 0


def test_failing_callback_is_logged(
    loop: FakeLoop, timers: TimerRegistry, caplog: pytest.LogCaptureFixture
) -> None:
    def boom() -> None:
        raise RuntimeError("boom")

    with caplog.at_level(logging.ERROR, logger="livejump.timers"):
        timers.call_later(0.1, boom, name="boom-timer")
        loop.advance(0.2)
    assert "boom-timer" in caplog.text


def test_call_every_repeats_until_cancelled(loop: FakeLoop, timers: TimerRegistry) -> None:
    ticks: list[float] = []
    timer = timers.call_every(1.0, lambda: ticks.append(loop.time()))
    loop.advance(3.5)
    assert ticks == [1.0, 2.0, 3.0]

    timer.cancel()
    loop.advance(3.0)
    assert len(ticks) == 3
    assert timer.cancelled
    assert loop.pending == 0


def test_periodic_survives_failing_tick(loop: FakeLoop, timers: TimerRegistry) -> None:
    ticks: list[int] = []

    def tick() -> None:
        ticks.append(1)
        if len(ticks) == 1:
            raise ValueError("first tick fails")

    timers.call_every(1.0, tick)
    loop.advance(3.0)
    assert len(ticks) == 3


def test_call_every_rejects_non_positive_interval(timers: TimerRegistry) -> None:
    with pytest.raises(ValueError):
        timers.call_every(0, lambda: None)


def test_close_cancels_everything(loop: FakeLoop, timers: TimerRegistry) -> None:
    calls: list[int] = []
    timers.call_later(1.0, calls.append, 1)
    timers.call_every(0.5, lambda: calls.append(2))
    timers.close()
    loop.advance(5.0)
    assert calls == []
    assert loop.pending == 0
    assert timers.closed

    with pytest.raises(RuntimeError):
        timers.call_later(1.0, calls.append, 3)


def test_cancel_single_handle(loop: FakeLoop, timers: TimerRegistry) -> None:
    calls: list[int] = []
    handle = timers.call_later(1.0, calls.append, 1)
    timers.call_later(1.0, calls.append, 2)
    timers.cancel(handle)
    loop.advance(2.0)
    assert calls == [2]
