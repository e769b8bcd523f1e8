from __future__ import annotations

import datetime as dt

import pytest

from livejump.config import CalibrationConfig
from livejump.jump import (
    JumpDecision,
    distance_to_interval,
    select_calibrated_candidate,
    select_provisional_candidate,
)
from livejump.session import StreamSession
from livejump.timeparse import Hms
from livejump.timezone import EpochCandidate, ZonedEpoch, to_epoch_in_zone

from tests.conftest import WALL_ORIGIN, FakeLoop, FakeStream

EPOCH_DAY = dt.date(1970, 1, 1)
WALL_DAY = dt.date(2023, 11, 14)


def _candidate(tag: str, epoch: int) -> EpochCandidate:
    return EpochCandidate(tag, EPOCH_DAY, ZonedEpoch(epoch, False, False, ""))


@pytest.fixture
def make_session(loop: FakeLoop):
    sessions: list[StreamSession] = []

    def _make(stream: FakeStream, **kwargs) -> StreamSession:
        session = StreamSession(
            loop, clock=loop.wall, enable_probe=False, **kwargs  # type: ignore[arg-type]
        )
        session.attach(stream)
        sessions.append(session)
        return session

    yield _make
    for session in sessions:
        session.detach()


class TestEndToEnd:
    def test_seek_in_range(self, make_session) -> None:
        stream = FakeStream(seekable=[(0, 10000)])
        session = make_session(stream)
        outcome = session.resolve_and_jump("00:01:40", "UTC", date=EPOCH_DAY, c_override=0.0)
        assert outcome.ok
        assert outcome.decision is JumpDecision.SEEK_IN_RANGE
        assert outcome.epoch == 100
        assert outcome.applied_target == 100.0
        assert stream.current_position == 100.0
        assert outcome.candidate == "today"
        assert outcome.provisional is False

    def test_jump_start(self, make_session) -> None:
        stream = FakeStream(seekable=[(100, 200)])
        session = make_session(stream)
        outcome = session.resolve_and_jump("00:00:00", "UTC", date=EPOCH_DAY, c_override=50.0)
        assert outcome.decision is JumpDecision.JUMP_START
        assert stream.current_position == 100.0
        assert outcome.clamp_info is not None
        assert outcome.clamp_info.reason == "start"

    def test_jump_end(self, make_session) -> None:
        stream = FakeStream(seekable=[(0, 200)])
        session = make_session(stream)
        outcome = session.resolve_and_jump("02:46:40", "UTC", date=EPOCH_DAY, c_override=0.0)
        assert outcome.decision is JumpDecision.JUMP_END
        assert outcome.applied_target == 197.0
        assert stream.current_position == 197.0


class TestFailures:
    def test_ad_active_short_circuits(self, make_session, loop: FakeLoop) -> None:
        stream = FakeStream(seekable=[(0, 10000)], buffered=[(0, 10000)], position=9999.0)
        session = make_session(stream, is_ad_active=lambda: True)
        outcome = session.resolve_and_jump("00:01:40", "UTC", date=EPOCH_DAY)
        assert outcome.decision is JumpDecision.PARSE_ERROR
        assert outcome.reason == "ad-active"
        assert not outcome.ok
        assert stream.seeks == []
        assert not session.state.is_calibrated

    def test_no_stream(self, loop: FakeLoop) -> None:
        session = StreamSession(loop, clock=loop.wall)  # type: ignore[arg-type]
        outcome = session.resolve_and_jump("12:00", "UTC")
        assert outcome.decision is JumpDecision.PARSE_ERROR
        assert outcome.reason == "no-stream"

    @pytest.mark.parametrize(
        ("text", "reason"),
        [("", "empty-input"), ("12345", "bad-digit-length"), ("1:2:3:4", "bad-field-count")],
    )
    def test_parse_errors_do_not_seek(self, make_session, text: str, reason: str) -> None:
        stream = FakeStream()
        outcome = make_session(stream).resolve_and_jump(text, "UTC", c_override=0.0)
        assert outcome.decision is JumpDecision.PARSE_ERROR
        assert outcome.reason == reason
        assert stream.seeks == []

    def test_unknown_zone(self, make_session) -> None:
        stream = FakeStream()
        outcome = make_session(stream).resolve_and_jump("12:00", "Nowhere/City", c_override=0.0)
        assert outcome.decision is JumpDecision.PARSE_ERROR
        assert outcome.reason == "unknown-zone"
        assert outcome.normalized == "12:00:00"
        assert stream.seeks == []

    @pytest.mark.parametrize(
        ("text", "date"),
        [("99999999:00", None), ("12:00", dt.date(9999, 12, 31))],
    )
    def test_dates_past_the_calendar_are_reported(
        self, make_session, text: str, date: dt.date | None
    ) -> None:
        stream = FakeStream(seekable=[(0, 10000)])
        outcome = make_session(stream).resolve_and_jump(text, "UTC", date=date, c_override=0.0)
        assert outcome.decision is JumpDecision.PARSE_ERROR
        assert outcome.reason == "invalid-date"
        assert not outcome.ok
        assert stream.seeks == []

    def test_non_finite_override(self, make_session) -> None:
        stream = FakeStream()
        outcome = make_session(stream).resolve_and_jump("12:00", "UTC", c_override=float("nan"))
        assert outcome.reason == "invalid-offset"
        assert stream.seeks == []


class TestDstFlags:
    @pytest.mark.parametrize(
        ("text", "date", "flag"),
        [
            ("01:30", dt.date(2021, 11, 7), "ambiguous"),
            ("02:30", dt.date(2021, 3, 14), "gap"),
        ],
    )
    def test_flags_of_chosen_candidate(
        self, make_session, text: str, date: dt.date, flag: str
    ) -> None:
        hh, mm = (int(part) for part in text.split(":"))
        epoch = to_epoch_in_zone("America/New_York", Hms(hh, mm, 0), date).epoch
        stream = FakeStream(seekable=[(0, 10000)])
        outcome = make_session(stream).resolve_and_jump(
            text, "America/New_York", date=date, c_override=float(epoch - 5000)
        )
        assert outcome.decision is JumpDecision.SEEK_IN_RANGE
        assert outcome.candidate == "today"
        assert outcome.flags[flag] is True
        assert stream.current_position == 5000.0


class TestCalibrationPaths:
    def test_uses_calibrated_offset(self, make_session) -> None:
        stream = FakeStream(seekable=[(0, 10000)])
        session = make_session(stream)
        session.state.snap_offset(0.0)
        outcome = session.resolve_and_jump("00:01:40", "UTC", date=EPOCH_DAY)
        assert outcome.decision is JumpDecision.SEEK_IN_RANGE
        assert outcome.offset == 0.0
        assert stream.current_position == 100.0

    def test_snaps_first_when_at_edge(self, make_session) -> None:
        stream = FakeStream(seekable=[(0, 5000)], buffered=[(0, 5000)], position=4998.0)
        session = make_session(stream)
        # WALL_ORIGIN - 1020 s is 21:56:20 UTC on the fake loop's day.
        outcome = session.resolve_and_jump("21:56:20", "UTC", date=WALL_DAY)
        assert session.state.c == pytest.approx(WALL_ORIGIN - 20 - 5000)
        assert outcome.provisional is False
        assert outcome.decision is JumpDecision.SEEK_IN_RANGE
        assert stream.current_position == pytest.approx(4000.0)

    def test_provisional_offset_is_pinned(self, make_session, loop: FakeLoop) -> None:
        stream = FakeStream(seekable=[(0, 5000)], buffered=[(0, 5000)], position=0.0)
        session = make_session(stream)
        outcome = session.resolve_and_jump("21:56:20", "UTC", date=WALL_DAY)
        assert outcome.provisional is True
        assert outcome.decision is JumpDecision.SEEK_IN_RANGE
        assert stream.current_position == pytest.approx(4000.0)
        assert not session.state.is_calibrated

        loop.advance(100.0)
        stream.set_window(0, 5100, 5100)
        again = session.resolve_and_jump("21:56:20", "UTC", date=WALL_DAY)
        assert again.provisional is True
        assert again.offset == outcome.offset
        assert stream.current_position == pytest.approx(4000.0)

    def test_jump_locks_until_settled(self, make_session, loop: FakeLoop) -> None:
        stream = FakeStream(seekable=[(0, 10000)])
        session = make_session(stream)
        session.resolve_and_jump("00:01:40", "UTC", date=EPOCH_DAY, c_override=0.0)
        assert session.state.locked is True
        loop.advance(1.5)
        assert session.state.locked is False

    def test_jump_proceeds_while_locked(self, make_session) -> None:
        stream = FakeStream(seekable=[(0, 10000)])
        session = make_session(stream, config=CalibrationConfig())
        session.lock_machine.lock("waiting")
        outcome = session.resolve_and_jump("00:01:40", "UTC", date=EPOCH_DAY, c_override=0.0)
        assert outcome.ok
        assert stream.current_position == 100.0

    def test_outcome_is_recorded(self, make_session) -> None:
        stream = FakeStream(seekable=[(0, 10000)])
        session = make_session(stream)
        session.resolve_and_jump("00:01:40", "UTC", date=EPOCH_DAY, c_override=0.0)
        (event,) = session.event_log.get_all("jump")
        assert event.data["decision"] == "seek-in-range"
        assert event.data["flags"] == {"ambiguous": False, "gap": False}


class TestSelection:
    def test_distance_to_interval(self) -> None:
        assert distance_to_interval(5, 10, 20) == 5
        assert distance_to_interval(15, 10, 20) == 0
        assert distance_to_interval(25, 10, 20) == 5

    def test_calibrated_prefers_first_in_window(self) -> None:
        candidates = [_candidate("today", 900), _candidate("yesterday", 500)]
        chosen, position = select_calibrated_candidate(candidates, 0.0, 0.0, 1000.0)
        assert chosen.tag == "today"
        assert position == 900.0

    def test_calibrated_falls_back_to_closest(self) -> None:
        candidates = [
            _candidate("today", 5000),
            _candidate("yesterday", -200),
            _candidate("tomorrow", 1500),
        ]
        chosen, _ = select_calibrated_candidate(candidates, 0.0, 0.0, 1000.0)
        assert chosen.tag == "yesterday"

    def test_provisional_prefers_closest_to_now(self) -> None:
        candidates = [_candidate("today", 100), _candidate("yesterday", 900)]
        chosen = select_provisional_candidate(candidates, 0.0, 1000.0)
        assert chosen.tag == "yesterday"

    def test_provisional_falls_back_to_window_distance(self) -> None:
        candidates = [_candidate("today", 3000), _candidate("yesterday", -500)]
        chosen = select_provisional_candidate(candidates, 0.0, 1000.0)
        assert chosen.tag == "yesterday"

    def test_empty_candidates(self) -> None:
        with pytest.raises(ValueError):
            select_calibrated_candidate([], 0.0, 0.0, 1.0)
