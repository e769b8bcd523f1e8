from __future__ import annotations

from pathlib import Path

import pytest

from livejump.__main__ import DEFAULT_WINDOW_SEC, main, parse_args


@pytest.fixture
def run(tmp_path: Path):
    def _run(*argv: str) -> int:
        return main(["--config-dir", str(tmp_path), *argv])

    return _run


@pytest.mark.parametrize(
    ("text", "expected"),
    [("7:5", "07:05:00"), ("0830", "08:30:00"), ("24:10", "00:10:00 (+1 day)")],
)
def test_parse(run, capsys: pytest.CaptureFixture[str], text: str, expected: str) -> None:
    assert run("parse", text) == 0
    assert capsys.readouterr().out.strip() == expected


def test_parse_error(run, capsys: pytest.CaptureFixture[str]) -> None:
    assert run("parse", "12345") == 1
    assert "bad-digit-length" in capsys.readouterr().err


def test_resolve_lists_candidates(run, capsys: pytest.CaptureFixture[str]) -> None:
    assert run("resolve", "01:30", "--zone", "America/New_York", "--date", "2021-11-07") == 0
    lines = capsys.readouterr().out.splitlines()
    assert [line.split()[0] for line in lines] == ["today", "yesterday", "tomorrow"]
    assert "2021-11-07T01:30:00" in lines[0]
    assert lines[0].endswith("ambiguous")
    assert "epoch=1636263000" in lines[0]


def test_resolve_unknown_zone(run, capsys: pytest.CaptureFixture[str]) -> None:
    assert run("resolve", "12:00", "--zone", "Mars/Olympus") == 1
    assert "unknown-zone" in capsys.readouterr().err


def test_resolve_out_of_range_date(run, capsys: pytest.CaptureFixture[str]) -> None:
    assert run("resolve", "99999999:00", "--zone", "UTC") == 1
    assert "invalid-date" in capsys.readouterr().err


def test_resolve_uses_persisted_zone(
    run, tmp_path: Path, capsys: pytest.CaptureFixture[str]
) -> None:
    (tmp_path / "settings.json").write_text('{"default_zone": "UTC"}')
    assert run("resolve", "00:00", "--date", "2024-01-01") == 0
    assert "epoch=1704067200" in capsys.readouterr().out.splitlines()[0]


def test_serve_arguments() -> None:
    args = parse_args(["serve", "--port", "9000", "--anomaly-lead", "3600"])
    assert args.command == "serve"
    assert args.port == 9000
    assert args.anomaly_lead == 3600.0
    assert args.window == DEFAULT_WINDOW_SEC
    assert args.host == "127.0.0.1"


def test_command_is_required() -> None:
    with pytest.raises(SystemExit):
        parse_args([])
