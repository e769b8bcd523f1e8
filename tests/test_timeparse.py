from __future__ import annotations

import pytest

from livejump.timeparse import Hms, ParseError, ParseOk, parse_and_normalize_24h


@pytest.mark.parametrize(
    ("text", "normalized", "overflow", "day_offset"),
    [
        ("7:5", "07:05:00", False, 0),
        ("08:80", "09:20:00", False, 0),
        ("24:10", "00:10:00", True, 1),
        ("236059", "00:00:59", True, 1),
        ("0830", "08:30:00", False, 0),
        ("7", "07:00:00", False, 0),
        ("23:59:59", "23:59:59", False, 0),
        ("12:00:75", "12:01:15", False, 0),
        ("48:00", "00:00:00", True, 2),
        ("  21:30 ", "21:30:00", False, 0),
    ],
)
def test_accepts_and_normalizes(
    text: str, normalized: str, overflow: bool, day_offset: int
) -> None:
    result = parse_and_normalize_24h(text)
    assert isinstance(result, ParseOk)
    assert result.ok is True
    assert result.normalized == normalized
    assert result.overflow is overflow
    assert result.day_offset == day_offset


def test_exposes_raw_fields() -> None:
    result = parse_and_normalize_24h("08:80")
    assert isinstance(result, ParseOk)
    assert (result.hh, result.mm, result.ss) == (9, 20, 0)
    assert result.hms == Hms(9, 20, 0)


@pytest.mark.parametrize(
    ("text", "category"),
    [
        ("", "empty-input"),
        ("   ", "empty-input"),
        (None, "empty-input"),
        ("7a", "non-digit"),
        ("7.30", "non-digit"),
        ("-1:00", "non-digit"),
        ("7::5", "non-digit"),
        ("7:", "non-digit"),
        (":30", "non-digit"),
        ("٣:٠٥", "non-digit"),
        ("1:2:3:4", "bad-field-count"),
        ("123", "bad-digit-length"),
        ("12345", "bad-digit-length"),
        ("1234567", "bad-digit-length"),
    ],
)
def test_rejects(text: str | None, category: str) -> None:
    result = parse_and_normalize_24h(text)
    assert isinstance(result, ParseError)
    assert result.ok is False
    assert result.category == category
    assert result.error


@pytest.mark.parametrize("text", ["7:5", "08:80", "24:10", "236059", "0000", "9", "23:59:59"])
def test_normalization_is_idempotent(text: str) -> None:
    first = parse_and_normalize_24h(text)
    assert isinstance(first, ParseOk)
    second = parse_and_normalize_24h(first.normalized)
    assert isinstance(second, ParseOk)
    assert second.normalized == first.normalized
    assert second.overflow is False
