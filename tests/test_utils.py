"""Tests for kryten_arcade.utils module."""

from __future__ import annotations

import pytest

from conftest import T0
from kryten_arcade.utils import (
    display_name,
    format_wait,
    hour_key,
    normalize_user,
    parse_int,
    plural,
    seconds_left,
    today_str,
    yesterday_str,
)


def test_normalize_user():
    assert normalize_user("  @Alice ") == "alice"
    assert display_name("@Alice") == "Alice"


def test_date_keys():
    assert today_str(T0) == "2025-06-15"
    assert yesterday_str(T0) == "2025-06-14"
    assert hour_key(T0) == "2025-06-15T15"
    assert hour_key(T0 - 1) == "2025-06-15T14"


@pytest.mark.parametrize("raw,expected", [
    ("10", 10),
    (" 1,000 ", 1000),
    ("-5", -5),
    ("ten", None),
    (None, None),
])
def test_parse_int(raw, expected):
    assert parse_int(raw) == expected


def test_seconds_left_rounds_up():
    assert seconds_left(100.0, 55.0) == 45
    assert seconds_left(100.0, 55.5) == 45
    assert seconds_left(100.0, 120.0) == 0


def test_format_wait_and_plural():
    assert format_wait(45) == "~45 sec"
    assert format_wait(61) == "~2 min"
    assert plural(1, "vote") == "1 vote"
    assert plural(3, "vote") == "3 votes"
