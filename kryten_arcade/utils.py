"""Shared utility helpers for kryten-arcade."""

from __future__ import annotations

import time
from datetime import datetime, timedelta, timezone
from typing import Awaitable, Callable, Optional

Clock = Callable[[], float]

# (text, reply-to message id) -> id of the sent message, when the transport reports one
ReplySender = Callable[[str, Optional[str]], Awaitable[Optional[str]]]


def now_ts() -> float:
    """Return current UTC epoch seconds."""
    return time.time()


def normalize_user(username: str) -> str:
    """Lowercase a username and strip a leading '@' mention marker."""
    return username.strip().lstrip("@").lower()


def display_name(username: str) -> str:
    return username.strip().lstrip("@")


def today_str(ts: float | None = None) -> str:
    """Return the UTC date of ``ts`` (default: now) as YYYY-MM-DD."""
    dt = datetime.fromtimestamp(ts if ts is not None else now_ts(), tz=timezone.utc)
    return dt.strftime("%Y-%m-%d")


def yesterday_str(ts: float | None = None) -> str:
    dt = datetime.fromtimestamp(ts if ts is not None else now_ts(), tz=timezone.utc)
    return (dt - timedelta(days=1)).strftime("%Y-%m-%d")


def hour_key(ts: float | None = None) -> str:
    """Return the UTC hour bucket of ``ts`` as YYYY-MM-DDTHH."""
    dt = datetime.fromtimestamp(ts if ts is not None else now_ts(), tz=timezone.utc)
    return dt.strftime("%Y-%m-%dT%H")


def parse_int(value: str | None) -> int | None:
    """Parse a chat argument as a positive or negative integer, or None."""
    if value is None:
        return None
    cleaned = value.strip().replace(",", "")
    try:
        return int(cleaned)
    except ValueError:
        return None


def seconds_left(deadline: float, now: float) -> int:
    """Whole seconds remaining until ``deadline`` (never negative)."""
    remaining = deadline - now
    if remaining <= 0:
        return 0
    return int(remaining) if remaining == int(remaining) else int(remaining) + 1


def format_wait(seconds: int) -> str:
    """Format a wait estimate as '~45 sec' or '~2 min'."""
    if seconds < 60:
        return f"~{seconds} sec"
    minutes = -(-seconds // 60)
    return f"~{minutes} min"


def plural(count: int, word: str, suffix: str = "s") -> str:
    return f"{count} {word}" if count == 1 else f"{count} {word}{suffix}"
