"""Win and participation streaks.

Streak counters only gate bonus payouts, so their own read-then-write races
are tolerated: the worst case is a missed or repeated milestone message.
"""

from __future__ import annotations

import logging
import time
from typing import TYPE_CHECKING, Callable

from .ledger import Ledger
from .store import Store
from .utils import display_name, normalize_user, today_str, yesterday_str

if TYPE_CHECKING:
    from .config import ArcadeConfig


def win_streak_key(user: str) -> str:
    return f"streak:win:{user}"


def participation_key(user: str) -> str:
    return f"streak:days:{user}"


class StreakTracker:
    """Tracks consecutive wins and consecutive days played."""

    def __init__(
        self,
        config: ArcadeConfig,
        store: Store,
        ledger: Ledger,
        logger: logging.Logger,
        clock: Callable[[], float] | None = None,
    ) -> None:
        self._config = config
        self._store = store
        self._ledger = ledger
        self._logger = logger
        self._clock = clock or time.time

    @property
    def _cfg(self):
        return self._config.gambling.streaks

    async def record_win(self, username: str) -> str:
        """Bump the win streak. Returns a suffix for the game reply ('' if none)."""
        if not self._cfg.win_streaks_enabled:
            return ""
        user = normalize_user(username)
        streak = await self._store.incr(win_streak_key(user), 1)
        bonus = self._cfg.win_milestones.get(streak)
        if bonus:
            balance = await self._ledger.credit(user, bonus)
            self._logger.info("Win streak %d for %s: +%d", streak, user, bonus)
            return f" 🔥 {streak} wins! +{bonus} bonus! ({self._ledger.chips(balance)})"
        if streak >= 2:
            return f" 🔥 {streak} streak!"
        return ""

    async def record_loss(self, username: str) -> None:
        if not self._cfg.win_streaks_enabled:
            return
        await self._store.set(win_streak_key(normalize_user(username)), "0")

    async def current_win_streak(self, username: str) -> int:
        return await self._store.get_int(win_streak_key(normalize_user(username)))

    async def check_participation(self, username: str) -> str | None:
        """Count today as played. Returns an announcement when a milestone is hit."""
        if not self._cfg.participation_streaks_enabled:
            return None
        user = normalize_user(username)
        now = self._clock()
        today = today_str(now)
        data = await self._store.get_json(participation_key(user), {}) or {}
        if data.get("last_date") == today:
            return None

        streak = int(data.get("streak", 0)) + 1 if data.get("last_date") == yesterday_str(now) else 1
        await self._store.set_json(participation_key(user), {"last_date": today, "streak": streak})

        bonus = self._cfg.participation_milestones.get(streak)
        if not bonus:
            return None
        balance = await self._ledger.credit(user, bonus)
        return (
            f"📅 {display_name(username)}: {streak}-day streak! "
            f"+{bonus} {self._config.currency.plural}! ({self._ledger.chips(balance)})"
        )
