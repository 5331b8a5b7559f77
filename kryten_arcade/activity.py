"""Chat activity rewards: view-time chips and the hourly top chatter.

Counting is deliberately coarse. A message only counts toward the hour if
the user's previous counted message was at least ``count_interval_seconds``
ago and said something different.
"""

from __future__ import annotations

import logging
import time
from typing import TYPE_CHECKING, Callable

from .ledger import Ledger
from .store import Store
from .utils import hour_key, normalize_user

if TYPE_CHECKING:
    from .config import ArcadeConfig


SEEN_PREFIX = "activity:seen:"
VIEW_PREFIX = "view:last:"


def hour_counts_key(hour: str) -> str:
    return f"activity:hour:{hour}"


class ActivityTracker:
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
        return self._config.activity

    @property
    def view_interval_seconds(self) -> int:
        return self._cfg.view_reward_interval_minutes * 60

    async def record_message(self, username: str, text: str) -> bool:
        """Mark the user as present and maybe count the message. True if counted."""
        user = normalize_user(username)
        if self._ledger.is_excluded(user):
            return False
        now = self._clock()

        if self._cfg.view_rewards_enabled:
            await self._store.set(f"{SEEN_PREFIX}{user}", str(now), ex=self.view_interval_seconds * 2)

        if not self._cfg.top_chatter_enabled:
            return False
        last_key = f"activity:last:{user}"
        normalized = " ".join(text.lower().split())
        last = await self._store.get_json(last_key)
        if last and (now - last["at"] < self._cfg.count_interval_seconds or last["text"] == normalized):
            return False

        await self._store.set_json(last_key, {"at": now, "text": normalized}, ex=self._cfg.ttl_seconds)
        counts_key = hour_counts_key(hour_key(now))
        await self._store.zincrby(counts_key, user, 1)
        await self._store.expire(counts_key, self._cfg.ttl_seconds)
        return True

    async def award_view_time(self) -> int:
        """Pay everyone seen within the interval once per interval. Returns users paid."""
        if not (self._config.gambling.enabled and self._cfg.view_rewards_enabled):
            return 0
        now = self._clock()
        interval = self.view_interval_seconds
        paid = 0
        for key in await self._store.keys(SEEN_PREFIX):
            user = key[len(SEEN_PREFIX):]
            seen_raw = await self._store.get(key)
            if seen_raw is None or now - float(seen_raw) > interval:
                continue
            last_raw = await self._store.get(f"{VIEW_PREFIX}{user}")
            if last_raw is None:
                # First sighting starts the clock.
                await self._store.set(f"{VIEW_PREFIX}{user}", str(now))
                continue
            if now - float(last_raw) < interval:
                continue
            await self._store.set(f"{VIEW_PREFIX}{user}", str(now))
            await self._ledger.credit(user, self._cfg.view_reward_amount)
            paid += 1
        if paid:
            self._logger.info("View-time reward: %d users +%d", paid, self._cfg.view_reward_amount)
        return paid

    async def resolve_top_chatter(self) -> str | None:
        """Crown the previous hour's most active chatter, once."""
        if not (self._config.gambling.enabled and self._cfg.top_chatter_enabled):
            return None
        previous = hour_key(self._clock() - 3600)
        if not await self._store.set(
            f"activity:top_resolved:{previous}", "1", nx=True, ex=self._cfg.ttl_seconds,
        ):
            return None

        rows = await self._store.zrevrange(hour_counts_key(previous), 10_000)
        if len(rows) < self._cfg.top_chatter_min_chatters:
            return None
        best = max(score for _, score in rows)
        winner = min(user for user, score in rows if score == best)
        prize = self._cfg.top_chatter_prize
        balance = await self._ledger.credit(winner, prize)
        shown = await self._ledger.display_for(winner)
        self._logger.info("Top chatter for %s: %s (%d)", previous, winner, int(best))
        return (
            f"💬 Top chatter this hour: {shown} ({int(best)} messages), "
            f"+{prize} {self._config.currency.plural}! ({balance})"
        )

    async def reset_session(self) -> int:
        keys = await self._store.keys(VIEW_PREFIX)
        return await self._store.delete(*keys) if keys else 0
