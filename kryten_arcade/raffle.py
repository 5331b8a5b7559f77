"""Raffle — type the keyword to enter, one random entry wins.

Every keyword message is one more entry. Entries are counted per user in a
sorted set, so the draw is uniform over entries rather than over people.
"""

from __future__ import annotations

import random

from .store import Store
from .timed_event import TimedEvent
from .utils import normalize_user, plural

RECENT_KEYWORDS_KEY = "raffle_recent_keywords"
MAX_KEYWORD_LENGTH = 20

DEFAULT_KEYWORDS = [
    "rizz", "sigma", "based", "slay", "goat", "sus", "cap", "bet", "gyat",
    "yeet", "vibe", "bruh", "fire", "dub", "cope", "mald", "valid", "mid",
    "lit", "aura", "cooked", "ratio", "pog", "kek", "npc", "banger", "glaze",
    "seethe", "bussin", "demure", "ong", "sheesh", "bonk", "stonks", "yoink",
    "noice", "chad", "simp", "drip", "flex", "savage", "beast", "legend",
    "vibes", "squad", "hype", "goated", "zamn", "dawg", "chill", "facts",
    "juicy", "crispy", "finesse", "spicy", "chip",
]


async def pick_keyword(
    store: Store, rng: random.Random, pool: list[str], recent_max: int,
) -> str:
    """Pick a keyword not used in the last ``recent_max`` picks (raffles and drops share this)."""
    recent = await store.get_json(RECENT_KEYWORDS_KEY, []) or []
    available = [k for k in pool if k not in recent] or pool
    keyword = rng.choice(available)
    await store.set_json(RECENT_KEYWORDS_KEY, (recent + [keyword])[-recent_max:])
    return keyword


class Raffle(TimedEvent):
    kind = "raffle"

    @property
    def window_seconds(self) -> int:
        return self._cfg.entry_window_seconds

    @property
    def keywords(self) -> list[str]:
        return [k.lower() for k in self._cfg.keywords] or DEFAULT_KEYWORDS

    def pick_prize(self) -> int:
        """60%: 25-50, 30%: 50-100, 10%: 100-150."""
        roll = self._rng.random()
        if roll < 0.6:
            return self._rng.randint(25, 50)
        if roll < 0.9:
            return self._rng.randint(50, 100)
        return self._rng.randint(100, 150)

    async def start(self, prize: int | None = None, keyword: str | None = None) -> str:
        existing = await self.get_record()
        if existing and self.is_open(existing):
            return (
                f"🎰 Raffle already active! Type '{existing['keyword']}' to enter "
                f"({self.time_left(existing)}s left)."
            )
        previous = None
        if existing:
            # Window over but never resolved; settle it before starting fresh.
            previous = await self.resolve()

        keyword = (keyword or await pick_keyword(
            self._store, self._rng, self.keywords, self._cfg.recent_keywords_max,
        )).lower()
        record = {
            "id": self.new_id(),
            "keyword": keyword,
            "prize": prize if prize is not None else self.pick_prize(),
            "started_at": self._clock(),
        }
        if not await self._create(record):
            return "🎰 A raffle is already running."
        self._logger.info("Raffle started: '%s' for %d", keyword, record["prize"])
        announcement = (
            f"🎰 RAFFLE! Type '{keyword}' in chat to enter! Drawing in "
            f"{self.window_seconds}s, winner gets {self._ledger.chips(record['prize'])}! "
            f"Spam it for more entries!"
        )
        return f"{previous} {announcement}" if previous else announcement

    async def enter(self, username: str, text: str) -> bool:
        """Count ``text`` as an entry if it is the keyword. Silent: no reply."""
        word = text.strip().lower()
        if not word or len(word) > MAX_KEYWORD_LENGTH:
            return False
        record = await self.get_record()
        if not record or not self.is_open(record) or word != record["keyword"]:
            return False
        user = normalize_user(username)
        entries_key = self.sub_key(record, "entries")
        await self._store.zincrby(entries_key, user, 1)
        await self._store.expire(entries_key, self.ttl_seconds)
        await self._ledger.remember_name(username)
        return True

    async def _entries(self, record: dict) -> list[tuple[str, float]]:
        return await self._store.zrevrange(self.sub_key(record, "entries"), 10_000)

    def draw(self, entries: list[tuple[str, float]]) -> str:
        """Pick one entry uniformly; a user's odds scale with their entry count."""
        users = sorted(entries)
        ticket = self._rng.randrange(int(sum(count for _, count in users)))
        for user, count in users:
            ticket -= int(count)
            if ticket < 0:
                return user
        return users[-1][0]

    async def resolve(self) -> str | None:
        record = await self.get_record()
        if not record or self.is_open(record):
            return None
        if not await self._claim():
            return None

        entries = await self._entries(record)
        await self._store.delete(self.sub_key(record, "entries"))
        if not entries:
            return "🎰 Raffle ended: no entries this time."

        winner = self.draw(entries)
        balance = await self._ledger.credit(winner, record["prize"])
        shown = await self._ledger.display_for(winner)
        self._logger.info("Raffle won by %s (%d)", winner, record["prize"])
        return (
            f"🎰 RAFFLE WINNER! {shown} wins {self._ledger.chips(record['prize'])}! "
            f"({balance} total, {plural(len(entries), 'player')} entered)"
        )

    async def status(self) -> str | None:
        record = await self.get_record()
        if not record or not self.is_open(record):
            return None
        entries = await self._entries(record)
        total = int(sum(count for _, count in entries))
        return (
            f"🎰 Active raffle: {len(entries)} entered ({total} {'entry' if total == 1 else 'entries'}), "
            f"{self._ledger.chips(record['prize'])} prize, {self.time_left(record)}s left. "
            f"Type '{record['keyword']}' to enter!"
        )

    async def reminder(self) -> str | None:
        """One-shot nudge between 40% and 80% of the entry window."""
        record = await self.get_record()
        if not record:
            return None
        elapsed = self.elapsed(record)
        if elapsed < self.window_seconds * 0.4 or elapsed >= self.window_seconds * 0.8:
            return None
        if not await self._store.set(self.sub_key(record, "reminded"), "1", nx=True, ex=self.ttl_seconds):
            return None
        entries = await self._entries(record)
        return (
            f"🎰 Raffle ending soon! {len(entries)} entered. Type '{record['keyword']}' "
            f"for more entries! ({self.time_left(record)}s left, {self._ledger.chips(record['prize'])})"
        )
