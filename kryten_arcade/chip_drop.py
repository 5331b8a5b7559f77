"""Chip drop — the first few people to type the keyword get paid on the spot."""

from __future__ import annotations

from .raffle import DEFAULT_KEYWORDS, MAX_KEYWORD_LENGTH, pick_keyword
from .timed_event import TimedEvent
from .utils import display_name, normalize_user


class ChipDrop(TimedEvent):
    """Winner slots are handed out by an atomic counter, so the cap is exact.

    A per-user ``nx`` key keeps anyone from claiming twice.
    """

    kind = "chip_drop"

    @property
    def keywords(self) -> list[str]:
        return [k.lower() for k in self._cfg.keywords] or DEFAULT_KEYWORDS

    async def start(self, prize: int | None = None, max_winners: int | None = None) -> str:
        keyword = await pick_keyword(
            self._store, self._rng, self.keywords, self._config.events.raffle.recent_keywords_max,
        )
        record = {
            "id": self.new_id(),
            "keyword": keyword,
            "prize": prize if prize is not None else self._cfg.prize,
            "max_winners": max_winners if max_winners is not None else self._cfg.max_winners,
            "started_at": self._clock(),
        }
        if not await self._create(record):
            return "💧 A drop is already running."
        self._logger.info("Chip drop started: '%s'", keyword)
        return (
            f"💧 {self._config.currency.name.capitalize()} drop! First {record['max_winners']} to type "
            f"'{keyword}' get {self._ledger.chips(record['prize'])}!"
        )

    async def enter(self, username: str, text: str) -> str | None:
        word = text.strip().lower()
        if not word or len(word) > MAX_KEYWORD_LENGTH:
            return None
        record = await self.get_record()
        if not record or not self.is_open(record) or word != record["keyword"]:
            return None

        user = normalize_user(username)
        if not await self._store.set(
            self.sub_key(record, f"claimed:{user}"), "1", nx=True, ex=self.ttl_seconds,
        ):
            return None
        slot = await self._store.incr(self.sub_key(record, "count"), 1)
        await self._store.expire(self.sub_key(record, "count"), self.ttl_seconds)
        if slot > record["max_winners"]:
            return None

        await self._store.zadd(self.sub_key(record, "winners"), user, slot)
        await self._store.expire(self.sub_key(record, "winners"), self.ttl_seconds)
        await self._ledger.remember_name(username)
        balance = await self._ledger.credit(user, record["prize"])
        grabbed = f"💧 {display_name(username)} grabbed {self._ledger.chips(record['prize'])}! ({balance})"

        if slot == record["max_winners"]:
            await self._claim()
            return f"{grabbed} Drop complete!"
        return f"{grabbed} {record['max_winners'] - slot} left!"

    async def resolve(self) -> str | None:
        """Close a drop whose window ran out before it filled up."""
        record = await self.get_record()
        if not record or self.is_open(record):
            return None
        if not await self._claim():
            return None
        winners = await self._store.zrevrange(self.sub_key(record, "winners"), record["max_winners"])
        if not winners:
            return None
        ordered = sorted(winners, key=lambda w: w[1])
        names = [await self._ledger.display_for(user) for user, _ in ordered]
        return f"💧 Drop ended! {len(names)} grabbed {self._config.currency.plural}: {', '.join(names)}"
