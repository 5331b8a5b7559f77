"""Chat challenge — the whole chat has to hit a message target in time."""

from __future__ import annotations

from .timed_event import TimedEvent
from .utils import normalize_user


class ChatChallenge(TimedEvent):
    kind = "chat_challenge"

    async def start(self, target: int | None = None, prize: int | None = None) -> str:
        record = {
            "id": self.new_id(),
            "target": target if target is not None else self._cfg.target_messages,
            "prize": prize if prize is not None else self._cfg.prize,
            "started_at": self._clock(),
        }
        if not await self._create(record):
            return "🎯 A chat challenge is already running."
        self._logger.info("Chat challenge started: %d messages", record["target"])
        return (
            f"🎯 CHAT CHALLENGE! Send {record['target']} messages in {self.window_seconds}s "
            f"and everyone gets {self._ledger.chips(record['prize'])}! Go go go!"
        )

    async def track(self, username: str) -> bool:
        """Count one message toward the target. Each user counts at most ``max_per_user`` times."""
        record = await self.get_record()
        if not record or not self.is_open(record):
            return False
        user = normalize_user(username)
        counts_key = self.sub_key(record, "counts")
        if (await self._store.zscore(counts_key, user) or 0) >= self._cfg.max_per_user:
            return False
        await self._store.zincrby(counts_key, user, 1)
        await self._store.incr(self.sub_key(record, "total"), 1)
        await self._expire_with(record, "counts", "total")
        return True

    async def progress(self) -> tuple[int, int] | None:
        record = await self.get_record()
        if not record:
            return None
        return await self._store.get_int(self.sub_key(record, "total")), record["target"]

    async def resolve(self) -> str | None:
        record = await self.get_record()
        if not record or self.is_open(record):
            return None
        if not await self._claim():
            return None

        total = await self._store.get_int(self.sub_key(record, "total"))
        contributors = await self._store.zrevrange(self.sub_key(record, "counts"), 10_000)
        await self._store.delete(self.sub_key(record, "counts"), self.sub_key(record, "total"))

        if total >= record["target"] and contributors:
            for user, _ in contributors:
                await self._ledger.credit(user, record["prize"])
            self._logger.info("Chat challenge complete: %d/%d", total, record["target"])
            return (
                f"🎯 Challenge complete! {total}/{record['target']} messages. {len(contributors)} "
                f"chatters each earned {self._ledger.chips(record['prize'])}!"
            )
        return f"🎯 Challenge failed! Only {total}/{record['target']} messages. Better luck next time!"
