"""Heist — a pooled wager that pays everyone or no one.

The first ``!heist <amount>`` opens a join window. Each robber joins once;
the crew size is an atomic counter so the cap holds under concurrent joins.
The more robbers, the better the odds; on success every robber is paid
``floor(bet * multiplier)`` where the multiplier is drawn once per heist.
"""

from __future__ import annotations

import math

from .timed_event import TimedEvent
from .utils import display_name, normalize_user, plural


class Heist(TimedEvent):
    kind = "heist"

    @property
    def window_seconds(self) -> int:
        return self._cfg.join_window_seconds

    def success_percent(self, robbers: int) -> int:
        cfg = self._cfg
        return min(cfg.max_success_percent, cfg.base_success_percent + cfg.per_robber_percent * robbers)

    async def _crew(self, record: dict) -> list[tuple[str, float]]:
        return await self._store.zrevrange(self.sub_key(record, "crew"), self._cfg.max_participants + 5)

    async def _touch(self, record: dict) -> None:
        await self._expire_with(record, "crew", "size")

    # ══════════════════════════════════════════════════════════
    #  Join / start
    # ══════════════════════════════════════════════════════════

    async def join(self, username: str, requested: int | None) -> str:
        """``!heist [amount]``: status without an amount, otherwise start or join."""
        user = normalize_user(username)
        record = await self.get_record()

        if record and not self.is_open(record):
            result = await self.resolve()
            if result:
                return f"{result} Use !heist <amount> to start a new one."
            record = None

        if requested is None:
            return await self.status() or "🏦 No active heist. !heist <amount> to start one!"

        if record is None:
            return await self._start(username, user, requested)

        if not await self._store.set(
            self.sub_key(record, f"member:{user}"), "1", nx=True, ex=self.ttl_seconds,
        ):
            return "🏦 You're already in this heist!"

        size = await self._store.incr(self.sub_key(record, "size"), 1)
        if size > self._cfg.max_participants:
            await self._leave(record, user)
            return f"🏦 Heist crew is full (max {self._cfg.max_participants})."

        bet = await self._ledger.place_bet(user, requested)
        if not bet.ok:
            await self._leave(record, user)
            return f"🏦 Not enough {self._config.currency.plural} ({bet.balance})."

        await self._store.zadd(self.sub_key(record, "crew"), user, bet.bet)
        await self._touch(record)
        await self._ledger.remember_name(username)

        crew = await self._crew(record)
        pot = int(sum(b for _, b in crew))
        return (
            f"🏦 {display_name(username)} joins with {bet.bet}! ({plural(len(crew), 'robber')}, "
            f"{pot} pot, {self.success_percent(len(crew))}%, {self.time_left(record)}s)"
        )

    async def _leave(self, record: dict, user: str) -> None:
        await self._store.incr(self.sub_key(record, "size"), -1)
        await self._store.delete(self.sub_key(record, f"member:{user}"))

    async def _start(self, username: str, user: str, requested: int) -> str:
        bet = await self._ledger.place_bet(user, requested)
        if not bet.ok:
            return f"🏦 Not enough {self._config.currency.plural} ({bet.balance})."

        record = {"id": self.new_id(), "started_at": self._clock(), "initiator": user}
        if not await self._create(record):
            await self._ledger.credit(user, bet.bet)
            return "🏦 A heist just started. !heist <amount> to join!"

        await self._store.set(self.sub_key(record, f"member:{user}"), "1", ex=self.ttl_seconds)
        await self._store.incr(self.sub_key(record, "size"), 1)
        await self._store.zadd(self.sub_key(record, "crew"), user, bet.bet)
        await self._touch(record)
        await self._ledger.remember_name(username)
        self._logger.info("Heist started by %s with %d", user, bet.bet)
        return (
            f"🏦 HEIST STARTED! {display_name(username)} bets {bet.bet}. "
            f"!heist <amount> to join! ({self.window_seconds}s)"
        )

    # ══════════════════════════════════════════════════════════
    #  Resolution
    # ══════════════════════════════════════════════════════════

    async def resolve(self) -> str | None:
        record = await self.get_record()
        if not record or self.is_open(record):
            return None
        if not await self._claim():
            return None

        crew = await self._crew(record)
        await self._store.delete(self.sub_key(record, "crew"), self.sub_key(record, "size"))
        if not crew:
            return None

        robbers = len(crew)
        succeeded = self._rng.random() * 100 < self.success_percent(robbers)
        pot = int(sum(b for _, b in crew))

        if not succeeded:
            self._logger.info("Heist failed: %d robbers, %d lost", robbers, pot)
            who = "Lone robber caught" if robbers == 1 else f"All {robbers} robbers caught"
            return f"🏦🚔 HEIST FAILED! {who}! {self._ledger.chips(pot)} lost."

        multiplier = self._cfg.base_multiplier + self._rng.random()
        payouts = []
        for user, stake in crew:
            bet = int(stake)
            payout = math.floor(bet * multiplier)
            balance = await self._ledger.credit(user, payout)
            payouts.append(f"{await self._ledger.display_for(user)} +{payout - bet} ({balance})")
        self._logger.info("Heist succeeded: %d robbers at %.2fx", robbers, multiplier)
        return (
            f"🏦💰 HEIST SUCCEEDED! {plural(robbers, 'robber')} split the loot "
            f"at {multiplier:.2f}x! {', '.join(payouts)}"
        )

    async def status(self) -> str | None:
        record = await self.get_record()
        if not record or not self.is_open(record):
            return None
        crew = await self._crew(record)
        names = [await self._ledger.display_for(user) for user, _ in crew]
        pot = int(sum(b for _, b in crew))
        return (
            f"🏦 Active heist: {', '.join(names)} ({plural(len(crew), 'robber')}, {pot} at stake, "
            f"{self.success_percent(len(crew))}% odds, {self.time_left(record)}s left). "
            f"!heist <amount> to join!"
        )
