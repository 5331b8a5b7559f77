"""Chip ledger — per-user balances and the leaderboard mirror.

Balances live under ``balance:<user>`` and are mirrored into the
``leaderboard`` sorted set on every write. The first read of an unknown user
seeds the starting stake with a conditional write, so two concurrent first
reads cannot both grant it.

Debits are check-then-act: a read followed by an overwrite. Two debits racing
on the same balance can both succeed against the same stale read. That is an
accepted cost for synthetic chips; ``place_bet`` clamps to the balance it read
so a stale read never writes a negative balance.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import TYPE_CHECKING

from .store import Store
from .utils import display_name, normalize_user, parse_int

if TYPE_CHECKING:
    from .config import ArcadeConfig


LEADERBOARD_KEY = "leaderboard"


def balance_key(user: str) -> str:
    return f"balance:{user}"


def name_key(user: str) -> str:
    return f"name:{user}"


@dataclass
class DebitResult:
    """Outcome of a strict debit: ``balance`` is post-debit on success, current otherwise."""

    ok: bool
    balance: int


@dataclass
class BetResult:
    ok: bool
    bet: int
    balance: int


@dataclass
class LeaderboardEntry:
    user: str
    display: str
    balance: int


class Ledger:
    """Balance storage shared by every game and event."""

    def __init__(
        self,
        config: ArcadeConfig,
        store: Store,
        logger: logging.Logger,
    ) -> None:
        self._config = config
        self._store = store
        self._logger = logger
        self._excluded: set[str] = {
            normalize_user(u)
            for u in [*config.ledger.excluded_users, *config.ignored_users, config.bot.username]
            if u
        }

    @property
    def starting_stake(self) -> int:
        return self._config.ledger.starting_stake

    @property
    def min_bet(self) -> int:
        return self._config.ledger.min_bet

    def is_excluded(self, username: str) -> bool:
        return normalize_user(username) in self._excluded

    def chips(self, amount: int) -> str:
        cur = self._config.currency
        return f"{amount} {cur.name if amount == 1 else cur.plural}"

    # ══════════════════════════════════════════════════════════
    #  Reads
    # ══════════════════════════════════════════════════════════

    async def get_balance(self, username: str) -> int:
        """Return the balance, seeding the starting stake on first touch."""
        user = normalize_user(username)
        raw = await self._store.get(balance_key(user))
        if raw is not None:
            return _to_int(raw)

        stake = self.starting_stake
        if await self._store.set(balance_key(user), str(stake), nx=True):
            if not self.is_excluded(user):
                await self._store.zadd(LEADERBOARD_KEY, user, stake)
            self._logger.debug("Seeded %s with %d chips", user, stake)
            return stake
        # Lost the seeding race; someone else just wrote it.
        return await self._store.get_int(balance_key(user), stake)

    async def remember_name(self, username: str) -> None:
        """Store the display casing of a username for leaderboard output."""
        name = display_name(username)
        if name:
            await self._store.set(name_key(normalize_user(username)), name)

    async def display_for(self, user: str) -> str:
        """Last seen display casing for a normalized username."""
        return await self._store.get(name_key(user)) or user

    async def top_n(self, n: int | None = None) -> list[LeaderboardEntry]:
        """Highest balances, excluding bot and ignored accounts."""
        n = n or self._config.ledger.leaderboard_size
        rows = await self._store.zrevrange(LEADERBOARD_KEY, n + len(self._excluded))
        entries: list[LeaderboardEntry] = []
        for user, score in rows:
            if user in self._excluded:
                continue
            shown = await self.display_for(user)
            entries.append(LeaderboardEntry(user=user, display=shown, balance=int(score)))
            if len(entries) >= n:
                break
        return entries

    async def resolve_bet(self, username: str, arg: str | None) -> int:
        """Turn a chat bet argument into an amount.

        Missing, non-numeric and non-positive arguments fall back to the
        default bet and ``all`` wagers the whole balance.
        """
        if arg is not None and arg.strip().lower() == "all":
            return await self.get_balance(username)
        amount = parse_int(arg)
        if amount is None or amount < 1:
            return self._config.ledger.default_bet
        return amount

    # ══════════════════════════════════════════════════════════
    #  Writes
    # ══════════════════════════════════════════════════════════

    async def _write(self, user: str, balance: int) -> None:
        await self._store.set(balance_key(user), str(balance))
        if not self.is_excluded(user):
            await self._store.zadd(LEADERBOARD_KEY, user, balance)

    async def credit(self, username: str, amount: int) -> int:
        """Add ``amount`` chips. Amounts below 1 are a no-op. Returns the new balance."""
        user = normalize_user(username)
        if amount < 1:
            return await self.get_balance(user)
        await self.get_balance(user)
        new_balance = await self._store.incr(balance_key(user), amount)
        if not self.is_excluded(user):
            await self._store.zadd(LEADERBOARD_KEY, user, new_balance)
        return new_balance

    async def debit(self, username: str, amount: int) -> DebitResult:
        """Remove exactly ``amount`` chips or fail without writing."""
        user = normalize_user(username)
        balance = await self.get_balance(user)
        if amount < 1:
            return DebitResult(ok=False, balance=balance)
        if balance < amount:
            return DebitResult(ok=False, balance=balance)
        new_balance = balance - amount
        await self._write(user, new_balance)
        return DebitResult(ok=True, balance=new_balance)

    async def place_bet(self, username: str, requested: int) -> BetResult:
        """Debit a wager, clamped down to the balance just read."""
        user = normalize_user(username)
        balance = await self.get_balance(user)
        if requested < self.min_bet or balance < self.min_bet:
            return BetResult(ok=False, bet=0, balance=balance)
        bet = min(requested, balance)
        new_balance = balance - bet
        await self._write(user, new_balance)
        return BetResult(ok=True, bet=bet, balance=new_balance)

    async def reset_session(self) -> int:
        """Wipe every balance and the leaderboard (stream start). Returns keys removed."""
        keys = await self._store.keys("balance:")
        removed = await self._store.delete(*keys, LEADERBOARD_KEY)
        self._logger.info("Ledger reset: %d keys removed", removed)
        return removed


def _to_int(raw: str) -> int:
    try:
        return int(float(raw))
    except (TypeError, ValueError):
        return 0
