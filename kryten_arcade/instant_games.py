"""Instant games — single-shot wagers and two-phase duels.

Every game follows the same template: cooldown check, ``place_bet``, draw the
random values, hand them to a pure resolver, credit any payout, update the
win streak and reply with the post-round balance. The resolvers below take
pre-drawn values so outcomes are testable without a random source.
"""

from __future__ import annotations

import logging
import math
import random
import time
from dataclasses import dataclass
from typing import TYPE_CHECKING, Callable

from .cards import WAR_RANKS, card_rank
from .ledger import Ledger
from .store import Store
from .streaks import StreakTracker
from .utils import display_name, normalize_user, seconds_left

if TYPE_CHECKING:
    from .config import ArcadeConfig


RED_NUMBERS = frozenset({1, 3, 5, 7, 9, 12, 14, 16, 18, 19, 21, 23, 25, 27, 30, 32, 34, 36})

DICE_CHOICES = {"high": "high", "h": "high", "low": "low", "l": "low"}
ROULETTE_COLOURS = {"red": "red", "r": "red", "black": "black", "b": "black"}


@dataclass
class InstantResult:
    message: str
    net: int = 0
    balance: int | None = None


# ═══════════════════════════════════════════════════════════════
#  Pure resolvers (payout is the total returned, stake included)
# ═══════════════════════════════════════════════════════════════


def resolve_coinflip(roll: float, bet: int) -> int:
    return bet * 2 if roll < 0.5 else 0


def resolve_slots(reels: list[str], bet: int, multipliers: dict[str, int]) -> int:
    """Three of a kind pays the symbol multiplier, a pair pays half of it (min 1x)."""
    counts: dict[str, int] = {}
    for symbol in reels:
        counts[symbol] = counts.get(symbol, 0) + 1
    symbol, hits = max(counts.items(), key=lambda kv: (kv[1], multipliers.get(kv[0], 0)))
    mult = multipliers.get(symbol, 0)
    if hits >= 3:
        return bet * mult
    if hits == 2:
        return bet * max(1, mult // 2)
    return 0


def roulette_colour(number: int) -> str:
    if number == 0:
        return "green"
    return "red" if number in RED_NUMBERS else "black"


def resolve_roulette(choice: str | int, spin: int, bet: int, number_multiplier: int = 36) -> int:
    if isinstance(choice, int):
        return bet * number_multiplier if spin == choice else 0
    return bet * 2 if roulette_colour(spin) == choice else 0


def resolve_dice(choice: str, roll: int, bet: int) -> int:
    side = "high" if roll >= 4 else "low"
    return bet * 2 if side == choice else 0


def crash_point(r: float) -> float:
    """Map a uniform draw in [0, 1) to a crash multiplier (>= 1.00, two decimals)."""
    return max(1.0, math.floor(100 / (1 - r * 0.97)) / 100)


def resolve_crash(bet: int, target: float, point: float) -> int:
    return math.floor(bet * target) if point >= target else 0


def resolve_war(player_card: str, dealer_card: str, bet: int) -> int:
    mine = WAR_RANKS.index(card_rank(player_card))
    theirs = WAR_RANKS.index(card_rank(dealer_card))
    if mine > theirs:
        return bet * 2
    if mine == theirs:
        return bet
    return 0


# ═══════════════════════════════════════════════════════════════
#  Engine
# ═══════════════════════════════════════════════════════════════


class InstantGamesEngine:
    """Coin flip, slots, roulette, dice, crash, war and duels."""

    def __init__(
        self,
        config: ArcadeConfig,
        store: Store,
        ledger: Ledger,
        streaks: StreakTracker,
        logger: logging.Logger,
        rng: random.Random | None = None,
        clock: Callable[[], float] | None = None,
    ) -> None:
        self._config = config
        self._store = store
        self._ledger = ledger
        self._streaks = streaks
        self._logger = logger
        self._rng = rng or random.Random()
        self._clock = clock or time.time

    @property
    def _cfg(self):
        return self._config.gambling.instant_games

    @staticmethod
    def cooldown_key(user: str) -> str:
        return f"cooldown:instant:{user}"

    @staticmethod
    def duel_key(target: str) -> str:
        return f"duel:{target}"

    # ── Shared template ──────────────────────────────────────

    async def _begin(self, user: str, requested: int, icon: str) -> tuple[int | None, str | None]:
        """Cooldown and wager. Returns (bet, None) or (None, rejection reply)."""
        now = self._clock()
        last = await self._store.get(self.cooldown_key(user))
        if last is not None:
            wait = seconds_left(float(last) + self._cfg.cooldown_seconds, now)
            if wait > 0:
                return None, f"{icon} Slow down! Wait {wait}s."

        bet = await self._ledger.place_bet(user, requested)
        if not bet.ok:
            return None, self._bet_rejection(icon, requested, bet.balance)
        await self._store.set(self.cooldown_key(user), str(now), ex=self._cfg.cooldown_seconds)
        return bet.bet, None

    def _bet_rejection(self, icon: str, requested: int, balance: int) -> str:
        if balance < self._ledger.min_bet:
            return f"{icon} You're out of {self._config.currency.plural} ({balance})."
        return f"{icon} Minimum bet is {self._ledger.min_bet}."

    async def _settle(self, user: str, bet: int, payout: int) -> tuple[int, int, str]:
        """Pay out and update streaks. Returns (net, balance, streak suffix)."""
        if payout > 0:
            balance = await self._ledger.credit(user, payout)
        else:
            balance = await self._ledger.get_balance(user)
        net = payout - bet
        suffix = ""
        if net > 0:
            suffix = await self._streaks.record_win(user)
        elif net < 0:
            await self._streaks.record_loss(user)
        return net, balance, suffix

    def _outcome(self, net: int, balance: int, suffix: str) -> str:
        """Shared '+N! (bal)' / '-N. (bal)' / 'Push.' tail."""
        bal = self._ledger.chips(balance)
        if net > 0:
            return f"+{net}! ({bal}){suffix}"
        if net < 0:
            return f"{net}. ({bal})"
        return f"Push. ({bal})"

    # ══════════════════════════════════════════════════════════
    #  Games
    # ══════════════════════════════════════════════════════════

    async def coinflip(self, username: str, requested: int) -> InstantResult:
        user = normalize_user(username)
        bet, rejection = await self._begin(user, requested, "🎲")
        if rejection:
            return InstantResult(rejection)
        payout = resolve_coinflip(self._rng.random(), bet)
        net, balance, suffix = await self._settle(user, bet, payout)
        return InstantResult(f"🎲 {self._outcome(net, balance, suffix)}", net, balance)

    async def slots(self, username: str, requested: int) -> InstantResult:
        user = normalize_user(username)
        bet, rejection = await self._begin(user, requested, "🎰")
        if rejection:
            return InstantResult(rejection)
        symbols = list(self._cfg.slot_multipliers)
        reels = [self._rng.choice(symbols) for _ in range(3)]
        payout = resolve_slots(reels, bet, self._cfg.slot_multipliers)
        net, balance, suffix = await self._settle(user, bet, payout)
        return InstantResult(
            f"🎰 [{' '.join(reels)}] {self._outcome(net, balance, suffix)}", net, balance,
        )

    async def roulette(self, username: str, choice_arg: str | None, requested: int) -> InstantResult:
        choice = parse_roulette_choice(choice_arg)
        if choice is None:
            return InstantResult("🎡 Usage: !roulette <red|black|1-36> <amount>")
        user = normalize_user(username)
        bet, rejection = await self._begin(user, requested, "🎡")
        if rejection:
            return InstantResult(rejection)
        spin = self._rng.randint(0, 36)
        payout = resolve_roulette(choice, spin, bet, self._cfg.roulette_number_multiplier)
        net, balance, suffix = await self._settle(user, bet, payout)
        return InstantResult(
            f"🎡 {spin} {roulette_colour(spin)}. {self._outcome(net, balance, suffix)}", net, balance,
        )

    async def dice(self, username: str, choice_arg: str | None, requested: int) -> InstantResult:
        choice = DICE_CHOICES.get((choice_arg or "").strip().lower())
        if choice is None:
            return InstantResult("🎲 Usage: !dice <high|low> <amount>")
        user = normalize_user(username)
        bet, rejection = await self._begin(user, requested, "🎲")
        if rejection:
            return InstantResult(rejection)
        roll = self._rng.randint(1, 6)
        payout = resolve_dice(choice, roll, bet)
        net, balance, suffix = await self._settle(user, bet, payout)
        return InstantResult(
            f"🎲 Rolled {roll} ({choice} was {'right' if payout else 'wrong'}). "
            f"{self._outcome(net, balance, suffix)}",
            net, balance,
        )

    async def crash(self, username: str, requested: int, target: float | None = None) -> InstantResult:
        user = normalize_user(username)
        cash_out = max(self._cfg.crash_min_target, target or self._cfg.crash_default_target)
        bet, rejection = await self._begin(user, requested, "📈")
        if rejection:
            return InstantResult(rejection)
        point = crash_point(self._rng.random())
        payout = resolve_crash(bet, cash_out, point)
        net, balance, suffix = await self._settle(user, bet, payout)
        if payout:
            head = f"📈 Crashed at {point:.2f}x, you cashed out at {cash_out:.2f}x."
        else:
            head = f"💥 Crashed at {point:.2f}x before {cash_out:.2f}x."
        return InstantResult(f"{head} {self._outcome(net, balance, suffix)}", net, balance)

    async def war(self, username: str, requested: int) -> InstantResult:
        user = normalize_user(username)
        bet, rejection = await self._begin(user, requested, "⚔️")
        if rejection:
            return InstantResult(rejection)
        mine = f"{self._rng.choice(WAR_RANKS)}{self._rng.choice('♠♥♦♣')}"
        theirs = f"{self._rng.choice(WAR_RANKS)}{self._rng.choice('♠♥♦♣')}"
        payout = resolve_war(mine, theirs, bet)
        net, balance, suffix = await self._settle(user, bet, payout)
        if payout == bet:
            tail = f"Tie! Bet refunded. ({self._ledger.chips(balance)})"
        else:
            tail = self._outcome(net, balance, suffix)
        return InstantResult(f"⚔️ You {mine} vs dealer {theirs}. {tail}", net, balance)

    # ══════════════════════════════════════════════════════════
    #  Duels
    # ══════════════════════════════════════════════════════════

    async def challenge(self, challenger: str, target: str | None, requested: int) -> InstantResult:
        """Reserve the challenger's wager and leave a pending duel for the target."""
        if not target:
            return InstantResult("⚔️ Usage: !duel @user <amount>")
        user = normalize_user(challenger)
        opponent = normalize_user(target)
        if not opponent or opponent == user:
            return InstantResult("⚔️ You can't duel yourself.")
        if self._ledger.is_excluded(opponent):
            return InstantResult(f"⚔️ {display_name(target)} doesn't duel.")

        if await self._load_duel(opponent) is not None:
            return InstantResult(f"⚔️ {display_name(target)} already has a pending duel.")

        bet, rejection = await self._begin(user, requested, "⚔️")
        if rejection:
            return InstantResult(rejection)

        timeout = self._config.gambling.duel.accept_timeout_seconds
        record = {
            "challenger": user,
            "challenger_name": display_name(challenger),
            "target_name": display_name(target),
            "bet": bet,
            "created_at": self._clock(),
        }
        if not await self._store.set_json(self.duel_key(opponent), record, ex=timeout + 60, nx=True):
            # Another challenge landed between the check and the write.
            await self._ledger.credit(user, bet)
            return InstantResult(f"⚔️ {display_name(target)} already has a pending duel.")

        self._logger.info("Duel %s → %s for %d", user, opponent, bet)
        return InstantResult(
            f"⚔️ {display_name(challenger)} challenges {display_name(target)} to a duel for "
            f"{self._ledger.chips(bet)}! {display_name(target)}, type !accept within {timeout}s."
        )

    async def _load_duel(self, target: str) -> dict | None:
        """Return the live pending duel for ``target``, refunding it if it expired."""
        record = await self._store.get_json(self.duel_key(target))
        if not record:
            return None
        timeout = self._config.gambling.duel.accept_timeout_seconds
        if self._clock() - record["created_at"] <= timeout:
            return record
        await self._refund_duel(target, record)
        return None

    async def _refund_duel(self, target: str, record: dict) -> bool:
        # Whoever deletes the record owns the refund.
        if not await self._store.delete(self.duel_key(target)):
            return False
        await self._ledger.credit(record["challenger"], record["bet"])
        self._logger.debug("Refunded expired duel %s → %s", record["challenger"], target)
        return True

    async def accept(self, username: str) -> InstantResult:
        target = normalize_user(username)
        record = await self._store.get_json(self.duel_key(target))
        if not record:
            return InstantResult("⚔️ No pending duel.")

        timeout = self._config.gambling.duel.accept_timeout_seconds
        if self._clock() - record["created_at"] > timeout:
            await self._refund_duel(target, record)
            return InstantResult(f"⚔️ Duel expired. {record['challenger_name']} was refunded.")

        if not await self._store.delete(self.duel_key(target)):
            return InstantResult("⚔️ No pending duel.")

        bet = record["bet"]
        challenger = record["challenger"]
        stake = await self._ledger.debit(target, bet)
        if not stake.ok:
            await self._ledger.credit(challenger, bet)
            return InstantResult(
                f"⚔️ {display_name(username)} can't cover {bet} ({self._ledger.chips(stake.balance)}). "
                f"Duel cancelled, {record['challenger_name']} refunded."
            )

        if self._rng.random() < 0.5:
            winner, winner_name, loser = challenger, record["challenger_name"], target
        else:
            winner, winner_name, loser = target, display_name(username), challenger
        balance = await self._ledger.credit(winner, bet * 2)
        suffix = await self._streaks.record_win(winner)
        await self._streaks.record_loss(loser)
        self._logger.info("Duel %s vs %s won by %s (%d)", challenger, target, winner, bet * 2)
        return InstantResult(
            f"⚔️ {winner_name} wins the duel and takes {self._ledger.chips(bet * 2)}! "
            f"({self._ledger.chips(balance)}){suffix}",
            net=bet if winner == target else -bet,
            balance=balance,
        )

    async def expire_duels(self) -> int:
        """Refund every pending duel past its accept window. Returns refunds made."""
        refunded = 0
        for key in await self._store.keys("duel:"):
            target = key.split(":", 1)[1]
            record = await self._store.get_json(key)
            if not record:
                continue
            timeout = self._config.gambling.duel.accept_timeout_seconds
            if self._clock() - record["created_at"] > timeout:
                if await self._refund_duel(target, record):
                    refunded += 1
        return refunded


def parse_roulette_choice(arg: str | None) -> str | int | None:
    """'red'/'black' (or r/b), or a number 1-36. Anything else is None."""
    if not arg:
        return None
    text = arg.strip().lower()
    if text in ROULETTE_COLOURS:
        return ROULETTE_COLOURS[text]
    if text.isdigit() and 1 <= int(text) <= 36:
        return int(text)
    return None
