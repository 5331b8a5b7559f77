"""Blackjack engine — per-user hand lifecycle (deal/hit/stand/double/split).

Each user has at most one hand, stored under ``blackjack:<user>``. The hand is
deleted as soon as it resolves (bust, blackjack or stand). A hand untouched
for longer than the hand timeout is discarded on its next read and its bet is
forfeited; the store TTL is a backstop for hands nobody ever reads again.
"""

from __future__ import annotations

import logging
import random
import time
from dataclasses import asdict, dataclass
from enum import Enum
from typing import TYPE_CHECKING, Callable

from .cards import dealer_play, format_hand, hand_value, is_blackjack, is_pair, new_deck
from .ledger import Ledger
from .store import Store
from .streaks import StreakTracker
from .utils import normalize_user, seconds_left

if TYPE_CHECKING:
    from .config import ArcadeConfig


NO_HAND_MSG = "🃏 No active hand. Use !deal <amount> to play."


# ═══════════════════════════════════════════════════════════════
#  Data types
# ═══════════════════════════════════════════════════════════════


class HandStatus(Enum):
    PLAYING = "playing"
    STAND = "stand"
    BUST = "bust"
    BLACKJACK = "blackjack"


@dataclass
class BlackjackGame:
    """Persisted state of one user's hand."""

    player: list[str]
    dealer: list[str]
    deck: list[str]
    bet: int
    status: str = HandStatus.PLAYING.value
    player2: list[str] | None = None
    bet2: int = 0
    split: bool = False
    hand1_done: bool = False
    created_at: float = 0.0
    updated_at: float = 0.0

    def to_dict(self) -> dict:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: dict) -> BlackjackGame:
        return cls(**data)

    @property
    def total_bet(self) -> int:
        return self.bet + self.bet2

    @property
    def active_hand(self) -> list[str]:
        if self.split and self.hand1_done and self.player2 is not None:
            return self.player2
        return self.player


@dataclass
class BlackjackResult:
    """Reply for one blackjack action."""

    message: str
    finished: bool = False
    net: int = 0
    balance: int | None = None


def settle_hand(dealer_total: int, player_total: int, bet: int) -> tuple[int, str]:
    """Return (payout, summary) for a live player hand against a finished dealer."""
    if dealer_total > 21:
        return bet * 2, f"Dealer busts! +{bet}"
    if dealer_total > player_total:
        return 0, f"Dealer {dealer_total} vs {player_total}. -{bet}"
    if dealer_total < player_total:
        return bet * 2, f"{player_total} vs {dealer_total}. +{bet}"
    return bet, "Push"


# ═══════════════════════════════════════════════════════════════
#  Engine
# ═══════════════════════════════════════════════════════════════


class BlackjackEngine:
    """Runs blackjack hands against the shared store."""

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
        return self._config.gambling.blackjack

    # ── Persistence ──────────────────────────────────────────

    @staticmethod
    def game_key(user: str) -> str:
        return f"blackjack:{user}"

    @staticmethod
    def cooldown_key(user: str) -> str:
        return f"cooldown:deal:{user}"

    async def get_game(self, username: str) -> BlackjackGame | None:
        """Load the user's hand, discarding it if it has been abandoned."""
        user = normalize_user(username)
        data = await self._store.get_json(self.game_key(user))
        if not data:
            return None
        game = BlackjackGame.from_dict(data)
        if self._clock() - game.updated_at > self._cfg.hand_timeout_seconds:
            await self._store.delete(self.game_key(user))
            self._logger.debug("Discarded abandoned hand for %s (bet %d)", user, game.total_bet)
            return None
        return game

    async def _save(self, user: str, game: BlackjackGame) -> None:
        game.updated_at = self._clock()
        await self._store.set_json(
            self.game_key(user), game.to_dict(), ex=self._cfg.hand_timeout_seconds * 2,
        )

    async def _finish(self, user: str, game: BlackjackGame, payout: int) -> tuple[int, int, str]:
        """Delete the hand, pay out, and update streaks. Returns (net, balance, streak suffix)."""
        await self._store.delete(self.game_key(user))
        if payout > 0:
            balance = await self._ledger.credit(user, payout)
        else:
            balance = await self._ledger.get_balance(user)
        net = payout - game.total_bet
        suffix = ""
        if net > 0:
            suffix = await self._streaks.record_win(user)
        elif net < 0:
            await self._streaks.record_loss(user)
        return net, balance, suffix

    # ══════════════════════════════════════════════════════════
    #  Actions
    # ══════════════════════════════════════════════════════════

    async def deal(
        self, username: str, bet_amount: int, deck: list[str] | None = None,
    ) -> BlackjackResult:
        """Start a hand. ``deck`` overrides the shuffled deck (top card first)."""
        user = normalize_user(username)
        now = self._clock()

        last_deal = await self._store.get(self.cooldown_key(user))
        if last_deal is not None:
            wait = seconds_left(float(last_deal) + self._cfg.deal_cooldown_seconds, now)
            if wait > 0:
                return BlackjackResult(f"🃏 Wait {wait}s before starting another hand.")

        existing = await self.get_game(user)
        if existing:
            return BlackjackResult(
                f"🃏 You're already in a hand ({format_hand(existing.player)} = "
                f"{hand_value(existing.player)}). !hit or !stand"
            )

        if bet_amount < self._ledger.min_bet:
            return BlackjackResult(f"🃏 Minimum bet is {self._ledger.min_bet}.")
        bet = await self._ledger.place_bet(user, bet_amount)
        if not bet.ok:
            return BlackjackResult(f"🃏 Not enough {self._config.currency.plural} ({bet.balance}).")

        cards = list(deck) if deck is not None else new_deck(self._rng)
        player = [cards.pop(0), cards.pop(0)]
        dealer = [cards.pop(0), cards.pop(0)]
        await self._store.set(
            self.cooldown_key(user), str(now), ex=self._cfg.deal_cooldown_seconds,
        )

        game = BlackjackGame(
            player=player, dealer=dealer, deck=cards, bet=bet.bet,
            created_at=now, updated_at=now,
        )

        if is_blackjack(player):
            if is_blackjack(dealer):
                game.status = HandStatus.STAND.value
                net, balance, _ = await self._finish(user, game, bet.bet)
                return BlackjackResult(
                    f"🃏 {format_hand(player)} vs {format_hand(dealer)}. Push! Both 21. "
                    f"+0 ({self._ledger.chips(balance)})",
                    finished=True, net=net, balance=balance,
                )
            game.status = HandStatus.BLACKJACK.value
            win = bet.bet * 3 // 2
            net, balance, suffix = await self._finish(user, game, bet.bet + win)
            return BlackjackResult(
                f"🃏 {format_hand(player)} Blackjack! +{win}! ({self._ledger.chips(balance)}){suffix}",
                finished=True, net=net, balance=balance,
            )

        await self._save(user, game)
        extras = " | double | split" if is_pair(player) else " | double"
        return BlackjackResult(
            f"🃏 {format_hand(player)} ({hand_value(player)}) vs {dealer[0]} ? | "
            f"Bet: {bet.bet} | hit or stand{extras}",
            balance=bet.balance,
        )

    async def hit(self, username: str) -> BlackjackResult:
        user = normalize_user(username)
        game = await self.get_game(user)
        if not game:
            return BlackjackResult(NO_HAND_MSG)
        if not game.deck:
            game.deck = new_deck(self._rng)

        on_hand1 = not game.split or not game.hand1_done
        hand = game.active_hand
        card = game.deck.pop(0)
        hand.append(card)
        total = hand_value(hand)

        if total <= 21:
            await self._save(user, game)
            label = ("H1: " if on_hand1 else "H2: ") if game.split else ""
            return BlackjackResult(f"🃏 {card} → {label}{format_hand(hand)} ({total}) | hit or stand")

        if not game.split:
            game.status = HandStatus.BUST.value
            net, balance, _ = await self._finish(user, game, 0)
            return BlackjackResult(
                f"🃏 {card} → Bust ({total})! -{game.bet}. ({self._ledger.chips(balance)})",
                finished=True, net=net, balance=balance,
            )

        if on_hand1:
            game.hand1_done = True
            await self._save(user, game)
            v2 = hand_value(game.player2 or [])
            return BlackjackResult(
                f"🃏 {card} → H1 bust ({total})! H2: {format_hand(game.player2 or [])} ({v2}) | hit or stand"
            )

        # Second split hand bust: whatever is left of hand 1 still meets the dealer.
        if hand_value(game.player) > 21:
            game.status = HandStatus.BUST.value
            net, balance, _ = await self._finish(user, game, 0)
            return BlackjackResult(
                f"🃏 {card} → H2 bust ({total})! Both hands bust. -{game.total_bet}. "
                f"({self._ledger.chips(balance)})",
                finished=True, net=net, balance=balance,
            )
        result = await self._resolve(user, game)
        result.message = f"🃏 {card} → H2 bust ({total})! " + result.message.removeprefix("🃏 ")
        return result

    async def stand(self, username: str) -> BlackjackResult:
        user = normalize_user(username)
        game = await self.get_game(user)
        if not game:
            return BlackjackResult(NO_HAND_MSG)

        if game.split and not game.hand1_done:
            game.hand1_done = True
            await self._save(user, game)
            v2 = hand_value(game.player2 or [])
            return BlackjackResult(
                f"🃏 H1 stood. H2: {format_hand(game.player2 or [])} ({v2}) | hit or stand"
            )
        return await self._resolve(user, game)

    async def double(self, username: str) -> BlackjackResult:
        user = normalize_user(username)
        game = await self.get_game(user)
        if not game:
            return BlackjackResult(NO_HAND_MSG)
        if game.split:
            return BlackjackResult("🃏 Can't double on split hands. hit or stand.")
        if len(game.player) != 2:
            return BlackjackResult("🃏 double only on your first 2 cards. hit or stand.")

        extra = await self._ledger.debit(user, game.bet)
        if not extra.ok:
            return BlackjackResult(
                f"🃏 Not enough {self._config.currency.plural} to double "
                f"(need {game.bet}, have {extra.balance})."
            )
        game.bet *= 2
        if not game.deck:
            game.deck = new_deck(self._rng)
        card = game.deck.pop(0)
        game.player.append(card)
        total = hand_value(game.player)

        if total > 21:
            game.status = HandStatus.BUST.value
            net, balance, _ = await self._finish(user, game, 0)
            return BlackjackResult(
                f"🃏 Doubled! Drew {card} → bust ({total})! -{game.bet}. ({self._ledger.chips(balance)})",
                finished=True, net=net, balance=balance,
            )

        result = await self._resolve(user, game)
        result.message = f"🃏 Doubled! Drew {card} → {total}. " + result.message.removeprefix("🃏 ")
        return result

    async def split(self, username: str) -> BlackjackResult:
        user = normalize_user(username)
        game = await self.get_game(user)
        if not game:
            return BlackjackResult(NO_HAND_MSG)
        if game.split:
            return BlackjackResult("🃏 Already split. hit or stand.")
        if not is_pair(game.player):
            return BlackjackResult("🃏 split only on pairs. hit or stand.")

        extra = await self._ledger.debit(user, game.bet)
        if not extra.ok:
            return BlackjackResult(
                f"🃏 Not enough {self._config.currency.plural} to split "
                f"(need {game.bet}, have {extra.balance})."
            )

        first, second = game.player
        if len(game.deck) < 2:
            game.deck.extend(new_deck(self._rng))
        game.player = [first, game.deck.pop(0)]
        game.player2 = [second, game.deck.pop(0)]
        game.bet2 = game.bet
        game.split = True
        game.hand1_done = False
        await self._save(user, game)
        return BlackjackResult(
            f"🃏 Split! H1: {format_hand(game.player)} ({hand_value(game.player)}) | hit or stand "
            f"(H2: {format_hand(game.player2)} waits)",
            balance=extra.balance,
        )

    # ── Resolution ───────────────────────────────────────────

    async def _resolve(self, user: str, game: BlackjackGame) -> BlackjackResult:
        """Dealer draws to 17, every live hand is settled, the hand is deleted."""
        dealer, game.deck = dealer_play(game.dealer, game.deck)
        game.dealer = dealer
        game.status = HandStatus.STAND.value
        dealer_total = hand_value(dealer)

        if game.split and game.player2 is not None:
            parts: list[str] = []
            payout = 0
            for label, hand, bet in (("H1", game.player, game.bet), ("H2", game.player2, game.bet2)):
                total = hand_value(hand)
                if total > 21:
                    parts.append(f"{label}: Bust. -{bet}")
                    continue
                won, summary = settle_hand(dealer_total, total, bet)
                payout += won
                parts.append(f"{label}: {summary}")
            net, balance, suffix = await self._finish(user, game, payout)
            sign = "+" if net >= 0 else ""
            return BlackjackResult(
                f"🃏 Dealer {format_hand(dealer)} ({dealer_total}) | {' | '.join(parts)} | "
                f"{sign}{net} ({self._ledger.chips(balance)}){suffix}",
                finished=True, net=net, balance=balance,
            )

        payout, summary = settle_hand(dealer_total, hand_value(game.player), game.bet)
        net, balance, suffix = await self._finish(user, game, payout)
        return BlackjackResult(
            f"🃏 Dealer {format_hand(dealer)} ({dealer_total}). {summary} "
            f"({self._ledger.chips(balance)}){suffix}",
            finished=True, net=net, balance=balance,
        )

    async def reset_session(self) -> int:
        """Drop every open hand and deal cooldown."""
        keys = [*await self._store.keys("blackjack:"), *await self._store.keys("cooldown:deal:")]
        return await self._store.delete(*keys)
