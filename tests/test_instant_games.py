"""Tests for instant games and duels."""

from __future__ import annotations

import logging

import pytest

from conftest import FakeClock, StubRandom
from kryten_arcade.config import ArcadeConfig
from kryten_arcade.instant_games import (
    InstantGamesEngine,
    crash_point,
    parse_roulette_choice,
    resolve_coinflip,
    resolve_crash,
    resolve_dice,
    resolve_roulette,
    resolve_slots,
    resolve_war,
    roulette_colour,
)
from kryten_arcade.ledger import Ledger
from kryten_arcade.store import MemoryStore
from kryten_arcade.streaks import StreakTracker

MULTIPLIERS = {"🍒": 2, "🍋": 3, "🍊": 5, "🍀": 8, "7️⃣": 12, "💎": 25}


def _engine(
    config: ArcadeConfig,
    store: MemoryStore,
    ledger: Ledger,
    streaks: StreakTracker,
    clock: FakeClock,
    roll: float,
) -> InstantGamesEngine:
    return InstantGamesEngine(
        config, store, ledger, streaks, logging.getLogger("test"), StubRandom(roll), clock,
    )


# ══════════════════════════════════════════════════════════════
#  Pure resolvers
# ══════════════════════════════════════════════════════════════


def test_coinflip():
    assert resolve_coinflip(0.3, 10) == 20
    assert resolve_coinflip(0.7, 10) == 0


def test_slots_three_pair_and_miss():
    assert resolve_slots(["💎", "💎", "💎"], 10, MULTIPLIERS) == 250
    assert resolve_slots(["🍀", "🍀", "💎"], 10, MULTIPLIERS) == 40
    assert resolve_slots(["🍒", "🍒", "🍋"], 10, MULTIPLIERS) == 10
    assert resolve_slots(["🍒", "🍋", "🍊"], 10, MULTIPLIERS) == 0


def test_roulette():
    assert roulette_colour(0) == "green"
    assert roulette_colour(1) == "red"
    assert roulette_colour(2) == "black"
    assert resolve_roulette("red", 1, 10) == 20
    assert resolve_roulette("black", 0, 10) == 0
    assert resolve_roulette(17, 17, 10) == 360
    assert resolve_roulette(17, 18, 10) == 0


def test_parse_roulette_choice():
    assert parse_roulette_choice("R") == "red"
    assert parse_roulette_choice("black") == "black"
    assert parse_roulette_choice("36") == 36
    assert parse_roulette_choice("0") is None
    assert parse_roulette_choice("37") is None
    assert parse_roulette_choice("green") is None
    assert parse_roulette_choice(None) is None


def test_dice():
    assert resolve_dice("high", 4, 10) == 20
    assert resolve_dice("low", 4, 10) == 0
    assert resolve_dice("low", 3, 10) == 20


def test_crash():
    assert crash_point(0.0) == 1.0
    assert crash_point(0.5) == 1.94
    assert resolve_crash(10, 1.5, 1.94) == 15
    assert resolve_crash(10, 2.0, 1.94) == 0


def test_war():
    assert resolve_war("K♠", "2♥", 10) == 20
    assert resolve_war("5♠", "5♥", 10) == 10
    assert resolve_war("2♠", "A♥", 10) == 0


# ══════════════════════════════════════════════════════════════
#  Engine
# ══════════════════════════════════════════════════════════════


@pytest.mark.asyncio
async def test_coinflip_win(sample_config, store, ledger, streaks, clock):
    engine = _engine(sample_config, store, ledger, streaks, clock, 0.1)
    result = await engine.coinflip("alice", 10)
    assert result.net == 10
    assert result.balance == 110
    assert result.message == "🎲 +10! (110 chips)"


@pytest.mark.asyncio
async def test_coinflip_loss(sample_config, store, ledger, streaks, clock):
    engine = _engine(sample_config, store, ledger, streaks, clock, 0.9)
    result = await engine.coinflip("alice", 10)
    assert result.net == -10
    assert result.message == "🎲 -10. (90 chips)"


@pytest.mark.asyncio
async def test_cooldown_between_rounds(sample_config, store, ledger, streaks, clock):
    engine = _engine(sample_config, store, ledger, streaks, clock, 0.1)
    await engine.coinflip("alice", 10)
    blocked = await engine.coinflip("alice", 10)
    assert blocked.message == "🎲 Slow down! Wait 5s."
    assert await ledger.get_balance("alice") == 110

    clock.advance(5)
    again = await engine.coinflip("alice", 10)
    assert again.balance == 120


@pytest.mark.asyncio
async def test_out_of_chips(sample_config, store, ledger, streaks, clock):
    engine = _engine(sample_config, store, ledger, streaks, clock, 0.1)
    await store.set("balance:alice", "0")
    result = await engine.coinflip("alice", 10)
    assert result.message == "🎲 You're out of chips (0)."


@pytest.mark.asyncio
async def test_third_win_pays_streak_bonus(sample_config, store, ledger, streaks, clock):
    engine = _engine(sample_config, store, ledger, streaks, clock, 0.1)
    for _ in range(2):
        await engine.coinflip("alice", 10)
        clock.advance(5)
    result = await engine.coinflip("alice", 10)
    assert "3 wins! +25 bonus!" in result.message
    assert await ledger.get_balance("alice") == 155


@pytest.mark.asyncio
async def test_crash_cash_out(sample_config, store, ledger, streaks, clock):
    engine = _engine(sample_config, store, ledger, streaks, clock, 0.5)
    result = await engine.crash("alice", 10, 1.5)
    assert result.message.startswith("📈 Crashed at 1.94x, you cashed out at 1.50x.")
    assert await ledger.get_balance("alice") == 105


@pytest.mark.asyncio
async def test_crash_target_floor(sample_config, store, ledger, streaks, clock):
    """Targets below the minimum are raised to it."""
    engine = _engine(sample_config, store, ledger, streaks, clock, 0.0)
    result = await engine.crash("alice", 10, 1.0)
    assert "before 1.10x" in result.message


@pytest.mark.asyncio
async def test_roulette_usage(games: InstantGamesEngine, ledger: Ledger):
    result = await games.roulette("alice", "purple", 10)
    assert result.message.startswith("🎡 Usage:")
    assert await ledger.get_balance("alice") == 100


@pytest.mark.asyncio
async def test_dice_usage(games: InstantGamesEngine):
    result = await games.dice("alice", "middle", 10)
    assert result.message.startswith("🎲 Usage:")


@pytest.mark.asyncio
async def test_slots_never_overdraws(games: InstantGamesEngine, ledger: Ledger, clock: FakeClock):
    for _ in range(20):
        result = await games.slots("alice", 25)
        assert result.balance is None or result.balance >= 0
        clock.advance(5)
    assert await ledger.get_balance("alice") >= 0


# ══════════════════════════════════════════════════════════════
#  Duels
# ══════════════════════════════════════════════════════════════


@pytest.mark.asyncio
async def test_duel_challenger_wins(sample_config, store, ledger, streaks, clock):
    engine = _engine(sample_config, store, ledger, streaks, clock, 0.1)
    challenge = await engine.challenge("Alice", "@Bob", 20)
    assert challenge.message.startswith("⚔️ Alice challenges Bob to a duel for 20 chips!")
    assert await ledger.get_balance("alice") == 80

    result = await engine.accept("bob")
    assert result.message.startswith("⚔️ Alice wins the duel and takes 40 chips!")
    assert await ledger.get_balance("alice") == 120
    assert await ledger.get_balance("bob") == 80


@pytest.mark.asyncio
async def test_duel_target_wins(sample_config, store, ledger, streaks, clock):
    engine = _engine(sample_config, store, ledger, streaks, clock, 0.9)
    await engine.challenge("alice", "bob", 20)
    result = await engine.accept("Bob")
    assert result.net == 20
    assert await ledger.get_balance("bob") == 120
    assert await ledger.get_balance("alice") == 80


@pytest.mark.asyncio
async def test_duel_rejections(games: InstantGamesEngine, ledger: Ledger):
    assert (await games.challenge("alice", "ALICE", 10)).message == "⚔️ You can't duel yourself."
    assert (await games.challenge("alice", None, 10)).message.startswith("⚔️ Usage:")
    assert "doesn't duel" in (await games.challenge("alice", "TestBot", 10)).message
    assert await ledger.get_balance("alice") == 100


@pytest.mark.asyncio
async def test_one_pending_duel_per_target(games: InstantGamesEngine, ledger: Ledger):
    await games.challenge("alice", "bob", 20)
    second = await games.challenge("carol", "bob", 20)
    assert "already has a pending duel" in second.message
    assert await ledger.get_balance("carol") == 100


@pytest.mark.asyncio
async def test_expired_duel_refunds_on_accept(
    games: InstantGamesEngine, ledger: Ledger, clock: FakeClock,
):
    await games.challenge("alice", "bob", 20)
    clock.advance(61)
    result = await games.accept("bob")
    assert result.message == "⚔️ Duel expired. alice was refunded."
    assert await ledger.get_balance("alice") == 100
    assert (await games.accept("bob")).message == "⚔️ No pending duel."


@pytest.mark.asyncio
async def test_expire_duels_sweep(games: InstantGamesEngine, ledger: Ledger, clock: FakeClock):
    await games.challenge("alice", "bob", 20)
    assert await games.expire_duels() == 0
    clock.advance(61)
    assert await games.expire_duels() == 1
    assert await ledger.get_balance("alice") == 100
    assert await games.expire_duels() == 0


@pytest.mark.asyncio
async def test_duel_target_cannot_cover(
    games: InstantGamesEngine, ledger: Ledger, store: MemoryStore,
):
    await store.set("balance:bob", "5")
    await games.challenge("alice", "bob", 20)
    result = await games.accept("bob")
    assert "can't cover 20" in result.message
    assert await ledger.get_balance("alice") == 100
    assert await ledger.get_balance("bob") == 5
