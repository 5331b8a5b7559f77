"""Tests for the periodic housekeeping tick."""

from __future__ import annotations

import logging
from unittest.mock import AsyncMock, MagicMock

import pytest

from conftest import CH, FakeClock, make_config_dict
from kryten_arcade.arcade import Arcade
from kryten_arcade.config import ArcadeConfig
from kryten_arcade.housekeeping import Housekeeping


def _housekeeping(config: ArcadeConfig, arcade: Arcade, store=None) -> tuple[Housekeeping, AsyncMock]:
    announce = AsyncMock()
    return Housekeeping(config, {CH: arcade}, announce, store, logging.getLogger("test")), announce


@pytest.mark.asyncio
async def test_tick_announces_resolved_events(
    sample_config: ArcadeConfig, arcade: Arcade, clock: FakeClock,
):
    housekeeping, announce = _housekeeping(sample_config, arcade)
    await arcade.events.raffle.start(prize=50, keyword="tazo")
    await arcade.events.raffle.enter("bob", "tazo")
    clock.advance(61)

    await housekeeping.tick()
    channels = {call.args[0] for call in announce.await_args_list}
    texts = [call.args[1] for call in announce.await_args_list]
    assert channels == {CH}
    assert any(t.startswith("🎰 RAFFLE WINNER!") for t in texts)
    assert await arcade.ledger.get_balance("bob") == 150
    assert housekeeping.ticks == 1


@pytest.mark.asyncio
async def test_failing_step_does_not_stop_the_tick(
    sample_config: ArcadeConfig, arcade: Arcade, clock: FakeClock,
):
    housekeeping, announce = _housekeeping(sample_config, arcade)
    arcade.polls.check_lifecycle = AsyncMock(side_effect=RuntimeError("boom"))
    await arcade.events.raffle.start(prize=50, keyword="tazo")
    clock.advance(61)

    await housekeeping.tick()
    announce.assert_awaited_once_with(CH, "🎰 Raffle ended: no entries this time.")


@pytest.mark.asyncio
async def test_tick_refunds_expired_duels(
    sample_config: ArcadeConfig, arcade: Arcade, clock: FakeClock,
):
    housekeeping, _ = _housekeeping(sample_config, arcade)
    await arcade.games.challenge("alice", "bob", 20)
    assert await arcade.ledger.get_balance("alice") == 80
    clock.advance(sample_config.gambling.duel.accept_timeout_seconds + 1)

    await housekeeping.tick()
    assert await arcade.ledger.get_balance("alice") == 100


@pytest.mark.asyncio
async def test_tick_skips_activity_payouts_when_gambling_disabled(arcade: Arcade):
    config = ArcadeConfig(**make_config_dict(gambling={"enabled": False}))
    housekeeping, announce = _housekeeping(config, arcade)
    arcade.activity.award_view_time = AsyncMock(return_value=1)
    arcade.activity.resolve_top_chatter = AsyncMock(return_value="💬 Top chatter")

    await housekeeping.tick()
    arcade.activity.award_view_time.assert_not_awaited()
    arcade.activity.resolve_top_chatter.assert_not_awaited()
    announce.assert_not_awaited()


@pytest.mark.asyncio
async def test_tick_purges_store_when_supported(sample_config: ArcadeConfig, arcade: Arcade):
    store = MagicMock()
    store.purge_expired = AsyncMock(return_value=3)
    housekeeping, _ = _housekeeping(sample_config, arcade, store)
    await housekeeping.tick()
    store.purge_expired.assert_awaited_once()


@pytest.mark.asyncio
async def test_purge_failure_is_contained(sample_config: ArcadeConfig, arcade: Arcade):
    store = MagicMock()
    store.purge_expired = AsyncMock(side_effect=RuntimeError("disk"))
    housekeeping, _ = _housekeeping(sample_config, arcade, store)
    await housekeeping.tick()
    assert housekeeping.ticks == 1


@pytest.mark.asyncio
async def test_start_and_stop(sample_config: ArcadeConfig, arcade: Arcade):
    housekeeping, _ = _housekeeping(sample_config, arcade)
    await housekeeping.start()
    assert housekeeping._task is not None
    await housekeeping.stop()
    assert housekeeping._task is None
    await housekeeping.stop()
