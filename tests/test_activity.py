"""Tests for view-time rewards and the hourly top chatter."""

from __future__ import annotations

import logging

import pytest

from conftest import FakeClock, make_config_dict
from kryten_arcade.activity import ActivityTracker
from kryten_arcade.config import ArcadeConfig
from kryten_arcade.ledger import Ledger
from kryten_arcade.store import MemoryStore


@pytest.fixture
def activity(
    sample_config: ArcadeConfig, store: MemoryStore, ledger: Ledger, clock: FakeClock,
) -> ActivityTracker:
    return ActivityTracker(sample_config, store, ledger, logging.getLogger("test"), clock)


@pytest.mark.asyncio
async def test_message_counting_is_throttled(activity: ActivityTracker, clock: FakeClock):
    assert await activity.record_message("alice", "hello")
    assert not await activity.record_message("alice", "something else")

    clock.advance(31)
    assert not await activity.record_message("alice", "  HELLO ")
    assert await activity.record_message("alice", "something else")


@pytest.mark.asyncio
async def test_bot_messages_not_counted(activity: ActivityTracker):
    assert not await activity.record_message("TestBot", "beep")


@pytest.mark.asyncio
async def test_top_chatter_for_previous_hour(
    activity: ActivityTracker, ledger: Ledger, clock: FakeClock,
):
    for text in ("one", "two", "three"):
        await activity.record_message("carol", text)
        await activity.record_message("bob", text)
        clock.advance(31)
    await activity.record_message("alice", "hi")

    assert await activity.resolve_top_chatter() is None  # previous hour was empty

    clock.advance(3600)
    result = await activity.resolve_top_chatter()
    assert result == "💬 Top chatter this hour: bob (3 messages), +25 chips! (125)"
    assert await ledger.get_balance("bob") == 125
    assert await activity.resolve_top_chatter() is None


@pytest.mark.asyncio
async def test_top_chatter_needs_enough_chatters(activity: ActivityTracker, clock: FakeClock):
    await activity.record_message("alice", "hi")
    await activity.record_message("bob", "hi")
    clock.advance(3600)
    assert await activity.resolve_top_chatter() is None


@pytest.mark.asyncio
async def test_view_time_paid_once_per_interval(
    activity: ActivityTracker, ledger: Ledger, clock: FakeClock,
):
    await activity.record_message("alice", "hi")
    assert await activity.award_view_time() == 0  # first sighting starts the clock

    clock.advance(300)
    await activity.record_message("alice", "still here")
    assert await activity.award_view_time() == 0

    clock.advance(300)
    assert await activity.award_view_time() == 1
    assert await ledger.get_balance("alice") == 110
    assert await activity.award_view_time() == 0


@pytest.mark.asyncio
async def test_absent_viewer_not_paid(activity: ActivityTracker, ledger: Ledger, clock: FakeClock):
    await activity.record_message("alice", "hi")
    await activity.award_view_time()
    clock.advance(1200)
    assert await activity.award_view_time() == 0
    assert await ledger.get_balance("alice") == 100


@pytest.mark.asyncio
async def test_reset_session_clears_view_stamps(activity: ActivityTracker):
    await activity.record_message("alice", "hi")
    await activity.award_view_time()
    assert await activity.reset_session() == 1
    assert await activity.reset_session() == 0


@pytest.mark.asyncio
async def test_no_payouts_when_gambling_disabled(store: MemoryStore, clock: FakeClock):
    config = ArcadeConfig(**make_config_dict(gambling={"enabled": False}))
    ledger = Ledger(config, store, logging.getLogger("test"))
    activity = ActivityTracker(config, store, ledger, logging.getLogger("test"), clock)

    for text in ("one", "two", "three"):
        for user in ("alice", "bob", "carol"):
            await activity.record_message(user, text)
        clock.advance(301)
    assert await activity.award_view_time() == 0

    clock.advance(3600)
    assert await activity.resolve_top_chatter() is None
    assert await ledger.get_balance("alice") == 100
