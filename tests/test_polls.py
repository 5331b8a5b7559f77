"""Tests for the poll engine: lifecycle, queue and end-lock."""

from __future__ import annotations

import asyncio
import logging

import pytest

from conftest import FakeClock, RecordingSender, YieldingStore, make_config_dict
from kryten_arcade.config import ArcadeConfig
from kryten_arcade.ledger import Ledger
from kryten_arcade.polls import (
    ACTIVE,
    LOCK_KEY,
    WINNER,
    PollEngine,
    PollOption,
    format_result,
    pick_winner,
)
from kryten_arcade.roles import Sender
from kryten_arcade.store import MemoryStore

MOD = Sender("ModMike", is_moderator=True, message_id="m1")
VIEWER = Sender("viewer", message_id="v1")


def _started(sender: RecordingSender) -> list[str]:
    return [text for text in sender.texts if text.startswith("Poll started!")]


# ══════════════════════════════════════════════════════════════
#  Pure helpers
# ══════════════════════════════════════════════════════════════


def test_pick_winner_most_votes():
    options = [PollOption("a", 3), PollOption("b", 5), PollOption("c", 2)]
    assert pick_winner(options) == 1


def test_pick_winner_tie_goes_to_earliest():
    assert pick_winner([PollOption("a", 4), PollOption("b", 4)]) == 0


def test_pick_winner_no_votes():
    assert pick_winner([PollOption("a"), PollOption("b")]) is None


# ══════════════════════════════════════════════════════════════
#  Starting and voting
# ══════════════════════════════════════════════════════════════


@pytest.mark.asyncio
async def test_viewer_cannot_start(polls: PollEngine, sender: RecordingSender):
    assert await polls.start_poll(VIEWER, "Best? A, B") == "You don't have permission to start polls."
    assert sender.sent == []


@pytest.mark.asyncio
async def test_start_announces_and_records_message_id(polls: PollEngine, sender: RecordingSender):
    assert await polls.start_poll(MOD, "Best? A, B") is None
    text, reply_to = sender.sent[0]
    assert text == "Poll started! Best? Type 'a' or 'b' in chat to vote. (60 seconds)"
    assert reply_to == "m1"

    state = await polls.get_state()
    assert state.status == ACTIVE
    assert state.start_message_id == "msg-1"
    assert polls.polls_started == 1


@pytest.mark.asyncio
async def test_one_vote_per_person_moves_vote(polls: PollEngine):
    await polls.start_poll(MOD, "Best? A, B")
    assert await polls.vote("alice", "a")
    assert await polls.vote("alice", "B")
    assert not await polls.vote("bob", "c")

    state = await polls.get_state()
    assert [opt.votes for opt in state.options] == [0, 1]
    assert state.options[1].voters == {"alice": 1}


@pytest.mark.asyncio
async def test_vote_reward_paid_once(
    store: MemoryStore, ledger: Ledger, sender: RecordingSender, clock: FakeClock,
):
    config = ArcadeConfig(**make_config_dict(polls={"vote_reward": 2}))
    engine = PollEngine(config, store, ledger, sender, logging.getLogger("test"), clock)
    await engine.start_poll(MOD, "Best? A, B")
    await engine.vote("alice", "a")
    await engine.vote("alice", "b")
    assert await ledger.get_balance("alice") == 102


@pytest.mark.asyncio
async def test_vote_reward_skipped_when_gambling_disabled(
    store: MemoryStore, ledger: Ledger, sender: RecordingSender, clock: FakeClock,
):
    config = ArcadeConfig(**make_config_dict(polls={"vote_reward": 2}, gambling={"enabled": False}))
    engine = PollEngine(config, store, ledger, sender, logging.getLogger("test"), clock)
    await engine.start_poll(MOD, "Best? A, B")
    assert await engine.vote("alice", "a")
    assert (await engine.get_state()).options[0].votes == 1
    assert await ledger.get_balance("alice") == 100


@pytest.mark.asyncio
async def test_unlimited_votes_count_every_message(
    store: MemoryStore, ledger: Ledger, sender: RecordingSender, clock: FakeClock,
):
    config = ArcadeConfig(**make_config_dict(polls={"one_vote_per_person": False}))
    engine = PollEngine(config, store, ledger, sender, logging.getLogger("test"), clock)
    await engine.start_poll(MOD, "Best? A, B")
    for text in ("a", "a", "b"):
        await engine.vote("alice", text)
    await engine.vote("bob", "b")

    state = await engine.get_state()
    assert [opt.votes for opt in state.options] == [2, 2]
    assert state.options[1].voters == {"alice": 1, "bob": 1}


@pytest.mark.asyncio
async def test_votes_after_deadline_ignored(polls: PollEngine, clock: FakeClock):
    await polls.start_poll(MOD, "Best? A, B")
    clock.advance(60)
    assert not await polls.vote("alice", "a")


@pytest.mark.asyncio
async def test_rank_poll_uses_default_question(polls: PollEngine, sender: RecordingSender):
    await polls.start_poll(MOD, "Pizza, Tacos, Sushi", ranking=True)
    state = await polls.get_state()
    assert state.question == "Which is best?"
    assert state.labels == ["Pizza", "Tacos", "Sushi"]


@pytest.mark.asyncio
async def test_blocked_poll_rejected(polls: PollEngine, sender: RecordingSender):
    reply = await polls.start_poll(MOD, "Who is a f*ck? a, b")
    assert reply.startswith("Poll rejected")
    assert await polls.get_state() is None


# ══════════════════════════════════════════════════════════════
#  Lifecycle
# ══════════════════════════════════════════════════════════════


@pytest.mark.asyncio
async def test_end_announces_winner_then_clears(
    polls: PollEngine, sender: RecordingSender, clock: FakeClock,
):
    await polls.start_poll(MOD, "Best? A, B")
    await polls.vote("alice", "b")
    clock.advance(30)
    assert not await polls.check_lifecycle()

    clock.advance(30)
    assert await polls.check_lifecycle()
    text, reply_to = sender.sent[-1]
    assert text == 'Poll "Best?" — B wins! (1 vote)'
    assert reply_to == "msg-1"
    assert (await polls.get_state()).status == WINNER

    clock.advance(10)
    assert await polls.check_lifecycle()
    assert await polls.get_state() is None


def test_format_result_mentions_top_voter():
    from kryten_arcade.polls import PollState

    state = PollState(
        id="p", question="Q?", started_at=0, duration=60,
        options=[PollOption("A", 3, {"alice": 2, "bob": 1}), PollOption("B", 1, {"carol": 1})],
    )
    assert format_result(state) == 'Poll "Q?" — A wins! (3 votes) Top voter: alice (2 votes).'


@pytest.mark.asyncio
async def test_queue_runs_fifo(polls: PollEngine, sender: RecordingSender, clock: FakeClock):
    assert await polls.start_poll(MOD, "A? x, y") is None
    assert await polls.start_poll(MOD, "B? x, y") == "Poll queued (#1). Estimated start: ~2 min."
    assert (await polls.start_poll(MOD, "C? x, y")).startswith("Poll queued (#2).")

    for _ in range(3):
        clock.advance(60)
        await polls.check_lifecycle()
        clock.advance(10)
        await polls.check_lifecycle()

    assert [text.split(" Type")[0] for text in _started(sender)] == [
        "Poll started! A?", "Poll started! B?", "Poll started! C?",
    ]
    ended = [text for text in sender.texts if text.endswith("ended with no votes.")]
    assert ended == [
        'Poll "A?" ended with no votes.',
        'Poll "B?" ended with no votes.',
        'Poll "C?" ended with no votes.',
    ]
    assert await polls.get_state() is None


@pytest.mark.asyncio
async def test_queue_is_bounded(polls: PollEngine):
    await polls.start_poll(MOD, "Now? x, y")
    for n in range(5):
        assert (await polls.start_poll(MOD, f"Q{n}? x, y")).startswith("Poll queued")
    assert await polls.start_poll(MOD, "Late? x, y") == "Too many polls queued (max 5). Try again later."
    assert len(await polls.get_queue()) == 5


@pytest.mark.asyncio
async def test_new_poll_replaces_winner_display(
    polls: PollEngine, sender: RecordingSender, clock: FakeClock,
):
    await polls.start_poll(MOD, "First? x, y")
    clock.advance(60)
    await polls.check_lifecycle()
    assert await polls.start_poll(MOD, "Second? x, y") is None
    state = await polls.get_state()
    assert state.question == "Second?"
    assert state.status == ACTIVE


@pytest.mark.asyncio
async def test_held_lock_blocks_ending(
    polls: PollEngine, store: MemoryStore, sender: RecordingSender, clock: FakeClock,
):
    await polls.start_poll(MOD, "Best? A, B")
    clock.advance(60)
    await store.set(LOCK_KEY, "held", ex=10)
    assert not await polls.check_lifecycle()
    assert len(sender.sent) == 1

    clock.advance(10)
    assert await polls.check_lifecycle()
    assert len(sender.sent) == 2


@pytest.mark.asyncio
async def test_concurrent_enders_announce_once(
    sample_config: ArcadeConfig, ledger: Ledger, clock: FakeClock,
):
    """Two callers racing past the deadline produce exactly one result."""
    shared = YieldingStore(clock)
    sender = RecordingSender()
    first = PollEngine(sample_config, shared, ledger, sender, logging.getLogger("test"), clock)
    second = PollEngine(sample_config, shared, ledger, sender, logging.getLogger("test"), clock)

    await first.start_poll(MOD, "Best? A, B")
    await first.vote("alice", "a")
    clock.advance(60)

    results = await asyncio.gather(first.check_lifecycle(), second.check_lifecycle())
    assert sorted(results) == [False, True]
    assert len([t for t in sender.texts if "wins!" in t]) == 1
    assert first.polls_ended + second.polls_ended == 1


class PausingStore(YieldingStore):
    """Holds sorted-set writes until ``release`` is set."""

    def __init__(self, clock: FakeClock) -> None:
        super().__init__(clock)
        self.paused = asyncio.Event()
        self.release = asyncio.Event()

    async def zadd(self, key, member, score):
        self.paused.set()
        await self.release.wait()
        await super().zadd(key, member, score)


@pytest.mark.asyncio
async def test_vote_in_flight_cannot_revive_ended_poll(
    sample_config: ArcadeConfig, ledger: Ledger, clock: FakeClock,
):
    """A vote still being written when the poll ends leaves the result alone."""
    shared = PausingStore(clock)
    sender = RecordingSender()
    voter = PollEngine(sample_config, shared, ledger, sender, logging.getLogger("test"), clock)
    ender = PollEngine(sample_config, shared, ledger, sender, logging.getLogger("test"), clock)

    await voter.start_poll(MOD, "Best? A, B")
    clock.advance(59)
    in_flight = asyncio.create_task(voter.vote("alice", "a"))
    await shared.paused.wait()

    clock.advance(1)
    assert await ender.check_lifecycle()
    shared.release.set()
    assert await in_flight
    assert (await ender.get_state()).status == WINNER

    clock.advance(10)
    assert await ender.check_lifecycle()
    assert await ender.get_state() is None
    clock.advance(60)
    assert not await ender.check_lifecycle()
    results = [text for text in sender.texts if text.startswith('Poll "Best?"')]
    assert results == ['Poll "Best?" ended with no votes.']


@pytest.mark.asyncio
async def test_abandoned_poll_keys_expire(polls: PollEngine, store: MemoryStore, clock: FakeClock):
    await polls.start_poll(MOD, "First? x, y")
    await polls.start_poll(MOD, "Second? x, y")
    await polls.vote("alice", "x")

    clock.advance(60 + 10 + 300)
    assert await polls.get_state() is None
    assert len(await polls.get_queue()) == 1

    clock.advance(60 + 10)
    assert await polls.get_queue() == []
    assert await store.keys("poll:") == []


# ══════════════════════════════════════════════════════════════
#  Status and manual end
# ══════════════════════════════════════════════════════════════


@pytest.mark.asyncio
async def test_status(polls: PollEngine, clock: FakeClock):
    assert await polls.status() == "No poll active."
    await polls.start_poll(MOD, "Best? A, B")
    clock.advance(15)
    assert await polls.status() == "Poll: Best? Type 'a' or 'b' to vote. (45s left)"


@pytest.mark.asyncio
async def test_end_poll_requires_staff(polls: PollEngine):
    await polls.start_poll(MOD, "Best? A, B")
    assert await polls.end_poll(VIEWER) == "Only mods and broadcaster can end polls."


@pytest.mark.asyncio
async def test_end_poll_promotes_queue(polls: PollEngine, sender: RecordingSender):
    await polls.start_poll(MOD, "First? x, y")
    await polls.start_poll(MOD, "Second? x, y")
    assert await polls.end_poll(MOD) is None
    assert ("Poll ended by mod.", "m1") in sender.sent
    state = await polls.get_state()
    assert state.question == "Second?"
    assert await polls.get_queue() == []


@pytest.mark.asyncio
async def test_snapshot_and_reset(polls: PollEngine):
    await polls.start_poll(MOD, "First? x, y")
    await polls.start_poll(MOD, "Second? x, y")
    snap = await polls.snapshot()
    assert snap["state"]["question"] == "First?"
    assert snap["queue"][0]["question"] == "Second?"

    # state, queue and the start message id
    assert await polls.reset_session() == 3
    assert await polls.get_state() is None
