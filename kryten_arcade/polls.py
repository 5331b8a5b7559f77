"""Poll engine — one poll per channel at a time, with a bounded FIFO queue.

Lifecycle: idle → active → winner → idle. Nothing runs on a timer; every
caller (chat message or housekeeping tick) calls ``check_lifecycle`` which
looks at the stored deadlines and moves the poll along.

Ending and promotion are guarded by an end-lock: a conditional write with a
short TTL. Only the caller that creates the lock key re-reads the poll,
announces the result or promotes the queue, then releases the lock. Every
other caller treats an overdue poll as already being handled.

The poll record only changes on start, end and clear. Votes live in
per-poll sorted sets (one per option, voter → count) keyed by the poll id,
so a vote that lands while the poll is ending can never rewrite its status.
The tallies are read back into the record while the poll is active and
frozen into it when the poll ends.

Every poll key carries a TTL, so an abandoned poll clears itself.
"""

from __future__ import annotations

import logging
import time
import uuid
from dataclasses import asdict, dataclass, field
from typing import TYPE_CHECKING, Callable

from .ledger import Ledger
from .poll_filter import (
    format_vote_hint,
    match_vote,
    parse_poll_args,
    validate_poll,
)
from .roles import Sender
from .store import Store
from .utils import ReplySender, format_wait, normalize_user, plural, seconds_left

if TYPE_CHECKING:
    from .config import ArcadeConfig


STATE_KEY = "poll:state"
QUEUE_KEY = "poll:queue"
LOCK_KEY = "poll:end_lock"
LAST_ENDED_KEY = "poll:last_ended_at"

# Slack on top of a poll's own lifetime before its keys expire.
EXPIRY_MARGIN_SECONDS = 300
MAX_VOTERS = 10_000

ACTIVE = "active"
WINNER = "winner"


def votes_key(poll_id: str, index: int) -> str:
    return f"poll:{poll_id}:votes:{index}"


def voted_key(poll_id: str, user: str) -> str:
    return f"poll:{poll_id}:voted:{user}"


def message_key(poll_id: str) -> str:
    return f"poll:{poll_id}:message"


# ═══════════════════════════════════════════════════════════════
#  Data types
# ═══════════════════════════════════════════════════════════════


@dataclass
class PollOption:
    label: str
    votes: int = 0
    voters: dict[str, int] = field(default_factory=dict)


@dataclass
class PollState:
    id: str
    question: str
    options: list[PollOption]
    started_at: float
    duration: int
    status: str = ACTIVE
    winner_display_until: float | None = None
    start_message_id: str | None = None
    winner_message: str | None = None

    def to_dict(self) -> dict:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: dict) -> PollState:
        data = dict(data)
        data["options"] = [PollOption(**opt) for opt in data.get("options", [])]
        return cls(**data)

    @property
    def labels(self) -> list[str]:
        return [opt.label for opt in self.options]

    def elapsed(self, now: float) -> float:
        return now - self.started_at

    def remaining(self, now: float) -> int:
        return seconds_left(self.started_at + self.duration, now)


@dataclass
class QueuedPoll:
    question: str
    options: list[str]
    duration: int


# ═══════════════════════════════════════════════════════════════
#  Pure helpers
# ═══════════════════════════════════════════════════════════════


def pick_winner(options: list[PollOption]) -> int | None:
    """Index of the option with the most votes; ties go to the earliest option."""
    best: int | None = None
    for index, opt in enumerate(options):
        if opt.votes > 0 and (best is None or opt.votes > options[best].votes):
            best = index
    return best


def top_voter(options: list[PollOption]) -> tuple[str, int] | None:
    totals: dict[str, int] = {}
    for opt in options:
        for voter, count in opt.voters.items():
            totals[voter] = totals.get(voter, 0) + count
    best: tuple[str, int] | None = None
    for voter, count in totals.items():
        if best is None or count > best[1]:
            best = (voter, count)
    return best


def format_result(state: PollState) -> str:
    winner = pick_winner(state.options)
    if winner is None:
        return f'Poll "{state.question}" ended with no votes.'
    opt = state.options[winner]
    message = f'Poll "{state.question}" — {opt.label} wins! ({plural(opt.votes, "vote")})'
    voter = top_voter(state.options)
    if voter and voter[1] > 1:
        message += f" Top voter: {voter[0]} ({voter[1]} votes)."
    return message


def start_message(question: str, labels: list[str], duration: int) -> str:
    return f"Poll started! {question} Type {format_vote_hint(labels)} in chat to vote. ({duration} seconds)"


def estimate_wait(
    position: int,
    state: PollState | None,
    queue_ahead: list[QueuedPoll],
    winner_display: int,
    now: float,
) -> int:
    """Seconds until the poll at queue ``position`` (1-based) starts."""
    seconds = 0.0
    if state is not None and state.status == ACTIVE:
        seconds += max(0.0, state.duration - state.elapsed(now))
        seconds += winner_display
    elif state is not None and state.status == WINNER and state.winner_display_until:
        seconds += max(0.0, state.winner_display_until - now)
    for queued in queue_ahead[: position - 1]:
        seconds += queued.duration + winner_display
    return round(seconds)


# ═══════════════════════════════════════════════════════════════
#  Engine
# ═══════════════════════════════════════════════════════════════


class PollEngine:
    """Starts, queues, counts and ends polls.

    Announcements (poll start, reminders, results) go through ``send``;
    replies to the person who issued a command are returned to the caller.
    """

    def __init__(
        self,
        config: ArcadeConfig,
        store: Store,
        ledger: Ledger,
        send: ReplySender,
        logger: logging.Logger,
        clock: Callable[[], float] | None = None,
    ) -> None:
        self._config = config
        self._store = store
        self._ledger = ledger
        self._send = send
        self._logger = logger
        self._clock = clock or time.time
        self.polls_started = 0
        self.polls_ended = 0

    @property
    def _cfg(self):
        return self._config.polls

    # ── Persistence ──────────────────────────────────────────

    def _poll_ttl(self, duration: int) -> int:
        return duration + self._cfg.winner_display_seconds + EXPIRY_MARGIN_SECONDS

    async def get_state(self) -> PollState | None:
        data = await self._store.get_json(STATE_KEY)
        if not data:
            return None
        state = PollState.from_dict(data)
        if state.status == ACTIVE:
            await self._load_votes(state)
        return state

    async def _load_votes(self, state: PollState) -> None:
        for index, opt in enumerate(state.options):
            rows = await self._store.zrevrange(votes_key(state.id, index), MAX_VOTERS)
            opt.voters = {user: int(score) for user, score in rows}
            opt.votes = sum(opt.voters.values())
        if state.start_message_id is None:
            state.start_message_id = await self._store.get(message_key(state.id))

    async def _save_state(self, state: PollState, ttl: int) -> None:
        await self._store.set_json(STATE_KEY, state.to_dict(), ex=ttl)

    def _tally_keys(self, state: PollState) -> list[str]:
        return [votes_key(state.id, i) for i in range(len(state.options))] + [message_key(state.id)]

    async def get_queue(self) -> list[QueuedPoll]:
        return [QueuedPoll(**item) for item in await self._store.get_json(QUEUE_KEY, []) or []]

    async def _save_queue(self, queue: list[QueuedPoll]) -> None:
        # Long enough for the running poll and everything queued behind it.
        ttl = self._poll_ttl(self._cfg.duration_seconds) + sum(
            q.duration + self._cfg.winner_display_seconds for q in queue
        )
        await self._store.set_json(QUEUE_KEY, [asdict(q) for q in queue], ex=ttl)

    async def _acquire_lock(self) -> bool:
        return await self._store.set(
            LOCK_KEY, str(self._clock()), nx=True, ex=self._cfg.end_lock_seconds,
        )

    async def _release_lock(self) -> None:
        await self._store.delete(LOCK_KEY)

    # ── Permissions ──────────────────────────────────────────

    def can_start(self, sender: Sender) -> bool:
        cfg = self._cfg
        return (
            sender.is_broadcaster
            or cfg.everyone_can_start
            or (sender.is_moderator and cfg.mods_can_start)
            or (sender.is_vip and cfg.vips_can_start)
            or (sender.is_og and cfg.ogs_can_start)
            or (sender.is_subscriber and cfg.subs_can_start)
        )

    # ══════════════════════════════════════════════════════════
    #  Starting
    # ══════════════════════════════════════════════════════════

    async def start_poll(self, sender: Sender, args: str, *, ranking: bool = False) -> str | None:
        """Handle ``!poll`` / ``!rank``. Returns the reply for the sender, if any."""
        if not self.can_start(sender):
            return "You don't have permission to start polls."

        parsed = parse_poll_args(args, self._cfg.rank_default_question if ranking else None)
        if parsed is None:
            return "Usage: !rank Option1, Option2, Option3" if ranking else "Usage: !poll Question? Option1, Option2"
        rejection = validate_poll(parsed, self._cfg)
        if rejection:
            return rejection

        state = await self.get_state()
        if state is None:
            await self._start_now(parsed.question, parsed.options, self._cfg.duration_seconds, sender.message_id)
            return None

        queue = await self.get_queue()
        if state.status == WINNER and not queue:
            await self._start_now(parsed.question, parsed.options, self._cfg.duration_seconds, sender.message_id)
            return None

        max_queued = max(1, self._cfg.max_queued_polls)
        if len(queue) >= max_queued:
            return f"Too many polls queued (max {max_queued}). Try again later."

        queue_ahead = list(queue)
        queue.append(QueuedPoll(parsed.question, parsed.options, self._cfg.duration_seconds))
        await self._save_queue(queue)
        position = len(queue)
        wait = estimate_wait(position, state, queue_ahead, self._cfg.winner_display_seconds, self._clock())
        self._logger.info("Poll queued at #%d by %s: %s", position, sender.user, parsed.question)
        return f"Poll queued (#{position}). Estimated start: {format_wait(wait)}."

    async def _start_now(
        self, question: str, labels: list[str], duration: int, reply_to: str | None = None,
    ) -> PollState:
        state = PollState(
            id=f"poll_{uuid.uuid4().hex[:12]}",
            question=question,
            options=[PollOption(label=label) for label in labels],
            started_at=self._clock(),
            duration=duration,
        )
        await self._save_state(state, self._poll_ttl(duration))
        self.polls_started += 1
        self._logger.info("Poll started: %s %s", question, labels)

        message_id = await self._send(start_message(question, labels, duration), reply_to)
        if message_id:
            state.start_message_id = str(message_id)
            await self._store.set(message_key(state.id), state.start_message_id, ex=self._poll_ttl(duration))
        return state

    async def _promote_next(self) -> PollState | None:
        queue = await self.get_queue()
        if not queue:
            return None
        first, rest = queue[0], queue[1:]
        await self._save_queue(rest)
        return await self._start_now(first.question, first.options, first.duration)

    # ══════════════════════════════════════════════════════════
    #  Voting
    # ══════════════════════════════════════════════════════════

    async def vote(self, username: str, text: str) -> bool:
        """Count ``text`` as a vote if it names an option. Returns True if it did."""
        state = await self.get_state()
        if state is None or state.status != ACTIVE:
            return False
        if state.elapsed(self._clock()) >= state.duration:
            return False
        index = match_vote(text, state.labels)
        if index is None:
            return False

        user = normalize_user(username)
        ttl = self._poll_ttl(state.duration)
        key = votes_key(state.id, index)

        if self._cfg.one_vote_per_person:
            if state.options[index].voters.get(user):
                return True
            for other in range(len(state.options)):
                if other != index:
                    await self._store.zrem(votes_key(state.id, other), user)
            await self._store.zadd(key, user, 1)
        else:
            await self._store.zincrby(key, user, 1)
        await self._store.expire(key, ttl)
        self._logger.debug("Vote %s → %s", user, state.options[index].label)

        if self._cfg.vote_reward > 0 and self._config.gambling.enabled:
            if await self._store.set(voted_key(state.id, user), "1", nx=True, ex=ttl):
                await self._ledger.credit(user, self._cfg.vote_reward)
        return True

    # ══════════════════════════════════════════════════════════
    #  Lifecycle
    # ══════════════════════════════════════════════════════════

    async def check_lifecycle(self) -> bool:
        """Advance the poll if a deadline has passed. Returns True if anything changed."""
        state = await self.get_state()
        if state is None:
            return False
        now = self._clock()

        if state.status == ACTIVE:
            if state.elapsed(now) >= state.duration:
                return await self._end_active(state.id)
            await self._maybe_remind(state, now)
            return False

        if state.status == WINNER and state.winner_display_until is not None:
            if now >= state.winner_display_until:
                return await self._clear_winner(state.id)
        return False

    async def _maybe_remind(self, state: PollState, now: float) -> None:
        if not self._cfg.send_reminder or state.elapsed(now) < state.duration / 2:
            return
        remaining = state.remaining(now)
        if remaining <= 0:
            return
        if not await self._store.set(f"poll:reminder:{state.id}", "1", nx=True, ex=state.duration):
            return
        await self._send(
            f"Poll: {state.question} Type {format_vote_hint(state.labels)} to vote. ({remaining}s left)",
            state.start_message_id,
        )

    async def _end_active(self, poll_id: str) -> bool:
        if not await self._acquire_lock():
            return False
        try:
            state = await self.get_state()
            if state is None or state.id != poll_id or state.status != ACTIVE:
                return False
            now = self._clock()
            state.status = WINNER
            state.winner_message = format_result(state)
            state.winner_display_until = now + self._cfg.winner_display_seconds
            await self._save_state(state, self._cfg.winner_display_seconds + EXPIRY_MARGIN_SECONDS)
            await self._store.set(LAST_ENDED_KEY, str(now))
            self.polls_ended += 1
            self._logger.info("Poll ended: %s", state.winner_message)
            await self._send(state.winner_message, state.start_message_id)
            return True
        finally:
            await self._release_lock()

    async def _clear_winner(self, poll_id: str) -> bool:
        if not await self._acquire_lock():
            return False
        try:
            state = await self.get_state()
            if state is None or state.id != poll_id or state.status != WINNER:
                return False
            await self._store.delete(STATE_KEY, *self._tally_keys(state))
            await self._promote_next()
            return True
        finally:
            await self._release_lock()

    # ══════════════════════════════════════════════════════════
    #  Status and manual end
    # ══════════════════════════════════════════════════════════

    async def status(self) -> str:
        state = await self.get_state()
        if state is None or state.status != ACTIVE:
            return "No poll active."
        remaining = state.remaining(self._clock())
        time_str = "ending soon" if remaining == 0 else f"{remaining}s left"
        return f"Poll: {state.question} Type {format_vote_hint(state.labels)} to vote. ({time_str})"

    async def end_poll(self, sender: Sender) -> str | None:
        """Moderator force-end. The queue is promoted straight away."""
        if not sender.is_staff:
            return "Only mods and broadcaster can end polls."
        state = await self.get_state()
        if state is None or state.status != ACTIVE:
            return "No poll active."
        if not await self._acquire_lock():
            return "No poll active."
        try:
            current = await self.get_state()
            if current is None or current.id != state.id or current.status != ACTIVE:
                return "No poll active."
            await self._store.delete(STATE_KEY, *self._tally_keys(current))
            await self._store.set(LAST_ENDED_KEY, str(self._clock()))
            self.polls_ended += 1
            self._logger.info("Poll %s ended by %s", state.id, sender.user)
            await self._send("Poll ended by mod.", sender.message_id)
            await self._promote_next()
        finally:
            await self._release_lock()
        return None

    async def snapshot(self) -> dict:
        """State plus queue, for the request/reply API."""
        state = await self.get_state()
        queue = await self.get_queue()
        return {
            "state": state.to_dict() if state else None,
            "queue": [asdict(q) for q in queue],
        }

    async def reset_session(self) -> int:
        keys = [key for key in await self._store.keys("poll:") if key != LAST_ENDED_KEY]
        return await self._store.delete(*keys) if keys else 0
