"""Event manager — owns the five timed events and their passive triggers.

Raffle, chip drop and boss entries arrive as plain chat text, never as
``!commands``. The router hands every non-command message to
``handle_passive`` before it looks at commands, and the housekeeping tick
calls ``resolve_expired`` and ``auto_start`` so events close even when chat
goes quiet.
"""

from __future__ import annotations

import logging
import random
from typing import TYPE_CHECKING, Callable

from .boss import BossFight
from .chat_challenge import ChatChallenge
from .chip_drop import ChipDrop
from .heist import Heist
from .ledger import Ledger
from .raffle import Raffle
from .store import Store
from .timed_event import TimedEvent

if TYPE_CHECKING:
    from .config import ArcadeConfig


class EventManager:
    """Builds the event engines and fans chat and ticks out to them."""

    def __init__(
        self,
        config: ArcadeConfig,
        store: Store,
        ledger: Ledger,
        logger: logging.Logger,
        rng: random.Random | None = None,
        clock: Callable[[], float] | None = None,
    ) -> None:
        self._config = config
        self._store = store
        self._logger = logger
        self._rng = rng or random.Random()

        def build(cls: type[TimedEvent]) -> TimedEvent:
            return cls(config, store, ledger, logger.getChild(cls.kind), self._rng, clock)

        self.raffle: Raffle = build(Raffle)
        self.heist: Heist = build(Heist)
        self.chip_drop: ChipDrop = build(ChipDrop)
        self.chat_challenge: ChatChallenge = build(ChatChallenge)
        self.boss: BossFight = build(BossFight)

    @property
    def events(self) -> list[TimedEvent]:
        return [self.raffle, self.heist, self.chip_drop, self.chat_challenge, self.boss]

    def get(self, kind: str) -> TimedEvent | None:
        for event in self.events:
            if event.kind == kind:
                return event
        return None

    @property
    def resolved_count(self) -> int:
        return sum(event.resolved_count for event in self.events)

    # ══════════════════════════════════════════════════════════
    #  Passive triggers
    # ══════════════════════════════════════════════════════════

    async def handle_passive(self, username: str, text: str) -> list[str]:
        """Feed one plain chat message to every event. Returns replies to send."""
        replies: list[str] = []

        if self.raffle.enabled:
            await self.raffle.enter(username, text)

        if self.chip_drop.enabled:
            grabbed = await self.chip_drop.enter(username, text)
            if grabbed:
                replies.append(grabbed)

        if self.boss.enabled:
            hit = await self.boss.attack(username, text)
            if hit:
                replies.append(hit)

        if self.chat_challenge.enabled:
            await self.chat_challenge.track(username)

        return replies

    # ══════════════════════════════════════════════════════════
    #  Housekeeping
    # ══════════════════════════════════════════════════════════

    async def resolve_expired(self) -> list[str]:
        """Resolve every event whose window has passed, then send due reminders."""
        announcements: list[str] = []
        for event in self.events:
            result = await event.resolve()
            if result:
                self._logger.info("Resolved %s", event.kind)
                announcements.append(result)

        for reminder in (self.raffle.reminder, self.boss.reminder):
            text = await reminder()
            if text:
                announcements.append(text)
        return announcements

    async def has_active_event(self) -> bool:
        """True while a drop, challenge or boss record exists."""
        for event in (self.chip_drop, self.chat_challenge, self.boss):
            if await self._store.exists(event.state_key):
                return True
        return False

    async def auto_start(self) -> str | None:
        """Start the first due event in the configured rotation, if any."""
        if not self._config.events.auto_start.enabled:
            return None
        if await self.has_active_event():
            return None
        for kind in self._config.events.auto_start.order:
            event = self.get(kind)
            if event is None or not await event.should_start():
                continue
            self._logger.info("Auto-starting %s", kind)
            return await event.start()
        return None

    async def reset_timers(self) -> None:
        """Forget when each event last ran so all are immediately due."""
        for event in self.events:
            await event.reset_timer()
        self._logger.info("Event timers reset")

    async def open_events(self) -> dict[str, bool]:
        return {event.kind: await self._store.exists(event.state_key) for event in self.events}
