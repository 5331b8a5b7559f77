"""Per-channel wiring of the arcade engines.

One ``Arcade`` exists for each configured channel. Its store is scoped to
``<key_prefix>:<channel>:`` so channels sharing a backend never see each
other's balances, hands or events.
"""

from __future__ import annotations

import logging
import random
from typing import TYPE_CHECKING, Callable

from .activity import ActivityTracker
from .blackjack import BlackjackEngine
from .event_manager import EventManager
from .gifting import GiftingEngine
from .instant_games import InstantGamesEngine
from .ledger import Ledger
from .polls import PollEngine
from .roles import RoleResolver
from .store import Store
from .streaks import StreakTracker
from .utils import ReplySender

if TYPE_CHECKING:
    from .config import ArcadeConfig


class Arcade:
    """Every engine for one channel, sharing one scoped store and one RNG."""

    def __init__(
        self,
        config: ArcadeConfig,
        store: Store,
        channel: str,
        send: ReplySender,
        logger: logging.Logger | None = None,
        rng: random.Random | None = None,
        clock: Callable[[], float] | None = None,
    ) -> None:
        self.config = config
        self.channel = channel
        self.store = store.scoped(f"{config.store.key_prefix}:{channel}:")
        self.logger = logger or logging.getLogger("arcade")
        self.rng = rng or random.Random()
        self.roles = RoleResolver(config)

        log = self.logger
        self.ledger = Ledger(config, self.store, log.getChild("ledger"))
        self.streaks = StreakTracker(config, self.store, self.ledger, log.getChild("streaks"), clock)
        self.blackjack = BlackjackEngine(
            config, self.store, self.ledger, self.streaks, log.getChild("blackjack"), self.rng, clock,
        )
        self.games = InstantGamesEngine(
            config, self.store, self.ledger, self.streaks, log.getChild("games"), self.rng, clock,
        )
        self.gifting = GiftingEngine(config, self.store, self.ledger, log.getChild("gifting"), clock)
        self.polls = PollEngine(config, self.store, self.ledger, send, log.getChild("polls"), clock)
        self.events = EventManager(config, self.store, self.ledger, log.getChild("events"), self.rng, clock)
        self.activity = ActivityTracker(config, self.store, self.ledger, log.getChild("activity"), clock)

    async def reset_session(self) -> dict[str, int]:
        """Stream start: wipe balances, hands, cooldowns, view-time stamps and polls."""
        removed = {
            "ledger": await self.ledger.reset_session(),
            "blackjack": await self.blackjack.reset_session(),
            "activity": await self.activity.reset_session(),
            "polls": await self.polls.reset_session(),
        }
        self.logger.info("Session reset for %s: %s", self.channel, removed)
        return removed
