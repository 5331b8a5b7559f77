"""Housekeeping — the periodic tick that keeps state moving without chat.

Every ``housekeeping.tick_seconds`` the loop, for each channel:

- advances the poll lifecycle (end, reminder, queue promotion)
- resolves expired events and sends due event reminders
- refunds unaccepted duels
- auto-starts the next due event
- pays view-time chips and crowns the previous hour's top chatter

and once per tick purges expired rows from the sqlite backend. Each step is
isolated: one failing step is logged and the rest of the tick still runs.
"""

from __future__ import annotations

import asyncio
import logging
from typing import TYPE_CHECKING, Awaitable, Callable

if TYPE_CHECKING:
    from .arcade import Arcade
    from .config import ArcadeConfig
    from .store import Store


Announcer = Callable[[str, str], Awaitable[None]]


class Housekeeping:
    """Runs ``tick()`` on an interval until stopped."""

    def __init__(
        self,
        config: ArcadeConfig,
        arcades: dict[str, Arcade],
        announce: Announcer,
        store: Store | None = None,
        logger: logging.Logger | None = None,
    ) -> None:
        self._config = config
        self._arcades = arcades
        self._announce = announce
        self._store = store
        self._logger = logger or logging.getLogger("arcade.housekeeping")
        self._task: asyncio.Task | None = None
        self.ticks = 0

    async def start(self) -> None:
        self._task = asyncio.create_task(self._loop())
        self._logger.info("Housekeeping started (every %ds)", self._config.housekeeping.tick_seconds)

    async def stop(self) -> None:
        if self._task:
            self._task.cancel()
            try:
                await self._task
            except asyncio.CancelledError:
                pass
            self._task = None

    async def _loop(self) -> None:
        while True:
            await asyncio.sleep(self._config.housekeeping.tick_seconds)
            try:
                await self.tick()
            except Exception:
                self._logger.exception("Housekeeping tick failed")

    # ══════════════════════════════════════════════════════════
    #  Tick
    # ══════════════════════════════════════════════════════════

    async def tick(self) -> None:
        self.ticks += 1
        for channel, arcade in self._arcades.items():
            await self._step(channel, "polls", self._polls(arcade))
            await self._step(channel, "events", self._events(channel, arcade))
            await self._step(channel, "duels", self._duels(arcade))
            await self._step(channel, "auto-start", self._auto_start(channel, arcade))
            await self._step(channel, "activity", self._activity(channel, arcade))

        purge = getattr(self._store, "purge_expired", None)
        if purge is not None:
            try:
                removed = await purge()
                if removed:
                    self._logger.debug("Purged %d expired keys", removed)
            except Exception:
                self._logger.exception("Expired key purge failed")

    async def _step(self, channel: str, name: str, work: Awaitable[None]) -> None:
        try:
            await work
        except Exception:
            self._logger.exception("Housekeeping step %s failed for %s", name, channel)

    async def _polls(self, arcade: Arcade) -> None:
        if self._config.polls.enabled:
            await arcade.polls.check_lifecycle()

    async def _events(self, channel: str, arcade: Arcade) -> None:
        for text in await arcade.events.resolve_expired():
            await self._announce(channel, text)

    async def _duels(self, arcade: Arcade) -> None:
        refunded = await arcade.games.expire_duels()
        if refunded:
            self._logger.info("Refunded %d expired duel(s)", refunded)

    async def _auto_start(self, channel: str, arcade: Arcade) -> None:
        if not self._config.gambling.enabled:
            return
        text = await arcade.events.auto_start()
        if text:
            await self._announce(channel, text)

    async def _activity(self, channel: str, arcade: Arcade) -> None:
        if not self._config.gambling.enabled:
            return
        await arcade.activity.award_view_time()
        text = await arcade.activity.resolve_top_chatter()
        if text:
            await self._announce(channel, text)
