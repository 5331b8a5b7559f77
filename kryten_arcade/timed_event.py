"""Shared plumbing for the time-boxed multiplayer events.

Every event kind keeps one record under its own key (``raffle``, ``heist``,
``chip_drop``, ``chat_challenge``, ``boss``). The record is written once, with
``nx``, when the event starts and is never rewritten: participation goes into
separate counter and sorted-set keys tagged with the event id. That makes the
record's deletion the single claim on its resolution. ``delete`` reports how
many keys it removed, so exactly one resolver sees ``1`` and pays out, and a
late participant can never resurrect a resolved event by writing it back.

Every key carries a TTL so an event nobody resolves is still collected.
"""

from __future__ import annotations

import logging
import random
import time
import uuid
from typing import TYPE_CHECKING, Any, Callable

from .ledger import Ledger
from .store import Store
from .utils import seconds_left

if TYPE_CHECKING:
    from .config import ArcadeConfig


def proportional_split(pool: int, weights: dict[str, int], min_share: int) -> dict[str, int]:
    """Split ``pool`` by weight.

    Each share is the floor of its proportional amount, raised to
    ``min_share``. Whatever is left of the pool goes to the largest
    contributor, the earliest one on ties. Weights keep insertion order.
    """
    total = sum(w for w in weights.values() if w > 0)
    if total <= 0:
        return {}
    shares = {
        user: max(min_share, pool * weight // total)
        for user, weight in weights.items()
        if weight > 0
    }
    leftover = pool - sum(shares.values())
    if leftover > 0:
        top = max(shares, key=lambda u: weights[u])  # max() keeps the first on ties
        shares[top] += leftover
    return shares


class TimedEvent:
    """Base class: record storage, entry window, claim-by-delete and intervals."""

    kind = ""

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
        self._ledger = ledger
        self._logger = logger
        self._rng = rng or random.Random()
        self._clock = clock or time.time
        self.resolved_count = 0

    @property
    def _cfg(self):
        return getattr(self._config.events, self.kind)

    @property
    def enabled(self) -> bool:
        return self._cfg.enabled

    @property
    def window_seconds(self) -> int:
        return self._cfg.window_seconds

    @property
    def ttl_seconds(self) -> int:
        return self._cfg.ttl_seconds

    @property
    def interval_seconds(self) -> int:
        return getattr(self._cfg, "interval_minutes", 0) * 60

    @property
    def state_key(self) -> str:
        return self.kind

    @property
    def last_at_key(self) -> str:
        return f"{self.kind}_last_at"

    def sub_key(self, record: dict, name: str) -> str:
        """Key for per-event participation data, e.g. ``raffle:entries:<id>``."""
        return f"{self.kind}:{name}:{record['id']}"

    # ── Record lifecycle ─────────────────────────────────────

    def new_id(self) -> str:
        return uuid.uuid4().hex[:12]

    async def get_record(self) -> dict | None:
        return await self._store.get_json(self.state_key)

    async def _create(self, record: dict[str, Any]) -> bool:
        """Write a fresh record. False if another event of this kind already exists."""
        return await self._store.set_json(self.state_key, record, ex=self.ttl_seconds, nx=True)

    def elapsed(self, record: dict) -> float:
        return self._clock() - record["started_at"]

    def is_open(self, record: dict) -> bool:
        return self.elapsed(record) < self.window_seconds

    def time_left(self, record: dict) -> int:
        return seconds_left(record["started_at"] + self.window_seconds, self._clock())

    async def _claim(self) -> bool:
        """Delete the record. True only for the one caller whose delete removed it."""
        if not await self._store.delete(self.state_key):
            return False
        await self._store.set(self.last_at_key, str(self._clock()))
        self.resolved_count += 1
        return True

    async def _expire_with(self, record: dict, *names: str) -> None:
        for name in names:
            await self._store.expire(self.sub_key(record, name), self.ttl_seconds)

    # ── Scheduling ───────────────────────────────────────────

    async def should_start(self) -> bool:
        """No open record and the interval since the last one has passed."""
        if not self.enabled:
            return False
        if await self._store.exists(self.state_key):
            return False
        raw = await self._store.get(self.last_at_key)
        if raw is None:
            return True
        try:
            last_at = float(raw)
        except ValueError:
            return True
        now = self._clock()
        if last_at > now:
            return True
        return now - last_at >= self.interval_seconds

    async def reset_timer(self) -> None:
        await self._store.delete(self.last_at_key)

    async def resolve(self) -> str | None:
        """Resolve the event if its window has elapsed. Returns an announcement."""
        raise NotImplementedError
