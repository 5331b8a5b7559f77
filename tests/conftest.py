"""Shared test fixtures for kryten-arcade."""

from __future__ import annotations

import asyncio
import logging
import random
from pathlib import Path
from typing import AsyncGenerator
from unittest.mock import AsyncMock, MagicMock

import pytest
import pytest_asyncio

from kryten_arcade.arcade import Arcade
from kryten_arcade.blackjack import BlackjackEngine
from kryten_arcade.config import ArcadeConfig
from kryten_arcade.event_manager import EventManager
from kryten_arcade.gifting import GiftingEngine
from kryten_arcade.instant_games import InstantGamesEngine
from kryten_arcade.ledger import Ledger
from kryten_arcade.polls import PollEngine
from kryten_arcade.sqlite_store import SqliteStore
from kryten_arcade.store import MemoryStore
from kryten_arcade.streaks import StreakTracker

CH = "testchannel"

# 2025-06-15T15:00:00Z, on an hour boundary
T0 = 1_749_999_600.0


# ── Minimal config dict matching ArcadeConfig schema ─────────

def make_config_dict(**overrides) -> dict:
    """Build a valid config dict with sensible test defaults."""
    base = {
        "nats": {"servers": ["nats://localhost:4222"]},
        "channels": [{"domain": "cytu.be", "channel": CH}],
        "service": {"name": "arcade"},
        "store": {"backend": "memory", "key_prefix": "arcade"},
        "currency": {"name": "chip", "plural": "chips", "symbol": "🪙"},
        "bot": {"username": "TestBot"},
        "ignored_users": ["IgnoredBot"],
        "roles": {"broadcaster": "Streamer", "vips": ["VipVera"]},
    }
    base.update(overrides)
    return base


class FakeClock:
    """Callable clock the tests move by hand."""

    def __init__(self, start: float = T0) -> None:
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


class StubRandom(random.Random):
    """``random()`` always returns ``value``; integer draws stay seeded."""

    def __init__(self, value: float) -> None:
        super().__init__(0)
        self.value = value

    def random(self) -> float:
        return self.value


class RecordingSender:
    """Stands in for the chat transport: records (text, reply_to) and hands out ids."""

    def __init__(self) -> None:
        self.sent: list[tuple[str, str | None]] = []

    async def __call__(self, text: str, reply_to: str | None = None) -> str:
        self.sent.append((text, reply_to))
        return f"msg-{len(self.sent)}"

    @property
    def texts(self) -> list[str]:
        return [text for text, _ in self.sent]


class YieldingStore(MemoryStore):
    """MemoryStore that yields to the event loop before every operation.

    Lets ``asyncio.gather`` interleave callers between store round trips,
    the way a networked backend would.
    """

    async def get(self, key):
        await asyncio.sleep(0)
        return await super().get(key)

    async def set(self, key, value, *, ex=None, nx=False):
        await asyncio.sleep(0)
        return await super().set(key, value, ex=ex, nx=nx)

    async def incr(self, key, amount=1):
        await asyncio.sleep(0)
        return await super().incr(key, amount)

    async def delete(self, *keys):
        await asyncio.sleep(0)
        return await super().delete(*keys)

    async def exists(self, key):
        await asyncio.sleep(0)
        return await super().exists(key)

    async def zrevrange(self, key, count):
        await asyncio.sleep(0)
        return await super().zrevrange(key, count)


# ── Core fixtures ────────────────────────────────────────────

@pytest.fixture
def sample_config_dict() -> dict:
    """Return a config dict suitable for tests."""
    return make_config_dict()


@pytest.fixture
def sample_config(sample_config_dict: dict) -> ArcadeConfig:
    """Return a parsed ArcadeConfig."""
    return ArcadeConfig(**sample_config_dict)


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def rng() -> random.Random:
    return random.Random(1234)


@pytest.fixture
def store(clock: FakeClock) -> MemoryStore:
    """In-memory store on the fake clock."""
    return MemoryStore(clock)


@pytest.fixture
def sender() -> RecordingSender:
    return RecordingSender()


@pytest.fixture
def tmp_db_path(tmp_path: Path) -> str:
    """Return a temporary SQLite database path."""
    return str(tmp_path / "test_arcade.db")


@pytest_asyncio.fixture
async def sqlite_store(tmp_db_path: str, clock: FakeClock) -> AsyncGenerator[SqliteStore, None]:
    """Provide an initialized SQLite store with temp file."""
    db = SqliteStore(tmp_db_path, logging.getLogger("test"), clock)
    await db.initialize()
    yield db


@pytest.fixture
def mock_client() -> MagicMock:
    """Return a mock KrytenClient with async methods."""
    client = MagicMock()
    client.send_chat = AsyncMock(return_value="corr-id-456")
    client.connect = AsyncMock()
    client.run = AsyncMock()
    client.stop = AsyncMock()
    client.subscribe_request_reply = AsyncMock()
    return client


# ── Engine fixtures ──────────────────────────────────────────

@pytest.fixture
def ledger(sample_config: ArcadeConfig, store: MemoryStore) -> Ledger:
    return Ledger(sample_config, store, logging.getLogger("test"))


@pytest.fixture
def streaks(
    sample_config: ArcadeConfig, store: MemoryStore, ledger: Ledger, clock: FakeClock,
) -> StreakTracker:
    return StreakTracker(sample_config, store, ledger, logging.getLogger("test"), clock)


@pytest.fixture
def blackjack(
    sample_config: ArcadeConfig,
    store: MemoryStore,
    ledger: Ledger,
    streaks: StreakTracker,
    rng: random.Random,
    clock: FakeClock,
) -> BlackjackEngine:
    return BlackjackEngine(
        sample_config, store, ledger, streaks, logging.getLogger("test"), rng, clock,
    )


@pytest.fixture
def games(
    sample_config: ArcadeConfig,
    store: MemoryStore,
    ledger: Ledger,
    streaks: StreakTracker,
    rng: random.Random,
    clock: FakeClock,
) -> InstantGamesEngine:
    return InstantGamesEngine(
        sample_config, store, ledger, streaks, logging.getLogger("test"), rng, clock,
    )


@pytest.fixture
def gifting(
    sample_config: ArcadeConfig, store: MemoryStore, ledger: Ledger, clock: FakeClock,
) -> GiftingEngine:
    return GiftingEngine(sample_config, store, ledger, logging.getLogger("test"), clock)


@pytest.fixture
def polls(
    sample_config: ArcadeConfig,
    store: MemoryStore,
    ledger: Ledger,
    sender: RecordingSender,
    clock: FakeClock,
) -> PollEngine:
    return PollEngine(sample_config, store, ledger, sender, logging.getLogger("test"), clock)


@pytest.fixture
def events(
    sample_config: ArcadeConfig,
    store: MemoryStore,
    ledger: Ledger,
    rng: random.Random,
    clock: FakeClock,
) -> EventManager:
    return EventManager(sample_config, store, ledger, logging.getLogger("test"), rng, clock)


@pytest.fixture
def arcade(
    sample_config: ArcadeConfig,
    store: MemoryStore,
    sender: RecordingSender,
    rng: random.Random,
    clock: FakeClock,
) -> Arcade:
    """One channel's engines on a scoped view of the shared store."""
    return Arcade(sample_config, store, CH, sender, logging.getLogger("test"), rng, clock)
