"""Key-value store abstraction shared by every arcade component.

The engines only rely on single-key atomic primitives: get, set (optionally
"only if absent" and/or with a TTL), increment, expire and delete, plus a
handful of sorted-set operations for the leaderboard and activity counters.
There are no multi-key transactions; every read-decide-write sequence in the
engines is a deliberate best-effort race.

``MemoryStore`` keeps everything in-process and is used by the tests and by
single-process deployments. ``SqliteStore`` and ``RedisStore`` live in their
own modules.
"""

from __future__ import annotations

import json
import time
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any, Callable


# ═══════════════════════════════════════════════════════════════
#  Errors
# ═══════════════════════════════════════════════════════════════


class ArcadeError(Exception):
    """Base class for arcade errors."""


class StoreUnavailableError(ArcadeError):
    """The backing store could not complete an operation."""


# ═══════════════════════════════════════════════════════════════
#  Interface
# ═══════════════════════════════════════════════════════════════


class Store(ABC):
    """Async key-value store with single-key atomicity."""

    @abstractmethod
    async def get(self, key: str) -> str | None: ...

    @abstractmethod
    async def set(
        self, key: str, value: str, *, ex: int | None = None, nx: bool = False,
    ) -> bool:
        """Write ``value``. With ``nx`` the write only happens if the key is absent.

        Returns True if the value was written.
        """

    @abstractmethod
    async def incr(self, key: str, amount: int = 1) -> int:
        """Atomically add ``amount`` to an integer value (absent counts as 0)."""

    @abstractmethod
    async def expire(self, key: str, seconds: int) -> bool: ...

    @abstractmethod
    async def delete(self, *keys: str) -> int: ...

    @abstractmethod
    async def exists(self, key: str) -> bool: ...

    @abstractmethod
    async def keys(self, prefix: str = "") -> list[str]: ...

    # ── Sorted sets ──────────────────────────────────────────

    @abstractmethod
    async def zadd(self, key: str, member: str, score: float) -> None: ...

    @abstractmethod
    async def zincrby(self, key: str, member: str, amount: float) -> float: ...

    @abstractmethod
    async def zscore(self, key: str, member: str) -> float | None: ...

    @abstractmethod
    async def zrevrange(self, key: str, count: int) -> list[tuple[str, float]]:
        """Return up to ``count`` (member, score) pairs, highest score first."""

    @abstractmethod
    async def zrem(self, key: str, member: str) -> int: ...

    async def close(self) -> None:
        """Release backend resources."""

    # ── JSON helpers ─────────────────────────────────────────

    async def get_json(self, key: str, default: Any = None) -> Any:
        raw = await self.get(key)
        if raw is None:
            return default
        try:
            return json.loads(raw)
        except (TypeError, ValueError):
            return default

    async def set_json(
        self, key: str, value: Any, *, ex: int | None = None, nx: bool = False,
    ) -> bool:
        return await self.set(key, json.dumps(value, separators=(",", ":")), ex=ex, nx=nx)

    async def get_int(self, key: str, default: int = 0) -> int:
        raw = await self.get(key)
        if raw is None:
            return default
        try:
            return int(float(raw))
        except (TypeError, ValueError):
            return default

    def scoped(self, prefix: str) -> ScopedStore:
        """Return a view that prefixes every key with ``prefix``."""
        return ScopedStore(self, prefix)


# ═══════════════════════════════════════════════════════════════
#  Prefixed view
# ═══════════════════════════════════════════════════════════════


class ScopedStore(Store):
    """Namespaces another store under a fixed key prefix."""

    def __init__(self, inner: Store, prefix: str) -> None:
        self._inner = inner
        self._prefix = prefix

    @property
    def prefix(self) -> str:
        return self._prefix

    def _k(self, key: str) -> str:
        return f"{self._prefix}{key}"

    async def get(self, key: str) -> str | None:
        return await self._inner.get(self._k(key))

    async def set(
        self, key: str, value: str, *, ex: int | None = None, nx: bool = False,
    ) -> bool:
        return await self._inner.set(self._k(key), value, ex=ex, nx=nx)

    async def incr(self, key: str, amount: int = 1) -> int:
        return await self._inner.incr(self._k(key), amount)

    async def expire(self, key: str, seconds: int) -> bool:
        return await self._inner.expire(self._k(key), seconds)

    async def delete(self, *keys: str) -> int:
        if not keys:
            return 0
        return await self._inner.delete(*(self._k(k) for k in keys))

    async def exists(self, key: str) -> bool:
        return await self._inner.exists(self._k(key))

    async def keys(self, prefix: str = "") -> list[str]:
        found = await self._inner.keys(self._k(prefix))
        cut = len(self._prefix)
        return [k[cut:] for k in found]

    async def zadd(self, key: str, member: str, score: float) -> None:
        await self._inner.zadd(self._k(key), member, score)

    async def zincrby(self, key: str, member: str, amount: float) -> float:
        return await self._inner.zincrby(self._k(key), member, amount)

    async def zscore(self, key: str, member: str) -> float | None:
        return await self._inner.zscore(self._k(key), member)

    async def zrevrange(self, key: str, count: int) -> list[tuple[str, float]]:
        return await self._inner.zrevrange(self._k(key), count)

    async def zrem(self, key: str, member: str) -> int:
        return await self._inner.zrem(self._k(key), member)

    async def close(self) -> None:
        await self._inner.close()


# ═══════════════════════════════════════════════════════════════
#  In-memory backend
# ═══════════════════════════════════════════════════════════════


@dataclass
class _Entry:
    value: Any
    expires_at: float | None = None
    zset: dict[str, float] = field(default_factory=dict)
    is_zset: bool = False


class MemoryStore(Store):
    """Process-local store with lazily enforced TTLs.

    Every operation runs without yielding to the event loop, so each call is
    atomic with respect to other coroutines, matching the single-key guarantee
    of the networked backends.
    """

    def __init__(self, clock: Callable[[], float] | None = None) -> None:
        self._clock = clock or time.time
        self._data: dict[str, _Entry] = {}

    def _live(self, key: str) -> _Entry | None:
        entry = self._data.get(key)
        if entry is None:
            return None
        if entry.expires_at is not None and entry.expires_at <= self._clock():
            del self._data[key]
            return None
        return entry

    def _expiry(self, ex: int | None) -> float | None:
        return self._clock() + ex if ex is not None else None

    async def get(self, key: str) -> str | None:
        entry = self._live(key)
        if entry is None or entry.is_zset:
            return None
        return entry.value

    async def set(
        self, key: str, value: str, *, ex: int | None = None, nx: bool = False,
    ) -> bool:
        if nx and self._live(key) is not None:
            return False
        self._data[key] = _Entry(value=str(value), expires_at=self._expiry(ex))
        return True

    async def incr(self, key: str, amount: int = 1) -> int:
        entry = self._live(key)
        if entry is None:
            self._data[key] = _Entry(value=str(amount))
            return amount
        if entry.is_zset:
            raise StoreUnavailableError(f"{key} holds a sorted set")
        try:
            current = int(entry.value)
        except (TypeError, ValueError) as e:
            raise StoreUnavailableError(f"{key} is not an integer") from e
        entry.value = str(current + amount)
        return current + amount

    async def expire(self, key: str, seconds: int) -> bool:
        entry = self._live(key)
        if entry is None:
            return False
        entry.expires_at = self._clock() + seconds
        return True

    async def delete(self, *keys: str) -> int:
        removed = 0
        for key in keys:
            if self._live(key) is not None:
                del self._data[key]
                removed += 1
        return removed

    async def exists(self, key: str) -> bool:
        return self._live(key) is not None

    async def keys(self, prefix: str = "") -> list[str]:
        return [k for k in list(self._data) if k.startswith(prefix) and self._live(k)]

    def _zset(self, key: str, create: bool = False) -> dict[str, float] | None:
        entry = self._live(key)
        if entry is None:
            if not create:
                return None
            entry = _Entry(value=None, is_zset=True)
            self._data[key] = entry
        if not entry.is_zset:
            raise StoreUnavailableError(f"{key} does not hold a sorted set")
        return entry.zset

    async def zadd(self, key: str, member: str, score: float) -> None:
        self._zset(key, create=True)[member] = float(score)

    async def zincrby(self, key: str, member: str, amount: float) -> float:
        zset = self._zset(key, create=True)
        zset[member] = zset.get(member, 0.0) + amount
        return zset[member]

    async def zscore(self, key: str, member: str) -> float | None:
        zset = self._zset(key)
        if zset is None:
            return None
        return zset.get(member)

    async def zrevrange(self, key: str, count: int) -> list[tuple[str, float]]:
        zset = self._zset(key)
        if not zset:
            return []
        ordered = sorted(zset.items(), key=lambda kv: (-kv[1], kv[0]))
        return ordered[:count]

    async def zrem(self, key: str, member: str) -> int:
        zset = self._zset(key)
        if zset is None or member not in zset:
            return 0
        del zset[member]
        return 1
