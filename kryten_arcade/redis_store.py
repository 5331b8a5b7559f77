"""Redis-backed store (redis.asyncio).

Every Store primitive maps onto exactly one native single-key Redis command,
so the atomicity the engines rely on is Redis' own.
"""

from __future__ import annotations

import logging
from typing import Any

import redis.asyncio as redis
from redis.exceptions import RedisError

from .store import Store, StoreUnavailableError


class RedisStore(Store):
    """Store on a Redis server."""

    def __init__(
        self,
        url: str,
        logger: logging.Logger,
        client: redis.Redis | None = None,
    ) -> None:
        self._logger = logger
        self._client = client or redis.Redis.from_url(url, decode_responses=True)

    async def _call(self, op: str, *args: Any, **kwargs: Any) -> Any:
        try:
            return await getattr(self._client, op)(*args, **kwargs)
        except RedisError as e:
            self._logger.warning("Redis %s failed: %s", op, e)
            raise StoreUnavailableError(str(e)) from e

    async def ping(self) -> bool:
        return bool(await self._call("ping"))

    async def get(self, key: str) -> str | None:
        return await self._call("get", key)

    async def set(
        self, key: str, value: str, *, ex: int | None = None, nx: bool = False,
    ) -> bool:
        result = await self._call("set", key, str(value), ex=ex, nx=nx)
        return bool(result)

    async def incr(self, key: str, amount: int = 1) -> int:
        return int(await self._call("incrby", key, amount))

    async def expire(self, key: str, seconds: int) -> bool:
        return bool(await self._call("expire", key, seconds))

    async def delete(self, *keys: str) -> int:
        if not keys:
            return 0
        return int(await self._call("delete", *keys))

    async def exists(self, key: str) -> bool:
        return bool(await self._call("exists", key))

    async def keys(self, prefix: str = "") -> list[str]:
        found: list[str] = []
        try:
            async for key in self._client.scan_iter(match=f"{prefix}*"):
                found.append(key)
        except RedisError as e:
            self._logger.warning("Redis scan failed: %s", e)
            raise StoreUnavailableError(str(e)) from e
        return found

    async def zadd(self, key: str, member: str, score: float) -> None:
        await self._call("zadd", key, {member: score})

    async def zincrby(self, key: str, member: str, amount: float) -> float:
        return float(await self._call("zincrby", key, amount, member))

    async def zscore(self, key: str, member: str) -> float | None:
        score = await self._call("zscore", key, member)
        return float(score) if score is not None else None

    async def zrevrange(self, key: str, count: int) -> list[tuple[str, float]]:
        if count <= 0:
            return []
        rows = await self._call("zrevrange", key, 0, count - 1, withscores=True)
        return [(member, float(score)) for member, score in rows]

    async def zrem(self, key: str, member: str) -> int:
        return int(await self._call("zrem", key, member))

    async def close(self) -> None:
        try:
            await self._client.aclose()
        except RedisError:
            self._logger.debug("Redis close failed", exc_info=True)
