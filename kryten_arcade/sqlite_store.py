"""SQLite-backed store.

Follows the kryten-userstats pattern: each public method is async and wraps
a synchronous inner function via ``loop.run_in_executor(None, ...)``. A new
connection is created per call (WAL mode, 30s busy timeout, Row factory).

Single-key atomicity comes from SQLite's writer lock: every mutating call
opens its own ``BEGIN IMMEDIATE`` transaction, so a conditional write or an
increment can never interleave with another writer.
"""

from __future__ import annotations

import asyncio
import logging
import sqlite3
import time
from typing import Any, Callable

from .store import Store, StoreUnavailableError


class SqliteStore(Store):
    """Durable key-value store on a single SQLite file."""

    def __init__(
        self,
        db_path: str,
        logger: logging.Logger,
        clock: Callable[[], float] | None = None,
    ) -> None:
        self._db_path = db_path
        self._logger = logger
        self._clock = clock or time.time

    def _get_connection(self) -> sqlite3.Connection:
        """Create a new SQLite connection with standard settings."""
        conn = sqlite3.connect(self._db_path, timeout=30, isolation_level=None)
        conn.execute("PRAGMA journal_mode=WAL")
        conn.execute("PRAGMA busy_timeout=30000")
        conn.row_factory = sqlite3.Row
        return conn

    async def _run(self, fn: Callable[..., Any], *args: Any) -> Any:
        loop = asyncio.get_running_loop()
        try:
            return await loop.run_in_executor(None, fn, *args)
        except sqlite3.Error as e:
            self._logger.warning("SQLite store error in %s: %s", fn.__name__, e)
            raise StoreUnavailableError(str(e)) from e

    # ══════════════════════════════════════════════════════════
    #  Initialization
    # ══════════════════════════════════════════════════════════

    async def initialize(self) -> None:
        """Create tables and indexes. Idempotent."""
        await self._run(self._create_tables)

    def _create_tables(self) -> None:
        conn = self._get_connection()
        try:
            conn.execute("""
                CREATE TABLE IF NOT EXISTS kv (
                    key TEXT PRIMARY KEY,
                    kind TEXT NOT NULL DEFAULT 'string',
                    value TEXT,
                    expires_at REAL
                )
            """)
            conn.execute("""
                CREATE TABLE IF NOT EXISTS zmembers (
                    key TEXT NOT NULL,
                    member TEXT NOT NULL,
                    score REAL NOT NULL,
                    PRIMARY KEY (key, member)
                )
            """)
            conn.execute(
                "CREATE INDEX IF NOT EXISTS idx_kv_expires_at ON kv(expires_at)"
            )
            conn.execute(
                "CREATE INDEX IF NOT EXISTS idx_zmembers_score ON zmembers(key, score)"
            )
        finally:
            conn.close()

    # ── Shared helpers (run inside an open transaction) ──────

    def _purge(self, conn: sqlite3.Connection, key: str) -> None:
        """Drop ``key`` if its TTL has passed."""
        row = conn.execute(
            "SELECT expires_at FROM kv WHERE key = ?", (key,),
        ).fetchone()
        if row and row["expires_at"] is not None and row["expires_at"] <= self._clock():
            conn.execute("DELETE FROM kv WHERE key = ?", (key,))
            conn.execute("DELETE FROM zmembers WHERE key = ?", (key,))

    def _kind(self, conn: sqlite3.Connection, key: str) -> str | None:
        row = conn.execute("SELECT kind FROM kv WHERE key = ?", (key,)).fetchone()
        return row["kind"] if row else None

    # ══════════════════════════════════════════════════════════
    #  Strings
    # ══════════════════════════════════════════════════════════

    async def get(self, key: str) -> str | None:
        def _sync(k: str) -> str | None:
            conn = self._get_connection()
            try:
                row = conn.execute(
                    "SELECT value, kind, expires_at FROM kv WHERE key = ?", (k,),
                ).fetchone()
                if not row or row["kind"] != "string":
                    return None
                if row["expires_at"] is not None and row["expires_at"] <= self._clock():
                    return None
                return row["value"]
            finally:
                conn.close()

        return await self._run(_sync, key)

    async def set(
        self, key: str, value: str, *, ex: int | None = None, nx: bool = False,
    ) -> bool:
        def _sync(k: str, v: str, ttl: int | None, only_new: bool) -> bool:
            conn = self._get_connection()
            try:
                conn.execute("BEGIN IMMEDIATE")
                self._purge(conn, k)
                expires_at = self._clock() + ttl if ttl is not None else None
                if only_new:
                    cur = conn.execute(
                        "INSERT INTO kv (key, kind, value, expires_at) VALUES (?, 'string', ?, ?) "
                        "ON CONFLICT(key) DO NOTHING",
                        (k, v, expires_at),
                    )
                    written = cur.rowcount == 1
                else:
                    conn.execute("DELETE FROM zmembers WHERE key = ?", (k,))
                    conn.execute(
                        "INSERT INTO kv (key, kind, value, expires_at) VALUES (?, 'string', ?, ?) "
                        "ON CONFLICT(key) DO UPDATE SET kind = 'string', "
                        "value = excluded.value, expires_at = excluded.expires_at",
                        (k, v, expires_at),
                    )
                    written = True
                conn.execute("COMMIT")
                return written
            except Exception:
                conn.execute("ROLLBACK")
                raise
            finally:
                conn.close()

        return await self._run(_sync, key, str(value), ex, nx)

    async def incr(self, key: str, amount: int = 1) -> int:
        def _sync(k: str, n: int) -> int:
            conn = self._get_connection()
            try:
                conn.execute("BEGIN IMMEDIATE")
                self._purge(conn, k)
                row = conn.execute(
                    "SELECT kind, value FROM kv WHERE key = ?", (k,),
                ).fetchone()
                if row is None:
                    new_value = n
                    conn.execute(
                        "INSERT INTO kv (key, kind, value) VALUES (?, 'string', ?)",
                        (k, str(new_value)),
                    )
                else:
                    if row["kind"] != "string":
                        raise sqlite3.IntegrityError(f"{k} holds a sorted set")
                    new_value = int(row["value"]) + n
                    conn.execute(
                        "UPDATE kv SET value = ? WHERE key = ?", (str(new_value), k),
                    )
                conn.execute("COMMIT")
                return new_value
            except Exception:
                conn.execute("ROLLBACK")
                raise
            finally:
                conn.close()

        try:
            return await self._run(_sync, key, amount)
        except ValueError as e:
            raise StoreUnavailableError(f"{key} is not an integer") from e

    async def expire(self, key: str, seconds: int) -> bool:
        def _sync(k: str, ttl: int) -> bool:
            conn = self._get_connection()
            try:
                conn.execute("BEGIN IMMEDIATE")
                self._purge(conn, k)
                cur = conn.execute(
                    "UPDATE kv SET expires_at = ? WHERE key = ?", (self._clock() + ttl, k),
                )
                conn.execute("COMMIT")
                return cur.rowcount == 1
            except Exception:
                conn.execute("ROLLBACK")
                raise
            finally:
                conn.close()

        return await self._run(_sync, key, seconds)

    async def delete(self, *keys: str) -> int:
        def _sync(ks: tuple[str, ...]) -> int:
            conn = self._get_connection()
            try:
                conn.execute("BEGIN IMMEDIATE")
                removed = 0
                for k in ks:
                    self._purge(conn, k)
                    cur = conn.execute("DELETE FROM kv WHERE key = ?", (k,))
                    conn.execute("DELETE FROM zmembers WHERE key = ?", (k,))
                    removed += cur.rowcount
                conn.execute("COMMIT")
                return removed
            except Exception:
                conn.execute("ROLLBACK")
                raise
            finally:
                conn.close()

        if not keys:
            return 0
        return await self._run(_sync, keys)

    async def exists(self, key: str) -> bool:
        def _sync(k: str) -> bool:
            conn = self._get_connection()
            try:
                row = conn.execute(
                    "SELECT expires_at FROM kv WHERE key = ?", (k,),
                ).fetchone()
                if not row:
                    return False
                return row["expires_at"] is None or row["expires_at"] > self._clock()
            finally:
                conn.close()

        return await self._run(_sync, key)

    async def keys(self, prefix: str = "") -> list[str]:
        def _sync(p: str) -> list[str]:
            conn = self._get_connection()
            try:
                escaped = p.replace("\\", "\\\\").replace("%", "\\%").replace("_", "\\_")
                rows = conn.execute(
                    "SELECT key FROM kv WHERE key LIKE ? ESCAPE '\\' "
                    "AND (expires_at IS NULL OR expires_at > ?)",
                    (escaped + "%", self._clock()),
                ).fetchall()
                return [r["key"] for r in rows]
            finally:
                conn.close()

        return await self._run(_sync, prefix)

    # ══════════════════════════════════════════════════════════
    #  Sorted sets
    # ══════════════════════════════════════════════════════════

    def _ensure_zset(self, conn: sqlite3.Connection, key: str) -> None:
        kind = self._kind(conn, key)
        if kind is None:
            conn.execute("INSERT INTO kv (key, kind) VALUES (?, 'zset')", (key,))
        elif kind != "zset":
            raise sqlite3.IntegrityError(f"{key} does not hold a sorted set")

    async def zadd(self, key: str, member: str, score: float) -> None:
        def _sync(k: str, m: str, s: float) -> None:
            conn = self._get_connection()
            try:
                conn.execute("BEGIN IMMEDIATE")
                self._purge(conn, k)
                self._ensure_zset(conn, k)
                conn.execute(
                    "INSERT INTO zmembers (key, member, score) VALUES (?, ?, ?) "
                    "ON CONFLICT(key, member) DO UPDATE SET score = excluded.score",
                    (k, m, s),
                )
                conn.execute("COMMIT")
            except Exception:
                conn.execute("ROLLBACK")
                raise
            finally:
                conn.close()

        await self._run(_sync, key, member, float(score))

    async def zincrby(self, key: str, member: str, amount: float) -> float:
        def _sync(k: str, m: str, n: float) -> float:
            conn = self._get_connection()
            try:
                conn.execute("BEGIN IMMEDIATE")
                self._purge(conn, k)
                self._ensure_zset(conn, k)
                conn.execute(
                    "INSERT INTO zmembers (key, member, score) VALUES (?, ?, ?) "
                    "ON CONFLICT(key, member) DO UPDATE SET score = score + excluded.score",
                    (k, m, n),
                )
                row = conn.execute(
                    "SELECT score FROM zmembers WHERE key = ? AND member = ?", (k, m),
                ).fetchone()
                conn.execute("COMMIT")
                return float(row["score"])
            except Exception:
                conn.execute("ROLLBACK")
                raise
            finally:
                conn.close()

        return await self._run(_sync, key, member, float(amount))

    async def zscore(self, key: str, member: str) -> float | None:
        def _sync(k: str, m: str) -> float | None:
            conn = self._get_connection()
            try:
                row = conn.execute(
                    "SELECT z.score FROM zmembers z JOIN kv ON kv.key = z.key "
                    "WHERE z.key = ? AND z.member = ? "
                    "AND (kv.expires_at IS NULL OR kv.expires_at > ?)",
                    (k, m, self._clock()),
                ).fetchone()
                return float(row["score"]) if row else None
            finally:
                conn.close()

        return await self._run(_sync, key, member)

    async def zrevrange(self, key: str, count: int) -> list[tuple[str, float]]:
        def _sync(k: str, n: int) -> list[tuple[str, float]]:
            conn = self._get_connection()
            try:
                rows = conn.execute(
                    "SELECT z.member, z.score FROM zmembers z JOIN kv ON kv.key = z.key "
                    "WHERE z.key = ? AND (kv.expires_at IS NULL OR kv.expires_at > ?) "
                    "ORDER BY z.score DESC, z.member ASC LIMIT ?",
                    (k, self._clock(), n),
                ).fetchall()
                return [(r["member"], float(r["score"])) for r in rows]
            finally:
                conn.close()

        return await self._run(_sync, key, count)

    async def zrem(self, key: str, member: str) -> int:
        def _sync(k: str, m: str) -> int:
            conn = self._get_connection()
            try:
                cur = conn.execute(
                    "DELETE FROM zmembers WHERE key = ? AND member = ?", (k, m),
                )
                return cur.rowcount
            finally:
                conn.close()

        return await self._run(_sync, key, member)

    # ══════════════════════════════════════════════════════════
    #  Maintenance
    # ══════════════════════════════════════════════════════════

    async def purge_expired(self) -> int:
        """Delete every key whose TTL has passed. Returns rows removed."""
        def _sync() -> int:
            conn = self._get_connection()
            try:
                conn.execute("BEGIN IMMEDIATE")
                now = self._clock()
                conn.execute(
                    "DELETE FROM zmembers WHERE key IN "
                    "(SELECT key FROM kv WHERE expires_at IS NOT NULL AND expires_at <= ?)",
                    (now,),
                )
                cur = conn.execute(
                    "DELETE FROM kv WHERE expires_at IS NOT NULL AND expires_at <= ?", (now,),
                )
                conn.execute("COMMIT")
                return cur.rowcount
            except Exception:
                conn.execute("ROLLBACK")
                raise
            finally:
                conn.close()

        removed = await self._run(_sync)
        if removed:
            self._logger.debug("Purged %d expired keys", removed)
        return removed
