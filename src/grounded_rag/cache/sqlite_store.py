"""SQLite-backed stage cache so computed outputs survive restarts."""

from __future__ import annotations

import pickle
import time
from collections.abc import Awaitable, Callable
from typing import Any

import aiosqlite

from grounded_rag.cache.single_flight import SingleFlight
from grounded_rag.observability.logger import get_logger

logger = get_logger("sqlite_cache")

CREATE_CACHE_TABLE = """
CREATE TABLE IF NOT EXISTS stage_cache (
    fingerprint TEXT PRIMARY KEY,
    payload BLOB NOT NULL,
    created_at REAL NOT NULL,
    ttl_seconds REAL NOT NULL
)
"""


class SQLiteCacheStore:
    def __init__(self, db_path: str, clock: Callable[[], float] = time.time) -> None:
        self._db_path = db_path
        self._clock = clock
        self._flight = SingleFlight()
        self.computations = 0

    async def initialize(self) -> None:
        async with aiosqlite.connect(self._db_path) as db:
            await db.execute(CREATE_CACHE_TABLE)
            await db.commit()

    async def get(self, fingerprint: str) -> tuple[Any, bool]:
        async with aiosqlite.connect(self._db_path) as db:
            async with db.execute(
                "SELECT payload, created_at, ttl_seconds FROM stage_cache WHERE fingerprint = ?",
                (fingerprint,),
            ) as cursor:
                row = await cursor.fetchone()
            if row is None:
                return None, False
            payload, created_at, ttl_seconds = row
            if self._clock() >= created_at + ttl_seconds:
                await db.execute("DELETE FROM stage_cache WHERE fingerprint = ?", (fingerprint,))
                await db.commit()
                return None, False
        return pickle.loads(payload), True

    async def set(self, fingerprint: str, value: Any, ttl_seconds: float) -> None:
        async with aiosqlite.connect(self._db_path) as db:
            await db.execute(
                "INSERT OR REPLACE INTO stage_cache (fingerprint, payload, created_at, ttl_seconds) "
                "VALUES (?, ?, ?, ?)",
                (fingerprint, pickle.dumps(value), self._clock(), ttl_seconds),
            )
            await db.commit()

    async def single_flight(
        self,
        fingerprint: str,
        compute_fn: Callable[[], Awaitable[Any]],
        ttl_seconds: float,
    ) -> Any:
        value, found = await self.get(fingerprint)
        if found:
            return value

        async def compute() -> Any:
            cached, hit = await self.get(fingerprint)
            if hit:
                return cached
            self.computations += 1
            result = await compute_fn()
            await self.set(fingerprint, result, ttl_seconds)
            return result

        return await self._flight.do(fingerprint, compute)

    async def invalidate(self, fingerprint: str) -> None:
        async with aiosqlite.connect(self._db_path) as db:
            await db.execute("DELETE FROM stage_cache WHERE fingerprint = ?", (fingerprint,))
            await db.commit()

    async def clear(self) -> None:
        async with aiosqlite.connect(self._db_path) as db:
            await db.execute("DELETE FROM stage_cache")
            await db.commit()

    async def purge_expired(self) -> int:
        async with aiosqlite.connect(self._db_path) as db:
            cursor = await db.execute(
                "DELETE FROM stage_cache WHERE created_at + ttl_seconds <= ?",
                (self._clock(),),
            )
            await db.commit()
            removed = cursor.rowcount
        logger.info("cache_purged", removed=removed)
        return removed
