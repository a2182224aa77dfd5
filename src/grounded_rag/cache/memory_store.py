"""In-process TTL cache store with single-flight computation."""

from __future__ import annotations

import time
from collections.abc import Awaitable, Callable
from typing import Any

from grounded_rag.cache.single_flight import SingleFlight
from grounded_rag.models.domain import CacheEntry
from grounded_rag.observability.logger import get_logger

logger = get_logger("memory_cache")


class InMemoryCacheStore:
    """Dictionary-backed cache.

    All reads and writes complete without awaiting, so they are atomic with
    respect to other tasks on the event loop.
    """

    def __init__(self, clock: Callable[[], float] = time.monotonic) -> None:
        self._entries: dict[str, CacheEntry] = {}
        self._clock = clock
        self._flight = SingleFlight()
        self.computations = 0

    async def get(self, fingerprint: str) -> tuple[Any, bool]:
        entry = self._entries.get(fingerprint)
        if entry is None:
            return None, False
        if entry.is_expired(self._clock()):
            del self._entries[fingerprint]
            logger.debug("cache_entry_expired", fingerprint=fingerprint)
            return None, False
        return entry.payload, True

    async def set(self, fingerprint: str, value: Any, ttl_seconds: float) -> None:
        self._entries[fingerprint] = CacheEntry(
            fingerprint=fingerprint,
            payload=value,
            created_at=self._clock(),
            ttl_seconds=ttl_seconds,
        )

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
        self._entries.pop(fingerprint, None)

    async def clear(self) -> None:
        self._entries.clear()

    @property
    def size(self) -> int:
        return len(self._entries)
