"""Protocol for stage-output cache stores."""

from __future__ import annotations

from collections.abc import Awaitable, Callable
from typing import Any, Protocol


class CacheStore(Protocol):
    async def get(self, fingerprint: str) -> tuple[Any, bool]:
        """Returns (value, found)."""
        ...

    async def set(self, fingerprint: str, value: Any, ttl_seconds: float) -> None: ...

    async def single_flight(
        self,
        fingerprint: str,
        compute_fn: Callable[[], Awaitable[Any]],
        ttl_seconds: float,
    ) -> Any: ...

    async def invalidate(self, fingerprint: str) -> None: ...

    async def clear(self) -> None: ...
