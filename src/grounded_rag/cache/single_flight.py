"""Collapse concurrent computations for the same key into one execution."""

from __future__ import annotations

import asyncio
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from typing import Any

from grounded_rag.observability.logger import get_logger

logger = get_logger("single_flight")


@dataclass
class _Call:
    task: asyncio.Task
    waiters: int = 0


class SingleFlight:
    """Per-key de-duplication of in-flight coroutines.

    The first caller for a key starts the computation as a task; later callers
    for the same key await that task. The task is cancelled only once every
    waiter has been cancelled, so one request giving up does not abort the
    work others are waiting on.
    """

    def __init__(self) -> None:
        self._calls: dict[str, _Call] = {}

    @property
    def in_flight(self) -> int:
        return len(self._calls)

    async def do(self, key: str, fn: Callable[[], Awaitable[Any]]) -> Any:
        call = self._calls.get(key)
        if call is None:
            call = _Call(task=asyncio.ensure_future(fn()))
            self._calls[key] = call
            call.task.add_done_callback(lambda _t, k=key, c=call: self._forget(k, c))
        else:
            logger.debug("single_flight_shared", key=key, waiters=call.waiters)

        call.waiters += 1
        try:
            return await asyncio.shield(call.task)
        finally:
            call.waiters -= 1
            if call.waiters == 0 and not call.task.done():
                call.task.cancel()

    def _forget(self, key: str, call: _Call) -> None:
        if self._calls.get(key) is call:
            del self._calls[key]
        if not call.task.cancelled() and call.task.exception() is not None:
            logger.debug("single_flight_failed", key=key)
