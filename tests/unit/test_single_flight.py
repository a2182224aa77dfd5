"""Tests for single-flight de-duplication and the in-memory cache store."""

import asyncio

import pytest

from grounded_rag.cache.memory_store import InMemoryCacheStore
from grounded_rag.cache.single_flight import SingleFlight


async def test_concurrent_identical_keys_compute_once():
    flight = SingleFlight()
    calls = 0
    gate = asyncio.Event()

    async def compute():
        nonlocal calls
        calls += 1
        await gate.wait()
        return "value"

    tasks = [asyncio.create_task(flight.do("k", compute)) for _ in range(10)]
    await asyncio.sleep(0)
    assert flight.in_flight == 1
    gate.set()
    results = await asyncio.gather(*tasks)
    assert results == ["value"] * 10
    assert calls == 1
    assert flight.in_flight == 0


async def test_failure_reaches_every_waiter_and_is_not_remembered():
    flight = SingleFlight()
    attempts = 0

    async def boom():
        nonlocal attempts
        attempts += 1
        await asyncio.sleep(0.01)
        raise RuntimeError("upstream failed")

    results = await asyncio.gather(
        *(flight.do("k", boom) for _ in range(3)), return_exceptions=True
    )
    assert all(isinstance(r, RuntimeError) for r in results)
    assert attempts == 1

    with pytest.raises(RuntimeError):
        await flight.do("k", boom)
    assert attempts == 2


async def test_cancelling_one_waiter_keeps_computation_alive():
    flight = SingleFlight()
    gate = asyncio.Event()

    async def compute():
        await gate.wait()
        return 42

    first = asyncio.create_task(flight.do("k", compute))
    second = asyncio.create_task(flight.do("k", compute))
    await asyncio.sleep(0)
    first.cancel()
    await asyncio.sleep(0)
    gate.set()
    assert await second == 42
    with pytest.raises(asyncio.CancelledError):
        await first


async def test_cancelling_every_waiter_cancels_computation():
    flight = SingleFlight()
    started = asyncio.Event()
    cancelled = asyncio.Event()

    async def compute():
        started.set()
        try:
            await asyncio.sleep(30)
        except asyncio.CancelledError:
            cancelled.set()
            raise

    waiter = asyncio.create_task(flight.do("k", compute))
    await started.wait()
    waiter.cancel()
    await asyncio.wait_for(cancelled.wait(), timeout=1)
    await asyncio.sleep(0)
    assert flight.in_flight == 0


async def test_memory_store_single_flight_counts_one_computation():
    cache = InMemoryCacheStore()
    calls = 0

    async def compute():
        nonlocal calls
        calls += 1
        await asyncio.sleep(0.01)
        return {"answer": 1}

    results = await asyncio.gather(
        *(cache.single_flight("fp", compute, ttl_seconds=60) for _ in range(8))
    )
    assert all(r == {"answer": 1} for r in results)
    assert calls == 1
    assert cache.computations == 1
    value, found = await cache.get("fp")
    assert found and value == {"answer": 1}

    # Served from cache afterwards
    await cache.single_flight("fp", compute, ttl_seconds=60)
    assert calls == 1


async def test_memory_store_ttl_expiry(clock):
    cache = InMemoryCacheStore(clock=clock)
    await cache.set("fp", "v", ttl_seconds=10)
    assert await cache.get("fp") == ("v", True)
    clock.advance(9)
    assert await cache.get("fp") == ("v", True)
    clock.advance(1)
    assert await cache.get("fp") == (None, False)
    assert cache.size == 0


async def test_memory_store_caches_falsy_values():
    cache = InMemoryCacheStore()
    await cache.set("empty", [], ttl_seconds=60)
    assert await cache.get("empty") == ([], True)


async def test_memory_store_invalidate_and_clear():
    cache = InMemoryCacheStore()
    await cache.set("a", 1, ttl_seconds=60)
    await cache.set("b", 2, ttl_seconds=60)
    await cache.invalidate("a")
    assert await cache.get("a") == (None, False)
    await cache.clear()
    assert cache.size == 0
