"""Integration tests for the SQLite stage cache."""

import asyncio

import pytest

from grounded_rag.cache.sqlite_store import SQLiteCacheStore
from grounded_rag.models.domain import Answer, Citation, TokenUsage


@pytest.fixture
async def cache_path(tmp_path):
    path = str(tmp_path / "cache.db")
    await SQLiteCacheStore(path).initialize()
    return path


async def test_set_and_get(cache_path):
    cache = SQLiteCacheStore(cache_path)
    await cache.set("fp", {"terms": ["refunds"]}, ttl_seconds=60)
    assert await cache.get("fp") == ({"terms": ["refunds"]}, True)
    assert await cache.get("missing") == (None, False)


async def test_domain_objects_round_trip(cache_path):
    cache = SQLiteCacheStore(cache_path)
    answer = Answer(
        text="Refunds take 30 days [1].",
        citations=[Citation(1, "refund-policy:0", "refund-policy", 0, 0, 25)],
        confidence=0.9,
        token_usage=TokenUsage(prompt_tokens=100, completion_tokens=20),
    )
    await cache.set("answer", answer, ttl_seconds=60)
    cached, found = await cache.get("answer")
    assert found
    assert cached.text == answer.text
    assert cached.citations[0].doc_id == "refund-policy"
    assert cached.token_usage.total_tokens == 120


async def test_entries_survive_a_new_store_instance(cache_path):
    await SQLiteCacheStore(cache_path).set("fp", "value", ttl_seconds=60)
    assert await SQLiteCacheStore(cache_path).get("fp") == ("value", True)


async def test_ttl_expiry(cache_path, clock):
    cache = SQLiteCacheStore(cache_path, clock=clock)
    await cache.set("fp", "value", ttl_seconds=10)
    clock.advance(9)
    assert await cache.get("fp") == ("value", True)
    clock.advance(1)
    assert await cache.get("fp") == (None, False)


async def test_purge_expired(cache_path, clock):
    cache = SQLiteCacheStore(cache_path, clock=clock)
    await cache.set("short", 1, ttl_seconds=5)
    await cache.set("long", 2, ttl_seconds=500)
    clock.advance(10)
    assert await cache.purge_expired() == 1
    assert await cache.get("long") == (2, True)


async def test_invalidate_and_clear(cache_path):
    cache = SQLiteCacheStore(cache_path)
    await cache.set("a", 1, ttl_seconds=60)
    await cache.set("b", 2, ttl_seconds=60)
    await cache.invalidate("a")
    assert await cache.get("a") == (None, False)
    await cache.clear()
    assert await cache.get("b") == (None, False)


async def test_single_flight_computes_once(cache_path):
    cache = SQLiteCacheStore(cache_path)
    calls = 0

    async def compute():
        nonlocal calls
        calls += 1
        await asyncio.sleep(0.05)
        return "answer"

    results = await asyncio.gather(
        *(cache.single_flight("fp", compute, ttl_seconds=60) for _ in range(5))
    )
    assert results == ["answer"] * 5
    assert calls == 1
    assert await cache.get("fp") == ("answer", True)

    await cache.single_flight("fp", compute, ttl_seconds=60)
    assert calls == 1
