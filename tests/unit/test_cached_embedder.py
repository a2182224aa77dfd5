"""Tests for CachedEmbedder wrapper."""

import asyncio

import pytest

from grounded_rag.cache.cached_embedder import CachedEmbedder
from grounded_rag.cache.memory_store import InMemoryCacheStore
from grounded_rag.exceptions import ProviderExhausted
from grounded_rag.providers.gateway import ProviderGateway


@pytest.fixture
def embedder_pair(fake_backend):
    backend = fake_backend(name="primary", delay=0.01)
    gateway = ProviderGateway([backend])
    embedder = CachedEmbedder(gateway, InMemoryCacheStore(), ttl_seconds=60)
    return embedder, backend


async def test_embed_caches(embedder_pair):
    embedder, backend = embedder_pair
    first = await embedder.embed("refund policy")
    second = await embedder.embed("refund policy")
    assert first.vector == second.vector
    assert first.provider == "primary"
    assert backend.embed_calls == 1


async def test_different_texts_embedded_separately(embedder_pair):
    embedder, backend = embedder_pair
    await embedder.embed("hello")
    await embedder.embed("world")
    assert backend.embed_calls == 2


async def test_concurrent_identical_texts_share_one_call(embedder_pair):
    embedder, backend = embedder_pair
    results = await asyncio.gather(*(embedder.embed("refund policy") for _ in range(5)))
    assert len({tuple(r.vector) for r in results}) == 1
    assert backend.embed_calls == 1


async def test_embed_many_preserves_order_and_exceptions(fake_backend):
    backend = fake_backend(mode="transient")
    embedder = CachedEmbedder(ProviderGateway([backend]), InMemoryCacheStore(), ttl_seconds=60)
    results = await embedder.embed_many(["a", "b"], return_exceptions=True)
    assert all(isinstance(r, ProviderExhausted) for r in results)


async def test_failures_are_not_cached(fake_backend):
    backend = fake_backend(mode="fatal")
    embedder = CachedEmbedder(ProviderGateway([backend]), InMemoryCacheStore(), ttl_seconds=60)
    with pytest.raises(ProviderExhausted):
        await embedder.embed("text")
    backend.mode = "ok"
    result = await embedder.embed("text")
    assert result.vector
    assert backend.embed_calls == 2


async def test_fallback_vectors_are_not_cached(fake_backend):
    primary = fake_backend(name="primary", priority=0, mode="transient")
    secondary = fake_backend(name="secondary", priority=1, embed=lambda text: [1.0, 0.0, 0.0])
    gateway = ProviderGateway([primary, secondary], cooldown_seconds=0)
    embedder = CachedEmbedder(gateway, InMemoryCacheStore(), ttl_seconds=60)

    fallback = await embedder.embed("refund policy")
    assert fallback.provider == "secondary"

    primary.mode = "ok"
    recovered = await embedder.embed("refund policy")
    assert recovered.provider == "primary"
    assert len(recovered.vector) == 4
    again = await embedder.embed("refund policy")
    assert again.provider == "primary"
    assert primary.embed_calls == 2


async def test_cache_entries_are_keyed_by_embedding_model(fake_backend):
    cache = InMemoryCacheStore()
    small = fake_backend(name="primary", embedding_model="embed-small")
    await CachedEmbedder(ProviderGateway([small]), cache, ttl_seconds=60).embed("refund")
    large = fake_backend(name="primary", embedding_model="embed-large")
    await CachedEmbedder(ProviderGateway([large]), cache, ttl_seconds=60).embed("refund")
    assert small.embed_calls == 1
    assert large.embed_calls == 1
