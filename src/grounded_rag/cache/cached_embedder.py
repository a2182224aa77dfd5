"""Caching wrapper around the gateway's embed call."""

from __future__ import annotations

import hashlib
from collections.abc import Sequence

from grounded_rag.models.domain import EmbeddingResult
from grounded_rag.observability.logger import get_logger
from grounded_rag.protocols.cache import CacheStore
from grounded_rag.providers.gateway import ProviderGateway, gather_bounded

logger = get_logger("cached_embedder")


class CachedEmbedder:
    """Wraps ProviderGateway.embed, checks the cache store first, embeds misses.

    Concurrent requests for the same text share one provider call through the
    store's single-flight. Entries are keyed by the top-priority embedding
    provider and model. A vector served by a fallback provider is returned but
    not kept, so the preferred model is asked again once it recovers.
    """

    def __init__(
        self,
        gateway: ProviderGateway,
        cache: CacheStore,
        ttl_seconds: float,
        max_concurrency: int = 4,
    ) -> None:
        self._gateway = gateway
        self._cache = cache
        self._ttl = ttl_seconds
        self._max_concurrency = max_concurrency

    async def embed(self, text: str, deadline: float | None = None) -> EmbeddingResult:
        preferred = self._gateway.preferred("embed")
        if preferred is None:
            return await self._gateway.embed(text, deadline=deadline)

        key = self._key(preferred.name, preferred.embedding_model, text)
        cached, found = await self._cache.get(key)
        if found:
            logger.debug("embed_cache_hit", text_len=len(text))
            return cached

        async def compute() -> EmbeddingResult:
            return await self._gateway.embed(text, deadline=deadline)

        logger.debug("embed_cache_miss", text_len=len(text))
        result = await self._cache.single_flight(key, compute, self._ttl)
        if result.provider != preferred.name:
            logger.info("embed_fallback_not_cached", provider=result.provider, preferred=preferred.name)
            await self._cache.invalidate(key)
        return result

    async def embed_many(
        self,
        texts: Sequence[str],
        deadline: float | None = None,
        return_exceptions: bool = False,
    ) -> list[EmbeddingResult | BaseException]:
        factories = [lambda t=t: self.embed(t, deadline) for t in texts]
        return await gather_bounded(factories, self._max_concurrency, return_exceptions)

    @staticmethod
    def _key(provider: str, model: str | None, text: str) -> str:
        digest = hashlib.sha256(text.encode("utf-8")).hexdigest()
        return f"embedding:{provider}:{model}:{digest}"
