"""Hybrid retriever combining per-seed vector search and keyword search with linear fusion."""

from __future__ import annotations

import asyncio

from grounded_rag.config.settings import Settings
from grounded_rag.exceptions import DimensionMismatch, ProviderExhausted, StoreUnavailable
from grounded_rag.models.domain import (
    AnalyzedQuery,
    Candidate,
    RetrievalResult,
    RetrievalSeed,
    SearchFilters,
)
from grounded_rag.observability.logger import get_logger
from grounded_rag.protocols.document_store import DocumentStore
from grounded_rag.retrieval.fusion import merge_results
from grounded_rag.scoring.reason_codes import ReasonCode

logger = get_logger("hybrid_retriever")


class HybridRetriever:
    def __init__(self, store: DocumentStore, settings: Settings) -> None:
        self._store = store
        self._settings = settings

    async def retrieve(self, analyzed: AnalyzedQuery, top_k: int | None = None) -> RetrievalResult:
        s = self._settings
        top_k = top_k or s.default_top_k
        budget = top_k * s.candidate_multiplier
        filters = analyzed.query.filters()
        reasons: list[str] = []

        self._check_dimensions(analyzed.seeds)

        keyword_task: asyncio.Task | None = None
        if s.enable_hybrid_search:
            keyword_task = asyncio.ensure_future(
                self._keyword_search(analyzed.keyword_text, budget, filters)
            )

        try:
            vector_lists = await self._vector_search_all(analyzed.seeds, budget, filters)
            keyword_results: list[Candidate] = []

            if vector_lists is None:
                if not s.fallback_to_keyword:
                    if analyzed.embedding_error and not analyzed.seeds:
                        raise ProviderExhausted("embed", {"query": analyzed.embedding_error})
                    raise StoreUnavailable("Vector search failed and keyword fallback is disabled")
                if keyword_task is None:
                    keyword_task = asyncio.ensure_future(
                        self._keyword_search(analyzed.keyword_text, budget, filters)
                    )
                try:
                    keyword_results = await keyword_task
                except Exception as e:
                    raise StoreUnavailable(f"Vector and keyword search both failed: {e}") from e
                logger.warning("keyword_fallback", keyword_count=len(keyword_results))
                reasons.append(ReasonCode.KEYWORD_FALLBACK.value)
                vector_lists = []
            elif keyword_task is not None:
                try:
                    keyword_results = await keyword_task
                except Exception as e:
                    logger.warning("keyword_search_failed", error=str(e))
                    reasons.append(ReasonCode.KEYWORD_SEARCH_FAILED.value)
        finally:
            if keyword_task is not None:
                if not keyword_task.done():
                    keyword_task.cancel()
                elif not keyword_task.cancelled():
                    # Consume a failure nobody awaited so asyncio does not report it.
                    keyword_task.exception()

        candidates = merge_results(vector_lists, keyword_results, s.hybrid_vector_weight)
        candidates = self._select(candidates, budget)

        logger.info(
            "retrieval_results",
            vector_count=sum(len(v) for v in vector_lists),
            keyword_count=len(keyword_results),
            kept=len(candidates),
            budget=budget,
        )
        if not candidates:
            reasons.append(ReasonCode.RETRIEVAL_EMPTY.value)
        return RetrievalResult(candidates=candidates, reason_codes=reasons)

    def _check_dimensions(self, seeds: list[RetrievalSeed]) -> None:
        expected = self._store.dimensions
        if expected is None:
            return
        for seed in seeds:
            if len(seed.embedding) != expected:
                logger.error(
                    "embedding_dimension_mismatch",
                    seed=seed.label,
                    expected=expected,
                    actual=len(seed.embedding),
                )
                raise DimensionMismatch(expected, len(seed.embedding))

    async def _vector_search_all(
        self, seeds: list[RetrievalSeed], budget: int, filters: SearchFilters
    ) -> list[list[Candidate]] | None:
        """Per-seed results, or None when no seed could be searched."""
        if not seeds:
            return None
        timeout = self._settings.vector_search_timeout_seconds
        results = await asyncio.gather(
            *(
                asyncio.wait_for(
                    self._store.vector_search(seed.embedding, budget, filters), timeout=timeout
                )
                for seed in seeds
            ),
            return_exceptions=True,
        )
        lists: list[list[Candidate]] = []
        for seed, result in zip(seeds, results):
            if isinstance(result, DimensionMismatch):
                raise result
            if isinstance(result, BaseException):
                if not isinstance(result, Exception):
                    raise result
                logger.warning("vector_search_failed", seed=seed.label, error=repr(result))
                continue
            lists.append(result)
        return lists or None

    async def _keyword_search(self, text: str, budget: int, filters: SearchFilters) -> list[Candidate]:
        return await asyncio.wait_for(
            self._store.keyword_search(text, budget, filters),
            timeout=self._settings.keyword_search_timeout_seconds,
        )

    def _select(self, candidates: list[Candidate], budget: int) -> list[Candidate]:
        s = self._settings
        kept = [c for c in candidates if c.fused_score >= s.min_similarity]
        kept.sort(key=lambda c: (-c.fused_score, c.candidate_id))
        if not s.use_chunk_retrieval:
            best: dict[str, Candidate] = {}
            for c in kept:
                best.setdefault(c.doc_id, c)
            kept = list(best.values())
        return kept[:budget]
