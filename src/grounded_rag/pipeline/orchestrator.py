"""Pipeline orchestrator: analyze, retrieve, rerank, synthesize, with per-stage caching."""

from __future__ import annotations

import asyncio
import dataclasses
import time
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from typing import Any

import structlog

from grounded_rag.cache.cached_embedder import CachedEmbedder
from grounded_rag.cache.fingerprint import fingerprint
from grounded_rag.config.constants import (
    CANCELLED_ANSWER,
    RETRIEVAL_FAILED_ANSWER,
    SYNTHESIS_FAILED_ANSWER,
)
from grounded_rag.config.settings import Settings
from grounded_rag.exceptions import (
    PipelineCancelled,
    PipelineTimeout,
    ProviderExhausted,
    RetrievalError,
)
from grounded_rag.models.domain import (
    AnalyzedQuery,
    Answer,
    PipelineState,
    Query,
    RankedCandidate,
    RankedResult,
    RetrievalResult,
)
from grounded_rag.observability.logger import get_logger
from grounded_rag.observability.metrics import (
    MetricsRegistry,
    log_latency,
    log_retrieval_metrics,
    log_synthesis_metrics,
)
from grounded_rag.observability.tracing import TraceContext
from grounded_rag.pipeline.cancellation import CancellationToken
from grounded_rag.protocols.cache import CacheStore
from grounded_rag.protocols.collaborators import Compressor, FactChecker
from grounded_rag.protocols.document_store import DocumentStore
from grounded_rag.providers.gateway import ProviderGateway
from grounded_rag.query.analyzer import QueryAnalyzer
from grounded_rag.rerank.mmr import MMRReranker
from grounded_rag.retrieval.hybrid_retriever import HybridRetriever
from grounded_rag.synthesis.compression import ExtractiveCompressor
from grounded_rag.synthesis.synthesizer import Synthesizer
from grounded_rag.synthesis.tokens import create_token_counter
from grounded_rag.verification.fact_checker import LLMFactChecker

logger = get_logger("orchestrator")


@dataclass
class _Progress:
    state: PipelineState = PipelineState.ANALYZING
    analyzed: AnalyzedQuery | None = None
    retrieved: RetrievalResult | None = None
    ranked: RankedResult | None = None


def _as_sources(progress: _Progress) -> list[RankedCandidate]:
    if progress.ranked is not None:
        return list(progress.ranked.items)
    if progress.retrieved is not None:
        return [
            RankedCandidate(
                candidate=c,
                rank=i,
                relevance=c.fused_score,
                diversity_penalty=0.0,
                mmr_score=c.fused_score,
            )
            for i, c in enumerate(progress.retrieved.candidates, 1)
        ]
    return []


def _seed_identity(analyzed: AnalyzedQuery) -> list:
    """What retrieval actually searched with, beyond the query and options.

    Keeps results from a failed rewrite, a missing seed or a fallback embedding
    model apart from normal ones.
    """
    return [
        analyzed.search_text,
        analyzed.expansion_terms,
        [(seed.label, seed.provider) for seed in analyzed.seeds],
    ]


class PipelineOrchestrator:
    """Runs one query through the stage state machine.

    ``ANALYZING -> RETRIEVING -> RERANKING -> SYNTHESIZING -> DONE | FAILED``,
    or ``CANCELLED`` when the caller's token fires or the deadline passes.
    Every stage output is cached under a fingerprint chained from the
    upstream stage, so each fingerprint covers all options that shaped it.
    """

    def __init__(
        self,
        analyzer: QueryAnalyzer,
        retriever: HybridRetriever,
        reranker: MMRReranker,
        synthesizer: Synthesizer,
        cache: CacheStore,
        settings: Settings,
        metrics: MetricsRegistry | None = None,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._analyzer = analyzer
        self._retriever = retriever
        self._reranker = reranker
        self._synthesizer = synthesizer
        self._cache = cache
        self._settings = settings
        self._metrics = metrics or MetricsRegistry()
        self._clock = clock

    @classmethod
    def from_components(
        cls,
        settings: Settings,
        gateway: ProviderGateway,
        store: DocumentStore,
        cache: CacheStore,
        metrics: MetricsRegistry | None = None,
        compressor: Compressor | None = None,
        fact_checker: FactChecker | None = None,
    ) -> PipelineOrchestrator:
        counter = create_token_counter(settings)
        embedder = CachedEmbedder(
            gateway, cache, settings.cache_ttl_seconds, settings.embedding_max_concurrency
        )
        return cls(
            analyzer=QueryAnalyzer(gateway, settings, embedder=embedder),
            retriever=HybridRetriever(store, settings),
            reranker=MMRReranker(settings),
            synthesizer=Synthesizer(
                gateway,
                settings,
                counter=counter,
                compressor=compressor or ExtractiveCompressor(counter),
                fact_checker=fact_checker or LLMFactChecker(gateway),
            ),
            cache=cache,
            settings=settings,
            metrics=metrics,
        )

    async def run(
        self,
        query: Query,
        top_k: int | None = None,
        cancel_token: CancellationToken | None = None,
        timeout_seconds: float | None = None,
    ) -> Answer:
        timeout = timeout_seconds if timeout_seconds is not None else self._settings.request_timeout_seconds
        deadline = self._clock() + timeout if timeout else None
        trace = TraceContext()
        progress = _Progress()

        with trace.activate(), structlog.contextvars.bound_contextvars(trace_id=trace.trace_id):
            task = asyncio.ensure_future(self._execute(query, top_k, deadline, trace, progress))
            waiters: set[asyncio.Future] = {task}
            cancel_wait = None
            if cancel_token is not None:
                cancel_wait = asyncio.ensure_future(cancel_token.wait())
                waiters.add(cancel_wait)
            try:
                done, _ = await asyncio.wait(
                    waiters, timeout=timeout or None, return_when=asyncio.FIRST_COMPLETED
                )
            except asyncio.CancelledError:
                task.cancel()
                raise
            finally:
                if cancel_wait is not None:
                    cancel_wait.cancel()

            if task in done:
                return task.result()

            task.cancel()
            await asyncio.gather(task, return_exceptions=True)
            timed_out = cancel_token is None or not cancel_token.cancelled
            return self._interrupted(progress, trace, timed_out, cancel_token)

    async def _execute(
        self,
        query: Query,
        top_k: int | None,
        deadline: float | None,
        trace: TraceContext,
        progress: _Progress,
    ) -> Answer:
        s = self._settings
        top_k = top_k or s.default_top_k
        try:
            progress.state = PipelineState.ANALYZING
            fp = fingerprint("analysis", query, s.stage_options(s.ANALYSIS_OPTIONS))
            analyzed = await self._stage(
                trace, "analysis", fp, s.enable_query_analysis_cache,
                lambda: self._analyzer.analyze(query, deadline),
            )
            if analyzed.degraded:
                # Failed or fallback-served steps may succeed on retry; keep them out of the cache.
                await self._cache.invalidate(fp)
            progress.analyzed = analyzed

            progress.state = PipelineState.RETRIEVING
            fp = fingerprint(
                "retrieval", fp, _seed_identity(analyzed), top_k, s.stage_options(s.RETRIEVAL_OPTIONS)
            )
            retrieved = await self._stage(
                trace, "retrieval", fp, s.enable_retrieval_cache,
                lambda: self._retriever.retrieve(analyzed, top_k),
            )
            progress.retrieved = retrieved
            log_retrieval_metrics(
                trace.trace_id,
                [c.fused_score for c in retrieved.candidates],
                len(retrieved),
                len({c.doc_id for c in retrieved.candidates}),
            )

            progress.state = PipelineState.RERANKING
            fp = fingerprint("rerank", fp, top_k, s.stage_options(s.RERANK_OPTIONS))
            ranked = await self._stage(
                trace, "rerank", fp, s.enable_rerank_cache,
                lambda: self._rerank(retrieved, top_k),
            )
            progress.ranked = ranked

            progress.state = PipelineState.SYNTHESIZING
            fp = fingerprint("answer", fp, s.stage_options(s.SYNTHESIS_OPTIONS))
            answer = await self._stage(
                trace, "synthesis", fp, s.enable_answer_cache,
                lambda: self._synthesizer.synthesize(analyzed.search_text, ranked, deadline),
            )
        except (ProviderExhausted, RetrievalError) as e:
            if deadline is not None and self._clock() >= deadline:
                # Providers gave up because the request ran out of time.
                return self._interrupted(progress, trace, True, None)
            return self._failed(e, progress, trace)

        progress.state = PipelineState.DONE
        reasons = [
            *analyzed.reason_codes,
            *retrieved.reason_codes,
            *answer.reason_codes,
            *trace.reason_codes,
        ]
        # Cached answers are shared between requests; never mutate them.
        answer = dataclasses.replace(
            answer,
            state=PipelineState.DONE,
            reason_codes=list(dict.fromkeys(reasons)),
            **self._telemetry_fields(trace),
        )
        self._metrics.increment("pipeline_runs", outcome="done")
        log_synthesis_metrics(
            trace.trace_id,
            answer.confidence,
            len(answer.citations),
            answer.refinement_iterations,
            answer.declined,
        )
        return answer

    async def _rerank(self, retrieved: RetrievalResult, top_k: int) -> RankedResult:
        return self._reranker.rerank(retrieved.candidates, top_k)

    async def _stage(
        self,
        trace: TraceContext,
        name: str,
        fp: str,
        cache_enabled: bool,
        compute: Callable[[], Awaitable[Any]],
    ) -> Any:
        try:
            with trace.stage(name) as telemetry:
                if not cache_enabled:
                    return await compute()
                value, found = await self._cache.get(fp)
                if found:
                    telemetry.cache_hit = True
                    self._metrics.increment("cache_hits", stage=name)
                    return value
                self._metrics.increment("cache_misses", stage=name)
                return await self._cache.single_flight(fp, compute, self._settings.cache_ttl_seconds)
        finally:
            self._metrics.observe("stage_duration_ms", telemetry.duration_ms, stage=name)
            log_latency(trace.trace_id, name, telemetry.duration_ms, telemetry.cache_hit)

    def _telemetry_fields(self, trace: TraceContext) -> dict:
        return {
            "token_usage": trace.token_usage,
            "stage_timings_ms": trace.timings(),
            "telemetry": list(trace.stages),
            "trace_id": trace.trace_id,
        }

    def _failed(self, error: Exception, progress: _Progress, trace: TraceContext) -> Answer:
        stage = progress.state.value
        logger.error(
            "pipeline_failed",
            stage=stage,
            error=str(error),
            error_type=type(error).__name__,
            elapsed_ms=round(trace.elapsed_ms, 2),
        )
        self._metrics.increment("pipeline_failures", stage=stage, error=type(error).__name__)
        self._metrics.increment("pipeline_runs", outcome="failed")
        early = progress.state in (PipelineState.ANALYZING, PipelineState.RETRIEVING)
        reasons = list(trace.reason_codes)
        if progress.analyzed is not None:
            reasons = [*progress.analyzed.reason_codes, *reasons]
        return Answer(
            text=RETRIEVAL_FAILED_ANSWER if early else SYNTHESIS_FAILED_ANSWER,
            sources=_as_sources(progress),
            error=str(error),
            failed_stage=stage,
            state=PipelineState.FAILED,
            reason_codes=list(dict.fromkeys(reasons)),
            **self._telemetry_fields(trace),
        )

    def _interrupted(
        self,
        progress: _Progress,
        trace: TraceContext,
        timed_out: bool,
        cancel_token: CancellationToken | None,
    ) -> Answer:
        stage = progress.state.value
        reason = "deadline exceeded" if timed_out else (cancel_token.reason or "cancelled")
        logger.warning(
            "pipeline_interrupted",
            stage=stage,
            reason=reason,
            timed_out=timed_out,
            elapsed_ms=round(trace.elapsed_ms, 2),
        )
        self._metrics.increment("pipeline_runs", outcome="timeout" if timed_out else "cancelled")

        if not self._settings.return_partial_on_cancel:
            message = f"Pipeline interrupted during {stage}: {reason}"
            if timed_out:
                raise PipelineTimeout(message, stage=stage)
            raise PipelineCancelled(message, stage=stage)

        return Answer(
            text=CANCELLED_ANSWER,
            sources=_as_sources(progress),
            partial=True,
            error=reason,
            failed_stage=stage,
            state=PipelineState.CANCELLED,
            reason_codes=list(trace.reason_codes),
            **self._telemetry_fields(trace),
        )
