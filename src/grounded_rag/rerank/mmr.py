"""Maximal Marginal Relevance reranking with optional recency weighting."""

from __future__ import annotations

from collections.abc import Callable
from datetime import datetime, timezone

import numpy as np

from grounded_rag.config.settings import Settings
from grounded_rag.models.domain import Candidate, RankedCandidate, RankedResult
from grounded_rag.observability.logger import get_logger
from grounded_rag.query.tokenizer import jaccard

logger = get_logger("mmr_reranker")


def cosine(a: list[float], b: list[float]) -> float:
    """Cosine similarity clamped to [0, 1]."""
    va = np.asarray(a, dtype=np.float32)
    vb = np.asarray(b, dtype=np.float32)
    denom = float(np.linalg.norm(va) * np.linalg.norm(vb))
    if denom == 0 or va.shape != vb.shape:
        return 0.0
    return min(1.0, max(0.0, float(va @ vb) / denom))


def similarity(a: Candidate, b: Candidate) -> float:
    if a.embedding is not None and b.embedding is not None:
        return cosine(a.embedding, b.embedding)
    return jaccard(a.text, b.text)


def recency_score(timestamp: datetime | None, now: datetime, half_life_days: float) -> float:
    """Exponential decay: 1.0 for brand-new content, 0.5 after one half-life."""
    if timestamp is None:
        return 0.0
    if timestamp.tzinfo is None:
        timestamp = timestamp.replace(tzinfo=timezone.utc)
    age_days = max(0.0, (now - timestamp).total_seconds() / 86400)
    return 0.5 ** (age_days / half_life_days)


class MMRReranker:
    def __init__(
        self,
        settings: Settings,
        clock: Callable[[], datetime] = lambda: datetime.now(timezone.utc),
    ) -> None:
        self._settings = settings
        self._clock = clock

    def rerank(self, candidates: list[Candidate], top_k: int | None = None) -> RankedResult:
        """Select up to ``top_k`` candidates, trading relevance against redundancy.

        ``mmr(d) = lambda * relevance(d) - (1 - lambda) * max_sim(d, selected)``.
        Ties go to the candidate with the better fused-score rank, then the
        smaller candidate id.
        """
        s = self._settings
        top_k = top_k or s.default_top_k
        if not s.enable_reranking:
            return self._passthrough(candidates, top_k)
        lambda_ = s.mmr_lambda if s.consider_diversity else 1.0
        temporal = s.enable_temporal_weighting

        ordered = sorted(candidates, key=lambda c: (-c.fused_score, c.candidate_id))
        now = self._clock()
        recency = [
            recency_score(c.timestamp, now, s.recency_half_life_days) if temporal else 0.0
            for c in ordered
        ]
        relevance = [
            (c.fused_score + s.recency_weight * r) / (1 + s.recency_weight) if temporal else c.fused_score
            for c, r in zip(ordered, recency)
        ]

        remaining = list(range(len(ordered)))
        max_sim = [0.0] * len(ordered)
        items: list[RankedCandidate] = []

        while remaining and len(items) < top_k:
            best = max(
                remaining,
                key=lambda i: (round(lambda_ * relevance[i] - (1 - lambda_) * max_sim[i], 12), -i),
            )
            remaining.remove(best)
            chosen = ordered[best]
            items.append(
                RankedCandidate(
                    candidate=chosen,
                    rank=len(items) + 1,
                    relevance=relevance[best],
                    diversity_penalty=max_sim[best],
                    mmr_score=lambda_ * relevance[best] - (1 - lambda_) * max_sim[best],
                    recency=recency[best],
                )
            )
            if lambda_ < 1.0:
                for i in remaining:
                    max_sim[i] = max(max_sim[i], similarity(ordered[i], chosen))

        logger.info(
            "mmr_reranked",
            candidates=len(candidates),
            selected=len(items),
            lambda_=lambda_,
            temporal_weighting=temporal,
        )
        return RankedResult(items=items, lambda_=lambda_, temporal_weighting=temporal)

    def _passthrough(self, candidates: list[Candidate], top_k: int) -> RankedResult:
        """Top ``top_k`` by fused score, without diversity or recency."""
        ordered = sorted(candidates, key=lambda c: (-c.fused_score, c.candidate_id))[:top_k]
        items = [
            RankedCandidate(
                candidate=c,
                rank=i,
                relevance=c.fused_score,
                diversity_penalty=0.0,
                mmr_score=c.fused_score,
            )
            for i, c in enumerate(ordered, 1)
        ]
        logger.info("rerank_skipped", candidates=len(candidates), selected=len(items))
        return RankedResult(items=items, lambda_=1.0)
