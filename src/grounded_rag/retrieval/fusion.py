"""Linear score fusion for merging vector and keyword retrieval results."""

from __future__ import annotations

import dataclasses

from grounded_rag.models.domain import Candidate


def clamp(score: float) -> float:
    return min(1.0, max(0.0, score))


def fuse_scores(vector: float | None, keyword: float | None, alpha: float) -> float:
    """Weighted sum ``alpha * vector + (1 - alpha) * keyword``.

    When only one score is present it is used as is. Inputs are clamped to
    [0, 1], so the result is in [0, 1] and non-decreasing in each score.
    """
    if vector is None and keyword is None:
        return 0.0
    if keyword is None:
        return clamp(vector)
    if vector is None:
        return clamp(keyword)
    return clamp(alpha * clamp(vector) + (1 - alpha) * clamp(keyword))


def merge_results(
    vector_lists: list[list[Candidate]],
    keyword_results: list[Candidate],
    alpha: float,
) -> list[Candidate]:
    """Merge per-seed vector lists and keyword results into fused candidates.

    A candidate found by several seeds keeps its best vector score. Store
    objects are copied, never modified.
    """
    merged: dict[str, Candidate] = {}
    for results in vector_lists:
        for c in results:
            existing = merged.get(c.candidate_id)
            if existing is None:
                merged[c.candidate_id] = dataclasses.replace(c, keyword_score=None)
            elif (c.vector_score or 0.0) > (existing.vector_score or 0.0):
                existing.vector_score = c.vector_score
                if existing.embedding is None:
                    existing.embedding = c.embedding

    for c in keyword_results:
        existing = merged.get(c.candidate_id)
        if existing is None:
            merged[c.candidate_id] = dataclasses.replace(c, vector_score=None)
        else:
            existing.keyword_score = max(existing.keyword_score or 0.0, c.keyword_score or 0.0)

    for c in merged.values():
        if c.vector_score is not None:
            c.vector_score = clamp(c.vector_score)
        if c.keyword_score is not None:
            c.keyword_score = clamp(c.keyword_score)
        c.fused_score = fuse_scores(c.vector_score, c.keyword_score, alpha)
    return list(merged.values())
