"""Answer confidence: CONF = cited_sentences / total_sentences * top fused score."""

from __future__ import annotations

from grounded_rag.synthesis.citations import CitationsParsed


def citation_coverage(parsed: CitationsParsed, citations_enabled: bool = True) -> float:
    if not citations_enabled:
        return 1.0
    if parsed.total_sentences == 0:
        return 0.0
    return parsed.cited_sentences / parsed.total_sentences


def score_confidence(
    parsed: CitationsParsed, top_fused_score: float, citations_enabled: bool = True
) -> float:
    conf = citation_coverage(parsed, citations_enabled) * top_fused_score
    return max(0.0, min(1.0, conf))
