"""Reason codes attached to answers for conditions absorbed inside a stage."""

from __future__ import annotations

from enum import Enum


class ReasonCode(str, Enum):
    PROVIDER_DEGRADED = "PROVIDER_DEGRADED"
    RETRIEVAL_EMPTY = "RETRIEVAL_EMPTY"
    KEYWORD_FALLBACK = "KEYWORD_FALLBACK"
    KEYWORD_SEARCH_FAILED = "KEYWORD_SEARCH_FAILED"
    REWRITE_FAILED = "REWRITE_FAILED"
    HYDE_FAILED = "HYDE_FAILED"
    EMBEDDING_FAILED = "EMBEDDING_FAILED"
    MALFORMED_CITATIONS = "MALFORMED_CITATIONS"
    COMPRESSION_FAILED = "COMPRESSION_FAILED"
    FACT_CHECK_FAILED = "FACT_CHECK_FAILED"
    REFINED = "REFINED"
    LOW_CONFIDENCE = "LOW_CONFIDENCE"

    def __str__(self) -> str:
        return self.value
