"""Metrics registry injected into the orchestrator and gateway, plus log helpers."""

from __future__ import annotations

import threading
from collections import defaultdict

from grounded_rag.observability.logger import get_logger

logger = get_logger("metrics")


def _key(name: str, labels: dict) -> tuple:
    return (name, tuple(sorted(labels.items())))


class MetricsRegistry:
    """In-process counters and summaries.

    One instance is created per application and passed to the components that
    record into it. The lock only guards the dictionaries; callers never hold
    it across I/O.
    """

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._counters: dict[tuple, float] = defaultdict(float)
        self._summaries: dict[tuple, list[float]] = defaultdict(lambda: [0, 0.0, 0.0])

    def increment(self, name: str, value: float = 1, **labels) -> None:
        with self._lock:
            self._counters[_key(name, labels)] += value

    def observe(self, name: str, value: float, **labels) -> None:
        with self._lock:
            summary = self._summaries[_key(name, labels)]
            summary[0] += 1
            summary[1] += value
            summary[2] = max(summary[2], value)

    def counter(self, name: str, **labels) -> float:
        with self._lock:
            return self._counters.get(_key(name, labels), 0)

    def snapshot(self) -> dict:
        with self._lock:
            counters = [
                {"name": name, "labels": dict(labels), "value": value}
                for (name, labels), value in self._counters.items()
            ]
            summaries = [
                {
                    "name": name,
                    "labels": dict(labels),
                    "count": int(s[0]),
                    "sum": round(s[1], 4),
                    "max": round(s[2], 4),
                }
                for (name, labels), s in self._summaries.items()
            ]
        return {"counters": counters, "summaries": summaries}


def log_retrieval_metrics(
    trace_id: str,
    top_scores: list[float],
    num_candidates: int,
    unique_docs: int,
) -> None:
    logger.info(
        "retrieval_metrics",
        trace_id=trace_id,
        top_scores=[round(s, 4) for s in top_scores[:5]],
        num_candidates=num_candidates,
        unique_docs=unique_docs,
    )


def log_synthesis_metrics(
    trace_id: str,
    confidence: float,
    citations: int,
    refinements: int,
    declined: bool,
) -> None:
    logger.info(
        "synthesis_metrics",
        trace_id=trace_id,
        confidence=round(confidence, 4),
        citations=citations,
        refinements=refinements,
        declined=declined,
    )


def log_latency(trace_id: str, stage: str, duration_ms: float, cache_hit: bool) -> None:
    logger.info(
        "latency",
        trace_id=trace_id,
        stage=stage,
        duration_ms=round(duration_ms, 2),
        cache_hit=cache_hit,
    )
