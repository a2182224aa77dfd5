"""Parse [n] citation markers in a generated answer into sentence-level citations."""

from __future__ import annotations

import re
from dataclasses import dataclass, field

from grounded_rag.models.domain import Candidate, Citation

MARKER = re.compile(r"\[(\d+(?:\s*,\s*\d+)*)\]")
SENTENCE_END = re.compile(r"[.!?]+(?:\s*\[\d+(?:\s*,\s*\d+)*\])*(?=\s|$)")


@dataclass
class CitationsParsed:
    citations: list[Citation]
    cited_sentences: int
    total_sentences: int


@dataclass
class CitationsMalformed(CitationsParsed):
    """Parse failure. Still carries the valid subset of citations."""

    problem: str = ""
    invalid_markers: list[int] = field(default_factory=list)


def split_sentences(text: str) -> list[tuple[int, int]]:
    """Character spans of sentences, each including its trailing markers."""
    spans: list[tuple[int, int]] = []
    start = 0
    for m in SENTENCE_END.finditer(text):
        spans.append((start, m.end()))
        start = m.end()
    spans.append((start, len(text)))

    trimmed = []
    for s, e in spans:
        segment = text[s:e]
        if not segment.strip():
            continue
        s += len(segment) - len(segment.lstrip())
        e -= len(segment) - len(segment.rstrip())
        trimmed.append((s, e))
    return trimmed


def parse_citations(
    answer: str, sources: list[Candidate], require_markers: bool = True
) -> CitationsParsed:
    """Map each ``[n]`` marker to the n-th source and the sentence carrying it.

    Markers outside 1..len(sources), or no markers at all when they were
    requested, yield ``CitationsMalformed`` with the valid subset.
    """
    sentences = split_sentences(answer)
    citations: list[Citation] = []
    invalid: list[int] = []
    cited_sentences = 0
    seen_markers = 0

    for start, end in sentences:
        cited = False
        seen: set[int] = set()
        for match in MARKER.finditer(answer, start, end):
            for raw in match.group(1).split(","):
                n = int(raw)
                seen_markers += 1
                if not 1 <= n <= len(sources):
                    invalid.append(n)
                    continue
                if n in seen:
                    continue
                seen.add(n)
                source = sources[n - 1]
                citations.append(
                    Citation(
                        marker=n,
                        candidate_id=source.candidate_id,
                        doc_id=source.doc_id,
                        chunk_index=source.chunk_index,
                        start=start,
                        end=end,
                    )
                )
                cited = True
        if cited:
            cited_sentences += 1

    total = len(sentences)
    if invalid:
        return CitationsMalformed(
            citations=citations,
            cited_sentences=cited_sentences,
            total_sentences=total,
            problem=f"citation markers out of range 1..{len(sources)}: {sorted(set(invalid))}",
            invalid_markers=sorted(set(invalid)),
        )
    if require_markers and seen_markers == 0 and total > 0:
        return CitationsMalformed(
            citations=[],
            cited_sentences=0,
            total_sentences=total,
            problem="answer contains no citation markers",
        )
    return CitationsParsed(citations=citations, cited_sentences=cited_sentences, total_sentences=total)
