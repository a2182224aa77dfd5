"""Extractive contextual compression: keep the sentences that overlap the query most."""

from __future__ import annotations

import re

from grounded_rag.query.tokenizer import tokenize
from grounded_rag.synthesis.tokens import HeuristicTokenCounter, TokenCounter

_SENTENCE_SPLIT = re.compile(r"(?<=[.!?])\s+")


class ExtractiveCompressor:
    def __init__(self, counter: TokenCounter | None = None) -> None:
        self._counter = counter or HeuristicTokenCounter()

    async def compress(self, text: str, target_length: int, query: str = "") -> str:
        if self._counter.count(text) <= target_length:
            return text
        sentences = [s for s in _SENTENCE_SPLIT.split(text.strip()) if s]
        if len(sentences) <= 1:
            return self._counter.truncate(text, target_length)

        query_terms = set(tokenize(query))
        scored = sorted(
            range(len(sentences)),
            key=lambda i: (-len(query_terms & set(tokenize(sentences[i]))), i),
        )
        keep: set[int] = set()
        used = 0
        for i in scored:
            cost = self._counter.count(sentences[i])
            if used + cost > target_length:
                continue
            keep.add(i)
            used += cost
        if not keep:
            return self._counter.truncate(sentences[scored[0]], target_length)
        return " ".join(sentences[i] for i in sorted(keep))
