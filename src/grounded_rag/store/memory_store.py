"""In-memory document store: numpy cosine vector search plus BM25 keyword search."""

from __future__ import annotations

import asyncio
import json
from dataclasses import dataclass, field
from datetime import datetime
from pathlib import Path

import numpy as np
from rank_bm25 import BM25Okapi

from grounded_rag.exceptions import DimensionMismatch
from grounded_rag.models.domain import Candidate, SearchFilters
from grounded_rag.observability.logger import get_logger
from grounded_rag.query.tokenizer import tokenize

logger = get_logger("memory_document_store")


@dataclass
class StoredChunk:
    doc_id: str
    chunk_index: int
    text: str
    embedding: list[float] | None = None
    category: str | None = None
    tags: tuple[str, ...] = ()
    timestamp: datetime | None = None
    metadata: dict = field(default_factory=dict)

    def matches(self, filters: SearchFilters) -> bool:
        if filters.document_ids and self.doc_id not in filters.document_ids:
            return False
        if filters.categories and self.category not in filters.categories:
            return False
        if filters.tags and not set(filters.tags) & set(self.tags):
            return False
        return True


class InMemoryDocumentStore:
    def __init__(self, dimensions: int | None = None) -> None:
        self._dimensions = dimensions
        self._chunks: list[StoredChunk] = []
        self._matrix: np.ndarray | None = None
        self._bm25: BM25Okapi | None = None

    @classmethod
    def from_jsonl(cls, path: str | Path) -> InMemoryDocumentStore:
        """Load a pre-embedded corpus, one chunk per line."""
        chunks = []
        with open(path, encoding="utf-8") as f:
            for line in f:
                if not line.strip():
                    continue
                row = json.loads(line)
                timestamp = row.get("timestamp")
                chunks.append(
                    StoredChunk(
                        doc_id=str(row["doc_id"]),
                        chunk_index=int(row.get("chunk_index", 0)),
                        text=row["text"],
                        embedding=row.get("embedding"),
                        category=row.get("category"),
                        tags=tuple(row.get("tags", ())),
                        timestamp=datetime.fromisoformat(timestamp) if timestamp else None,
                        metadata=row.get("metadata", {}),
                    )
                )
        store = cls()
        store.add(chunks)
        logger.info("corpus_loaded", path=str(path), chunks=store.size)
        return store

    @property
    def dimensions(self) -> int | None:
        return self._dimensions

    @property
    def size(self) -> int:
        return len(self._chunks)

    def add(self, chunks: list[StoredChunk]) -> None:
        """Add chunks and rebuild both indexes."""
        for chunk in chunks:
            if chunk.embedding is None:
                continue
            if self._dimensions is None:
                self._dimensions = len(chunk.embedding)
            elif len(chunk.embedding) != self._dimensions:
                raise DimensionMismatch(self._dimensions, len(chunk.embedding))
        self._chunks.extend(chunks)
        self._rebuild()

    def _rebuild(self) -> None:
        if self._dimensions:
            matrix = np.zeros((len(self._chunks), self._dimensions), dtype=np.float32)
            for i, chunk in enumerate(self._chunks):
                if chunk.embedding is not None:
                    matrix[i] = chunk.embedding
            norms = np.linalg.norm(matrix, axis=1, keepdims=True)
            norms[norms == 0] = 1.0
            self._matrix = matrix / norms
        tokenized = [tokenize(c.text) for c in self._chunks]
        self._bm25 = BM25Okapi(tokenized) if any(tokenized) else None
        logger.info("document_store_indexed", size=len(self._chunks), dimensions=self._dimensions)

    async def vector_search(
        self, embedding: list[float], top_k: int, filters: SearchFilters
    ) -> list[Candidate]:
        if self._dimensions is not None and len(embedding) != self._dimensions:
            raise DimensionMismatch(self._dimensions, len(embedding))
        return await asyncio.to_thread(self._vector_search, embedding, top_k, filters)

    def _vector_search(
        self, embedding: list[float], top_k: int, filters: SearchFilters
    ) -> list[Candidate]:
        if self._matrix is None or not self._chunks:
            return []
        query = np.asarray(embedding, dtype=np.float32)
        norm = np.linalg.norm(query)
        if norm == 0:
            return []
        scores = self._matrix @ (query / norm)
        results = []
        for i in np.argsort(-scores, kind="stable"):
            chunk = self._chunks[i]
            if chunk.embedding is None or not chunk.matches(filters):
                continue
            results.append(self._candidate(chunk, vector_score=min(1.0, max(0.0, float(scores[i])))))
            if len(results) >= top_k:
                break
        return results

    async def keyword_search(
        self, text: str, top_k: int, filters: SearchFilters
    ) -> list[Candidate]:
        return await asyncio.to_thread(self._keyword_search, text, top_k, filters)

    def _keyword_search(self, text: str, top_k: int, filters: SearchFilters) -> list[Candidate]:
        if self._bm25 is None:
            return []
        tokens = tokenize(text)
        if not tokens:
            return []
        scores = self._bm25.get_scores(tokens)
        eligible = [i for i, c in enumerate(self._chunks) if c.matches(filters) and scores[i] > 0]
        if not eligible:
            return []
        best = max(float(scores[i]) for i in eligible)
        eligible.sort(key=lambda i: -scores[i])
        return [
            self._candidate(self._chunks[i], keyword_score=float(scores[i]) / best)
            for i in eligible[:top_k]
        ]

    @staticmethod
    def _candidate(
        chunk: StoredChunk,
        vector_score: float | None = None,
        keyword_score: float | None = None,
    ) -> Candidate:
        return Candidate(
            doc_id=chunk.doc_id,
            chunk_index=chunk.chunk_index,
            text=chunk.text,
            vector_score=vector_score,
            keyword_score=keyword_score,
            timestamp=chunk.timestamp,
            embedding=chunk.embedding,
            metadata={"category": chunk.category, "tags": list(chunk.tags), **chunk.metadata},
        )
