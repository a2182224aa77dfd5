"""Protocol for the document store collaborator."""

from __future__ import annotations

from typing import Protocol

from grounded_rag.models.domain import Candidate, SearchFilters


class DocumentStore(Protocol):
    async def vector_search(
        self, embedding: list[float], top_k: int, filters: SearchFilters
    ) -> list[Candidate]:
        """Candidates with ``vector_score`` normalized to [0, 1]."""
        ...

    async def keyword_search(
        self, text: str, top_k: int, filters: SearchFilters
    ) -> list[Candidate]:
        """Candidates with ``keyword_score`` normalized to [0, 1]."""
        ...

    @property
    def dimensions(self) -> int | None: ...
