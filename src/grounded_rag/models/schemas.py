"""Pydantic models for API request/response serialization."""

from __future__ import annotations

from typing import Literal

from pydantic import BaseModel, Field

from grounded_rag.models.domain import Answer, ChatMessage, Query


class HistoryMessage(BaseModel):
    role: Literal["user", "assistant", "system"]
    content: str


class QueryRequest(BaseModel):
    query: str = Field(min_length=1)
    document_ids: list[str] = Field(default_factory=list)
    categories: list[str] = Field(default_factory=list)
    tags: list[str] = Field(default_factory=list)
    history: list[HistoryMessage] = Field(default_factory=list)
    top_k: int | None = Field(default=None, ge=1)
    timeout_seconds: float | None = Field(default=None, gt=0)

    def to_query(self) -> Query:
        return Query(
            text=self.query,
            document_ids=tuple(self.document_ids),
            categories=tuple(self.categories),
            tags=tuple(self.tags),
            history=tuple(ChatMessage(role=m.role, content=m.content) for m in self.history),
        )


class Citation(BaseModel):
    marker: int
    doc_id: str
    chunk_id: str
    start: int
    end: int


class Source(BaseModel):
    rank: int
    doc_id: str
    chunk_id: str
    relevance: float
    text_snippet: str


class TokenUsage(BaseModel):
    prompt_tokens: int
    completion_tokens: int
    total_tokens: int


class QueryResponse(BaseModel):
    answer: str
    citations: list[Citation]
    confidence: float
    declined: bool
    partial: bool
    error: str | None = None
    failed_stage: str | None = None
    reasons: list[str]
    unsupported_claims: list[str]
    sources: list[Source]
    token_usage: TokenUsage
    stage_timings_ms: dict[str, float]
    trace_id: str

    @classmethod
    def from_answer(cls, answer: Answer) -> QueryResponse:
        return cls(
            answer=answer.text,
            citations=[
                Citation(
                    marker=c.marker,
                    doc_id=c.doc_id,
                    chunk_id=c.candidate_id,
                    start=c.start,
                    end=c.end,
                )
                for c in answer.citations
            ],
            confidence=round(answer.confidence, 4),
            declined=answer.declined,
            partial=answer.partial,
            error=answer.error,
            failed_stage=answer.failed_stage,
            reasons=answer.reason_codes,
            unsupported_claims=answer.unsupported_claims,
            sources=[
                Source(
                    rank=s.rank,
                    doc_id=s.candidate.doc_id,
                    chunk_id=s.candidate.candidate_id,
                    relevance=round(s.relevance, 4),
                    text_snippet=s.candidate.text[:200],
                )
                for s in answer.sources
            ],
            token_usage=TokenUsage(
                prompt_tokens=answer.token_usage.prompt_tokens,
                completion_tokens=answer.token_usage.completion_tokens,
                total_tokens=answer.token_usage.total_tokens,
            ),
            stage_timings_ms=answer.stage_timings_ms,
            trace_id=answer.trace_id,
        )


class ProviderStatus(BaseModel):
    name: str
    kind: str
    priority: int
    health: str
    chat_model: str | None
    embedding_model: str | None


class HealthResponse(BaseModel):
    status: str
    chunk_count: int
    providers: list[ProviderStatus]
