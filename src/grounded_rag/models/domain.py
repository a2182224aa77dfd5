"""Core domain objects used throughout the pipeline."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum


class ProviderKind(str, Enum):
    OPENAI = "openai"
    GEMINI = "gemini"
    GROQ = "groq"
    OLLAMA = "ollama"
    AZURE_OPENAI = "azure_openai"


class ProviderHealth(str, Enum):
    HEALTHY = "healthy"
    DEGRADED = "degraded"
    UNAVAILABLE = "unavailable"


class PipelineState(str, Enum):
    ANALYZING = "analyzing"
    RETRIEVING = "retrieving"
    RERANKING = "reranking"
    SYNTHESIZING = "synthesizing"
    DONE = "done"
    FAILED = "failed"
    CANCELLED = "cancelled"


@dataclass
class ChatMessage:
    role: str  # "system", "user", "assistant"
    content: str


@dataclass(frozen=True)
class Query:
    text: str
    document_ids: tuple[str, ...] = ()
    categories: tuple[str, ...] = ()
    tags: tuple[str, ...] = ()
    history: tuple[ChatMessage, ...] = ()

    def filters(self) -> SearchFilters:
        return SearchFilters(
            document_ids=self.document_ids,
            categories=self.categories,
            tags=self.tags,
        )


@dataclass(frozen=True)
class SearchFilters:
    document_ids: tuple[str, ...] = ()
    categories: tuple[str, ...] = ()
    tags: tuple[str, ...] = ()


@dataclass
class RetrievalSeed:
    label: str  # "query", "hyde"
    text: str
    embedding: list[float]
    provider: str = ""


@dataclass
class AnalyzedQuery:
    query: Query
    normalized_text: str
    expansion_terms: list[str] = field(default_factory=list)
    rewritten_text: str | None = None
    hypothetical_document: str | None = None
    seeds: list[RetrievalSeed] = field(default_factory=list)
    embedding_error: str | None = None
    reason_codes: list[str] = field(default_factory=list)
    # Set when a step failed or was served by a fallback embedding provider.
    degraded: bool = False

    @property
    def search_text(self) -> str:
        return self.rewritten_text or self.normalized_text

    @property
    def keyword_text(self) -> str:
        return " ".join([self.search_text, *self.expansion_terms])


@dataclass
class Candidate:
    doc_id: str
    chunk_index: int
    text: str
    vector_score: float | None = None
    keyword_score: float | None = None
    fused_score: float = 0.0
    timestamp: datetime | None = None
    embedding: list[float] | None = None
    metadata: dict = field(default_factory=dict)

    @property
    def candidate_id(self) -> str:
        return f"{self.doc_id}:{self.chunk_index}"


@dataclass
class RetrievalResult:
    candidates: list[Candidate]
    reason_codes: list[str] = field(default_factory=list)

    def __len__(self) -> int:
        return len(self.candidates)


@dataclass
class RankedCandidate:
    candidate: Candidate
    rank: int
    relevance: float
    diversity_penalty: float
    mmr_score: float
    recency: float = 0.0


@dataclass
class RankedResult:
    items: list[RankedCandidate]
    lambda_: float
    temporal_weighting: bool = False

    def __len__(self) -> int:
        return len(self.items)

    @property
    def candidates(self) -> list[Candidate]:
        return [item.candidate for item in self.items]


@dataclass
class ContextSlot:
    candidate: Candidate
    text: str
    allotted_tokens: int
    truncated: bool = False
    compressed: bool = False


@dataclass
class SynthesisContext:
    slots: list[ContextSlot]
    budget: int

    @property
    def used_tokens(self) -> int:
        return sum(s.allotted_tokens for s in self.slots)


@dataclass
class Citation:
    marker: int
    candidate_id: str
    doc_id: str
    chunk_index: int
    start: int
    end: int


@dataclass
class TokenUsage:
    prompt_tokens: int = 0
    completion_tokens: int = 0

    @property
    def total_tokens(self) -> int:
        return self.prompt_tokens + self.completion_tokens

    def __add__(self, other: TokenUsage) -> TokenUsage:
        return TokenUsage(
            prompt_tokens=self.prompt_tokens + other.prompt_tokens,
            completion_tokens=self.completion_tokens + other.completion_tokens,
        )


@dataclass
class EmbeddingResult:
    vector: list[float]
    provider: str


@dataclass
class CompletionResult:
    text: str
    usage: TokenUsage
    provider: str = ""


@dataclass
class ProviderDescriptor:
    name: str
    kind: ProviderKind
    chat_model: str | None
    embedding_model: str | None
    priority: int
    health: ProviderHealth = ProviderHealth.HEALTHY
    api_key: str = field(default="", repr=False)
    base_url: str | None = None
    api_version: str | None = None

    def supports(self, operation: str) -> bool:
        if operation == "embed":
            return bool(self.embedding_model)
        return bool(self.chat_model)


@dataclass
class ProviderEvent:
    provider: str
    operation: str  # "embed", "complete"
    outcome: str  # "success", "degraded", "failed"
    error: str | None = None


@dataclass
class StageTelemetry:
    stage: str
    duration_ms: float = 0.0
    cache_hit: bool = False
    token_usage: TokenUsage = field(default_factory=TokenUsage)
    providers: list[str] = field(default_factory=list)
    provider_events: list[ProviderEvent] = field(default_factory=list)


@dataclass
class CacheEntry:
    fingerprint: str
    payload: object
    created_at: float
    ttl_seconds: float

    @property
    def expires_at(self) -> float:
        return self.created_at + self.ttl_seconds

    def is_expired(self, now: float) -> bool:
        return now >= self.expires_at


@dataclass
class Answer:
    text: str
    citations: list[Citation] = field(default_factory=list)
    confidence: float = 0.0
    token_usage: TokenUsage = field(default_factory=TokenUsage)
    stage_timings_ms: dict[str, float] = field(default_factory=dict)
    sources: list[RankedCandidate] = field(default_factory=list)
    declined: bool = False
    partial: bool = False
    error: str | None = None
    failed_stage: str | None = None
    unsupported_claims: list[str] = field(default_factory=list)
    refinement_iterations: int = 0
    reason_codes: list[str] = field(default_factory=list)
    state: PipelineState = PipelineState.DONE
    trace_id: str = ""
    telemetry: list[StageTelemetry] = field(default_factory=list)
    created_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
