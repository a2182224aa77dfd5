"""Central configuration via Pydantic Settings. All values driven by env vars."""

from __future__ import annotations

from typing import ClassVar, Literal

from pydantic import Field
from pydantic_settings import BaseSettings

from grounded_rag.exceptions import ConfigurationError
from grounded_rag.models.domain import ProviderDescriptor, ProviderHealth, ProviderKind


class Settings(BaseSettings):
    # Providers (comma-separated, priority order)
    providers: str = "openai,gemini"
    provider_timeout_seconds: float = 20.0
    provider_cooldown_seconds: float = 60.0
    embedding_max_concurrency: int = Field(default=4, ge=1)
    embedding_dimensions: int = 1536

    # OpenAI
    openai_api_key: str = ""
    openai_base_url: str = ""
    openai_chat_model: str = "gpt-4o-mini"
    openai_embedding_model: str = "text-embedding-3-small"

    # Gemini
    google_api_key: str = ""
    gemini_model: str = "gemini-2.0-flash"
    gemini_embedding_model: str = "text-embedding-004"

    # Groq (OpenAI-compatible, chat only)
    groq_api_key: str = ""
    groq_base_url: str = "https://api.groq.com/openai/v1"
    groq_model: str = "llama-3.1-8b-instant"

    # Ollama (OpenAI-compatible, local)
    ollama_base_url: str = "http://localhost:11434/v1"
    ollama_chat_model: str = "llama3.1"
    ollama_embedding_model: str = "nomic-embed-text"

    # Azure OpenAI (deployment names stand in for model names)
    azure_openai_api_key: str = ""
    azure_openai_endpoint: str = ""
    azure_openai_api_version: str = "2024-06-01"
    azure_openai_chat_deployment: str = "gpt-4o-mini"
    azure_openai_embedding_deployment: str = "text-embedding-3-small"

    # Query analysis
    enable_query_analysis: bool = True
    max_expansion_terms: int = Field(default=10, ge=0)
    include_synonyms: bool = True
    enable_hyde: bool = True
    enable_query_rewriting: bool = True
    history_turns: int = Field(default=4, ge=0)
    analysis_max_tokens: int = 300

    # Retrieval
    default_top_k: int = Field(default=10, ge=1)
    candidate_multiplier: int = Field(default=2, ge=1)
    min_similarity: float = Field(default=0.5, ge=0.0, le=1.0)
    enable_hybrid_search: bool = False
    fallback_to_keyword: bool = True
    use_chunk_retrieval: bool = True
    hybrid_vector_weight: float = Field(default=0.7, ge=0.0, le=1.0)
    vector_search_timeout_seconds: float = 10.0
    keyword_search_timeout_seconds: float = 10.0

    # Reranking
    enable_reranking: bool = True
    mmr_lambda: float = Field(default=0.7, ge=0.0, le=1.0)
    consider_diversity: bool = True
    enable_temporal_weighting: bool = False
    recency_weight: float = Field(default=0.1, ge=0.0, le=1.0)
    recency_half_life_days: float = Field(default=30.0, gt=0.0)

    # Synthesis
    max_context_length: int = Field(default=4000, ge=1)
    include_citations: bool = True
    confidence_threshold: float = Field(default=0.7, ge=0.0, le=1.0)
    enable_contextual_compression: bool = False
    compression_min_tokens: int = Field(default=64, ge=1)
    max_refinement_iterations: int = Field(default=0, ge=0)
    enable_fact_checking: bool = False
    answer_max_tokens: int = 1024
    synthesis_temperature: float = 0.1
    token_estimator: Literal["heuristic", "tiktoken"] = "heuristic"
    tiktoken_encoding: str = "cl100k_base"

    # Caching
    cache_backend: Literal["memory", "sqlite"] = "memory"
    cache_db_path: str = "data/pipeline_cache.db"
    cache_expiration_hours: float = Field(default=1.0, gt=0.0)
    enable_query_analysis_cache: bool = True
    enable_retrieval_cache: bool = True
    enable_rerank_cache: bool = True
    enable_answer_cache: bool = True

    # Orchestration
    request_timeout_seconds: float | None = 60.0
    return_partial_on_cancel: bool = True

    # Document store
    corpus_path: str = ""

    # Server
    host: str = "0.0.0.0"
    port: int = 8000

    model_config = {"env_file": ".env", "env_prefix": "RAG_"}

    # Options that shape each stage's output, hashed into its cache fingerprint.
    ANALYSIS_OPTIONS: ClassVar[tuple[str, ...]] = (
        "enable_query_analysis",
        "max_expansion_terms",
        "include_synonyms",
        "enable_hyde",
        "enable_query_rewriting",
        "history_turns",
        "embedding_dimensions",
        "cache_expiration_hours",
    )
    RETRIEVAL_OPTIONS: ClassVar[tuple[str, ...]] = (
        "default_top_k",
        "candidate_multiplier",
        "min_similarity",
        "enable_hybrid_search",
        "fallback_to_keyword",
        "use_chunk_retrieval",
        "hybrid_vector_weight",
    )
    RERANK_OPTIONS: ClassVar[tuple[str, ...]] = (
        "enable_reranking",
        "mmr_lambda",
        "consider_diversity",
        "enable_temporal_weighting",
        "recency_weight",
        "recency_half_life_days",
    )
    SYNTHESIS_OPTIONS: ClassVar[tuple[str, ...]] = (
        "max_context_length",
        "include_citations",
        "confidence_threshold",
        "enable_contextual_compression",
        "compression_min_tokens",
        "max_refinement_iterations",
        "enable_fact_checking",
        "answer_max_tokens",
        "token_estimator",
    )

    @property
    def cache_ttl_seconds(self) -> float:
        return self.cache_expiration_hours * 3600

    def stage_options(self, names: tuple[str, ...]) -> dict:
        return {name: getattr(self, name) for name in names}

    def provider_descriptors(self) -> list[ProviderDescriptor]:
        """Build provider descriptors in the configured priority order."""
        names = [p.strip().lower() for p in self.providers.split(",") if p.strip()]
        if not names:
            raise ConfigurationError("At least one provider must be configured")

        descriptors: list[ProviderDescriptor] = []
        for priority, name in enumerate(names):
            try:
                kind = ProviderKind(name)
            except ValueError as e:
                raise ConfigurationError(f"Unknown provider kind: {name}") from e
            descriptor = self._descriptor_for(kind, priority)
            if kind is not ProviderKind.OLLAMA and not descriptor.api_key:
                descriptor.health = ProviderHealth.UNAVAILABLE
            if kind is ProviderKind.AZURE_OPENAI and not descriptor.base_url:
                descriptor.health = ProviderHealth.UNAVAILABLE
            descriptors.append(descriptor)
        return descriptors

    def _descriptor_for(self, kind: ProviderKind, priority: int) -> ProviderDescriptor:
        if kind is ProviderKind.OPENAI:
            return ProviderDescriptor(
                name="openai",
                kind=kind,
                chat_model=self.openai_chat_model,
                embedding_model=self.openai_embedding_model,
                priority=priority,
                api_key=self.openai_api_key,
                base_url=self.openai_base_url or None,
            )
        if kind is ProviderKind.GEMINI:
            return ProviderDescriptor(
                name="gemini",
                kind=kind,
                chat_model=self.gemini_model,
                embedding_model=self.gemini_embedding_model,
                priority=priority,
                api_key=self.google_api_key,
            )
        if kind is ProviderKind.AZURE_OPENAI:
            return ProviderDescriptor(
                name="azure_openai",
                kind=kind,
                chat_model=self.azure_openai_chat_deployment,
                embedding_model=self.azure_openai_embedding_deployment,
                priority=priority,
                api_key=self.azure_openai_api_key,
                base_url=self.azure_openai_endpoint or None,
                api_version=self.azure_openai_api_version,
            )
        if kind is ProviderKind.GROQ:
            return ProviderDescriptor(
                name="groq",
                kind=kind,
                chat_model=self.groq_model,
                embedding_model=None,
                priority=priority,
                api_key=self.groq_api_key,
                base_url=self.groq_base_url,
            )
        return ProviderDescriptor(
            name="ollama",
            kind=kind,
            chat_model=self.ollama_chat_model,
            embedding_model=self.ollama_embedding_model,
            priority=priority,
            api_key="ollama",
            base_url=self.ollama_base_url,
        )
