"""Shared test fixtures."""

from __future__ import annotations

import asyncio
import re
from collections.abc import Callable
from datetime import datetime, timezone

import pytest

from grounded_rag.config.settings import Settings
from grounded_rag.exceptions import ProviderCallError
from grounded_rag.models.domain import (
    Candidate,
    ChatMessage,
    CompletionResult,
    ProviderDescriptor,
    ProviderKind,
    RankedCandidate,
    RankedResult,
    TokenUsage,
)
from grounded_rag.observability.metrics import MetricsRegistry
from grounded_rag.providers.gateway import ProviderGateway
from grounded_rag.store.memory_store import InMemoryDocumentStore, StoredChunk

TOPICS = (
    {"refund", "refunds", "return", "returns", "money"},
    {"shipping", "delivery", "ship", "shipped"},
    {"password", "login", "account", "reset"},
    {"warranty", "repair", "defect", "defective"},
)

DEFAULT_ANSWER = "Refunds are available within 30 days of purchase [1]."


def topic_vector(text: str) -> list[float]:
    """Deterministic 4-dim embedding: one axis per topic word family."""
    tokens = re.findall(r"\w+", text.lower())
    return [sum(t in topic for t in tokens) + 0.05 for topic in TOPICS]


class FakeClock:
    def __init__(self, start: float = 1000.0) -> None:
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


class FakeBackend:
    """Provider backend double that counts calls.

    ``mode`` is one of ``ok``, ``timeout`` (hangs), ``transient`` (503) or
    ``fatal`` (400).
    """

    def __init__(
        self,
        name: str = "primary",
        priority: int = 0,
        mode: str = "ok",
        reply: str | Callable[[list[ChatMessage]], str] = DEFAULT_ANSWER,
        embed: Callable[[str], list[float]] = topic_vector,
        embedding_model: str | None = "fake-embed",
        delay: float = 0.0,
    ) -> None:
        self.descriptor = ProviderDescriptor(
            name=name,
            kind=ProviderKind.OPENAI,
            chat_model="fake-chat",
            embedding_model=embedding_model,
            priority=priority,
            api_key="test",
        )
        self.mode = mode
        self.reply = reply
        self.embed_fn = embed
        self.delay = delay
        self.embed_calls = 0
        self.chat_calls = 0
        self.messages: list[list[ChatMessage]] = []
        self.active = 0
        self.max_active = 0

    async def _maybe_fail(self) -> None:
        self.active += 1
        self.max_active = max(self.max_active, self.active)
        try:
            if self.delay:
                await asyncio.sleep(self.delay)
            if self.mode == "timeout":
                await asyncio.sleep(30)
            if self.mode == "transient":
                raise ProviderCallError(
                    f"{self.descriptor.name} unavailable",
                    provider=self.descriptor.name,
                    transient=True,
                    status_code=503,
                )
            if self.mode == "fatal":
                raise ProviderCallError(
                    f"{self.descriptor.name} rejected the request",
                    provider=self.descriptor.name,
                    status_code=400,
                )
        finally:
            self.active -= 1

    async def generate_embedding(self, text: str) -> list[float]:
        self.embed_calls += 1
        await self._maybe_fail()
        return self.embed_fn(text)

    async def generate_chat_completion(
        self,
        messages: list[ChatMessage],
        max_tokens: int = 1024,
        temperature: float = 0.1,
    ) -> CompletionResult:
        self.chat_calls += 1
        self.messages.append(messages)
        await self._maybe_fail()
        text = self.reply(messages) if callable(self.reply) else self.reply
        return CompletionResult(
            text=text,
            usage=TokenUsage(prompt_tokens=100, completion_tokens=20),
            provider=self.descriptor.name,
        )


class FakeDocumentStore:
    """Document store returning fixed candidate lists, with switchable failures."""

    def __init__(
        self,
        vector: list[Candidate] | None = None,
        keyword: list[Candidate] | None = None,
        dimensions: int | None = 4,
    ) -> None:
        self.vector = vector or []
        self.keyword = keyword or []
        self._dimensions = dimensions
        self.vector_error: Exception | None = None
        self.keyword_error: Exception | None = None
        self.keyword_delay = 0.0
        self.vector_calls = 0
        self.keyword_calls = 0
        self.last_filters = None

    @property
    def dimensions(self) -> int | None:
        return self._dimensions

    async def vector_search(self, embedding, top_k, filters):
        self.vector_calls += 1
        self.last_filters = filters
        if self.vector_error is not None:
            raise self.vector_error
        return [c for c in self.vector][:top_k]

    async def keyword_search(self, text, top_k, filters):
        self.keyword_calls += 1
        self.last_filters = filters
        if self.keyword_delay:
            await asyncio.sleep(self.keyword_delay)
        if self.keyword_error is not None:
            raise self.keyword_error
        return [c for c in self.keyword][:top_k]


def make_candidate(
    doc_id: str,
    chunk_index: int = 0,
    fused: float = 0.0,
    text: str | None = None,
    embedding: list[float] | None = None,
    vector: float | None = None,
    keyword: float | None = None,
    timestamp: datetime | None = None,
) -> Candidate:
    return Candidate(
        doc_id=doc_id,
        chunk_index=chunk_index,
        text=text if text is not None else f"Passage {doc_id} {chunk_index}.",
        vector_score=vector,
        keyword_score=keyword,
        fused_score=fused,
        embedding=embedding,
        timestamp=timestamp,
    )


def make_ranked(candidates: list[Candidate]) -> RankedResult:
    """Wrap candidates in rank order, as the reranker would with lambda = 1."""
    return RankedResult(
        items=[
            RankedCandidate(
                candidate=c,
                rank=i + 1,
                relevance=c.fused_score,
                diversity_penalty=0.0,
                mmr_score=c.fused_score,
            )
            for i, c in enumerate(candidates)
        ],
        lambda_=1.0,
    )


CORPUS = [
    ("refund-policy", 0, "Refunds are issued within 30 days of purchase. Return the item with the receipt to get your money back.", "policy", ("billing",)),
    ("refund-policy", 1, "Refunds for digital goods are only available if the download was never started.", "policy", ("billing",)),
    ("shipping-guide", 0, "Standard shipping takes 3-5 business days. Express delivery arrives the next day.", "logistics", ("orders",)),
    ("account-help", 0, "To reset your password, open the login page and choose forgot password.", "support", ("account",)),
    ("warranty-terms", 0, "The warranty covers manufacturing defects for two years. Repairs are free of charge.", "policy", ("hardware",)),
]


@pytest.fixture
def settings():
    """Settings for tests: fake providers, no LLM query rewriting or HyDE."""
    return Settings(
        _env_file=None,
        providers="openai,gemini",
        openai_api_key="test-key",
        google_api_key="test-key",
        embedding_dimensions=4,
        enable_hyde=False,
        enable_query_rewriting=False,
        provider_timeout_seconds=0.5,
        request_timeout_seconds=5.0,
    )


@pytest.fixture
def metrics():
    return MetricsRegistry()


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def primary():
    return FakeBackend(name="primary", priority=0)


@pytest.fixture
def secondary():
    return FakeBackend(name="secondary", priority=1)


@pytest.fixture
def gateway(primary, secondary, metrics):
    return ProviderGateway([primary, secondary], timeout_seconds=0.5, metrics=metrics)


@pytest.fixture
def document_store():
    timestamp = datetime(2024, 1, 1, tzinfo=timezone.utc)
    chunks = [
        StoredChunk(
            doc_id=doc_id,
            chunk_index=index,
            text=text,
            embedding=topic_vector(text),
            category=category,
            tags=tags,
            timestamp=timestamp,
        )
        for doc_id, index, text, category, tags in CORPUS
    ]
    store = InMemoryDocumentStore(dimensions=4)
    store.add(chunks)
    return store


@pytest.fixture
def fake_backend():
    return FakeBackend


@pytest.fixture
def fake_store():
    return FakeDocumentStore


@pytest.fixture
def candidate():
    return make_candidate


@pytest.fixture
def ranked():
    return make_ranked
