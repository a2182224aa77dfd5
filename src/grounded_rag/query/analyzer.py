"""Query analysis: normalization, expansion, rewriting, HyDE and seed embeddings."""

from __future__ import annotations

import asyncio
import re
import unicodedata
from collections.abc import Sequence
from typing import Protocol

from grounded_rag.config.constants import MAX_HYDE_TOKENS, REWRITE_MAX_LENGTH_RATIO, SYNONYMS
from grounded_rag.config.settings import Settings
from grounded_rag.generation.prompt_templates import (
    HYDE_PROMPT,
    HYDE_SYSTEM,
    QUERY_REWRITE_PROMPT,
    QUERY_REWRITE_SYSTEM,
    format_history_block,
)
from grounded_rag.models.domain import (
    AnalyzedQuery,
    ChatMessage,
    EmbeddingResult,
    Query,
    RetrievalSeed,
)
from grounded_rag.observability.logger import get_logger
from grounded_rag.providers.gateway import ProviderGateway
from grounded_rag.query.tokenizer import tokenize, variants
from grounded_rag.scoring.reason_codes import ReasonCode

logger = get_logger("query_analyzer")


class SeedEmbedder(Protocol):
    async def embed_many(
        self,
        texts: Sequence[str],
        deadline: float | None = None,
        return_exceptions: bool = False,
    ) -> list[EmbeddingResult | BaseException]: ...


def _absorb(analyzed: AnalyzedQuery, code: ReasonCode) -> None:
    analyzed.reason_codes.append(code.value)
    analyzed.degraded = True


def normalize(text: str) -> str:
    text = unicodedata.normalize("NFKC", text)
    return re.sub(r"\s+", " ", text).strip()


def expand_terms(text: str, max_terms: int, include_synonyms: bool = True) -> list[str]:
    """Variant and synonym terms for the keywords of ``text``.

    Terms already present in the text are skipped. Order follows the order of
    the keywords in the text, variants before synonyms.
    """
    if max_terms <= 0:
        return []
    tokens = tokenize(text)
    lowered = text.lower()
    present = set(tokens)
    terms: list[str] = []

    def add(term: str) -> None:
        if term in present or term in terms:
            return
        if re.search(rf"\b{re.escape(term)}\b", lowered):
            return
        terms.append(term)

    for token in dict.fromkeys(tokens):
        forms = variants(token)
        for form in forms:
            add(form)
        if include_synonyms:
            for form in (token, *forms):
                for synonym in SYNONYMS.get(form, ()):
                    add(synonym)
        if len(terms) >= max_terms:
            break
    return terms[:max_terms]


class QueryAnalyzer:
    def __init__(
        self,
        gateway: ProviderGateway,
        settings: Settings,
        embedder: SeedEmbedder | None = None,
    ) -> None:
        self._gateway = gateway
        self._settings = settings
        self._embedder = embedder or gateway

    async def analyze(self, query: Query, deadline: float | None = None) -> AnalyzedQuery:
        s = self._settings
        normalized = normalize(query.text)
        analyzed = AnalyzedQuery(query=query, normalized_text=normalized)
        if not s.enable_query_analysis:
            # Pass-through: the query itself is the only retrieval seed.
            await self._embed_seeds(analyzed, deadline)
            return analyzed

        analyzed.expansion_terms = expand_terms(normalized, s.max_expansion_terms, s.include_synonyms)
        rewritten, hypothetical = await asyncio.gather(
            self._rewrite(query, normalized, analyzed, deadline),
            self._hyde(normalized, analyzed, deadline),
        )
        analyzed.rewritten_text = rewritten
        analyzed.hypothetical_document = hypothetical

        await self._embed_seeds(analyzed, deadline)

        logger.info(
            "query_analyzed",
            expansion_terms=len(analyzed.expansion_terms),
            rewritten=analyzed.rewritten_text is not None,
            hyde=analyzed.hypothetical_document is not None,
            seeds=[seed.label for seed in analyzed.seeds],
            embedding_error=analyzed.embedding_error,
        )
        return analyzed

    async def _rewrite(
        self, query: Query, normalized: str, analyzed: AnalyzedQuery, deadline: float | None
    ) -> str | None:
        s = self._settings
        if not s.enable_query_rewriting or not normalized:
            return None
        prompt = QUERY_REWRITE_PROMPT.format(
            history_block=format_history_block(query.history, s.history_turns),
            query=normalized,
        )
        try:
            result = await self._gateway.complete(
                [
                    ChatMessage(role="system", content=QUERY_REWRITE_SYSTEM),
                    ChatMessage(role="user", content=prompt),
                ],
                max_tokens=s.analysis_max_tokens,
                temperature=0.0,
                deadline=deadline,
            )
        except Exception as e:
            logger.warning("query_rewrite_failed", error=str(e))
            _absorb(analyzed, ReasonCode.REWRITE_FAILED)
            return None

        rewritten = self._clean_rewrite(result.text)
        limit = max(len(normalized) * REWRITE_MAX_LENGTH_RATIO, 200)
        if not rewritten or len(rewritten) > limit:
            logger.warning("query_rewrite_malformed", length=len(rewritten))
            _absorb(analyzed, ReasonCode.REWRITE_FAILED)
            return None
        if rewritten == normalized:
            return None
        return rewritten

    async def _hyde(
        self, normalized: str, analyzed: AnalyzedQuery, deadline: float | None
    ) -> str | None:
        if not self._settings.enable_hyde or not normalized:
            return None
        try:
            result = await self._gateway.complete(
                [
                    ChatMessage(role="system", content=HYDE_SYSTEM),
                    ChatMessage(role="user", content=HYDE_PROMPT.format(query=normalized)),
                ],
                max_tokens=MAX_HYDE_TOKENS,
                temperature=0.3,
                deadline=deadline,
            )
        except Exception as e:
            logger.warning("hyde_generation_failed", error=str(e))
            _absorb(analyzed, ReasonCode.HYDE_FAILED)
            return None
        passage = result.text.strip()
        if not passage:
            logger.warning("hyde_generation_empty")
            _absorb(analyzed, ReasonCode.HYDE_FAILED)
            return None
        return passage

    async def _embed_seeds(self, analyzed: AnalyzedQuery, deadline: float | None) -> None:
        texts = [("query", analyzed.search_text)]
        if analyzed.hypothetical_document:
            texts.append(("hyde", analyzed.hypothetical_document))

        preferred = self._gateway.preferred("embed")
        results = await self._embedder.embed_many(
            [text for _, text in texts], deadline=deadline, return_exceptions=True
        )
        for (label, text), result in zip(texts, results):
            if isinstance(result, BaseException):
                if not isinstance(result, Exception):
                    raise result
                if label == "query":
                    logger.warning("query_embedding_failed", error=str(result))
                    analyzed.embedding_error = str(result)
                    _absorb(analyzed, ReasonCode.EMBEDDING_FAILED)
                else:
                    logger.warning("hyde_embedding_failed", error=str(result))
                    _absorb(analyzed, ReasonCode.HYDE_FAILED)
                continue
            if preferred is not None and result.provider != preferred.name:
                logger.info("seed_embedded_by_fallback", seed=label, provider=result.provider)
                analyzed.degraded = True
            analyzed.seeds.append(
                RetrievalSeed(label=label, text=text, embedding=result.vector, provider=result.provider)
            )

    @staticmethod
    def _clean_rewrite(text: str) -> str:
        lines = [line.strip() for line in text.strip().splitlines() if line.strip()]
        if not lines:
            return ""
        first = re.sub(r"^(rewritten query|query)\s*:\s*", "", lines[0], flags=re.I)
        return normalize(first.strip("\"'` "))
