"""Answer synthesis: context under budget, cited generation, confidence and refinement."""

from __future__ import annotations

from dataclasses import dataclass

from grounded_rag.config.constants import DECLINE_ANSWER, REFINEMENT_TEMPERATURE
from grounded_rag.config.settings import Settings
from grounded_rag.generation.prompt_templates import (
    ANSWER_GENERATION_NO_CITATIONS_SYSTEM,
    ANSWER_GENERATION_PROMPT,
    ANSWER_GENERATION_SYSTEM,
    REFINEMENT_PROMPT,
    format_evidence_block,
)
from grounded_rag.models.domain import (
    Answer,
    ChatMessage,
    RankedResult,
    SynthesisContext,
    TokenUsage,
)
from grounded_rag.observability.logger import get_logger
from grounded_rag.protocols.collaborators import Compressor, FactChecker
from grounded_rag.providers.gateway import ProviderGateway
from grounded_rag.scoring.reason_codes import ReasonCode
from grounded_rag.synthesis.citations import CitationsMalformed, CitationsParsed, parse_citations
from grounded_rag.synthesis.confidence import score_confidence
from grounded_rag.synthesis.context_builder import ContextBuilder
from grounded_rag.synthesis.tokens import TokenCounter, create_token_counter

logger = get_logger("synthesizer")


@dataclass
class _Draft:
    text: str
    parsed: CitationsParsed
    confidence: float


def decline_answer(reason: str = ReasonCode.RETRIEVAL_EMPTY.value) -> Answer:
    return Answer(text=DECLINE_ANSWER, confidence=0.0, declined=True, reason_codes=[reason])


class Synthesizer:
    def __init__(
        self,
        gateway: ProviderGateway,
        settings: Settings,
        counter: TokenCounter | None = None,
        compressor: Compressor | None = None,
        fact_checker: FactChecker | None = None,
    ) -> None:
        self._gateway = gateway
        self._settings = settings
        self._counter = counter or create_token_counter(settings)
        self._builder = ContextBuilder(
            self._counter,
            compressor if settings.enable_contextual_compression else None,
            settings.compression_min_tokens,
        )
        self._fact_checker = fact_checker if settings.enable_fact_checking else None

    async def synthesize(
        self, query: str, ranked: RankedResult, deadline: float | None = None
    ) -> Answer:
        s = self._settings
        if not ranked.items:
            logger.info("synthesis_declined", reason="no_candidates")
            return decline_answer()

        context, reasons = await self._builder.build(ranked, s.max_context_length, query)
        if not context.slots:
            logger.info("synthesis_declined", reason="empty_context")
            return decline_answer()

        sources = [slot.candidate for slot in context.slots]
        evidence_block = format_evidence_block([slot.text for slot in context.slots])
        top_score = max(c.fused_score for c in sources)
        system = ANSWER_GENERATION_SYSTEM if s.include_citations else ANSWER_GENERATION_NO_CITATIONS_SYSTEM

        usage = TokenUsage()
        result = await self._gateway.complete(
            [
                ChatMessage(role="system", content=system),
                ChatMessage(
                    role="user",
                    content=ANSWER_GENERATION_PROMPT.format(query=query, evidence_block=evidence_block),
                ),
            ],
            max_tokens=s.answer_max_tokens,
            temperature=s.synthesis_temperature,
            deadline=deadline,
        )
        usage = usage + result.usage
        best = self._draft(result.text, context, top_score, reasons)

        iterations = 0
        while best.confidence < s.confidence_threshold and iterations < s.max_refinement_iterations:
            iterations += 1
            try:
                refined = await self._gateway.complete(
                    [
                        ChatMessage(role="system", content=system),
                        ChatMessage(
                            role="user",
                            content=REFINEMENT_PROMPT.format(
                                query=query, evidence_block=evidence_block, draft=best.text
                            ),
                        ),
                    ],
                    max_tokens=s.answer_max_tokens,
                    temperature=REFINEMENT_TEMPERATURE,
                    deadline=deadline,
                )
            except Exception as e:
                logger.warning("refinement_failed", iteration=iterations, error=str(e))
                break
            usage = usage + refined.usage
            draft = self._draft(refined.text, context, top_score, reasons)
            logger.info(
                "refinement_iteration",
                iteration=iterations,
                confidence=round(draft.confidence, 4),
                previous=round(best.confidence, 4),
            )
            if draft.confidence > best.confidence:
                best = draft
        if iterations:
            reasons.append(ReasonCode.REFINED.value)
        if best.confidence < s.confidence_threshold:
            reasons.append(ReasonCode.LOW_CONFIDENCE.value)

        unsupported: list[str] = []
        if self._fact_checker is not None:
            try:
                unsupported = await self._fact_checker.verify(
                    best.text, [slot.text for slot in context.slots], deadline=deadline
                )
            except Exception as e:
                logger.warning("fact_check_failed", error=str(e))
                reasons.append(ReasonCode.FACT_CHECK_FAILED.value)

        used_ids = {c.candidate_id for c in sources}
        answer = Answer(
            text=best.text,
            citations=best.parsed.citations,
            confidence=best.confidence,
            token_usage=usage,
            sources=[item for item in ranked.items if item.candidate.candidate_id in used_ids],
            unsupported_claims=unsupported,
            refinement_iterations=iterations,
            reason_codes=list(dict.fromkeys(reasons)),
        )
        logger.info(
            "answer_synthesized",
            confidence=round(answer.confidence, 4),
            citations=len(answer.citations),
            context_tokens=context.used_tokens,
            refinements=iterations,
        )
        return answer

    def _draft(
        self, text: str, context: SynthesisContext, top_score: float, reasons: list[str]
    ) -> _Draft:
        text = text.strip()
        s = self._settings
        sources = [slot.candidate for slot in context.slots]
        parsed = parse_citations(text, sources, require_markers=s.include_citations)
        if isinstance(parsed, CitationsMalformed):
            logger.warning("malformed_citations", problem=parsed.problem)
            if ReasonCode.MALFORMED_CITATIONS.value not in reasons:
                reasons.append(ReasonCode.MALFORMED_CITATIONS.value)
        confidence = score_confidence(parsed, top_score, s.include_citations) if text else 0.0
        return _Draft(text=text, parsed=parsed, confidence=confidence)
