"""Fill the synthesis context with ranked passages under a token budget."""

from __future__ import annotations

from grounded_rag.models.domain import ContextSlot, RankedResult, SynthesisContext
from grounded_rag.observability.logger import get_logger
from grounded_rag.protocols.collaborators import Compressor
from grounded_rag.scoring.reason_codes import ReasonCode
from grounded_rag.synthesis.tokens import TokenCounter

logger = get_logger("context_builder")


class ContextBuilder:
    def __init__(
        self,
        counter: TokenCounter,
        compressor: Compressor | None = None,
        compression_min_tokens: int = 64,
    ) -> None:
        self._counter = counter
        self._compressor = compressor
        self._min_tokens = compression_min_tokens

    async def build(
        self, ranked: RankedResult, budget: int, query: str = ""
    ) -> tuple[SynthesisContext, list[str]]:
        """Passages in rank order; the first one that does not fit is truncated and ends the fill."""
        reasons: list[str] = []
        texts = [item.candidate.text for item in ranked.items]
        compressed = [False] * len(texts)

        if self._compressor is not None and texts:
            target = max(self._min_tokens, budget // len(texts))
            for i, text in enumerate(texts):
                try:
                    shorter = await self._compressor.compress(text, target, query)
                except Exception as e:
                    logger.warning("compression_failed", candidate=i, error=str(e))
                    if ReasonCode.COMPRESSION_FAILED.value not in reasons:
                        reasons.append(ReasonCode.COMPRESSION_FAILED.value)
                    continue
                if shorter and shorter != text:
                    texts[i] = shorter
                    compressed[i] = True

        slots: list[ContextSlot] = []
        used = 0
        for item, text, was_compressed in zip(ranked.items, texts, compressed):
            remaining = budget - used
            if remaining <= 0:
                break
            tokens = self._counter.count(text)
            if tokens <= remaining:
                slots.append(
                    ContextSlot(
                        candidate=item.candidate,
                        text=text,
                        allotted_tokens=tokens,
                        compressed=was_compressed,
                    )
                )
                used += tokens
                continue
            cut = self._counter.truncate(text, remaining)
            cut_tokens = self._counter.count(cut)
            if cut and cut_tokens <= remaining:
                slots.append(
                    ContextSlot(
                        candidate=item.candidate,
                        text=cut,
                        allotted_tokens=cut_tokens,
                        truncated=True,
                        compressed=was_compressed,
                    )
                )
                used += cut_tokens
            break

        logger.info(
            "context_built",
            slots=len(slots),
            used_tokens=used,
            budget=budget,
            truncated=any(s.truncated for s in slots),
        )
        return SynthesisContext(slots=slots, budget=budget), reasons
