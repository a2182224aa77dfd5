"""LLM fact check: which claims in the answer are not backed by the context?"""

from __future__ import annotations

import re

from pydantic import BaseModel, ValidationError

from grounded_rag.config.constants import FACT_CHECK_MAX_TOKENS
from grounded_rag.exceptions import MalformedProviderResponse
from grounded_rag.generation.prompt_templates import FACT_CHECK_PROMPT, format_evidence_block
from grounded_rag.models.domain import ChatMessage
from grounded_rag.observability.logger import get_logger
from grounded_rag.providers.gateway import ProviderGateway

logger = get_logger("fact_checker")

_JSON_OBJECT = re.compile(r"\{.*\}", re.S)


class FactCheckResponse(BaseModel):
    unsupported_claims: list[str] = []


def parse_fact_check(raw: str) -> FactCheckResponse:
    match = _JSON_OBJECT.search(raw)
    if match is None:
        raise MalformedProviderResponse("fact check response contains no JSON object")
    try:
        return FactCheckResponse.model_validate_json(match.group(0))
    except ValidationError as e:
        raise MalformedProviderResponse(f"invalid fact check response: {e}") from e


class LLMFactChecker:
    def __init__(self, gateway: ProviderGateway) -> None:
        self._gateway = gateway

    async def verify(
        self, answer: str, context: list[str], deadline: float | None = None
    ) -> list[str]:
        prompt = FACT_CHECK_PROMPT.format(
            answer=answer, evidence_block=format_evidence_block(context)
        )
        result = await self._gateway.complete(
            [ChatMessage(role="user", content=prompt)],
            max_tokens=FACT_CHECK_MAX_TOKENS,
            temperature=0.0,
            deadline=deadline,
        )
        claims = [c.strip() for c in parse_fact_check(result.text).unsupported_claims if c.strip()]
        logger.info("fact_check", unsupported_claims=len(claims))
        return claims
