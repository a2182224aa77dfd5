"""Tests for answer synthesis."""

import time

import pytest

from grounded_rag.config.constants import DECLINE_ANSWER
from grounded_rag.generation.prompt_templates import ANSWER_GENERATION_NO_CITATIONS_SYSTEM
from grounded_rag.models.domain import RankedResult
from grounded_rag.providers.gateway import ProviderGateway
from grounded_rag.synthesis.synthesizer import Synthesizer

UNCITED_DRAFT = "Refunds are available [1]. Returns are easy."


def replies(*texts):
    """Reply with each text in turn; an Exception instance is raised instead."""
    queue = list(texts)

    def reply(messages):
        item = queue.pop(0) if len(queue) > 1 else queue[0]
        if isinstance(item, Exception):
            raise item
        return item

    return reply


class StaticFactChecker:
    def __init__(self, claims=None, error=None):
        self.claims = claims or []
        self.error = error
        self.calls = 0
        self.deadlines = []

    async def verify(self, answer, context, deadline=None):
        self.calls += 1
        self.deadlines.append(deadline)
        if self.error is not None:
            raise self.error
        return self.claims


@pytest.fixture
def refund_ranked(candidate, ranked):
    return ranked(
        [
            candidate("refund-policy", fused=0.9, text="Refunds are issued within 30 days of purchase."),
            candidate("shipping-guide", fused=0.6, text="Standard shipping takes 3-5 business days."),
        ]
    )


async def test_no_candidates_declines_without_provider_call(gateway, primary, settings):
    answer = await Synthesizer(gateway, settings).synthesize(
        "refund policy", RankedResult(items=[], lambda_=0.7)
    )
    assert answer.declined
    assert answer.text == DECLINE_ANSWER
    assert answer.confidence == 0.0
    assert answer.reason_codes == ["RETRIEVAL_EMPTY"]
    assert primary.chat_calls == 0


async def test_cited_answer(gateway, primary, settings, refund_ranked):
    answer = await Synthesizer(gateway, settings).synthesize("refund policy", refund_ranked)

    assert not answer.declined
    assert answer.text.endswith("[1].")
    assert [(c.marker, c.doc_id) for c in answer.citations] == [(1, "refund-policy")]
    assert answer.confidence == pytest.approx(0.9)
    assert answer.token_usage.total_tokens == 120
    assert [s.candidate.doc_id for s in answer.sources] == ["refund-policy", "shipping-guide"]
    assert answer.reason_codes == []

    prompt = primary.messages[0][1].content
    assert "[1] Refunds are issued within 30 days" in prompt
    assert "[2] Standard shipping" in prompt


async def test_sources_limited_to_passages_in_context(gateway, settings, candidate, ranked):
    passage = "abcd " * 120
    result = ranked([candidate(f"d{i}", fused=0.9, text=passage) for i in range(3)])
    tight = settings.model_copy(update={"max_context_length": 150})
    answer = await Synthesizer(gateway, tight).synthesize("q", result)
    assert [s.candidate.doc_id for s in answer.sources] == ["d0"]


async def test_low_confidence_triggers_refinement(fake_backend, settings, refund_ranked):
    backend = fake_backend(reply=replies(UNCITED_DRAFT, "Refunds are issued within 30 days [1]."))
    refining = settings.model_copy(update={"max_refinement_iterations": 2})
    answer = await Synthesizer(ProviderGateway([backend]), refining).synthesize(
        "refund policy", refund_ranked
    )

    assert backend.chat_calls == 2
    assert answer.text == "Refunds are issued within 30 days [1]."
    assert answer.confidence == pytest.approx(0.9)
    assert answer.refinement_iterations == 1
    assert answer.token_usage.total_tokens == 240
    assert "REFINED" in answer.reason_codes
    assert "LOW_CONFIDENCE" not in answer.reason_codes
    assert "Previous draft:" in backend.messages[1][1].content


async def test_refinement_stops_at_iteration_cap(fake_backend, settings, refund_ranked):
    backend = fake_backend(reply=UNCITED_DRAFT)
    refining = settings.model_copy(update={"max_refinement_iterations": 2})
    answer = await Synthesizer(ProviderGateway([backend]), refining).synthesize(
        "refund policy", refund_ranked
    )
    assert backend.chat_calls == 3
    assert answer.refinement_iterations == 2
    assert answer.confidence == pytest.approx(0.45)
    assert "LOW_CONFIDENCE" in answer.reason_codes


async def test_refinement_failure_keeps_best_draft(fake_backend, settings, refund_ranked):
    backend = fake_backend(reply=replies(UNCITED_DRAFT, RuntimeError("model crashed")))
    refining = settings.model_copy(update={"max_refinement_iterations": 3})
    answer = await Synthesizer(ProviderGateway([backend]), refining).synthesize(
        "refund policy", refund_ranked
    )
    assert answer.text == UNCITED_DRAFT
    assert answer.confidence == pytest.approx(0.45)
    assert backend.chat_calls == 2
    assert "LOW_CONFIDENCE" in answer.reason_codes


async def test_no_refinement_when_disabled(fake_backend, settings, refund_ranked):
    backend = fake_backend(reply=UNCITED_DRAFT)
    answer = await Synthesizer(ProviderGateway([backend]), settings).synthesize(
        "refund policy", refund_ranked
    )
    assert backend.chat_calls == 1
    assert answer.refinement_iterations == 0
    assert answer.reason_codes == ["LOW_CONFIDENCE"]


async def test_out_of_range_markers_flagged(fake_backend, settings, refund_ranked):
    backend = fake_backend(reply="Refunds are issued within 30 days [7].")
    answer = await Synthesizer(ProviderGateway([backend]), settings).synthesize(
        "refund policy", refund_ranked
    )
    assert answer.citations == []
    assert answer.confidence == 0.0
    assert "MALFORMED_CITATIONS" in answer.reason_codes


async def test_citations_disabled(fake_backend, settings, refund_ranked):
    backend = fake_backend(reply="Refunds are issued within 30 days of purchase.")
    plain = settings.model_copy(update={"include_citations": False})
    answer = await Synthesizer(ProviderGateway([backend]), plain).synthesize(
        "refund policy", refund_ranked
    )
    assert answer.citations == []
    assert answer.confidence == pytest.approx(0.9)
    assert "MALFORMED_CITATIONS" not in answer.reason_codes
    assert backend.messages[0][0].content == ANSWER_GENERATION_NO_CITATIONS_SYSTEM


async def test_fact_check_reports_unsupported_claims(gateway, settings, refund_ranked):
    checker = StaticFactChecker(claims=["Refunds are instant."])
    checking = settings.model_copy(update={"enable_fact_checking": True})
    answer = await Synthesizer(gateway, checking, fact_checker=checker).synthesize(
        "refund policy", refund_ranked
    )
    assert answer.unsupported_claims == ["Refunds are instant."]
    assert checker.calls == 1


async def test_fact_check_failure_is_absorbed(gateway, settings, refund_ranked):
    checker = StaticFactChecker(error=RuntimeError("checker down"))
    checking = settings.model_copy(update={"enable_fact_checking": True})
    answer = await Synthesizer(gateway, checking, fact_checker=checker).synthesize(
        "refund policy", refund_ranked
    )
    assert answer.unsupported_claims == []
    assert "FACT_CHECK_FAILED" in answer.reason_codes
    assert answer.confidence == pytest.approx(0.9)


async def test_fact_checker_unused_when_disabled(gateway, settings, refund_ranked):
    checker = StaticFactChecker(claims=["anything"])
    answer = await Synthesizer(gateway, settings, fact_checker=checker).synthesize(
        "refund policy", refund_ranked
    )
    assert checker.calls == 0
    assert answer.unsupported_claims == []


async def test_fact_check_receives_request_deadline(gateway, settings, refund_ranked):
    checker = StaticFactChecker()
    checking = settings.model_copy(update={"enable_fact_checking": True})
    deadline = time.monotonic() + 60
    await Synthesizer(gateway, checking, fact_checker=checker).synthesize(
        "refund policy", refund_ranked, deadline
    )
    assert checker.deadlines == [deadline]
