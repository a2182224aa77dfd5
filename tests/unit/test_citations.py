"""Tests for citation parsing and confidence scoring."""

import pytest

from grounded_rag.synthesis.citations import CitationsMalformed, parse_citations, split_sentences
from grounded_rag.synthesis.confidence import citation_coverage, score_confidence


@pytest.fixture
def sources(candidate):
    return [candidate("refund-policy", 0), candidate("shipping-guide", 0)]


def test_split_sentences_keeps_trailing_markers():
    text = "Refunds take 30 days [1]. Shipping costs $4.99 [2]! Ok"
    spans = [text[s:e] for s, e in split_sentences(text)]
    assert spans == ["Refunds take 30 days [1].", "Shipping costs $4.99 [2]!", "Ok"]


def test_each_marker_maps_to_its_source(sources):
    answer = "Refunds take 30 days [1]. Standard shipping takes 3-5 days [2]."
    parsed = parse_citations(answer, sources)
    assert not isinstance(parsed, CitationsMalformed)
    assert [(c.marker, c.doc_id) for c in parsed.citations] == [
        (1, "refund-policy"),
        (2, "shipping-guide"),
    ]
    assert parsed.cited_sentences == parsed.total_sentences == 2


def test_citation_span_covers_its_sentence(sources):
    answer = "Refunds take 30 days [1]. Nothing else."
    citation = parse_citations(answer, sources).citations[0]
    assert answer[citation.start : citation.end] == "Refunds take 30 days [1]."
    assert citation.candidate_id == "refund-policy:0"


def test_grouped_markers(sources):
    parsed = parse_citations("Both documents agree [1, 2].", sources)
    assert [c.marker for c in parsed.citations] == [1, 2]
    assert parsed.cited_sentences == 1


def test_repeated_marker_in_one_sentence_counted_once(sources):
    parsed = parse_citations("Refunds [1] take 30 days [1].", sources)
    assert len(parsed.citations) == 1


def test_out_of_range_marker_is_malformed(sources):
    parsed = parse_citations("Refunds take 30 days [1]. Warranty is two years [3].", sources)
    assert isinstance(parsed, CitationsMalformed)
    assert parsed.invalid_markers == [3]
    assert [c.marker for c in parsed.citations] == [1]
    assert "out of range" in parsed.problem


def test_missing_markers_malformed_only_when_required(sources):
    answer = "Refunds take 30 days. Shipping is fast."
    assert isinstance(parse_citations(answer, sources), CitationsMalformed)
    parsed = parse_citations(answer, sources, require_markers=False)
    assert not isinstance(parsed, CitationsMalformed)
    assert parsed.total_sentences == 2
    assert parsed.cited_sentences == 0


def test_confidence_is_coverage_times_top_score(sources):
    parsed = parse_citations("Refunds take 30 days [1]. Shipping is fast.", sources)
    assert citation_coverage(parsed) == 0.5
    assert score_confidence(parsed, 0.8) == pytest.approx(0.4)


def test_confidence_ignores_coverage_without_citations(sources):
    parsed = parse_citations("Refunds take 30 days.", sources, require_markers=False)
    assert score_confidence(parsed, 0.8, citations_enabled=False) == pytest.approx(0.8)


def test_confidence_of_empty_answer_is_zero(sources):
    parsed = parse_citations("", sources, require_markers=False)
    assert parsed.total_sentences == 0
    assert score_confidence(parsed, 0.9) == 0.0


def test_confidence_is_bounded(sources):
    parsed = parse_citations("Refunds take 30 days [1].", sources)
    assert score_confidence(parsed, 1.5) == 1.0
