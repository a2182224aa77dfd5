"""Tests for budgeted context assembly."""

from grounded_rag.synthesis.context_builder import ContextBuilder
from grounded_rag.synthesis.tokens import HeuristicTokenCounter

PASSAGE = "abcd " * 120  # 600 characters, 150 heuristic tokens


class HalvingCompressor:
    def __init__(self):
        self.targets = []

    async def compress(self, text, target_length, query=""):
        self.targets.append(target_length)
        return text[: len(text) // 2].rstrip()


class BrokenCompressor:
    async def compress(self, text, target_length, query=""):
        raise RuntimeError("compressor crashed")


async def test_passages_fill_budget_then_one_is_truncated(candidate, ranked):
    result = ranked([candidate(f"d{i}", fused=0.9 - i / 100, text=PASSAGE) for i in range(5)])
    context, reasons = await ContextBuilder(HeuristicTokenCounter()).build(result, budget=500)

    assert [slot.candidate.doc_id for slot in context.slots] == ["d0", "d1", "d2", "d3"]
    assert [slot.truncated for slot in context.slots] == [False, False, False, True]
    assert context.slots[3].allotted_tokens <= 50
    assert PASSAGE.startswith(context.slots[3].text)
    assert context.used_tokens <= 500
    assert reasons == []


async def test_everything_fits(candidate, ranked):
    result = ranked([candidate("d1", text="Short passage."), candidate("d2", text="Another one.")])
    context, _ = await ContextBuilder(HeuristicTokenCounter()).build(result, budget=500)
    assert len(context.slots) == 2
    assert not any(slot.truncated for slot in context.slots)


async def test_rank_order_is_kept(candidate, ranked):
    result = ranked([candidate("low", fused=0.2), candidate("high", fused=0.9)])
    context, _ = await ContextBuilder(HeuristicTokenCounter()).build(result, budget=500)
    assert [slot.candidate.doc_id for slot in context.slots] == ["low", "high"]


async def test_compression_shrinks_passages_before_filling(candidate, ranked):
    compressor = HalvingCompressor()
    result = ranked([candidate(f"d{i}", text=PASSAGE) for i in range(5)])
    builder = ContextBuilder(HeuristicTokenCounter(), compressor, compression_min_tokens=64)
    context, reasons = await builder.build(result, budget=500, query="abcd")

    assert compressor.targets == [100] * 5
    assert len(context.slots) == 5
    assert all(slot.compressed for slot in context.slots)
    assert not any(slot.truncated for slot in context.slots)
    assert reasons == []


async def test_compression_target_has_a_floor(candidate, ranked):
    compressor = HalvingCompressor()
    result = ranked([candidate(f"d{i}", text=PASSAGE) for i in range(10)])
    builder = ContextBuilder(HeuristicTokenCounter(), compressor, compression_min_tokens=64)
    await builder.build(result, budget=200)
    assert set(compressor.targets) == {64}


async def test_compression_failure_uses_original_text(candidate, ranked):
    result = ranked([candidate("d1", text="Refunds take 30 days.")])
    builder = ContextBuilder(HeuristicTokenCounter(), BrokenCompressor())
    context, reasons = await builder.build(result, budget=500)
    assert context.slots[0].text == "Refunds take 30 days."
    assert not context.slots[0].compressed
    assert reasons == ["COMPRESSION_FAILED"]
