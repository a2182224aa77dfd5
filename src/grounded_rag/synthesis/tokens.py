"""Token counting and truncation for the synthesis budget."""

from __future__ import annotations

import math
from typing import Protocol

import tiktoken

from grounded_rag.config.constants import TOKENS_PER_CHAR
from grounded_rag.config.settings import Settings


class TokenCounter(Protocol):
    def count(self, text: str) -> int: ...

    def truncate(self, text: str, max_tokens: int) -> str:
        """Longest prefix of ``text`` that fits in ``max_tokens``."""
        ...


class HeuristicTokenCounter:
    """Character-based estimate (~4 characters per token for English text)."""

    def count(self, text: str) -> int:
        return math.ceil(len(text) * TOKENS_PER_CHAR)

    def truncate(self, text: str, max_tokens: int) -> str:
        if max_tokens <= 0:
            return ""
        if self.count(text) <= max_tokens:
            return text
        cut = text[: int(max_tokens / TOKENS_PER_CHAR)]
        # Prefer ending on a word boundary when that keeps most of the text.
        boundary = cut.rfind(" ")
        if boundary > len(cut) // 2:
            cut = cut[:boundary]
        return cut.rstrip()


class TiktokenCounter:
    def __init__(self, encoding: str = "cl100k_base") -> None:
        self._encoding_name = encoding
        self._loaded: tiktoken.Encoding | None = None

    @property
    def _encoding(self) -> tiktoken.Encoding:
        # Loading may fetch the BPE file, so defer it to first use.
        if self._loaded is None:
            self._loaded = tiktoken.get_encoding(self._encoding_name)
        return self._loaded

    def count(self, text: str) -> int:
        return len(self._encoding.encode(text))

    def truncate(self, text: str, max_tokens: int) -> str:
        if max_tokens <= 0:
            return ""
        tokens = self._encoding.encode(text)
        if len(tokens) <= max_tokens:
            return text
        tokens = tokens[:max_tokens]
        cut = self._encoding.decode(tokens)
        while tokens and self.count(cut) > max_tokens:
            tokens = tokens[:-1]
            cut = self._encoding.decode(tokens)
        return cut


def create_token_counter(settings: Settings) -> TokenCounter:
    if settings.token_estimator == "tiktoken":
        return TiktokenCounter(settings.tiktoken_encoding)
    return HeuristicTokenCounter()
