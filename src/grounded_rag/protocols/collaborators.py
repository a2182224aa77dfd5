"""Protocols for the compression and fact-check collaborators."""

from __future__ import annotations

from typing import Protocol


class Compressor(Protocol):
    async def compress(self, text: str, target_length: int, query: str = "") -> str:
        """Shorten ``text`` to roughly ``target_length`` tokens."""
        ...


class FactChecker(Protocol):
    async def verify(
        self, answer: str, context: list[str], deadline: float | None = None
    ) -> list[str]:
        """Returns the answer's claims that the context does not support."""
        ...
