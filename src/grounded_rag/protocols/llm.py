"""Protocol for language-model provider backends."""

from __future__ import annotations

from typing import Protocol

from grounded_rag.models.domain import ChatMessage, CompletionResult, ProviderDescriptor


class ProviderBackend(Protocol):
    descriptor: ProviderDescriptor

    async def generate_embedding(self, text: str) -> list[float]: ...

    async def generate_chat_completion(
        self,
        messages: list[ChatMessage],
        max_tokens: int = 1024,
        temperature: float = 0.1,
    ) -> CompletionResult: ...
