"""OpenAI, Azure OpenAI and OpenAI-compatible embedding + chat backends."""

from __future__ import annotations

import openai
from openai import AsyncAzureOpenAI, AsyncOpenAI

from grounded_rag.exceptions import ProviderCallError
from grounded_rag.models.domain import (
    ChatMessage,
    CompletionResult,
    ProviderDescriptor,
    TokenUsage,
)
from grounded_rag.observability.logger import get_logger

logger = get_logger("openai_provider")


class OpenAIBackend:
    def __init__(self, descriptor: ProviderDescriptor, client: AsyncOpenAI | None = None) -> None:
        self.descriptor = descriptor
        # Retries are handled by the gateway's fallback order.
        self._client = client or AsyncOpenAI(
            api_key=descriptor.api_key,
            base_url=descriptor.base_url,
            max_retries=0,
        )

    async def generate_embedding(self, text: str) -> list[float]:
        if not self.descriptor.embedding_model:
            raise ProviderCallError(
                f"{self.descriptor.name} has no embedding model configured",
                provider=self.descriptor.name,
            )
        try:
            response = await self._client.embeddings.create(
                input=[text], model=self.descriptor.embedding_model
            )
        except openai.OpenAIError as e:
            raise self._wrap(e, "embedding") from e
        return list(response.data[0].embedding)

    async def generate_chat_completion(
        self,
        messages: list[ChatMessage],
        max_tokens: int = 1024,
        temperature: float = 0.1,
    ) -> CompletionResult:
        try:
            response = await self._client.chat.completions.create(
                model=self.descriptor.chat_model,
                messages=[{"role": m.role, "content": m.content} for m in messages],
                max_tokens=max_tokens,
                temperature=temperature,
            )
        except openai.OpenAIError as e:
            raise self._wrap(e, "chat completion") from e

        text = ""
        if response.choices:
            text = response.choices[0].message.content or ""
        usage = TokenUsage()
        if response.usage is not None:
            usage = TokenUsage(
                prompt_tokens=response.usage.prompt_tokens or 0,
                completion_tokens=response.usage.completion_tokens or 0,
            )
        return CompletionResult(text=text, usage=usage, provider=self.descriptor.name)

    def _wrap(self, e: openai.OpenAIError, operation: str) -> ProviderCallError:
        name = self.descriptor.name
        if isinstance(e, openai.APIStatusError):
            status = e.status_code
            return ProviderCallError(
                f"{name} {operation} failed with HTTP {status}: {e.message}",
                provider=name,
                transient=status >= 500 or status == 429,
                status_code=status,
            )
        if isinstance(e, openai.APIConnectionError):
            return ProviderCallError(
                f"{name} {operation} connection failed: {e}",
                provider=name,
                transient=True,
            )
        return ProviderCallError(f"{name} {operation} failed: {e}", provider=name)


class AzureOpenAIBackend(OpenAIBackend):
    """Azure OpenAI deployment. The descriptor's model names are deployment names."""

    def __init__(self, descriptor: ProviderDescriptor, client: AsyncAzureOpenAI | None = None) -> None:
        super().__init__(
            descriptor,
            client=client
            or AsyncAzureOpenAI(
                api_key=descriptor.api_key,
                azure_endpoint=descriptor.base_url,
                api_version=descriptor.api_version,
                max_retries=0,
            ),
        )
