"""Google Gemini embedding + chat backend using the google-genai SDK."""

from __future__ import annotations

import httpx
from google import genai
from google.genai import errors, types

from grounded_rag.exceptions import ProviderCallError
from grounded_rag.models.domain import (
    ChatMessage,
    CompletionResult,
    ProviderDescriptor,
    TokenUsage,
)
from grounded_rag.observability.logger import get_logger

logger = get_logger("gemini")


class GeminiBackend:
    def __init__(self, descriptor: ProviderDescriptor, client: genai.Client | None = None) -> None:
        self.descriptor = descriptor
        self._client = client or genai.Client(api_key=descriptor.api_key)

    async def generate_embedding(self, text: str) -> list[float]:
        if not self.descriptor.embedding_model:
            raise ProviderCallError(
                "gemini has no embedding model configured", provider=self.descriptor.name
            )
        try:
            response = await self._client.aio.models.embed_content(
                model=self.descriptor.embedding_model,
                contents=text,
            )
        except (errors.APIError, httpx.HTTPError) as e:
            raise self._wrap(e, "embedding") from e

        if not response.embeddings or not response.embeddings[0].values:
            raise ProviderCallError(
                "Gemini returned no embedding values", provider=self.descriptor.name
            )
        return list(response.embeddings[0].values)

    async def generate_chat_completion(
        self,
        messages: list[ChatMessage],
        max_tokens: int = 1024,
        temperature: float = 0.1,
    ) -> CompletionResult:
        system = "\n\n".join(m.content for m in messages if m.role == "system")
        contents = [
            types.Content(
                role="model" if m.role == "assistant" else "user",
                parts=[types.Part(text=m.content)],
            )
            for m in messages
            if m.role != "system"
        ]
        config = types.GenerateContentConfig(
            temperature=temperature,
            max_output_tokens=max_tokens,
        )
        if system:
            config.system_instruction = system

        try:
            response = await self._client.aio.models.generate_content(
                model=self.descriptor.chat_model,
                contents=contents,
                config=config,
            )
        except (errors.APIError, httpx.HTTPError) as e:
            raise self._wrap(e, "generation") from e

        usage = TokenUsage()
        if response.usage_metadata is not None:
            usage = TokenUsage(
                prompt_tokens=response.usage_metadata.prompt_token_count or 0,
                completion_tokens=response.usage_metadata.candidates_token_count or 0,
            )
        return CompletionResult(
            text=response.text or "", usage=usage, provider=self.descriptor.name
        )

    def _wrap(self, e: Exception, operation: str) -> ProviderCallError:
        name = self.descriptor.name
        if isinstance(e, errors.APIError):
            code = e.code
            return ProviderCallError(
                f"Gemini {operation} failed with HTTP {code}: {e.message}",
                provider=name,
                transient=isinstance(e, errors.ServerError) or code == 429,
                status_code=code,
            )
        return ProviderCallError(
            f"Gemini {operation} transport error: {e}", provider=name, transient=True
        )
