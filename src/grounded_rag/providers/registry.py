"""Registry mapping provider kinds to backend constructors."""

from __future__ import annotations

from collections.abc import Callable

from grounded_rag.exceptions import ConfigurationError
from grounded_rag.models.domain import ProviderDescriptor, ProviderKind
from grounded_rag.protocols.llm import ProviderBackend

BackendFactory = Callable[[ProviderDescriptor], ProviderBackend]


class ProviderRegistry:
    def __init__(self) -> None:
        self._factories: dict[ProviderKind, BackendFactory] = {}

    def register(self, kind: ProviderKind, factory: BackendFactory) -> None:
        self._factories[kind] = factory

    def create(self, descriptor: ProviderDescriptor) -> ProviderBackend:
        factory = self._factories.get(descriptor.kind)
        if factory is None:
            raise ConfigurationError(
                f"No backend registered for provider kind '{descriptor.kind.value}'. "
                f"Supported: {[k.value for k in self.supported_kinds()]}"
            )
        return factory(descriptor)

    def supported_kinds(self) -> list[ProviderKind]:
        return list(self._factories.keys())


def create_default_registry() -> ProviderRegistry:
    """Create a registry with all built-in backends."""
    from grounded_rag.providers.gemini_provider import GeminiBackend
    from grounded_rag.providers.openai_provider import AzureOpenAIBackend, OpenAIBackend

    registry = ProviderRegistry()
    # Groq and Ollama expose OpenAI-compatible endpoints.
    for kind in (ProviderKind.OPENAI, ProviderKind.GROQ, ProviderKind.OLLAMA):
        registry.register(kind, OpenAIBackend)
    registry.register(ProviderKind.GEMINI, GeminiBackend)
    registry.register(ProviderKind.AZURE_OPENAI, AzureOpenAIBackend)
    return registry
