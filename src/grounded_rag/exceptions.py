"""Custom exception hierarchy for the grounded RAG pipeline."""

from __future__ import annotations


class GroundedRAGError(Exception):
    """Base exception for all pipeline errors."""


class ConfigurationError(GroundedRAGError):
    """Error in system configuration."""


class ProviderError(GroundedRAGError):
    """Error raised by the provider layer."""


class ProviderCallError(ProviderError):
    """A single backend call failed.

    ``transient`` marks failures that should put the provider into cool-down
    (timeouts, 5xx, rate limits, connection errors).
    """

    def __init__(
        self,
        message: str,
        provider: str = "",
        transient: bool = False,
        status_code: int | None = None,
    ) -> None:
        super().__init__(message)
        self.provider = provider
        self.transient = transient
        self.status_code = status_code


class ProviderExhausted(ProviderError):
    """Every configured provider failed for the same call."""

    def __init__(self, operation: str, errors: dict[str, str]) -> None:
        detail = "; ".join(f"{name}: {err}" for name, err in errors.items()) or "no usable provider"
        super().__init__(f"All providers failed for {operation}: {detail}")
        self.operation = operation
        self.errors = errors


class RetrievalError(GroundedRAGError):
    """Error during retrieval."""


class StoreUnavailable(RetrievalError):
    """The document store could not serve the search."""


class DimensionMismatch(RetrievalError):
    """Embedding width does not match the stored vectors."""

    def __init__(self, expected: int, actual: int) -> None:
        super().__init__(
            f"Embedding dimension mismatch: store expects {expected}, got {actual}"
        )
        self.expected = expected
        self.actual = actual


class MalformedProviderResponse(GroundedRAGError):
    """Structured model output could not be parsed."""


class PipelineCancelled(GroundedRAGError):
    """The request was cancelled before an answer was produced."""

    def __init__(self, message: str = "Pipeline cancelled", stage: str | None = None) -> None:
        super().__init__(message)
        self.stage = stage


class PipelineTimeout(PipelineCancelled):
    """The request deadline expired before an answer was produced."""
