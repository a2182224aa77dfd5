"""Provider gateway: uniform embedding/chat access with ordered fallback.

Providers are tried in priority order. A provider that times out or returns a
transient failure (5xx, 429, connection error) is marked degraded and skipped
for a cool-down window; it is still tried as a last resort when every ready
provider has failed. ``ProviderExhausted`` is raised only after every usable
provider failed for the same call.
"""

from __future__ import annotations

import asyncio
import time
from collections.abc import Awaitable, Callable, Sequence
from dataclasses import dataclass
from typing import Any, TypeVar

from grounded_rag.config.settings import Settings
from grounded_rag.exceptions import ProviderCallError, ProviderExhausted
from grounded_rag.models.domain import (
    ChatMessage,
    CompletionResult,
    EmbeddingResult,
    ProviderDescriptor,
    ProviderEvent,
    ProviderHealth,
)
from grounded_rag.observability.logger import get_logger
from grounded_rag.observability.metrics import MetricsRegistry
from grounded_rag.observability.tracing import current_trace
from grounded_rag.protocols.llm import ProviderBackend
from grounded_rag.providers.registry import ProviderRegistry, create_default_registry
from grounded_rag.scoring.reason_codes import ReasonCode

logger = get_logger("gateway")

T = TypeVar("T")

MAX_EMBED_CHARS = 10_000


async def gather_bounded(
    factories: Sequence[Callable[[], Awaitable[T]]],
    limit: int,
    return_exceptions: bool = False,
) -> list[Any]:
    """Run coroutine factories with at most ``limit`` in flight, preserving order."""
    semaphore = asyncio.Semaphore(max(1, limit))

    async def run(factory: Callable[[], Awaitable[T]]) -> T:
        async with semaphore:
            return await factory()

    return await asyncio.gather(
        *(run(f) for f in factories), return_exceptions=return_exceptions
    )


@dataclass
class _ProviderSlot:
    descriptor: ProviderDescriptor
    backend: ProviderBackend | None
    degraded_until: float = 0.0
    consecutive_failures: int = 0


class ProviderGateway:
    def __init__(
        self,
        backends: Sequence[ProviderBackend],
        unavailable: Sequence[ProviderDescriptor] = (),
        timeout_seconds: float = 20.0,
        cooldown_seconds: float = 60.0,
        max_concurrency: int = 4,
        metrics: MetricsRegistry | None = None,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        slots = [_ProviderSlot(descriptor=b.descriptor, backend=b) for b in backends]
        slots += [_ProviderSlot(descriptor=d, backend=None) for d in unavailable]
        for slot in slots:
            if slot.backend is None:
                slot.descriptor.health = ProviderHealth.UNAVAILABLE
        self._slots = sorted(slots, key=lambda s: s.descriptor.priority)
        self._timeout = timeout_seconds
        self._cooldown = cooldown_seconds
        self._max_concurrency = max_concurrency
        self._metrics = metrics or MetricsRegistry()
        self._clock = clock

    @classmethod
    def from_settings(
        cls,
        settings: Settings,
        metrics: MetricsRegistry | None = None,
        registry: ProviderRegistry | None = None,
    ) -> ProviderGateway:
        registry = registry or create_default_registry()
        backends: list[ProviderBackend] = []
        unavailable: list[ProviderDescriptor] = []
        for descriptor in settings.provider_descriptors():
            if descriptor.health is ProviderHealth.UNAVAILABLE:
                logger.warning("provider_unavailable", provider=descriptor.name, reason="no credentials")
                unavailable.append(descriptor)
                continue
            backends.append(registry.create(descriptor))
        return cls(
            backends,
            unavailable=unavailable,
            timeout_seconds=settings.provider_timeout_seconds,
            cooldown_seconds=settings.provider_cooldown_seconds,
            max_concurrency=settings.embedding_max_concurrency,
            metrics=metrics,
        )

    def descriptors(self) -> list[ProviderDescriptor]:
        now = self._clock()
        for slot in self._slots:
            if slot.backend is not None and slot.degraded_until and slot.degraded_until <= now:
                # Cool-down elapsed; eligible again until the next failure.
                slot.descriptor.health = ProviderHealth.HEALTHY
        return [s.descriptor for s in self._slots]

    def preferred(self, operation: str) -> ProviderDescriptor | None:
        """Top-priority provider able to serve ``operation``, ignoring cool-downs."""
        for slot in self._slots:
            if slot.backend is not None and slot.descriptor.supports(operation):
                return slot.descriptor
        return None

    async def embed(self, text: str, deadline: float | None = None) -> EmbeddingResult:
        text = text[:MAX_EMBED_CHARS]

        async def invoke(backend: ProviderBackend) -> list[float]:
            vector = await backend.generate_embedding(text)
            if not vector:
                raise ProviderCallError(
                    "empty embedding returned", provider=backend.descriptor.name
                )
            return vector

        vector, provider = await self._call("embed", invoke, deadline)
        return EmbeddingResult(vector=vector, provider=provider)

    async def embed_many(
        self,
        texts: Sequence[str],
        deadline: float | None = None,
        return_exceptions: bool = False,
    ) -> list[EmbeddingResult | BaseException]:
        """Embed several texts with bounded concurrency to respect rate limits."""
        factories = [lambda t=t: self.embed(t, deadline) for t in texts]
        return await gather_bounded(factories, self._max_concurrency, return_exceptions)

    async def complete(
        self,
        messages: list[ChatMessage],
        max_tokens: int = 1024,
        temperature: float = 0.1,
        deadline: float | None = None,
    ) -> CompletionResult:
        async def invoke(backend: ProviderBackend) -> CompletionResult:
            return await backend.generate_chat_completion(
                messages, max_tokens=max_tokens, temperature=temperature
            )

        result, provider = await self._call("complete", invoke, deadline)
        result.provider = provider
        trace = current_trace()
        if trace is not None:
            trace.record_tokens(result.usage)
        self._metrics.increment("tokens_total", result.usage.total_tokens, provider=provider)
        return result

    def _order(self, operation: str) -> list[_ProviderSlot]:
        now = self._clock()
        usable = [
            s for s in self._slots
            if s.backend is not None and s.descriptor.supports(operation)
        ]
        ready = [s for s in usable if s.degraded_until <= now]
        cooling = [s for s in usable if s.degraded_until > now]
        return ready + cooling

    async def _call(
        self,
        operation: str,
        invoke: Callable[[ProviderBackend], Awaitable[T]],
        deadline: float | None,
    ) -> tuple[T, str]:
        errors: dict[str, str] = {}
        for slot in self._order(operation):
            name = slot.descriptor.name
            timeout = self._timeout
            if deadline is not None:
                remaining = deadline - self._clock()
                if remaining <= 0:
                    errors[name] = "deadline exceeded before call"
                    self._record(name, operation, "failed", errors[name])
                    break
                timeout = min(timeout, remaining)

            try:
                result = await asyncio.wait_for(invoke(slot.backend), timeout=timeout)
            except TimeoutError:
                error, transient = f"timed out after {timeout:.2f}s", True
            except ProviderCallError as e:
                error, transient = str(e), e.transient
            except Exception as e:
                error, transient = f"{type(e).__name__}: {e}", False
            else:
                self._mark_healthy(slot)
                self._record(name, operation, "success")
                return result, name

            errors[name] = error
            if transient:
                self._mark_degraded(slot, operation, error)
            else:
                self._record(name, operation, "failed", error)
                logger.warning("provider_call_failed", provider=name, operation=operation, error=error)

        logger.error("provider_exhausted", operation=operation, errors=errors)
        self._metrics.increment("provider_exhausted", operation=operation)
        raise ProviderExhausted(operation, errors)

    def _mark_healthy(self, slot: _ProviderSlot) -> None:
        if slot.descriptor.health is not ProviderHealth.HEALTHY:
            logger.info("provider_recovered", provider=slot.descriptor.name)
        slot.degraded_until = 0.0
        slot.consecutive_failures = 0
        slot.descriptor.health = ProviderHealth.HEALTHY

    def _mark_degraded(self, slot: _ProviderSlot, operation: str, error: str) -> None:
        slot.consecutive_failures += 1
        slot.degraded_until = self._clock() + self._cooldown
        slot.descriptor.health = ProviderHealth.DEGRADED
        name = slot.descriptor.name
        logger.warning(
            "provider_degraded",
            provider=name,
            operation=operation,
            error=error,
            cooldown_seconds=self._cooldown,
            consecutive_failures=slot.consecutive_failures,
        )
        self._metrics.increment("provider_degraded", provider=name)
        self._record(name, operation, "degraded", error)
        trace = current_trace()
        if trace is not None:
            trace.add_reason(ReasonCode.PROVIDER_DEGRADED.value)

    def _record(self, provider: str, operation: str, outcome: str, error: str | None = None) -> None:
        self._metrics.increment("provider_calls", provider=provider, operation=operation, outcome=outcome)
        trace = current_trace()
        if trace is not None:
            trace.record_provider_event(
                ProviderEvent(provider=provider, operation=operation, outcome=outcome, error=error)
            )
