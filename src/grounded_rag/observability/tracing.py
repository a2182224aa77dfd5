"""Lightweight request tracing with per-stage spans.

The active trace is published through a context variable so the provider
gateway can attribute provider events and token usage to the stage that
issued the call without every call site passing the trace along.
"""

from __future__ import annotations

import time
from contextlib import contextmanager
from contextvars import ContextVar
from uuid import uuid4

from grounded_rag.models.domain import ProviderEvent, StageTelemetry, TokenUsage

_current_trace: ContextVar[TraceContext | None] = ContextVar("grounded_rag_trace", default=None)


def current_trace() -> TraceContext | None:
    return _current_trace.get()


class TraceContext:
    def __init__(self, trace_id: str | None = None) -> None:
        self.trace_id = trace_id or str(uuid4())
        self.stages: list[StageTelemetry] = []
        self.reason_codes: list[str] = []
        self.start_time = time.monotonic()
        self._active: StageTelemetry | None = None

    @contextmanager
    def activate(self):
        token = _current_trace.set(self)
        try:
            yield self
        finally:
            _current_trace.reset(token)

    @contextmanager
    def stage(self, name: str):
        telemetry = StageTelemetry(stage=name)
        previous = self._active
        self._active = telemetry
        start = time.monotonic()
        try:
            yield telemetry
        finally:
            telemetry.duration_ms = (time.monotonic() - start) * 1000
            self._active = previous
            self.stages.append(telemetry)

    def record_provider_event(self, event: ProviderEvent) -> None:
        if self._active is None:
            return
        self._active.provider_events.append(event)
        if event.outcome == "success" and event.provider not in self._active.providers:
            self._active.providers.append(event.provider)

    def record_tokens(self, usage: TokenUsage) -> None:
        if self._active is not None:
            self._active.token_usage = self._active.token_usage + usage

    def add_reason(self, code: str) -> None:
        if code not in self.reason_codes:
            self.reason_codes.append(code)

    @property
    def elapsed_ms(self) -> float:
        return (time.monotonic() - self.start_time) * 1000

    @property
    def token_usage(self) -> TokenUsage:
        total = TokenUsage()
        for s in self.stages:
            total = total + s.token_usage
        return total

    def timings(self) -> dict[str, float]:
        return {s.stage: round(s.duration_ms, 2) for s in self.stages}
