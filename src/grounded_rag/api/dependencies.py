"""FastAPI dependency injection helpers."""

from __future__ import annotations

from fastapi import Request

from grounded_rag.observability.metrics import MetricsRegistry
from grounded_rag.pipeline.orchestrator import PipelineOrchestrator
from grounded_rag.providers.gateway import ProviderGateway
from grounded_rag.store.memory_store import InMemoryDocumentStore


def get_orchestrator(request: Request) -> PipelineOrchestrator:
    return request.app.state.orchestrator


def get_gateway(request: Request) -> ProviderGateway:
    return request.app.state.gateway


def get_document_store(request: Request) -> InMemoryDocumentStore:
    return request.app.state.document_store


def get_metrics(request: Request) -> MetricsRegistry:
    return request.app.state.metrics
