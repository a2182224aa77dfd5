"""Health and metrics endpoints."""

from __future__ import annotations

from fastapi import APIRouter, Depends

from grounded_rag.api.dependencies import get_document_store, get_gateway, get_metrics
from grounded_rag.models.domain import ProviderHealth
from grounded_rag.models.schemas import HealthResponse, ProviderStatus
from grounded_rag.observability.metrics import MetricsRegistry
from grounded_rag.providers.gateway import ProviderGateway
from grounded_rag.store.memory_store import InMemoryDocumentStore

router = APIRouter()


@router.get("/health", response_model=HealthResponse)
async def health(
    gateway: ProviderGateway = Depends(get_gateway),
    store: InMemoryDocumentStore = Depends(get_document_store),
) -> HealthResponse:
    descriptors = gateway.descriptors()
    healthy = any(d.health is ProviderHealth.HEALTHY for d in descriptors)
    return HealthResponse(
        status="ok" if healthy else "degraded",
        chunk_count=store.size,
        providers=[
            ProviderStatus(
                name=d.name,
                kind=d.kind.value,
                priority=d.priority,
                health=d.health.value,
                chat_model=d.chat_model,
                embedding_model=d.embedding_model,
            )
            for d in descriptors
        ],
    )


@router.get("/metrics")
async def metrics(registry: MetricsRegistry = Depends(get_metrics)) -> dict:
    return registry.snapshot()
