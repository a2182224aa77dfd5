"""FastAPI application factory with lifespan management."""

from __future__ import annotations

from contextlib import asynccontextmanager
from pathlib import Path

from fastapi import FastAPI

from grounded_rag.api.middleware import RequestTimingMiddleware
from grounded_rag.api.routes_health import router as health_router
from grounded_rag.api.routes_query import router as query_router
from grounded_rag.cache.memory_store import InMemoryCacheStore
from grounded_rag.cache.sqlite_store import SQLiteCacheStore
from grounded_rag.config.settings import Settings
from grounded_rag.observability.logger import get_logger, setup_logging
from grounded_rag.observability.metrics import MetricsRegistry
from grounded_rag.pipeline.orchestrator import PipelineOrchestrator
from grounded_rag.protocols.cache import CacheStore
from grounded_rag.providers.gateway import ProviderGateway
from grounded_rag.store.memory_store import InMemoryDocumentStore

logger = get_logger("app")


async def create_cache_store(settings: Settings) -> CacheStore:
    if settings.cache_backend == "sqlite":
        Path(settings.cache_db_path).parent.mkdir(parents=True, exist_ok=True)
        cache = SQLiteCacheStore(settings.cache_db_path)
        await cache.initialize()
        await cache.purge_expired()
        return cache
    return InMemoryCacheStore()


def create_app(
    settings: Settings | None = None,
    gateway: ProviderGateway | None = None,
    document_store: InMemoryDocumentStore | None = None,
    cache: CacheStore | None = None,
) -> FastAPI:
    """Build the app. Collaborators not passed in are created from settings at startup."""

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        app_settings = settings or Settings()
        setup_logging()
        metrics = MetricsRegistry()

        store = document_store
        if store is None:
            if app_settings.corpus_path:
                store = InMemoryDocumentStore.from_jsonl(app_settings.corpus_path)
            else:
                store = InMemoryDocumentStore(dimensions=app_settings.embedding_dimensions)
        provider_gateway = gateway or ProviderGateway.from_settings(app_settings, metrics=metrics)
        stage_cache = cache or await create_cache_store(app_settings)

        app.state.settings = app_settings
        app.state.metrics = metrics
        app.state.gateway = provider_gateway
        app.state.document_store = store
        app.state.orchestrator = PipelineOrchestrator.from_components(
            app_settings, provider_gateway, store, stage_cache, metrics=metrics
        )

        logger.info(
            "startup_complete",
            chunks=store.size,
            providers=[d.name for d in provider_gateway.descriptors()],
            cache_backend=type(stage_cache).__name__,
        )
        yield
        logger.info("shutdown_complete")

    app = FastAPI(
        title="Grounded RAG",
        version="0.1.0",
        description="Multi-stage retrieval-augmented answering with provider fallback",
        lifespan=lifespan,
    )
    app.add_middleware(RequestTimingMiddleware)
    app.include_router(health_router, tags=["health"])
    app.include_router(query_router, tags=["query"])
    return app
