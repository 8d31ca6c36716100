"""FastAPI dependency injection — wires infrastructure to application layer."""

from collections.abc import AsyncGenerator, AsyncIterator
from contextlib import asynccontextmanager

from fastapi import Depends, FastAPI, Header, Request

from hoprag.config import get_settings
from hoprag.application.interfaces.document_store import DocumentStore
from hoprag.application.services import (
    DocumentIngestionService,
    EmbeddingService,
    FilterSanitizer,
    HopExecutor,
    PathFinder,
    PlanOrchestrator,
    SchemaRegistry,
    SearchService,
)
from hoprag.infrastructure.database.session import async_session_factory
from hoprag.infrastructure.database.repositories import SQLAlchemyDocumentStore
from hoprag.infrastructure.openrouter import OpenRouterEmbeddingProvider


def get_tenant_id(
    x_tenant_id: str = Header(..., alias="X-Tenant-Id", min_length=1),
) -> str:
    """Every retrieval request acts on behalf of exactly one tenant."""
    return x_tenant_id.strip()


def get_schema_registry(request: Request) -> SchemaRegistry:
    """The registry loaded at startup; read-only and shared by all requests."""
    return request.app.state.schema_registry


@asynccontextmanager
async def open_document_store(app: FastAPI, registry: SchemaRegistry) -> AsyncIterator[DocumentStore]:
    """Yield the app's in-memory store when one is installed, else a session-scoped PostgreSQL store."""
    store = getattr(app.state, "document_store", None)
    if store is not None:
        yield store
        return

    async with async_session_factory() as session:
        try:
            yield SQLAlchemyDocumentStore(session, registry)
            await session.commit()
        except Exception:
            await session.rollback()
            raise


async def get_document_store(
    request: Request,
    registry: SchemaRegistry = Depends(get_schema_registry),
) -> AsyncGenerator[DocumentStore, None]:
    """Provides the configured store — one DB session per request for PostgreSQL."""
    async with open_document_store(request.app, registry) as store:
        yield store


def get_embedding_service() -> EmbeddingService | None:
    """Embeddings are optional: without an API key searches fall back to text."""
    settings = get_settings()
    if not settings.openrouter_api_key:
        return None
    provider = OpenRouterEmbeddingProvider(
        api_key=settings.openrouter_api_key,
        base_url=settings.openrouter_base_url,
        app_name=settings.openrouter_app_name,
        model=settings.embedding_model,
        model_dimensions=settings.embedding_dimensions,
    )
    return EmbeddingService(provider)


# ── Builders ─────────────────────────────────────────────────────────


def build_search_service(
    registry: SchemaRegistry,
    store: DocumentStore,
    embedding_service: EmbeddingService | None,
) -> SearchService:
    settings = get_settings()
    return SearchService(
        registry,
        store,
        embedding_service,
        FilterSanitizer(registry),
        vector_weight=settings.hybrid_vector_weight,
        vector_search_enabled=settings.vector_search_enabled,
        text_search_enabled=settings.text_search_enabled,
        vector_candidate_limit=settings.vector_candidate_limit,
        default_limit=settings.default_search_limit,
    )


def build_plan_orchestrator(
    registry: SchemaRegistry,
    store: DocumentStore,
    embedding_service: EmbeddingService | None,
) -> PlanOrchestrator:
    settings = get_settings()
    return PlanOrchestrator(
        registry,
        build_search_service(registry, store, embedding_service),
        HopExecutor(registry, store, default_limit=settings.aggregate_default_limit),
        PathFinder(registry),
        aggregate_default_limit=settings.aggregate_default_limit,
    )


# ── Service providers ────────────────────────────────────────────────


async def get_search_service(
    registry: SchemaRegistry = Depends(get_schema_registry),
    store: DocumentStore = Depends(get_document_store),
    embedding_service: EmbeddingService | None = Depends(get_embedding_service),
) -> AsyncGenerator[SearchService, None]:
    """Provides a SearchService tuned from settings."""
    yield build_search_service(registry, store, embedding_service)


async def get_plan_orchestrator(
    registry: SchemaRegistry = Depends(get_schema_registry),
    store: DocumentStore = Depends(get_document_store),
    embedding_service: EmbeddingService | None = Depends(get_embedding_service),
) -> AsyncGenerator[PlanOrchestrator, None]:
    """Provides a PlanOrchestrator sharing the request's store."""
    yield build_plan_orchestrator(registry, store, embedding_service)


async def get_document_ingestion_service(
    registry: SchemaRegistry = Depends(get_schema_registry),
    store: DocumentStore = Depends(get_document_store),
    embedding_service: EmbeddingService | None = Depends(get_embedding_service),
) -> AsyncGenerator[DocumentIngestionService, None]:
    """Provides a DocumentIngestionService with the configured store."""
    yield DocumentIngestionService(registry, store, embedding_service)
