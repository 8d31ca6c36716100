"""Retrieval API controller — single searches and multi-hop plan execution."""

import asyncio
import logging
from typing import Any

from fastapi import APIRouter, Depends, HTTPException, Request, status
from fastapi.responses import StreamingResponse

from hoprag.config import get_settings
from hoprag.application.schemas.retrieval import (
    PlanExecutionResponse,
    PlanRequest,
    SearchRequest,
    SearchResponse,
)
from hoprag.application.services import (
    EmbeddingService,
    PlanOrchestrator,
    ProgressStream,
    SchemaRegistry,
    SearchService,
)
from hoprag.domain.entities.request_context import RequestContext
from hoprag.domain.exceptions import EmbeddingError, SchemaNotFoundError
from hoprag.infrastructure.dependencies import (
    build_plan_orchestrator,
    get_embedding_service,
    get_plan_orchestrator,
    get_schema_registry,
    get_search_service,
    get_tenant_id,
    open_document_store,
)

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/retrieval", tags=["retrieval"])


def _require_collections(registry: SchemaRegistry, names: list[str]) -> None:
    for name in names:
        if name not in registry:
            raise HTTPException(
                status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
                detail=str(SchemaNotFoundError(name)),
            )


# ── Endpoints ────────────────────────────────────────────────────────


@router.post("/search", response_model=SearchResponse)
async def search(
    body: SearchRequest,
    tenant_id: str = Depends(get_tenant_id),
    registry: SchemaRegistry = Depends(get_schema_registry),
    service: SearchService = Depends(get_search_service),
):
    """Search one collection with the best available method."""
    if body.collection not in registry:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail=str(SchemaNotFoundError(body.collection)),
        )
    try:
        result = await service.search(body.to_domain(tenant_id))
    except EmbeddingError as e:
        raise HTTPException(status_code=status.HTTP_502_BAD_GATEWAY, detail=str(e))
    return SearchResponse.from_domain(result)


@router.post("/execute", response_model=PlanExecutionResponse)
async def execute_plan(
    body: PlanRequest,
    tenant_id: str = Depends(get_tenant_id),
    registry: SchemaRegistry = Depends(get_schema_registry),
    orchestrator: PlanOrchestrator = Depends(get_plan_orchestrator),
):
    """Execute a retrieval plan; failing steps are reported, never raised."""
    _require_collections(registry, [s.collection for s in body.steps])
    context = RequestContext(
        tenant_id=tenant_id,
        time_budget_seconds=get_settings().total_timeout_seconds,
    )
    result = await orchestrator.execute(body.to_domain(), tenant_id, context=context)
    return PlanExecutionResponse.from_domain(result)


@router.post("/execute/stream")
async def execute_plan_stream(
    body: PlanRequest,
    request: Request,
    tenant_id: str = Depends(get_tenant_id),
    registry: SchemaRegistry = Depends(get_schema_registry),
    embedding_service: EmbeddingService | None = Depends(get_embedding_service),
) -> StreamingResponse:
    """Execute a plan and stream progress as Server-Sent Events.

    Emits ``progress`` events while steps run, then a single ``result``
    event (or ``error``) before the stream closes.
    """
    _require_collections(registry, [s.collection for s in body.steps])
    plan = body.to_domain()
    stream = ProgressStream()

    async def report(event: str, data: dict[str, Any]) -> None:
        await stream.publish("progress", {"event": event, **data})

    context = RequestContext(
        tenant_id=tenant_id,
        progress=report,
        time_budget_seconds=get_settings().total_timeout_seconds,
    )

    async def run() -> None:
        try:
            # The store lives inside the task: request-scoped dependencies
            # may already be closed while the response is streaming.
            async with open_document_store(request.app, registry) as store:
                orchestrator = build_plan_orchestrator(registry, store, embedding_service)
                result = await orchestrator.execute(plan, tenant_id, context=context)
            response = PlanExecutionResponse.from_domain(result)
            await stream.publish("result", response.model_dump(mode="json", by_alias=True))
        except Exception as e:
            logger.error("Streamed plan %s failed: %s", context.request_id, e)
            await stream.publish("error", {"request_id": context.request_id, "message": str(e)})
        finally:
            await stream.close()

    async def event_generator():
        task = asyncio.create_task(run())
        try:
            async for event in stream.events():
                yield event
        finally:
            if not task.done():
                task.cancel()

    return StreamingResponse(
        event_generator(),
        media_type="text/event-stream",
        headers={
            "Cache-Control": "no-cache",
            "Connection": "keep-alive",
            "X-Accel-Buffering": "no",
        },
    )
