"""Schema API controller — read-only introspection of the collection registry."""

from fastapi import APIRouter, Depends, HTTPException, Query, status

from hoprag.application.schemas.retrieval import HoppingPathSchema
from hoprag.application.schemas.schema_registry import (
    CollectionDetailSchema,
    CollectionSummarySchema,
)
from hoprag.application.services import PathFinder, SchemaRegistry
from hoprag.infrastructure.dependencies import get_schema_registry

router = APIRouter(prefix="/schema", tags=["schema"])


@router.get("/collections", response_model=list[CollectionSummarySchema])
async def list_collections(
    registry: SchemaRegistry = Depends(get_schema_registry),
):
    return [
        CollectionSummarySchema(
            name=schema.name,
            description=schema.description,
            related_collections=registry.get_related_collections(schema.name),
            has_embedding=registry.has_embedding(schema.name),
        )
        for schema in registry.all_schemas()
    ]


@router.get("/collections/{name}", response_model=CollectionDetailSchema)
async def get_collection(
    name: str,
    registry: SchemaRegistry = Depends(get_schema_registry),
):
    schema = registry.get_schema(name)
    if schema is None:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail=f"Collection '{name}' not found",
        )
    return CollectionDetailSchema.from_domain(schema)


@router.get("/path", response_model=list[HoppingPathSchema])
async def find_path(
    source: str = Query(..., min_length=1),
    target: str = Query(..., min_length=1),
    registry: SchemaRegistry = Depends(get_schema_registry),
):
    """Hop chain from ``source`` to ``target``; empty when the collections are not connected."""
    for name in (source, target):
        if name not in registry:
            raise HTTPException(
                status_code=status.HTTP_404_NOT_FOUND,
                detail=f"Collection '{name}' not found",
            )
    chain = PathFinder(registry).find_chain(source, target)
    return [HoppingPathSchema.from_domain(p) for p in chain]
