"""Documents API controller — tenant-scoped ingestion into a collection."""

from fastapi import APIRouter, Depends, HTTPException, status

from hoprag.application.schemas.retrieval import IngestRequest, IngestResponse
from hoprag.application.services import DocumentIngestionService
from hoprag.domain.exceptions import DocumentStoreError, EmbeddingError, SchemaNotFoundError
from hoprag.infrastructure.dependencies import get_document_ingestion_service, get_tenant_id

router = APIRouter(prefix="/documents", tags=["documents"])


@router.post(
    "/{collection}",
    response_model=IngestResponse,
    status_code=status.HTTP_201_CREATED,
)
async def ingest_documents(
    collection: str,
    body: IngestRequest,
    tenant_id: str = Depends(get_tenant_id),
    service: DocumentIngestionService = Depends(get_document_ingestion_service),
):
    """Upsert documents; ids are assigned when missing and the owner is always the caller."""
    try:
        written = await service.ingest(collection, tenant_id, body.documents)
    except SchemaNotFoundError as e:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(e))
    except EmbeddingError as e:
        raise HTTPException(status_code=status.HTTP_502_BAD_GATEWAY, detail=str(e))
    except DocumentStoreError as e:
        raise HTTPException(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail=str(e))
    return IngestResponse(collection=collection, written=written)
