"""Document ingestion — loads tenant documents into registered collections.

Stamps the tenant on every document, assigns ids where missing and, for
collections with an embedding field, embeds the searchable text of
documents that arrive without a vector.
"""

import logging
import uuid
from typing import Any

from hoprag.application.interfaces.document_store import DocumentStore
from hoprag.application.services.embedding_service import EmbeddingService
from hoprag.application.services.schema_registry import SchemaRegistry
from hoprag.domain.entities.schema import CollectionSchema
from hoprag.domain.exceptions import SchemaNotFoundError

logger = logging.getLogger(__name__)


class DocumentIngestionService:
    """Application service for writing documents into the store."""

    def __init__(
        self,
        registry: SchemaRegistry,
        store: DocumentStore,
        embedding_service: EmbeddingService | None = None,
    ):
        self._registry = registry
        self._store = store
        self._embeddings = embedding_service

    async def ingest(
        self,
        collection: str,
        tenant_id: str,
        documents: list[dict[str, Any]],
    ) -> int:
        """Upsert ``documents`` for the tenant. Returns the number written."""
        schema = self._registry.get_schema(collection)
        if schema is None:
            raise SchemaNotFoundError(collection)
        if not documents:
            return 0

        prepared = [self._prepare(schema, tenant_id, doc) for doc in documents]
        if schema.embedding_field and self._embeddings is not None:
            await self._embed_missing(schema, prepared)

        written = await self._store.upsert(schema.name, prepared)
        logger.info("Ingested %d %s documents for tenant %s", written, schema.name, tenant_id)
        return written

    @staticmethod
    def _prepare(schema: CollectionSchema, tenant_id: str, doc: dict[str, Any]) -> dict[str, Any]:
        prepared = dict(doc)
        if not prepared.get(schema.id_field):
            prepared[schema.id_field] = str(uuid.uuid4())
        if schema.owner_field:
            prepared[schema.owner_field] = tenant_id
        return prepared

    async def _embed_missing(self, schema: CollectionSchema, docs: list[dict[str, Any]]) -> None:
        pending = [
            (doc, schema.searchable_text(doc)) for doc in docs
            if not doc.get(schema.embedding_field)
        ]
        pending = [(doc, text) for doc, text in pending if text]
        if not pending:
            return

        vectors = await self._embeddings.embed_documents([text for _, text in pending])
        for (doc, _), vector in zip(pending, vectors, strict=True):
            doc[schema.embedding_field] = vector
