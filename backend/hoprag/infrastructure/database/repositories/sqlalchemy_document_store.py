"""SQLAlchemy implementation of DocumentStore — JSONB documents with pgvector search."""

import logging
from typing import Any

from sqlalchemy import Float, case, cast, func, literal_column, select
from sqlalchemy.dialects.postgresql import insert
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from hoprag.application.interfaces.document_store import DocumentStore
from hoprag.application.services.schema_registry import SchemaRegistry
from hoprag.domain.entities.retrieval import AggregationOperation, AggregationSpec
from hoprag.domain.entities.schema import CollectionSchema, FieldType
from hoprag.domain.exceptions import DocumentStoreError
from hoprag.infrastructure.database.filter_compiler import compile_filter, json_node
from hoprag.infrastructure.database.models.document_models import (
    EMBEDDING_DIMENSIONS,
    DocumentModel,
)

logger = logging.getLogger(__name__)

_TS_CONFIG = literal_column("'simple'::regconfig")

_AGGREGATES = {
    AggregationOperation.SUM: func.sum,
    AggregationOperation.AVG: func.avg,
    AggregationOperation.MIN: func.min,
    AggregationOperation.MAX: func.max,
}


class SQLAlchemyDocumentStore(DocumentStore):
    """Concrete document store backed by one PostgreSQL ``documents`` table.

    The registry tells the store which field is the id and which carries the
    embedding; both are kept in their own columns rather than in ``data``.
    """

    def __init__(self, session: AsyncSession, registry: SchemaRegistry):
        self._session = session
        self._registry = registry

    # ── Reads ────────────────────────────────────────────────────────

    async def find(
        self,
        collection: str,
        filter: dict[str, Any],
        *,
        limit: int | None = None,
        skip: int = 0,
        sort: dict[str, int] | None = None,
    ) -> list[dict[str, Any]]:
        schema = self._schema(collection)
        stmt = select(DocumentModel).where(self._where(collection, filter, schema))

        for key, direction in (sort or {}).items():
            column = DocumentModel.id if key == schema.id_field else json_node(key)
            ordered = column.desc() if direction == -1 else column.asc()
            stmt = stmt.order_by(ordered.nulls_last())
        stmt = stmt.order_by(DocumentModel.id)

        if skip:
            stmt = stmt.offset(skip)
        if limit is not None:
            stmt = stmt.limit(limit)

        result = await self._execute("find", collection, stmt)
        return [self._to_document(m, schema) for m in result.scalars().all()]

    async def count(self, collection: str, filter: dict[str, Any]) -> int:
        schema = self._schema(collection)
        stmt = (
            select(func.count())
            .select_from(DocumentModel)
            .where(self._where(collection, filter, schema))
        )
        result = await self._execute("count", collection, stmt)
        return result.scalar_one()

    async def aggregate(
        self,
        collection: str,
        filter: dict[str, Any],
        spec: AggregationSpec,
    ) -> list[dict[str, Any]]:
        schema = self._schema(collection)

        columns = []
        if spec.group_by:
            node = json_node(spec.group_by)
            group_field = schema.get_field(spec.group_by)
            if group_field is not None and group_field.type == FieldType.ARRAY:
                # One group per array element.
                node = func.jsonb_array_elements(node)
            columns.append(node.label("grp"))
        if spec.operation != AggregationOperation.COUNT and spec.field:
            value_node = json_node(spec.field)
            columns.append(
                case((func.jsonb_typeof(value_node) == "number", cast(value_node.astext, Float))).label("val")
            )
        if not columns:
            columns.append(DocumentModel.id.label("ref"))

        inner = (
            select(*columns)
            .where(self._where(collection, filter, schema))
            .subquery()
        )

        if spec.operation == AggregationOperation.COUNT or not spec.field:
            value = func.count()
        else:
            value = _AGGREGATES[spec.operation](inner.c.val)

        if spec.group_by:
            stmt = select(inner.c.grp, value.label("value"), func.count().label("n")).group_by(inner.c.grp)
        else:
            stmt = select(value.label("value"), func.count().label("n"))

        result = await self._execute("aggregate", collection, stmt)
        rows = []
        for row in result.all():
            rows.append({
                "group": row.grp if spec.group_by else None,
                "value": _number(row.value),
                "count": int(row.n),
            })
        return rows

    async def text_search(
        self,
        collection: str,
        text: str,
        filter: dict[str, Any],
        *,
        limit: int,
    ) -> list[dict[str, Any]]:
        schema = self._schema(collection)
        vector = func.to_tsvector(_TS_CONFIG, DocumentModel.search_text)
        query = func.plainto_tsquery(_TS_CONFIG, text)
        rank = func.ts_rank(vector, query).label("rank")

        stmt = (
            select(DocumentModel, rank)
            .where(self._where(collection, filter, schema))
            .where(vector.op("@@")(query))
            .order_by(rank.desc(), DocumentModel.id)
            .limit(limit)
        )
        result = await self._execute("text_search", collection, stmt)
        rows = result.all()
        if not rows:
            return []

        # ts_rank is unbounded; scale to [0, 1] against the best hit.
        top = max(float(row.rank) for row in rows) or 1.0
        return [
            {**self._to_document(row.DocumentModel, schema), "score": float(row.rank) / top}
            for row in rows
        ]

    async def vector_search(
        self,
        collection: str,
        embedding: list[float],
        filter: dict[str, Any],
        *,
        embedding_field: str,
        limit: int,
    ) -> list[dict[str, Any]]:
        schema = self._schema(collection)
        distance = DocumentModel.embedding.cosine_distance(embedding).label("distance")

        stmt = (
            select(DocumentModel, distance)
            .where(self._where(collection, filter, schema))
            .where(DocumentModel.embedding.is_not(None))
            .order_by(distance)
            .limit(limit)
        )
        result = await self._execute("vector_search", collection, stmt)
        return [
            {**self._to_document(row.DocumentModel, schema), "score": 1.0 - float(row.distance)}
            for row in result.all()
        ]

    async def has_text_index(self, collection: str) -> bool:
        return True

    async def has_vector_index(self, collection: str) -> bool:
        return self._registry.has_embedding(collection)

    # ── Writes ───────────────────────────────────────────────────────

    async def upsert(self, collection: str, documents: list[dict[str, Any]]) -> int:
        if not documents:
            return 0
        schema = self._schema(collection)
        rows = [self._to_row(collection, doc, schema) for doc in documents]

        stmt = insert(DocumentModel).values(rows)
        stmt = stmt.on_conflict_do_update(
            index_elements=[DocumentModel.collection, DocumentModel.id],
            set_={
                "data": stmt.excluded.data,
                "search_text": stmt.excluded.search_text,
                "embedding": stmt.excluded.embedding,
                "updated_at": func.now(),
            },
        )
        await self._execute("upsert", collection, stmt)
        await self._session.flush()
        logger.info("Upserted %d documents into %s", len(rows), collection)
        return len(rows)

    # ── Mapping ──────────────────────────────────────────────────────

    def _schema(self, collection: str) -> CollectionSchema:
        schema = self._registry.get_schema(collection)
        if schema is None:
            return CollectionSchema(name=collection, fields=())
        return schema

    def _where(self, collection: str, filter: dict[str, Any], schema: CollectionSchema):
        return (DocumentModel.collection == collection) & compile_filter(
            filter, collection=collection, id_field=schema.id_field
        )

    @staticmethod
    def _to_document(model: DocumentModel, schema: CollectionSchema) -> dict[str, Any]:
        doc = {schema.id_field: model.id, **(model.data or {})}
        if schema.embedding_field and model.embedding is not None:
            doc[schema.embedding_field] = [float(v) for v in model.embedding]
        return doc

    @staticmethod
    def _to_row(collection: str, doc: dict[str, Any], schema: CollectionSchema) -> dict[str, Any]:
        data = {k: v for k, v in doc.items() if k not in (schema.id_field, schema.embedding_field)}
        embedding = doc.get(schema.embedding_field) if schema.embedding_field else None
        if embedding is not None and len(embedding) != EMBEDDING_DIMENSIONS:
            logger.warning(
                "Dropping %d-dim embedding for %s/%s (column holds %d)",
                len(embedding), collection, doc.get(schema.id_field), EMBEDDING_DIMENSIONS,
            )
            embedding = None
        return {
            "collection": collection,
            "id": str(doc[schema.id_field]),
            "data": data,
            "search_text": schema.searchable_text(doc) or None,
            "embedding": embedding,
        }

    async def _execute(self, operation: str, collection: str, stmt):
        try:
            return await self._session.execute(stmt)
        except SQLAlchemyError as e:
            logger.error("%s on %s failed: %s", operation, collection, e)
            raise DocumentStoreError(operation, collection, str(e)) from e


def _number(value: Any) -> float | int | None:
    if value is None:
        return None
    if isinstance(value, int):
        return value
    return float(value)
