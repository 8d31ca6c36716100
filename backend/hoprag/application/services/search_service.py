"""Search fusion engine — vector, text, metadata and hybrid search over one collection.

Every search is tenant-scoped: the collection's owner field is injected
into the sanitized filter and overwrites any caller-supplied value. Store
failures degrade to fallbacks (in-process cosine scan, substring match)
and, when those fail too, to an empty result with zero confidence.
"""

import asyncio
import logging
import re
from typing import Any

import numpy as np

from hoprag.application.interfaces.document_store import DocumentStore
from hoprag.application.services.embedding_service import EmbeddingService
from hoprag.application.services.filter_sanitizer import FilterSanitizer
from hoprag.application.services.schema_registry import SchemaRegistry
from hoprag.domain.entities.retrieval import AggregationSpec
from hoprag.domain.entities.schema import CollectionSchema
from hoprag.domain.entities.search import SearchMethod, SearchQuery, SearchResult
from hoprag.domain.exceptions import EmbeddingError, SearchExecutionError

logger = logging.getLogger(__name__)

# ── Confidence constants ────────────────────────────────────────────
_TEXT_INDEX_CONFIDENCE = 0.7
_TEXT_SUBSTRING_CONFIDENCE = 0.5
_METADATA_CONFIDENCE = 1.0
_UNSCORED_VECTOR_CONFIDENCE = 0.5


class SearchService:
    """Executes single-collection searches and fuses hybrid results."""

    def __init__(
        self,
        registry: SchemaRegistry,
        store: DocumentStore,
        embedding_service: EmbeddingService | None = None,
        sanitizer: FilterSanitizer | None = None,
        *,
        vector_weight: float = 0.7,
        vector_search_enabled: bool = True,
        text_search_enabled: bool = True,
        vector_candidate_limit: int = 100,
        default_limit: int = 10,
    ):
        if not 0.0 <= vector_weight <= 1.0:
            raise ValueError(f"vector_weight must be within [0, 1], got {vector_weight}")
        self._registry = registry
        self._store = store
        self._embeddings = embedding_service
        self._sanitizer = sanitizer or FilterSanitizer(registry)
        self._vector_weight = vector_weight
        self._vector_enabled = vector_search_enabled
        self._text_enabled = text_search_enabled
        self._candidate_limit = vector_candidate_limit
        self._default_limit = default_limit

    # ── Public API ───────────────────────────────────────────────────

    async def search(self, query: SearchQuery) -> SearchResult:
        """Run the best-suited search mode for ``query``.

        Raises:
            EmbeddingError: in pure vector mode, when the query cannot be embedded.
        """
        schema = self._registry.get_schema(query.collection)
        if schema is None:
            logger.warning("Search on unknown collection '%s'", query.collection)
            return SearchResult.empty(SearchMethod.METADATA)

        sanitized = self._sanitizer.sanitize(schema.name, query.filter, sort=query.sort)
        scoped = scope_to_tenant(schema, sanitized.filter, query.tenant_id)
        limit = query.limit or self._default_limit
        method = self.select_method(schema, sanitized.filter, sanitized.sort, query)

        try:
            if method == SearchMethod.METADATA:
                result = await self._metadata_search(schema, scoped, sanitized.sort, query.skip, limit)
            elif method == SearchMethod.HYBRID:
                result = await self._hybrid_search(schema, query, scoped, limit)
            elif method == SearchMethod.VECTOR:
                result = await self._vector_search(schema, query.vector_query, scoped, limit)
            else:
                result = await self._text_search(schema, query.text_query, scoped, limit)
        except EmbeddingError:
            raise
        except Exception as exc:
            error = SearchExecutionError(schema.name, method.value, str(exc))
            logger.error("%s", error)
            return SearchResult.empty(method)

        result.documents = [schema.without_embedding(d) for d in result.documents]
        logger.info(
            "Search %s on %s → %d documents (confidence=%.2f)",
            result.method.value, schema.name, len(result.documents), result.confidence,
        )
        return result

    def select_method(
        self,
        schema: CollectionSchema,
        filter: dict[str, Any],
        sort: dict[str, int] | None,
        query: SearchQuery,
    ) -> SearchMethod:
        """Pick the search mode; the first matching rule wins."""
        has_specific_filter = any(key != schema.owner_field for key in filter)
        if has_specific_filter or sort:
            return SearchMethod.METADATA
        # Blank query text counts as absent.
        vector_query = (query.vector_query or "").strip()
        text_query = (query.text_query or "").strip()
        if vector_query and text_query:
            return SearchMethod.HYBRID
        if vector_query:
            return SearchMethod.VECTOR
        if text_query:
            return SearchMethod.TEXT
        return SearchMethod.METADATA

    async def aggregate(
        self,
        collection: str,
        tenant_id: str,
        spec: AggregationSpec,
        filter: dict[str, Any] | None = None,
    ) -> SearchResult:
        """Tenant-scoped aggregation pass-through.

        Rows come back as documents shaped ``{"group", "value", "count"}``.
        """
        schema = self._registry.get_schema(collection)
        if schema is None:
            logger.warning("Aggregation on unknown collection '%s'", collection)
            return SearchResult.empty(SearchMethod.METADATA)

        sanitized = self._sanitizer.sanitize(schema.name, filter)
        scoped = scope_to_tenant(schema, sanitized.filter, tenant_id)
        try:
            rows = await self._store.aggregate(schema.name, scoped, spec)
        except Exception as exc:
            error = SearchExecutionError(schema.name, "aggregate", str(exc))
            logger.error("%s", error)
            return SearchResult.empty(SearchMethod.METADATA)

        return SearchResult(
            documents=rows,
            total_count=len(rows),
            method=SearchMethod.METADATA,
            confidence=_METADATA_CONFIDENCE,
        )

    # ── Modes ────────────────────────────────────────────────────────

    async def _metadata_search(
        self,
        schema: CollectionSchema,
        filter: dict[str, Any],
        sort: dict[str, int] | None,
        skip: int,
        limit: int,
    ) -> SearchResult:
        docs = await self._store.find(schema.name, filter, limit=limit, skip=skip, sort=sort)
        total = await self._store.count(schema.name, filter)
        return SearchResult(
            documents=docs,
            total_count=total,
            method=SearchMethod.METADATA,
            confidence=_METADATA_CONFIDENCE,
        )

    async def _vector_search(
        self,
        schema: CollectionSchema,
        text: str,
        filter: dict[str, Any],
        limit: int,
    ) -> SearchResult:
        if not schema.embedding_field or self._embeddings is None:
            logger.info("No embeddings for %s — using text search instead", schema.name)
            return await self._text_search(schema, text, filter, limit)

        embedding = await self._embeddings.embed(text)

        if self._vector_enabled and await self._store.has_vector_index(schema.name):
            try:
                docs = await self._store.vector_search(
                    schema.name, embedding, filter,
                    embedding_field=schema.embedding_field, limit=limit,
                )
                return SearchResult(
                    documents=docs,
                    total_count=len(docs),
                    method=SearchMethod.VECTOR,
                    confidence=_vector_confidence(docs),
                )
            except Exception as exc:
                logger.warning(
                    "Vector index search failed on %s, falling back to cosine scan: %s",
                    schema.name, exc,
                )

        docs = await self._cosine_scan(schema, embedding, filter, limit)
        return SearchResult(
            documents=docs,
            total_count=len(docs),
            method=SearchMethod.VECTOR,
            confidence=_vector_confidence(docs),
        )

    async def _cosine_scan(
        self,
        schema: CollectionSchema,
        embedding: list[float],
        filter: dict[str, Any],
        limit: int,
    ) -> list[dict[str, Any]]:
        """Rank up to ``vector_candidate_limit`` candidates by cosine similarity in process."""
        candidates = await self._store.find(schema.name, filter, limit=self._candidate_limit)
        query = np.asarray(embedding, dtype=float)
        with_vectors = [
            d for d in candidates
            if isinstance(d.get(schema.embedding_field), list)
            and len(d[schema.embedding_field]) == len(query)
        ]
        if not with_vectors:
            return []

        matrix = np.asarray([d[schema.embedding_field] for d in with_vectors], dtype=float)
        norms = np.linalg.norm(matrix, axis=1) * np.linalg.norm(query)
        similarities = np.divide(
            matrix @ query, norms, out=np.zeros(len(with_vectors)), where=norms > 0
        )

        order = np.argsort(-similarities, kind="stable")[:limit]
        return [{**with_vectors[i], "score": float(similarities[i])} for i in order]

    async def _text_search(
        self,
        schema: CollectionSchema,
        text: str,
        filter: dict[str, Any],
        limit: int,
    ) -> SearchResult:
        if self._text_enabled and await self._store.has_text_index(schema.name):
            try:
                docs = await self._store.text_search(schema.name, text, filter, limit=limit)
                return SearchResult(
                    documents=docs,
                    total_count=len(docs),
                    method=SearchMethod.TEXT,
                    confidence=_TEXT_INDEX_CONFIDENCE if docs else 0.0,
                )
            except Exception as exc:
                logger.warning(
                    "Text index search failed on %s, falling back to substring match: %s",
                    schema.name, exc,
                )

        fields = self._registry.get_text_fields(schema.name)
        if not fields:
            return await self._metadata_search(schema, filter, None, 0, limit)

        pattern = re.escape(text.strip())
        substring = [{name: {"$regex": pattern, "$options": "i"}} for name in fields]
        if "$or" in filter:
            combined = {"$and": [filter, {"$or": substring}]}
        else:
            combined = {**filter, "$or": substring}

        docs = await self._store.find(schema.name, combined, limit=limit)
        return SearchResult(
            documents=docs,
            total_count=len(docs),
            method=SearchMethod.TEXT,
            confidence=_TEXT_SUBSTRING_CONFIDENCE if docs else 0.0,
        )

    async def _hybrid_search(
        self,
        schema: CollectionSchema,
        query: SearchQuery,
        filter: dict[str, Any],
        limit: int,
    ) -> SearchResult:
        vector, text = await asyncio.gather(
            self._vector_search(schema, query.vector_query, filter, limit),
            self._text_search(schema, query.text_query, filter, limit),
            return_exceptions=True,
        )
        vector = _side_or_empty(vector, SearchMethod.VECTOR, schema.name)
        text = _side_or_empty(text, SearchMethod.TEXT, schema.name)

        docs = fuse_results(
            vector.documents,
            text.documents,
            vector_weight=self._vector_weight,
            limit=limit,
            id_field=schema.id_field,
        )
        return SearchResult(
            documents=docs,
            total_count=len(docs),
            method=SearchMethod.HYBRID,
            confidence=(vector.confidence + text.confidence) / 2,
        )


# ── Helpers ──────────────────────────────────────────────────────────


def scope_to_tenant(
    schema: CollectionSchema, filter: dict[str, Any], tenant_id: str
) -> dict[str, Any]:
    """Return a copy of ``filter`` restricted to the tenant's documents."""
    scoped = dict(filter)
    if schema.owner_field:
        scoped[schema.owner_field] = tenant_id
    return scoped


def fuse_results(
    vector_docs: list[dict[str, Any]],
    text_docs: list[dict[str, Any]],
    *,
    vector_weight: float,
    limit: int,
    id_field: str = "id",
) -> list[dict[str, Any]]:
    """Merge two ranked lists into one, ordered by weighted score.

    Each side scores a document by its own ``score`` when present, else by
    rank (``1 - rank / len(side)``). A document missing from a side scores 0
    there. Ties keep first-seen order, vector side first.
    """
    entries: dict[Any, dict[str, Any]] = {}

    def _collect(docs: list[dict[str, Any]], side: str) -> None:
        for rank, doc in enumerate(docs):
            key = doc.get(id_field, (side, rank))
            entry = entries.setdefault(key, {"doc": {}, "vector": 0.0, "text": 0.0})
            entry["doc"] = {**doc, **entry["doc"]}
            entry[side] = _side_score(doc, rank, len(docs))

    _collect(vector_docs, "vector")
    _collect(text_docs, "text")

    fused = []
    for entry in entries.values():
        score = vector_weight * entry["vector"] + (1 - vector_weight) * entry["text"]
        fused.append({**entry["doc"], "fused_score": score})

    fused.sort(key=lambda d: d["fused_score"], reverse=True)
    return fused[:limit]


def _side_score(doc: dict[str, Any], rank: int, size: int) -> float:
    score = doc.get("score")
    if isinstance(score, (int, float)) and not isinstance(score, bool):
        return float(score)
    return 1 - rank / size


def _side_or_empty(outcome: Any, method: SearchMethod, collection: str) -> SearchResult:
    if isinstance(outcome, SearchResult):
        return outcome
    if not isinstance(outcome, Exception):
        raise outcome
    logger.warning("Hybrid %s side failed on %s: %s", method.value, collection, outcome)
    return SearchResult.empty(method)


def _vector_confidence(docs: list[dict[str, Any]]) -> float:
    if not docs:
        return 0.0
    score = docs[0].get("score")
    if not isinstance(score, (int, float)):
        return _UNSCORED_VECTOR_CONFIDENCE
    return max(0.0, min(1.0, float(score)))
