"""Hop executor — tenant-scoped joins between collections.

A hop never returns records the tenant does not own: source values are
re-verified against the source collection before the target is queried,
and the target query carries the tenant filter too. Failures are logged
and surface as an empty hop.
"""

import logging
from typing import Any

from hoprag.application.interfaces.document_store import DocumentStore
from hoprag.application.services.schema_registry import SchemaRegistry
from hoprag.domain.entities.retrieval import HopChainResult, HoppingPath
from hoprag.domain.exceptions import SchemaNotFoundError, UnauthorizedAccessError

logger = logging.getLogger(__name__)


class HopExecutor:
    """Executes single hops and hop chains on behalf of one tenant."""

    def __init__(
        self,
        registry: SchemaRegistry,
        store: DocumentStore,
        *,
        default_limit: int | None = None,
    ):
        self._registry = registry
        self._store = store
        self._default_limit = default_limit

    async def hop(
        self,
        source_collection: str,
        source_ids: list[Any],
        target_collection: str,
        via_field: str,
        tenant_id: str,
        *,
        source_field: str = "id",
        filter: dict[str, Any] | None = None,
        limit: int | None = None,
    ) -> list[dict[str, Any]]:
        """Return ``target_collection`` records whose ``via_field`` matches the source values.

        ``source_ids`` are values of ``source_field`` on the source records.
        Only values that belong to the tenant are used for the join.
        ``filter`` adds conditions on the target records.
        """
        if not source_ids:
            return []

        try:
            authorized = await self._authorized_values(
                source_collection, source_field, source_ids, tenant_id
            )

            target = self._registry.get_schema(target_collection)
            if target is None:
                raise SchemaNotFoundError(target_collection)

            target_filter: dict[str, Any] = {**(filter or {}), via_field: {"$in": authorized}}
            if target.owner_field:
                target_filter[target.owner_field] = tenant_id

            docs = await self._store.find(
                target_collection, target_filter, limit=limit or self._default_limit
            )
            logger.info(
                "Hop %s → %s via %s: %d source values, %d records",
                source_collection, target_collection, via_field, len(authorized), len(docs),
            )
            return [target.without_embedding(d) for d in docs]

        except Exception as exc:
            logger.error(
                "Hop %s → %s failed for tenant %s: %s",
                source_collection, target_collection, tenant_id, exc,
            )
            return []

    async def traverse(
        self,
        chain: list[HoppingPath],
        source_documents: list[dict[str, Any]],
        tenant_id: str,
        *,
        limit: int | None = None,
    ) -> HopChainResult:
        """Follow ``chain`` hop by hop, starting from ``source_documents``.

        Stops at the first hop that yields nothing; the partial path is
        reported in ``executed`` and the failing hop in ``broken_at``.
        """
        result = HopChainResult()
        current = source_documents

        for path in chain:
            values = collect_values(current, path.source_field)
            docs = await self.hop(
                path.source, values, path.to, path.via, tenant_id,
                source_field=path.source_field, limit=limit,
            )
            if not docs:
                logger.info("Hop chain broken at %s → %s", path.source, path.to)
                result.broken_at = path
                return result
            result.executed.append(path)
            current = docs

        result.documents = current
        return result

    async def _authorized_values(
        self,
        collection: str,
        field_name: str,
        values: list[Any],
        tenant_id: str,
    ) -> list[Any]:
        schema = self._registry.get_schema(collection)
        if schema is None:
            raise SchemaNotFoundError(collection)

        unique = _unique(values)
        if not schema.owner_field:
            return unique

        owned = await self._store.find(
            collection,
            {field_name: {"$in": unique}, schema.owner_field: tenant_id},
        )
        owned_values = set(_hashable(v) for v in collect_values(owned, field_name))
        authorized = [v for v in unique if _hashable(v) in owned_values]

        if not authorized:
            raise UnauthorizedAccessError(collection, tenant_id, len(unique))
        if len(authorized) < len(unique):
            logger.warning(
                "Dropped %d %s values not owned by tenant %s",
                len(unique) - len(authorized), collection, tenant_id,
            )
        return authorized


def collect_values(documents: list[dict[str, Any]], field_name: str) -> list[Any]:
    """Unique values of ``field_name`` across documents; list values are flattened."""
    values: list[Any] = []
    for doc in documents:
        value = _lookup(doc, field_name)
        if value is None:
            continue
        values.extend(value if isinstance(value, list) else [value])
    return _unique(values)


def _lookup(doc: dict[str, Any], path: str) -> Any:
    current: Any = doc
    for part in path.split("."):
        if not isinstance(current, dict):
            return None
        current = current.get(part)
    return current


def _hashable(value: Any) -> Any:
    return str(value) if isinstance(value, (dict, list)) else value


def _unique(values: list[Any]) -> list[Any]:
    seen: set[Any] = set()
    unique = []
    for value in values:
        key = _hashable(value)
        if key in seen:
            continue
        seen.add(key)
        unique.append(value)
    return unique
