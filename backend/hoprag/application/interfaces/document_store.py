"""Abstract interface (port) for the document store behind every collection."""

from abc import ABC, abstractmethod
from typing import Any

from hoprag.domain.entities.retrieval import AggregationSpec


class DocumentStore(ABC):
    """Port for schemaless document collections — implemented in the infrastructure layer.

    Filters use the store-neutral operator language: field equality (array
    fields match on membership), ``$eq $ne $gt $gte $lt $lte $in $nin $all
    $regex $options $exists`` and the logical ``$or`` / ``$and``. Dotted
    names address nested values.
    """

    @abstractmethod
    async def find(
        self,
        collection: str,
        filter: dict[str, Any],
        *,
        limit: int | None = None,
        skip: int = 0,
        sort: dict[str, int] | None = None,
    ) -> list[dict[str, Any]]:
        """Return documents matching ``filter``, sorted (1 asc / -1 desc) and paginated."""
        ...

    @abstractmethod
    async def count(self, collection: str, filter: dict[str, Any]) -> int:
        """Return the number of documents matching ``filter``."""
        ...

    @abstractmethod
    async def aggregate(
        self,
        collection: str,
        filter: dict[str, Any],
        spec: AggregationSpec,
    ) -> list[dict[str, Any]]:
        """Aggregate matching documents.

        Returns:
            Rows of ``{"group": value | None, "value": number | None, "count": int}``,
            one per group (a single row with ``group=None`` without grouping).
        """
        ...

    @abstractmethod
    async def text_search(
        self,
        collection: str,
        text: str,
        filter: dict[str, Any],
        *,
        limit: int,
    ) -> list[dict[str, Any]]:
        """Full-text search; each returned document carries a ``score``."""
        ...

    @abstractmethod
    async def vector_search(
        self,
        collection: str,
        embedding: list[float],
        filter: dict[str, Any],
        *,
        embedding_field: str,
        limit: int,
    ) -> list[dict[str, Any]]:
        """Nearest-neighbour search; each returned document carries a ``score``."""
        ...

    @abstractmethod
    async def has_text_index(self, collection: str) -> bool:
        ...

    @abstractmethod
    async def has_vector_index(self, collection: str) -> bool:
        ...

    @abstractmethod
    async def upsert(self, collection: str, documents: list[dict[str, Any]]) -> int:
        """Insert or replace documents by ``id``. Returns the number written."""
        ...
