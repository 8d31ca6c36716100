"""Domain entities for single-collection search."""

from dataclasses import dataclass, field
from enum import Enum
from typing import Any


class SearchMethod(str, Enum):
    VECTOR = "vector"
    TEXT = "text"
    METADATA = "metadata"
    HYBRID = "hybrid"


@dataclass
class SearchQuery:
    """A search against one collection on behalf of one tenant."""

    collection: str
    tenant_id: str
    filter: dict[str, Any] = field(default_factory=dict)
    vector_query: str | None = None
    text_query: str | None = None
    limit: int | None = None
    skip: int = 0
    sort: dict[str, int] | None = None


@dataclass
class SearchResult:
    """Documents returned by a search, with the method used and a confidence in [0, 1]."""

    documents: list[dict[str, Any]] = field(default_factory=list)
    total_count: int = 0
    method: SearchMethod = SearchMethod.METADATA
    confidence: float = 0.0

    @classmethod
    def empty(cls, method: SearchMethod) -> "SearchResult":
        return cls(documents=[], total_count=0, method=method, confidence=0.0)
