"""In-memory DocumentStore — evaluates the filter language in process.

Used for local development without PostgreSQL and as the store behind the
test suite. Documents are keyed by ``id`` per collection and returned as
copies, so callers can never mutate stored state.
"""

import copy
import logging
import re
from collections import defaultdict
from typing import Any

import numpy as np

from hoprag.application.interfaces.document_store import DocumentStore
from hoprag.domain.entities.retrieval import AggregationOperation, AggregationSpec
from hoprag.domain.exceptions import UnsupportedFilterOperatorError

logger = logging.getLogger(__name__)

_MISSING = object()
_TOKEN = re.compile(r"\w+")


class InMemoryDocumentStore(DocumentStore):
    """Dictionary-backed document store.

    ``text_index`` / ``vector_index`` control what the store reports as
    available, so callers exercise their fallbacks when they are off.
    """

    def __init__(self, *, text_index: bool = False, vector_index: bool = False):
        self._collections: dict[str, dict[str, dict[str, Any]]] = defaultdict(dict)
        self._text_index = text_index
        self._vector_index = vector_index

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
        docs = self._matching(collection, filter)
        if sort:
            docs = _sorted(docs, sort)
        docs = docs[skip:]
        if limit is not None:
            docs = docs[:limit]
        return copy.deepcopy(docs)

    async def count(self, collection: str, filter: dict[str, Any]) -> int:
        return len(self._matching(collection, filter))

    async def aggregate(
        self,
        collection: str,
        filter: dict[str, Any],
        spec: AggregationSpec,
    ) -> list[dict[str, Any]]:
        groups: dict[Any, list[dict[str, Any]]] = {}
        for doc in self._matching(collection, filter):
            key = _lookup(doc, spec.group_by) if spec.group_by else None
            key = None if key is _MISSING else key
            if isinstance(key, list):
                for item in key:
                    groups.setdefault(_freeze(item), []).append(doc)
            else:
                groups.setdefault(_freeze(key), []).append(doc)

        rows = [
            {"group": group, "value": _reduce(spec, docs), "count": len(docs)}
            for group, docs in groups.items()
        ]
        if not rows and spec.group_by is None:
            rows = [{"group": None, "value": 0 if spec.operation == AggregationOperation.COUNT else None, "count": 0}]
        return rows

    async def text_search(
        self,
        collection: str,
        text: str,
        filter: dict[str, Any],
        *,
        limit: int,
    ) -> list[dict[str, Any]]:
        terms = {t.lower() for t in _TOKEN.findall(text)}
        if not terms:
            return []
        scored = []
        for doc in self._matching(collection, filter):
            tokens = {t.lower() for t in _TOKEN.findall(" ".join(_strings(doc)))}
            hits = len(terms & tokens)
            if hits:
                scored.append({**copy.deepcopy(doc), "score": hits / len(terms)})
        scored.sort(key=lambda d: d["score"], reverse=True)
        return scored[:limit]

    async def vector_search(
        self,
        collection: str,
        embedding: list[float],
        filter: dict[str, Any],
        *,
        embedding_field: str,
        limit: int,
    ) -> list[dict[str, Any]]:
        query = np.asarray(embedding, dtype=float)
        scored = []
        for doc in self._matching(collection, filter):
            vector = doc.get(embedding_field)
            if not isinstance(vector, list) or len(vector) != len(query):
                continue
            candidate = np.asarray(vector, dtype=float)
            denominator = float(np.linalg.norm(candidate) * np.linalg.norm(query))
            similarity = float(np.dot(candidate, query)) / denominator if denominator else 0.0
            scored.append({**copy.deepcopy(doc), "score": similarity})
        scored.sort(key=lambda d: d["score"], reverse=True)
        return scored[:limit]

    async def has_text_index(self, collection: str) -> bool:
        return self._text_index

    async def has_vector_index(self, collection: str) -> bool:
        return self._vector_index

    # ── Writes ───────────────────────────────────────────────────────

    async def upsert(self, collection: str, documents: list[dict[str, Any]]) -> int:
        for doc in documents:
            self._collections[collection][str(doc["id"])] = copy.deepcopy(doc)
        return len(documents)

    def _matching(self, collection: str, filter: dict[str, Any]) -> list[dict[str, Any]]:
        return [
            doc for doc in self._collections.get(collection, {}).values()
            if matches(doc, filter, collection)
        ]


# ── Filter evaluation ────────────────────────────────────────────────


def matches(doc: dict[str, Any], filter: dict[str, Any], collection: str = "") -> bool:
    """Evaluate the store-neutral filter language against one document."""
    for key, condition in filter.items():
        if key == "$or":
            if not any(matches(doc, branch, collection) for branch in condition):
                return False
        elif key == "$and":
            if not all(matches(doc, branch, collection) for branch in condition):
                return False
        elif key.startswith("$"):
            raise UnsupportedFilterOperatorError(collection, key)
        elif not _match_condition(_lookup(doc, key), condition, collection):
            return False
    return True


def _match_condition(value: Any, condition: Any, collection: str) -> bool:
    if not (isinstance(condition, dict) and any(k.startswith("$") for k in condition)):
        return _equals(value, condition)

    for op, operand in condition.items():
        if op == "$options":
            continue
        if op == "$eq":
            ok = _equals(value, operand)
        elif op == "$ne":
            ok = not _equals(value, operand)
        elif op in ("$gt", "$gte", "$lt", "$lte"):
            ok = _compare(value, operand, op)
        elif op == "$in":
            ok = any(_equals(value, item) for item in operand)
        elif op == "$nin":
            ok = not any(_equals(value, item) for item in operand)
        elif op == "$all":
            ok = isinstance(value, list) and all(item in value for item in operand)
        elif op == "$regex":
            flags = re.IGNORECASE if "i" in str(condition.get("$options", "")) else 0
            ok = _regex(value, str(operand), flags)
        elif op == "$exists":
            ok = (value is not _MISSING and value is not None) == bool(operand)
        else:
            raise UnsupportedFilterOperatorError(collection, op)
        if not ok:
            return False
    return True


def _equals(value: Any, target: Any) -> bool:
    if value is _MISSING:
        return target is None
    if isinstance(value, list) and not isinstance(target, list):
        return target in value
    return value == target


def _compare(value: Any, operand: Any, op: str) -> bool:
    if isinstance(value, list):
        return any(_compare(item, operand, op) for item in value)
    if value is _MISSING or value is None or isinstance(value, bool):
        return False
    numeric = (int, float)
    if not (
        (isinstance(value, numeric) and isinstance(operand, numeric))
        or (isinstance(value, str) and isinstance(operand, str))
    ):
        return False
    if op == "$gt":
        return value > operand
    if op == "$gte":
        return value >= operand
    if op == "$lt":
        return value < operand
    return value <= operand


def _regex(value: Any, pattern: str, flags: int) -> bool:
    if isinstance(value, list):
        return any(_regex(item, pattern, flags) for item in value)
    if not isinstance(value, str):
        return False
    return re.search(pattern, value, flags) is not None


def _lookup(doc: dict[str, Any], path: str) -> Any:
    current: Any = doc
    for part in path.split("."):
        if not isinstance(current, dict) or part not in current:
            return _MISSING
        current = current[part]
    return current


def _sorted(docs: list[dict[str, Any]], sort: dict[str, int]) -> list[dict[str, Any]]:
    # Apply keys from least to most significant; missing values sort last.
    ordered = list(docs)
    for key, direction in reversed(list(sort.items())):
        present = [d for d in ordered if _sortable(_lookup(d, key))]
        absent = [d for d in ordered if not _sortable(_lookup(d, key))]
        present.sort(key=lambda d: _lookup(d, key), reverse=direction == -1)
        ordered = present + absent
    return ordered


def _sortable(value: Any) -> bool:
    return value is not _MISSING and value is not None and not isinstance(value, (dict, list))


def _reduce(spec: AggregationSpec, docs: list[dict[str, Any]]) -> float | int | None:
    if spec.operation == AggregationOperation.COUNT:
        return len(docs)
    values = [
        v for v in (_lookup(d, spec.field) for d in docs)
        if isinstance(v, (int, float)) and not isinstance(v, bool)
    ]
    if not values:
        return None
    if spec.operation == AggregationOperation.SUM:
        return sum(values)
    if spec.operation == AggregationOperation.AVG:
        return sum(values) / len(values)
    if spec.operation == AggregationOperation.MIN:
        return min(values)
    return max(values)


def _freeze(value: Any) -> Any:
    return str(value) if isinstance(value, (dict, list)) else value


def _strings(value: Any) -> list[str]:
    if isinstance(value, str):
        return [value]
    if isinstance(value, dict):
        return [s for v in value.values() for s in _strings(v)]
    if isinstance(value, list):
        return [s for v in value for s in _strings(v)]
    return []
