"""Filter sanitizer — drops filter values that cannot apply to their fields.

Planner-generated filters routinely carry placeholder words ("revenue",
"all sectors"), unresolved step references or operators a field does not
support. Every such key is removed before the filter reaches a store. Each
removal is recorded as an InvalidFilterValueError on the result and logged;
sanitation itself never raises.
"""

import logging
import re
from collections.abc import Callable
from dataclasses import dataclass, field
from typing import Any

from hoprag.application.services.schema_registry import SchemaRegistry
from hoprag.domain.entities.schema import CollectionSchema, FieldDefinition, FieldType
from hoprag.domain.exceptions import InvalidFilterValueError

logger = logging.getLogger(__name__)

# Words that name a field or a quantity rather than a concrete value.
GENERIC_TERMS = frozenset({
    "all", "any", "every", "each", "none", "some",
    "revenue", "revenu", "income", "sales", "turnover",
    "employees", "employee", "employee count", "staff", "people", "headcount",
    "company", "companies", "business", "businesses",
    "sorted", "order", "list", "top", "max", "highest",
    "give", "show", "get",
    "sector", "sectors", "all sectors", "industry", "industries",
    "count", "number", "amount", "size", "total", "sum", "average",
    "active", "experience", "title", "job", "position", "role",
    "has", "with", "by", "for", "from", "to",
})

_PLACEHOLDER = re.compile(r"^\s*(FROM_STEP|previous)", re.IGNORECASE)
_ALL_WORD = re.compile(r"\ball\b", re.IGNORECASE)
_LOGICAL = ("$or", "$and")
_LIST_OPERATORS = ("$in", "$nin", "$all")
_TRUE_WORDS = frozenset({"true", "1", "yes"})
_FALSE_WORDS = frozenset({"false", "0", "no"})


class _Reject(Exception):
    """Internal signal: the value cannot apply to the field."""

    def __init__(self, reason: str):
        self.reason = reason
        super().__init__(reason)


@dataclass
class SanitizedFilter:
    """A cleaned filter plus the values that were dropped from it."""

    filter: dict[str, Any] = field(default_factory=dict)
    sort: dict[str, int] | None = None
    rejected: list[InvalidFilterValueError] = field(default_factory=list)


def is_generic_term(value: Any) -> bool:
    return isinstance(value, str) and value.strip().lower() in GENERIC_TERMS


def is_placeholder(value: Any) -> bool:
    return isinstance(value, str) and bool(_PLACEHOLDER.match(value))


# ── Per-type value rules ─────────────────────────────────────────────


def _to_number(value: Any, fdef: FieldDefinition) -> int | float:
    if isinstance(value, bool):
        raise _Reject("boolean given for numeric field")
    if isinstance(value, (int, float)):
        return value
    if isinstance(value, str):
        lowered = value.strip().lower()
        if is_generic_term(value) or fdef.name.lower() in lowered:
            raise _Reject("generic term for numeric field")
        try:
            number = float(lowered.replace(",", ""))
        except ValueError:
            raise _Reject("non-numeric value for numeric field") from None
        return int(number) if number.is_integer() else number
    raise _Reject(f"{type(value).__name__} given for numeric field")


def _number_rule(fdef: FieldDefinition, value: Any) -> Any:
    if isinstance(value, dict):
        return _apply_to_operands(value, lambda v: _to_number(v, fdef))
    if isinstance(value, list):
        return {"$in": _keep_valid(value, lambda v: _to_number(v, fdef))}
    return _to_number(value, fdef)


def _to_bool(value: Any) -> bool:
    if isinstance(value, bool):
        return value
    if isinstance(value, int) and value in (0, 1):
        return bool(value)
    if isinstance(value, str):
        lowered = value.strip().lower()
        if lowered in _TRUE_WORDS:
            return True
        if lowered in _FALSE_WORDS:
            return False
    raise _Reject("not a boolean value")


def _boolean_rule(fdef: FieldDefinition, value: Any) -> Any:
    if isinstance(value, dict):
        return _apply_to_operands(value, _to_bool)
    return _to_bool(value)


def _to_text(value: Any, fdef: FieldDefinition) -> str:
    if isinstance(value, bool) or not isinstance(value, (str, int, float)):
        raise _Reject(f"{type(value).__name__} given for text field")
    text = str(value)
    lowered = text.strip().lower()
    if is_generic_term(text) or lowered == fdef.name.lower() or _ALL_WORD.search(text):
        raise _Reject("generic term for text field")
    if is_placeholder(text):
        raise _Reject("unresolved step placeholder")
    return text


def _string_rule(fdef: FieldDefinition, value: Any) -> Any:
    if isinstance(value, dict):
        return _apply_to_operands(value, lambda v: _to_text(v, fdef))
    if isinstance(value, list):
        return {"$in": _keep_valid(value, lambda v: _to_text(v, fdef))}
    return _to_text(value, fdef)


def _array_item(value: Any, fdef: FieldDefinition) -> Any:
    if fdef.item_type == FieldType.NUMBER:
        return _to_number(value, fdef)
    if isinstance(value, str):
        return _to_text(value, fdef)
    return value


def _array_rule(fdef: FieldDefinition, value: Any) -> Any:
    if isinstance(value, dict):
        return _apply_to_operands(value, lambda v: _array_item(v, fdef))
    if isinstance(value, list):
        return {"$in": _keep_valid(value, lambda v: _array_item(v, fdef))}
    return _array_item(value, fdef)


def _to_identifier(value: Any) -> Any:
    if is_placeholder(value):
        raise _Reject("unresolved step placeholder")
    if isinstance(value, bool) or not isinstance(value, (str, int)):
        raise _Reject(f"{type(value).__name__} given for identifier field")
    if isinstance(value, str) and not value.strip():
        raise _Reject("empty identifier")
    return value


def _identifier_rule(fdef: FieldDefinition, value: Any) -> Any:
    if isinstance(value, dict):
        return _apply_to_operands(value, _to_identifier)
    if isinstance(value, list):
        return {"$in": _keep_valid(value, _to_identifier)}
    return _to_identifier(value)


def _passthrough_rule(fdef: FieldDefinition, value: Any) -> Any:
    return value


_RULES: dict[FieldType, Callable[[FieldDefinition, Any], Any]] = {
    FieldType.NUMBER: _number_rule,
    FieldType.BOOLEAN: _boolean_rule,
    FieldType.STRING: _string_rule,
    FieldType.ARRAY: _array_rule,
    FieldType.IDENTIFIER: _identifier_rule,
    FieldType.DATE: _passthrough_rule,
    FieldType.OBJECT: _passthrough_rule,
}


def _keep_valid(items: list[Any], convert: Callable[[Any], Any]) -> list[Any]:
    kept = []
    for item in items:
        try:
            kept.append(convert(item))
        except _Reject:
            continue
    if not kept:
        raise _Reject("no usable values left in list")
    return kept


def _apply_to_operands(ops: dict[str, Any], convert: Callable[[Any], Any]) -> dict[str, Any]:
    """Clean each operand of an operator map; drop operators whose operand is unusable."""
    cleaned: dict[str, Any] = {}
    for op, operand in ops.items():
        if op == "$exists":
            cleaned[op] = bool(operand)
        elif op == "$options":
            continue
        elif op in _LIST_OPERATORS:
            items = operand if isinstance(operand, list) else [operand]
            try:
                cleaned[op] = _keep_valid(items, convert)
            except _Reject:
                continue
        elif op == "$regex":
            if isinstance(operand, str) and operand.strip() and not is_generic_term(operand):
                cleaned[op] = operand
        else:
            try:
                cleaned[op] = convert(operand)
            except _Reject:
                continue
    if "$regex" in cleaned and "$options" in ops:
        cleaned["$options"] = ops["$options"]
    if not cleaned:
        raise _Reject("no usable operators left")
    return cleaned


# ── Sanitizer ────────────────────────────────────────────────────────


class FilterSanitizer:
    """Applies the per-type rule table to filters against registered collections."""

    def __init__(self, registry: SchemaRegistry):
        self._registry = registry

    def sanitize(
        self,
        collection: str,
        filter: dict[str, Any] | None,
        *,
        sort: dict[str, Any] | None = None,
    ) -> SanitizedFilter:
        result = SanitizedFilter()
        schema = self._registry.get_schema(collection)
        if schema is None:
            result.filter = dict(filter or {})
            result.sort = dict(sort) if sort else None
            return result

        result.filter = self._sanitize_mapping(schema, filter or {}, result.rejected)
        result.sort = self._sanitize_sort(schema, sort, result.rejected)

        for rejection in result.rejected:
            logger.warning("Filter value dropped — %s", rejection)
        return result

    def _sanitize_mapping(
        self,
        schema: CollectionSchema,
        filter: dict[str, Any],
        rejected: list[InvalidFilterValueError],
    ) -> dict[str, Any]:
        cleaned: dict[str, Any] = {}

        for key, value in filter.items():
            if key == schema.owner_field:
                cleaned[key] = value
                continue

            if key in _LOGICAL:
                branches = self._sanitize_branches(schema, key, value, rejected)
                if branches:
                    cleaned[key] = branches
                continue

            if key.startswith("$"):
                rejected.append(
                    InvalidFilterValueError(schema.name, key, value, "unsupported top-level operator")
                )
                continue

            canonical = self._registry.resolve_field_alias(schema.name, key)
            if canonical is None:
                if self._is_nested_object_path(schema, key):
                    cleaned[key] = value
                else:
                    rejected.append(InvalidFilterValueError(schema.name, key, value, "unknown field"))
                continue

            fdef = schema.get_field(canonical)
            if not fdef.filterable:
                rejected.append(InvalidFilterValueError(schema.name, canonical, value, "field is not filterable"))
                continue

            try:
                value = self._restrict_operators(fdef, value)
                cleaned[canonical] = _RULES[fdef.type](fdef, value)
            except _Reject as exc:
                rejected.append(InvalidFilterValueError(schema.name, canonical, value, exc.reason))

        return cleaned

    def _sanitize_branches(
        self,
        schema: CollectionSchema,
        key: str,
        value: Any,
        rejected: list[InvalidFilterValueError],
    ) -> list[dict[str, Any]]:
        if not isinstance(value, list):
            rejected.append(InvalidFilterValueError(schema.name, key, value, "expected a list of conditions"))
            return []
        branches = []
        for branch in value:
            if not isinstance(branch, dict):
                rejected.append(InvalidFilterValueError(schema.name, key, branch, "condition is not a mapping"))
                continue
            cleaned = self._sanitize_mapping(schema, branch, rejected)
            if cleaned:
                branches.append(cleaned)
        return branches

    @staticmethod
    def _restrict_operators(fdef: FieldDefinition, value: Any) -> Any:
        if not isinstance(value, dict) or not any(k.startswith("$") for k in value):
            return value
        allowed = fdef.allowed_operators
        kept = {op: operand for op, operand in value.items() if op in allowed}
        if not kept:
            raise _Reject(f"operators {sorted(value)} not allowed")
        return kept

    @staticmethod
    def _is_nested_object_path(schema: CollectionSchema, key: str) -> bool:
        if "." not in key:
            return False
        parts = key.split(".")
        for i in range(1, len(parts)):
            parent = schema.get_field(".".join(parts[:i]))
            if parent is not None and parent.type == FieldType.OBJECT:
                return True
        return False

    def _sanitize_sort(
        self,
        schema: CollectionSchema,
        sort: dict[str, Any] | None,
        rejected: list[InvalidFilterValueError],
    ) -> dict[str, int] | None:
        if not sort:
            return None
        cleaned: dict[str, int] = {}
        for key, direction in sort.items():
            canonical = self._registry.resolve_field_alias(schema.name, key)
            if canonical is None and self._is_nested_object_path(schema, key):
                canonical = key
            elif canonical is not None and not schema.get_field(canonical).sortable:
                canonical = None
            if canonical is None:
                rejected.append(InvalidFilterValueError(schema.name, key, direction, "not a sortable field"))
                continue
            cleaned[canonical] = _sort_direction(direction)
        return cleaned or None


def _sort_direction(direction: Any) -> int:
    if isinstance(direction, str):
        return -1 if direction.strip().lower() in ("desc", "descending", "-1") else 1
    return -1 if direction == -1 else 1
