"""Compile the store-neutral filter language into SQLAlchemy expressions over JSONB.

Field values live in ``DocumentModel.data``; the document id lives in its
own column. Equality uses JSONB containment so an array field matches when
it contains the value, the same rule the in-memory store applies.
"""

from typing import Any

from sqlalchemy import Float, Text, and_, case, cast, false, func, not_, or_, true
from sqlalchemy.sql.elements import ColumnElement

from hoprag.domain.exceptions import UnsupportedFilterOperatorError
from hoprag.infrastructure.database.models.document_models import DocumentModel

_COMPARISONS = ("$gt", "$gte", "$lt", "$lte")


def compile_filter(
    filter: dict[str, Any] | None,
    *,
    collection: str,
    id_field: str = "id",
) -> ColumnElement[bool]:
    """Return a WHERE clause equivalent to ``filter`` (``TRUE`` when empty)."""
    clauses = []
    for key, condition in (filter or {}).items():
        if key == "$or":
            branches = [compile_filter(b, collection=collection, id_field=id_field) for b in condition]
            clauses.append(or_(*branches) if branches else false())
        elif key == "$and":
            branches = [compile_filter(b, collection=collection, id_field=id_field) for b in condition]
            clauses.append(and_(*branches) if branches else true())
        elif key.startswith("$"):
            raise UnsupportedFilterOperatorError(collection, key)
        elif key == id_field:
            clauses.append(_id_condition(condition, collection))
        else:
            clauses.append(_field_condition(key, condition, collection))

    if not clauses:
        return true()
    return and_(*clauses) if len(clauses) > 1 else clauses[0]


def nest(path: str, value: Any) -> dict[str, Any]:
    """Build the JSON object that holds ``value`` at the dotted ``path``."""
    result: Any = value
    for part in reversed(path.split(".")):
        result = {part: result}
    return result


def json_node(path: str):
    parts = tuple(path.split("."))
    return DocumentModel.data[parts] if len(parts) > 1 else DocumentModel.data[parts[0]]


def _json_type(path: str):
    # A missing key and an explicit JSON null both report "null".
    return func.coalesce(func.jsonb_typeof(json_node(path)), "null")


# ── Field conditions ─────────────────────────────────────────────────


def _is_operator_dict(condition: Any) -> bool:
    return isinstance(condition, dict) and any(k.startswith("$") for k in condition)


def _field_condition(path: str, condition: Any, collection: str) -> ColumnElement[bool]:
    if not _is_operator_dict(condition):
        return _equals(path, condition)

    clauses = []
    for op, operand in condition.items():
        if op == "$options":
            continue
        if op == "$eq":
            clauses.append(_equals(path, operand))
        elif op == "$ne":
            clauses.append(not_(_equals(path, operand)))
        elif op in _COMPARISONS:
            clauses.append(_compare(path, op, operand))
        elif op == "$in":
            items = [_equals(path, item) for item in operand]
            clauses.append(or_(*items) if items else false())
        elif op == "$nin":
            items = [_equals(path, item) for item in operand]
            clauses.append(not_(or_(*items)) if items else true())
        elif op == "$all":
            clauses.append(and_(true(), *[DocumentModel.data.contains(nest(path, [item])) for item in operand]))
        elif op == "$regex":
            clauses.append(_regex(path, str(operand), str(condition.get("$options", ""))))
        elif op == "$exists":
            present = _json_type(path) != "null"
            clauses.append(present if operand else not_(present))
        else:
            raise UnsupportedFilterOperatorError(collection, op)
    return and_(true(), *clauses)


def _equals(path: str, value: Any) -> ColumnElement[bool]:
    if value is None:
        return _json_type(path) == "null"
    scalar = DocumentModel.data.contains(nest(path, value))
    if isinstance(value, (list, dict)):
        return scalar
    return or_(scalar, DocumentModel.data.contains(nest(path, [value])))


def _compare(path: str, op: str, operand: Any) -> ColumnElement[bool]:
    node = json_node(path)
    if isinstance(operand, bool):
        return false()
    if isinstance(operand, (int, float)):
        value = case((func.jsonb_typeof(node) == "number", cast(node.astext, Float)))
        target: Any = float(operand)
    else:
        value = case((func.jsonb_typeof(node) == "string", node.astext))
        target = str(operand)

    if op == "$gt":
        return value > target
    if op == "$gte":
        return value >= target
    if op == "$lt":
        return value < target
    return value <= target


def _regex(path: str, pattern: str, options: str) -> ColumnElement[bool]:
    node = json_node(path)
    operator = "~*" if "i" in options else "~"
    scalar = and_(func.jsonb_typeof(node) == "string", node.astext.op(operator)(pattern))
    # Arrays of strings: match against the serialized array.
    array = and_(func.jsonb_typeof(node) == "array", cast(node, Text).op(operator)(pattern))
    return or_(scalar, array)


# ── Id column ────────────────────────────────────────────────────────


def _id_condition(condition: Any, collection: str) -> ColumnElement[bool]:
    column = DocumentModel.id
    if not _is_operator_dict(condition):
        return column == str(condition)

    clauses = []
    for op, operand in condition.items():
        if op == "$options":
            continue
        if op == "$eq":
            clauses.append(column == str(operand))
        elif op == "$ne":
            clauses.append(column != str(operand))
        elif op == "$in":
            clauses.append(column.in_([str(v) for v in operand]) if operand else false())
        elif op == "$nin":
            clauses.append(column.notin_([str(v) for v in operand]) if operand else true())
        elif op == "$regex":
            operator = "~*" if "i" in str(condition.get("$options", "")) else "~"
            clauses.append(column.op(operator)(str(operand)))
        elif op == "$exists":
            clauses.append(true() if operand else false())
        else:
            raise UnsupportedFilterOperatorError(collection, op)
    return and_(true(), *clauses)
