"""Domain entities for collection schemas — fields, relationships, collections."""

from dataclasses import dataclass
from enum import Enum
from typing import Any


class FieldType(str, Enum):
    """Declared type of a document field."""

    STRING = "string"
    NUMBER = "number"
    BOOLEAN = "boolean"
    ARRAY = "array"
    OBJECT = "object"
    DATE = "date"
    IDENTIFIER = "identifier"


class Cardinality(str, Enum):
    """Join cardinality, always read from the side that declares it."""

    ONE_TO_ONE = "one-to-one"
    ONE_TO_MANY = "one-to-many"
    MANY_TO_ONE = "many-to-one"
    MANY_TO_MANY = "many-to-many"

    @property
    def inverse(self) -> "Cardinality":
        if self is Cardinality.ONE_TO_MANY:
            return Cardinality.MANY_TO_ONE
        if self is Cardinality.MANY_TO_ONE:
            return Cardinality.ONE_TO_MANY
        return self


# Comparison operators accepted per field type when a field declares none.
DEFAULT_OPERATORS: dict[FieldType, frozenset[str]] = {
    FieldType.STRING: frozenset({"$eq", "$ne", "$in", "$nin", "$regex", "$options", "$exists"}),
    FieldType.NUMBER: frozenset({"$eq", "$ne", "$gt", "$gte", "$lt", "$lte", "$in", "$nin", "$exists"}),
    FieldType.DATE: frozenset({"$eq", "$ne", "$gt", "$gte", "$lt", "$lte", "$in", "$nin", "$exists"}),
    FieldType.BOOLEAN: frozenset({"$eq", "$ne", "$exists"}),
    FieldType.ARRAY: frozenset({"$eq", "$in", "$nin", "$all", "$regex", "$options", "$exists"}),
    FieldType.IDENTIFIER: frozenset({"$eq", "$ne", "$in", "$nin", "$exists"}),
    FieldType.OBJECT: frozenset({
        "$eq", "$ne", "$gt", "$gte", "$lt", "$lte", "$in", "$nin",
        "$all", "$regex", "$options", "$exists",
    }),
}


@dataclass(frozen=True)
class FieldDefinition:
    """A single field of a collection.

    ``item_type`` only applies to arrays. ``restricted`` fields are never
    scanned by substring text search (e.g. free-form blobs, secrets).
    """

    name: str
    type: FieldType
    item_type: FieldType | None = None
    filterable: bool = True
    sortable: bool = False
    operators: frozenset[str] = frozenset()
    synonyms: tuple[str, ...] = ()
    category: str | None = None
    importance: str | None = None
    restricted: bool = False
    description: str = ""

    @property
    def allowed_operators(self) -> frozenset[str]:
        return self.operators or DEFAULT_OPERATORS[self.type]

    @property
    def is_textual(self) -> bool:
        if self.type == FieldType.STRING:
            return True
        return self.type == FieldType.ARRAY and self.item_type in (None, FieldType.STRING)


@dataclass(frozen=True)
class Relationship:
    """A declared join from one collection to another.

    Declared on collection X with ``field`` f, ``target`` T and ``via`` v,
    it joins ``X.f = T.v``; without ``via`` it joins ``X.f = T.<id field>``.
    """

    field: str
    target: str
    cardinality: Cardinality
    via: str | None = None
    description: str = ""


@dataclass(frozen=True)
class CollectionSchema:
    """Schema of one document collection."""

    name: str
    fields: tuple[FieldDefinition, ...] = ()
    relationships: tuple[Relationship, ...] = ()
    searchable_fields: tuple[str, ...] = ()
    embedding_field: str | None = None
    owner_field: str | None = "userId"
    id_field: str = "id"
    description: str = ""

    def get_field(self, name: str) -> FieldDefinition | None:
        for f in self.fields:
            if f.name == name:
                return f
        return None

    @property
    def field_names(self) -> list[str]:
        return [f.name for f in self.fields]

    @property
    def is_tenant_scoped(self) -> bool:
        return self.owner_field is not None

    def searchable_text(self, doc: dict[str, Any]) -> str:
        """Concatenate the searchable field values of a document."""
        parts: list[str] = []
        for name in self.searchable_fields:
            value = doc.get(name)
            if isinstance(value, list):
                parts.extend(str(v) for v in value if v is not None)
            elif value is not None:
                parts.append(str(value))
        return " ".join(parts).strip()

    def without_embedding(self, doc: dict[str, Any]) -> dict[str, Any]:
        if self.embedding_field and self.embedding_field in doc:
            return {k: v for k, v in doc.items() if k != self.embedding_field}
        return doc
