"""Schema registry — read-only map of collection name → CollectionSchema.

Built once at startup (usually by SchemaRegistryLoader from YAML) and shared
by every request. Lookups never raise: unknown names yield None or empties.
"""

import logging
from collections.abc import Iterable, Iterator
from pathlib import Path

import yaml

from hoprag.domain.entities.schema import (
    Cardinality,
    CollectionSchema,
    FieldDefinition,
    FieldType,
    Relationship,
)
from hoprag.domain.exceptions import SchemaConfigurationError

logger = logging.getLogger(__name__)

# Reciprocal declarations must agree: A→B many-to-one implies B→A one-to-many.
_RECIPROCAL = {
    Cardinality.ONE_TO_ONE: Cardinality.ONE_TO_ONE,
    Cardinality.ONE_TO_MANY: Cardinality.MANY_TO_ONE,
    Cardinality.MANY_TO_ONE: Cardinality.ONE_TO_MANY,
    Cardinality.MANY_TO_MANY: Cardinality.MANY_TO_MANY,
}


class SchemaRegistry:
    """In-memory registry of collection schemas."""

    def __init__(self, schemas: Iterable[CollectionSchema] = ()):
        self._schemas: dict[str, CollectionSchema] = {}
        for schema in schemas:
            if schema.name in self._schemas:
                raise SchemaConfigurationError(f"Duplicate collection '{schema.name}'")
            self._schemas[schema.name] = schema

    def __contains__(self, name: object) -> bool:
        return name in self._schemas

    def __len__(self) -> int:
        return len(self._schemas)

    def __iter__(self) -> Iterator[CollectionSchema]:
        return iter(self._schemas.values())

    def get_schema(self, name: str) -> CollectionSchema | None:
        return self._schemas.get(name)

    def all_schemas(self) -> list[CollectionSchema]:
        return list(self._schemas.values())

    def collection_names(self) -> list[str]:
        return list(self._schemas)

    def get_searchable_fields(self, name: str) -> list[str]:
        schema = self._schemas.get(name)
        return list(schema.searchable_fields) if schema else []

    def has_embedding(self, name: str) -> bool:
        schema = self._schemas.get(name)
        return bool(schema and schema.embedding_field)

    def get_related_collections(self, name: str) -> list[str]:
        """Targets declared on ``name``, in declaration order, without duplicates."""
        schema = self._schemas.get(name)
        if schema is None:
            return []
        related: list[str] = []
        for rel in schema.relationships:
            if rel.target not in related:
                related.append(rel.target)
        return related

    def referencing_collections(self, name: str) -> list[str]:
        """Collections that declare a relationship targeting ``name``."""
        return [
            schema.name
            for schema in self._schemas.values()
            if any(rel.target == name for rel in schema.relationships)
        ]

    def get_field(self, collection: str, field_name: str) -> FieldDefinition | None:
        schema = self._schemas.get(collection)
        return schema.get_field(field_name) if schema else None

    def resolve_field_alias(self, collection: str, name: str) -> str | None:
        """Map a field name or one of its synonyms to the canonical field name.

        Exact names win over synonyms; synonym matching is case-insensitive.
        """
        schema = self._schemas.get(collection)
        if schema is None:
            return None
        if schema.get_field(name) is not None:
            return name
        lowered = name.lower()
        for f in schema.fields:
            if f.name.lower() == lowered:
                return f.name
            if any(s.lower() == lowered for s in f.synonyms):
                return f.name
        return None

    def get_text_fields(self, collection: str) -> list[str]:
        """String-valued, non-restricted fields eligible for substring search."""
        schema = self._schemas.get(collection)
        if schema is None:
            return []
        return [
            f.name for f in schema.fields
            if f.is_textual and not f.restricted and f.name != schema.owner_field
        ]


class SchemaRegistryLoader:
    """Builds a SchemaRegistry from a YAML definition file.

    Expected layout::

        collections:
          - name: companies
            embedding_field: embedding
            searchable: [name, description]
            fields:
              - {name: annualRevenue, type: number, sortable: true}
            relationships:
              - {field: id, target: employees, cardinality: one-to-many, via: companyId}
    """

    def __init__(self, path: str | Path):
        self._path = Path(path)

    def load(self) -> SchemaRegistry:
        if not self._path.exists():
            raise SchemaConfigurationError("Schema file not found", source=str(self._path))

        try:
            data = yaml.safe_load(self._path.read_text("utf-8"))
        except yaml.YAMLError as exc:
            raise SchemaConfigurationError(f"Invalid YAML: {exc}", source=str(self._path)) from exc

        if not isinstance(data, dict) or not isinstance(data.get("collections"), list):
            raise SchemaConfigurationError(
                "Top-level 'collections' list is required", source=str(self._path)
            )

        schemas = [self._build_collection(entry) for entry in data["collections"]]
        registry = SchemaRegistry(schemas)
        validate_registry(registry, source=str(self._path))

        logger.info(
            "Loaded %d collection schemas from %s", len(registry), self._path.name
        )
        return registry

    # ── Mapping ──────────────────────────────────────────────────────

    def _build_collection(self, entry: dict) -> CollectionSchema:
        """Map a raw YAML dict to a CollectionSchema domain entity."""
        if not isinstance(entry, dict) or not entry.get("name"):
            raise SchemaConfigurationError("Collection entry without a name", source=str(self._path))

        name = entry["name"]
        fields = tuple(self._build_field(name, f) for f in entry.get("fields", []))
        relationships = tuple(
            self._build_relationship(name, r) for r in entry.get("relationships", [])
        )

        return CollectionSchema(
            name=name,
            fields=fields,
            relationships=relationships,
            searchable_fields=tuple(entry.get("searchable", [])),
            embedding_field=entry.get("embedding_field"),
            owner_field=entry.get("owner_field", "userId"),
            id_field=entry.get("id_field", "id"),
            description=entry.get("description", ""),
        )

    def _build_field(self, collection: str, entry: dict) -> FieldDefinition:
        try:
            field_type = FieldType(entry.get("type", "string"))
            item_type = FieldType(entry["items"]) if entry.get("items") else None
        except ValueError as exc:
            raise SchemaConfigurationError(
                f"{collection}.{entry.get('name')}: {exc}", source=str(self._path)
            ) from exc

        return FieldDefinition(
            name=entry["name"],
            type=field_type,
            item_type=item_type,
            filterable=entry.get("filterable", True),
            sortable=entry.get("sortable", False),
            operators=frozenset(entry.get("operators", [])),
            synonyms=tuple(entry.get("synonyms", [])),
            category=entry.get("category"),
            importance=entry.get("importance"),
            restricted=entry.get("restricted", False),
            description=entry.get("description", ""),
        )

    def _build_relationship(self, collection: str, entry: dict) -> Relationship:
        try:
            cardinality = Cardinality(entry["cardinality"])
        except (KeyError, ValueError) as exc:
            raise SchemaConfigurationError(
                f"{collection} → {entry.get('target')}: invalid cardinality", source=str(self._path)
            ) from exc

        return Relationship(
            field=entry["field"],
            target=entry["target"],
            cardinality=cardinality,
            via=entry.get("via"),
            description=entry.get("description", ""),
        )


def validate_registry(registry: SchemaRegistry, source: str | None = None) -> None:
    """Check cross-collection consistency of a registry.

    Raises SchemaConfigurationError when a relationship targets an unknown
    collection, an embedding/searchable field is undeclared, or reciprocal
    relationships disagree on cardinality.
    """
    for schema in registry:
        declared = set(schema.field_names) | {schema.id_field}

        for name in schema.searchable_fields:
            if name not in declared:
                raise SchemaConfigurationError(
                    f"{schema.name}: searchable field '{name}' is not declared", source=source
                )
        if schema.embedding_field and schema.embedding_field not in declared:
            raise SchemaConfigurationError(
                f"{schema.name}: embedding field '{schema.embedding_field}' is not declared",
                source=source,
            )

        for rel in schema.relationships:
            target = registry.get_schema(rel.target)
            if target is None:
                raise SchemaConfigurationError(
                    f"{schema.name}.{rel.field} targets unknown collection '{rel.target}'",
                    source=source,
                )
            for back in target.relationships:
                if back.target != schema.name or not _same_join(rel, schema, back, target):
                    continue
                if back.cardinality != _RECIPROCAL[rel.cardinality]:
                    raise SchemaConfigurationError(
                        f"{schema.name} → {target.name} is {rel.cardinality.value} but "
                        f"{target.name} → {schema.name} is {back.cardinality.value}",
                        source=source,
                    )


def _same_join(
    rel: Relationship,
    schema: CollectionSchema,
    back: Relationship,
    target: CollectionSchema,
) -> bool:
    """Whether ``back`` (declared on target) describes the same join as ``rel``."""
    left = (rel.field, rel.via or target.id_field)
    right = (back.via or schema.id_field, back.field)
    return left == right
