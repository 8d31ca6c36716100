"""Pydantic schemas for schema-registry introspection responses."""

from pydantic import BaseModel

from hoprag.domain.entities.schema import CollectionSchema, FieldDefinition, Relationship


class FieldSchema(BaseModel):
    name: str
    type: str
    item_type: str | None = None
    filterable: bool = True
    sortable: bool = False
    operators: list[str] = []
    synonyms: list[str] = []
    category: str | None = None
    importance: str | None = None
    description: str = ""

    @classmethod
    def from_domain(cls, f: FieldDefinition) -> "FieldSchema":
        return cls(
            name=f.name,
            type=f.type.value,
            item_type=f.item_type.value if f.item_type else None,
            filterable=f.filterable,
            sortable=f.sortable,
            operators=sorted(f.allowed_operators),
            synonyms=list(f.synonyms),
            category=f.category,
            importance=f.importance,
            description=f.description,
        )


class RelationshipSchema(BaseModel):
    field: str
    target: str
    cardinality: str
    via: str | None = None
    description: str = ""

    @classmethod
    def from_domain(cls, rel: Relationship) -> "RelationshipSchema":
        return cls(
            field=rel.field,
            target=rel.target,
            cardinality=rel.cardinality.value,
            via=rel.via,
            description=rel.description,
        )


class CollectionSummarySchema(BaseModel):
    name: str
    description: str = ""
    related_collections: list[str] = []
    has_embedding: bool = False


class CollectionDetailSchema(BaseModel):
    """Full schema of one collection."""

    name: str
    description: str = ""
    id_field: str
    owner_field: str | None = None
    embedding_field: str | None = None
    searchable_fields: list[str] = []
    fields: list[FieldSchema] = []
    relationships: list[RelationshipSchema] = []

    @classmethod
    def from_domain(cls, schema: CollectionSchema) -> "CollectionDetailSchema":
        # Restricted fields (embeddings, blobs) stay out of introspection.
        return cls(
            name=schema.name,
            description=schema.description,
            id_field=schema.id_field,
            owner_field=schema.owner_field,
            embedding_field=schema.embedding_field,
            searchable_fields=list(schema.searchable_fields),
            fields=[FieldSchema.from_domain(f) for f in schema.fields if not f.restricted],
            relationships=[RelationshipSchema.from_domain(r) for r in schema.relationships],
        )
