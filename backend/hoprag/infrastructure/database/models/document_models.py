"""SQLAlchemy ORM model for schemaless documents with pgvector embeddings."""

from sqlalchemy import Column, DateTime, Index, String, Text, func, literal_column
from sqlalchemy.dialects.postgresql import JSONB

from pgvector.sqlalchemy import Vector

from hoprag.infrastructure.database.base import Base

EMBEDDING_DIMENSIONS = 1536


class DocumentModel(Base):
    """One document of one collection.

    Field values live in the JSONB ``data`` column. The embedding vector and
    the concatenated searchable text are kept in dedicated columns so they
    can carry HNSW and full-text indexes.
    """

    __tablename__ = "documents"

    collection = Column(String(100), primary_key=True)
    id = Column(String(64), primary_key=True)
    data = Column(JSONB, nullable=False, default=dict)
    search_text = Column(Text, nullable=True)
    embedding = Column(Vector(EMBEDDING_DIMENSIONS), nullable=True)  # HNSW max: 2000
    created_at = Column(DateTime(timezone=True), nullable=False, server_default=func.now())
    updated_at = Column(
        DateTime(timezone=True), nullable=False, server_default=func.now(), onupdate=func.now()
    )

    __table_args__ = (
        Index("idx_documents_data_gin", data, postgresql_using="gin"),
        Index("idx_documents_embedding_hnsw", embedding, postgresql_using="hnsw",
              postgresql_ops={"embedding": "vector_cosine_ops"}),
        Index(
            "idx_documents_search_text_fts",
            func.to_tsvector(literal_column("'simple'::regconfig"), search_text),
            postgresql_using="gin",
        ),
    )
