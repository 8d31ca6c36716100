from .sqlalchemy_document_store import SQLAlchemyDocumentStore

__all__ = [
    "SQLAlchemyDocumentStore",
]
