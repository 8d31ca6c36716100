from .document_models import DocumentModel, EMBEDDING_DIMENSIONS

__all__ = [
    "DocumentModel",
    "EMBEDDING_DIMENSIONS",
]
