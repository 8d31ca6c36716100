"""In-process document store used for development and tests."""

from .in_memory_document_store import InMemoryDocumentStore

__all__ = ["InMemoryDocumentStore"]
