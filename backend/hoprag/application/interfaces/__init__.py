from .document_store import DocumentStore
from .embedding_provider import EmbeddingProvider
from .analyst import Analyst
from .critic import Critic

__all__ = [
    "DocumentStore",
    "EmbeddingProvider",
    "Analyst",
    "Critic",
]
