"""Embedding service — turns query and document text into vectors.

Wraps the EmbeddingProvider port so callers get a single failure type
(EmbeddingError) regardless of which provider is configured.
"""

import logging
import time

from hoprag.application.interfaces.embedding_provider import EmbeddingProvider
from hoprag.domain.exceptions import EmbeddingError

logger = logging.getLogger(__name__)

_MAX_BATCH_SIZE = 50  # Max texts per embedding API call


class EmbeddingService:
    """Application service for query and document embeddings."""

    def __init__(self, embedding_provider: EmbeddingProvider):
        self._embedding_provider = embedding_provider

    @property
    def dimensions(self) -> int:
        return self._embedding_provider.dimensions

    async def embed(self, text: str) -> list[float]:
        """Embed a single search query.

        Raises:
            EmbeddingError: when the text is empty or the provider fails.
        """
        cleaned = text.replace("\n", " ").strip()
        if not cleaned:
            raise EmbeddingError("Cannot embed empty text")
        try:
            return await self._embedding_provider.generate_query_embedding(cleaned)
        except EmbeddingError:
            raise
        except Exception as exc:
            raise EmbeddingError(f"Query embedding failed: {exc}") from exc

    async def embed_documents(self, texts: list[str]) -> list[list[float]]:
        """Embed document texts in batches, preserving input order."""
        if not texts:
            return []

        start = time.monotonic()
        vectors: list[list[float]] = []
        for batch_start in range(0, len(texts), _MAX_BATCH_SIZE):
            batch = [t.replace("\n", " ") for t in texts[batch_start : batch_start + _MAX_BATCH_SIZE]]
            try:
                vectors.extend(await self._embedding_provider.generate_embeddings(batch))
            except Exception as exc:
                raise EmbeddingError(f"Document embedding failed: {exc}") from exc

        logger.info(
            "Embedded %d documents in %dms",
            len(vectors),
            int((time.monotonic() - start) * 1000),
        )
        return vectors
