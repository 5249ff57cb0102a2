"""
Text embedding generation for semantic memory.

Turns text into fixed-length vectors used for deduplication and retrieval
of room memories.
"""

import logging
from abc import ABC, abstractmethod
from typing import Any, List, Optional, Sequence

import numpy as np
from openai import AsyncOpenAI

from ...core.exceptions import ConfigurationError, EmbeddingError

logger = logging.getLogger(__name__)

DEFAULT_EMBEDDING_MODEL = "text-embedding-3-small"
DEFAULT_EMBEDDING_DIMENSIONS = 1536


def cosine_similarity(a: Sequence[float], b: Sequence[float]) -> float:
    """Cosine similarity of two vectors, 0.0 when either is all zeros."""
    va = np.asarray(a, dtype=np.float32)
    vb = np.asarray(b, dtype=np.float32)
    denom = float(np.linalg.norm(va) * np.linalg.norm(vb))
    if denom == 0.0:
        return 0.0
    return float(np.dot(va, vb) / denom)


class EmbeddingGenerator(ABC):
    """Abstract interface for embedding backends."""

    dimensions: int = DEFAULT_EMBEDDING_DIMENSIONS

    @abstractmethod
    async def embed(self, text: str) -> List[float]:
        """Embed a single text."""
        pass


class OpenAIEmbeddingGenerator(EmbeddingGenerator):
    """Embeddings through the OpenAI embeddings endpoint."""

    def __init__(
        self,
        api_key: Optional[str],
        model: str = DEFAULT_EMBEDDING_MODEL,
        dimensions: int = DEFAULT_EMBEDDING_DIMENSIONS,
        client: Optional[Any] = None,
    ):
        self.api_key = api_key
        self.model = model
        self.dimensions = dimensions
        self.client = client

    def _get_client(self) -> Any:
        """Get OpenAI client"""
        if self.client is None:
            if not self.api_key:
                raise ConfigurationError(
                    "OPENAI_API_KEY is not configured", component="embeddings"
                )
            self.client = AsyncOpenAI(api_key=self.api_key)
        return self.client

    async def embed(self, text: str) -> List[float]:
        client = self._get_client()
        # Newlines degrade embedding quality
        clean_text = text.replace("\n", " ")

        try:
            response = await client.embeddings.create(
                model=self.model,
                input=clean_text,
                dimensions=self.dimensions,
            )
        except Exception as e:
            logger.error(f"Failed to generate embedding: {e}")
            raise EmbeddingError(str(e)) from e

        if not response.data:
            raise EmbeddingError("empty embedding response")
        return list(response.data[0].embedding)
