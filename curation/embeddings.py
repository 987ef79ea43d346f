"""Embedding service and vector similarity."""
import logging
from abc import ABC, abstractmethod
from typing import List, Sequence

import numpy as np
from openai import AsyncOpenAI, OpenAIError

from shared.errors import EmbeddingError

logger = logging.getLogger(__name__)

# text-embedding models accept ~8k tokens; characters are a safe proxy
MAX_EMBEDDING_CHARS = 8000


def cosine_similarity(a: Sequence[float], b: Sequence[float]) -> float:
    """dot(a, b) / (|a| * |b|), defined as 0.0 when either vector has zero norm."""
    va = np.asarray(a, dtype=np.float64)
    vb = np.asarray(b, dtype=np.float64)
    if va.shape != vb.shape:
        raise ValueError(f"Vectors must have the same length ({va.size} != {vb.size})")

    norm_a = np.linalg.norm(va)
    norm_b = np.linalg.norm(vb)
    if norm_a == 0 or norm_b == 0:
        return 0.0

    similarity = float(np.dot(va, vb) / (norm_a * norm_b))
    # Rounding can push |cos| a hair past 1
    return max(-1.0, min(1.0, similarity))


class EmbeddingService(ABC):
    """Turns text into a fixed-length numeric vector."""

    @abstractmethod
    async def embed(self, text: str) -> List[float]:
        """Raise EmbeddingError on failure; never return a placeholder vector."""


class OpenAIEmbeddingService(EmbeddingService):

    def __init__(self, client: AsyncOpenAI, model: str):
        self.client = client
        self.model = model

    async def embed(self, text: str) -> List[float]:
        try:
            response = await self.client.embeddings.create(
                model=self.model,
                input=text[:MAX_EMBEDDING_CHARS]
            )
        except OpenAIError as e:
            raise EmbeddingError(f"Failed to generate embedding: {e}") from e

        embedding = response.data[0].embedding if response.data else None
        if not embedding:
            raise EmbeddingError("Invalid embedding response: empty vector")
        return list(embedding)
