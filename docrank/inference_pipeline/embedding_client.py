"""
Embedding client for docrank.
Turns text into vectors through the inference gateway with a bounded cache.
"""

import math
from collections import OrderedDict
from typing import List, Optional, Sequence

from docrank.models.ranking import EmbeddingConfig
from docrank.utils.logger import LoggerMixin
from .base import IInferenceGateway, InferenceGatewayError


def cosine(a: Sequence[float], b: Sequence[float]) -> float:
    """
    Cosine similarity of two vectors.

    Empty vectors and vectors of different length have similarity 0.
    A zero denominator is replaced by 1.

    Args:
        a: First vector
        b: Second vector

    Returns:
        Similarity clamped to [-1, 1]
    """
    if not a or not b or len(a) != len(b):
        return 0.0

    dot = sum(x * y for x, y in zip(a, b))
    norm_a = math.sqrt(sum(x * x for x in a))
    norm_b = math.sqrt(sum(y * y for y in b))
    denominator = norm_a * norm_b or 1.0

    return max(-1.0, min(1.0, dot / denominator))


class EmbeddingClient(LoggerMixin):
    """Computes text embeddings with a FIFO cache. Failures yield an empty vector."""

    def __init__(self, gateway: IInferenceGateway, config: Optional[EmbeddingConfig] = None):
        """
        Initialize the embedding client.

        Args:
            gateway: Inference gateway used for embedding calls
            config: Embedding configuration
        """
        self.gateway = gateway
        self.config = (config or EmbeddingConfig()).model_copy()
        self.dimension: Optional[int] = self.config.dimension or None
        self._cache: "OrderedDict[str, List[float]]" = OrderedDict()

    @property
    def cache_size(self) -> int:
        return len(self._cache)

    def clear_cache(self) -> None:
        self._cache.clear()

    async def embed(self, text: str) -> List[float]:
        """
        Embed text.

        Args:
            text: Input text

        Returns:
            Embedding vector, or an empty list when no signal is available
        """
        if not text:
            return []

        key = text[:self.config.cache_key_length]
        cached = self._cache.get(key)
        if cached is not None:
            return cached

        try:
            vector = await self.gateway.embed(
                text[:self.config.max_input_chars],
                model=self.config.model
            )
        except InferenceGatewayError as e:
            self.logger.error(f"Embedding generation failed: {e}")
            return []

        if not vector:
            return []

        if self.dimension is None:
            self.dimension = len(vector)
            self.logger.info(f"Embedding dimension set to {self.dimension}")
        elif len(vector) != self.dimension:
            self.logger.error(
                f"Embedding dimension mismatch: expected {self.dimension}, got {len(vector)}"
            )
            return []

        self._cache[key] = vector
        while len(self._cache) > self.config.cache_size:
            self._cache.popitem(last=False)

        return vector
