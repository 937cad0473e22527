"""Placeholder embedding provider using deterministic hash-based embeddings."""

import hashlib
import random
from typing import List

from userkb.embedding.provider import EmbeddingProvider


def hash_seeded_vector(text: str, dimension: int) -> List[float]:
    """Deterministic vector in [-1, 1] seeded from the SHA-256 of ``text``."""
    digest = hashlib.sha256(text.encode("utf-8")).digest()
    seed = int.from_bytes(digest[:8], "little", signed=False)
    rng = random.Random(seed)  # nosec: B311 - deterministic RNG is intentional here
    return [rng.uniform(-1.0, 1.0) for _ in range(dimension)]


class PlaceholderEmbeddingProvider(EmbeddingProvider):
    """Embeddings without semantic meaning, used when no API key is configured.

    The same text always maps to the same vector, so exact repeats still
    match each other, but unrelated texts land at near-zero similarity.
    """

    def __init__(self, dimension: int = 1536):
        self._dimension = dimension

    def generate_embedding(self, text: str) -> List[float]:
        return hash_seeded_vector(text, self._dimension)

    def generate_embeddings_batch(self, texts: List[str]) -> List[List[float]]:
        return [self.generate_embedding(text) for text in texts]

    def dimension(self) -> int:
        return self._dimension

    def provider_name(self) -> str:
        return "placeholder"
