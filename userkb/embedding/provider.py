"""Base embedding provider interface."""

from abc import ABC, abstractmethod
from typing import List


class EmbeddingProvider(ABC):
    """Abstract base class for embedding backends.

    Implementations turn text into fixed-length vectors. They are free to
    raise on any failure; the degraded fallback decides what the caller
    receives instead.
    """

    @abstractmethod
    def generate_embedding(self, text: str) -> List[float]:
        """Generate an embedding for a single text.

        Args:
            text: The text to embed

        Returns:
            A list of floats of length ``dimension()``

        Raises:
            Exception: If embedding generation fails
        """

    @abstractmethod
    def generate_embeddings_batch(self, texts: List[str]) -> List[List[float]]:
        """Generate embeddings for several texts, one vector per input."""

    @abstractmethod
    def dimension(self) -> int:
        """Return the dimensionality of embeddings produced by this provider."""

    @abstractmethod
    def provider_name(self) -> str:
        """Return a human-readable name (e.g. ``openai:text-embedding-3-small``)."""

    def __repr__(self) -> str:
        return f"{self.__class__.__name__}(dimension={self.dimension()}, provider={self.provider_name()})"
