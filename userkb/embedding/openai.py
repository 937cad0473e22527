"""OpenAI embedding provider using the OpenAI API."""

import logging
from typing import List, Optional

from openai import OpenAI

from userkb.embedding.provider import EmbeddingProvider

logger = logging.getLogger(__name__)


class OpenAIEmbeddingProvider(EmbeddingProvider):
    """Generates embeddings with OpenAI's embedding endpoint.

    Requests ``dimensions`` explicitly so the vectors always match the
    configured store dimension; a response of any other length is rejected.
    """

    def __init__(
        self,
        api_key: str,
        model: str = "text-embedding-3-small",
        dimension: int = 1536,
        timeout: float = 30.0,
        max_retries: int = 2,
        base_url: Optional[str] = None,
        client: Optional[OpenAI] = None,
    ):
        """Initialize OpenAI embedding provider.

        Args:
            api_key: OpenAI API key
            model: OpenAI embedding model to use
            dimension: Number of dimensions for embeddings
            timeout: Request timeout in seconds (default 30)
            max_retries: Maximum number of retries (default 2)
            base_url: Optional OpenAI-compatible endpoint
            client: Pre-built client, mostly for tests
        """
        self.client = client or OpenAI(
            api_key=api_key, base_url=base_url, timeout=timeout, max_retries=max_retries
        )
        self.model = model
        self._dimension = dimension
        logger.info(
            "OpenAI embedding provider initialized (model=%s, dimensions=%d, timeout=%.1fs, retries=%d)",
            model,
            dimension,
            timeout,
            max_retries,
        )

    def generate_embedding(self, text: str) -> List[float]:
        response = self.client.embeddings.create(
            input=text, model=self.model, dimensions=self._dimension
        )
        if not response.data:
            raise ValueError(f"OpenAI returned no embedding data (model={self.model})")
        embedding = list(response.data[0].embedding)
        if len(embedding) != self._dimension:
            raise ValueError(
                f"OpenAI embedding length {len(embedding)} != configured dimension {self._dimension} "
                f"(model={self.model})"
            )
        logger.debug("Generated OpenAI embedding for text (length: %d)", len(text))
        return embedding

    def generate_embeddings_batch(self, texts: List[str]) -> List[List[float]]:
        if not texts:
            return []

        response = self.client.embeddings.create(
            input=texts, model=self.model, dimensions=self._dimension
        )
        embeddings = [list(item.embedding) for item in response.data]
        if len(embeddings) != len(texts):
            raise ValueError(
                f"OpenAI returned {len(embeddings)} embeddings for {len(texts)} inputs (model={self.model})"
            )
        bad = next((i for i, e in enumerate(embeddings) if len(e) != self._dimension), None)
        if bad is not None:
            raise ValueError(
                f"OpenAI batch embedding length {len(embeddings[bad])} != configured dimension {self._dimension} "
                f"at index {bad} (model={self.model})"
            )
        logger.info("Generated %d OpenAI embeddings in batch", len(embeddings))
        return embeddings

    def dimension(self) -> int:
        return self._dimension

    def provider_name(self) -> str:
        return f"openai:{self.model}"
