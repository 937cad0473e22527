from __future__ import annotations

import logging
from typing import Any, Dict, List, Optional

from userkb.embedding.cache import EmbeddingCache
from userkb.embedding.fallback import DegradedEmbeddingFallback
from userkb.embedding.provider import EmbeddingProvider
from userkb.metrics import OperationMetrics, operation_metrics

logger = logging.getLogger(__name__)


class EmbeddingService:
    """Adapter the rest of the service uses to turn text into vectors.

    ``embed`` always returns a vector of ``dimension`` floats unless the
    fallback is configured to raise. Degraded vectors are never cached.
    """

    def __init__(
        self,
        provider: EmbeddingProvider,
        fallback: Optional[DegradedEmbeddingFallback] = None,
        cache: Optional[EmbeddingCache] = None,
        metrics: Optional[OperationMetrics] = None,
    ) -> None:
        self.provider = provider
        self.metrics = metrics or operation_metrics
        self.fallback = fallback or DegradedEmbeddingFallback(provider.dimension())
        self.cache = cache
        if self.fallback.dimension != provider.dimension():
            raise ValueError(
                f"Fallback dimension {self.fallback.dimension} != provider dimension {provider.dimension()}"
            )

    def dimension(self) -> int:
        return self.provider.dimension()

    def embed(self, text: str) -> List[float]:
        if not isinstance(text, str) or not text.strip():
            raise ValueError("Cannot embed empty text")

        if self.cache is not None:
            cached = self.cache.get(text)
            if cached is not None:
                return cached

        try:
            with self.metrics.track("embedding"):
                vector = self.provider.generate_embedding(text)
                if len(vector) != self.dimension():
                    raise ValueError(
                        f"Provider {self.provider.provider_name()} returned {len(vector)} dims, "
                        f"expected {self.dimension()}"
                    )
        except Exception as exc:
            return self.fallback.embed(text, exc)

        self.fallback.record_success()
        if self.cache is not None:
            self.cache.put(text, vector)
        return vector

    def embed_many(self, texts: List[str]) -> List[List[float]]:
        """Embed several texts in one provider round trip.

        A failed or malformed batch falls back to ``embed`` per text, so each
        text still gets its own cache lookup and degraded vector.
        """
        if any(not isinstance(t, str) or not t.strip() for t in texts):
            raise ValueError("Cannot embed empty text")
        if not texts:
            return []
        try:
            with self.metrics.track("embedding_batch"):
                vectors = self.provider.generate_embeddings_batch(texts)
                if len(vectors) != len(texts) or any(len(v) != self.dimension() for v in vectors):
                    raise ValueError("Provider returned an invalid batch")
        except Exception:
            logger.warning("Batch embedding failed; embedding %d texts individually", len(texts))
            return [self.embed(t) for t in texts]
        self.fallback.record_success()
        if self.cache is not None:
            for text, vector in zip(texts, vectors):
                self.cache.put(text, vector)
        return vectors

    def stats(self) -> Dict[str, Any]:
        data: Dict[str, Any] = {
            "provider": self.provider.provider_name(),
            "dimension": self.dimension(),
            "fallback": self.fallback.to_dict(),
        }
        if self.cache is not None:
            data["cache"] = {
                "entries": len(self.cache),
                "hits": self.cache.hits,
                "misses": self.cache.misses,
            }
        return data
