"""Degraded embedding strategies used when the real provider fails.

A degraded vector keeps ingestion and retrieval alive during a provider
outage, at the cost of retrieval quality: random vectors make semantically
related facts unlikely to clear the similarity bar, so during an outage only
lexical matches and recency carry retrieval.
"""

from __future__ import annotations

import logging
import random
from threading import Lock
from typing import List, Optional

from userkb.embedding.placeholder import hash_seeded_vector
from userkb.errors import ProviderUnavailable

logger = logging.getLogger(__name__)

FALLBACK_MODES = {"random", "hash", "raise"}


class DegradedEmbeddingFallback:
    """Produces a substitute vector and counts how often that happened.

    ``degraded_count`` is the lifetime total. ``degraded_since_success``
    resets whenever the real provider answers again, so it tells whether the
    provider is failing right now.

    Modes:
    - ``random``: uniform noise in [-1, 1] (default)
    - ``hash``: deterministic hash-seeded vector, so identical text still matches
    - ``raise``: no substitute; re-raise as ``ProviderUnavailable``
    """

    def __init__(self, dimension: int, mode: str = "random", rng: Optional[random.Random] = None):
        mode = (mode or "random").strip().lower()
        if mode not in FALLBACK_MODES:
            raise ValueError(f"Unknown embedding fallback mode '{mode}' (expected one of {sorted(FALLBACK_MODES)})")
        self.dimension = dimension
        self.mode = mode
        self._rng = rng or random.Random()  # nosec: B311 - not used for security
        self._lock = Lock()
        self.degraded_count = 0
        self.degraded_since_success = 0
        self.last_error: Optional[str] = None

    def embed(self, text: str, error: BaseException) -> List[float]:
        with self._lock:
            self.degraded_count += 1
            self.degraded_since_success += 1
            self.last_error = str(error)

        if self.mode == "raise":
            raise ProviderUnavailable(f"Embedding provider failed: {error}") from error

        logger.warning(
            "Embedding provider failed (%s); using degraded %s embedding (degraded total: %d)",
            error,
            self.mode,
            self.degraded_count,
        )
        if self.mode == "hash":
            return hash_seeded_vector(text, self.dimension)
        return [self._rng.uniform(-1.0, 1.0) for _ in range(self.dimension)]

    def record_success(self) -> None:
        with self._lock:
            if self.degraded_since_success:
                logger.info(
                    "Embedding provider recovered after %d degraded embeddings", self.degraded_since_success
                )
            self.degraded_since_success = 0

    @property
    def is_degraded(self) -> bool:
        return self.degraded_since_success > 0

    def to_dict(self) -> dict:
        return {
            "mode": self.mode,
            "degraded": self.is_degraded,
            "degraded_count": self.degraded_count,
            "degraded_since_success": self.degraded_since_success,
            "last_error": self.last_error,
        }
