from __future__ import annotations

import math
from typing import Optional, Sequence


def _cosine_similarity(vec1: Optional[Sequence[float]], vec2: Optional[Sequence[float]]) -> float:
    """Compute cosine similarity between two vectors.

    Missing, empty, mismatched or zero-norm vectors yield 0.0 rather than raising.
    """
    if not vec1 or not vec2 or len(vec1) != len(vec2):
        return 0.0

    dot_product = sum(a * b for a, b in zip(vec1, vec2))
    norm_a = math.sqrt(sum(a * a for a in vec1))
    norm_b = math.sqrt(sum(b * b for b in vec2))

    if norm_a == 0 or norm_b == 0:
        return 0.0

    similarity = dot_product / (norm_a * norm_b)
    if math.isnan(similarity):
        return 0.0
    return max(-1.0, min(1.0, similarity))


def similarity_score(vec1: Optional[Sequence[float]], vec2: Optional[Sequence[float]]) -> float:
    """Cosine similarity clamped to [0, 1] for ranking."""
    return max(0.0, _cosine_similarity(vec1, vec2))
