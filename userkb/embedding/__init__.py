"""Embedding adapter for the knowledge service.

Provides abstraction over embedding backends:
- OpenAI (API-based, requires key)
- Placeholder (hash-based, no semantic meaning)

plus the degraded fallback strategy and an in-process cache.
"""

from .cache import EmbeddingCache
from .fallback import DegradedEmbeddingFallback
from .openai import OpenAIEmbeddingProvider
from .placeholder import PlaceholderEmbeddingProvider
from .provider import EmbeddingProvider
from .service import EmbeddingService

__all__ = [
    "DegradedEmbeddingFallback",
    "EmbeddingCache",
    "EmbeddingProvider",
    "EmbeddingService",
    "OpenAIEmbeddingProvider",
    "PlaceholderEmbeddingProvider",
]
