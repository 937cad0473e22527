from __future__ import annotations

import os
from typing import Any


def init_embedding_provider(
    *,
    state: Any,
    logger: Any,
    vector_size: int,
    embedding_model: str,
    timeout: float = 30.0,
    max_retries: int = 2,
) -> None:
    """Initialize the embedding provider with auto-selection fallback.

    Controlled via the EMBEDDING_PROVIDER env var:
    - "auto" (default): OpenAI if OPENAI_API_KEY is set, otherwise placeholder
    - "openai": Use OpenAI only, fail if unavailable
    - "placeholder": Use hash-based placeholder embeddings
    """
    if state.embedding_provider is not None:
        return

    provider_config = (os.getenv("EMBEDDING_PROVIDER", "auto") or "auto").strip().lower()
    api_key = os.getenv("OPENAI_API_KEY")
    openai_base_url = (os.getenv("OPENAI_BASE_URL") or "").strip() or None

    if provider_config == "openai":
        if not api_key:
            raise RuntimeError("EMBEDDING_PROVIDER=openai but OPENAI_API_KEY not set")
        try:
            from userkb.embedding.openai import OpenAIEmbeddingProvider

            state.embedding_provider = OpenAIEmbeddingProvider(
                api_key=api_key,
                model=embedding_model,
                dimension=vector_size,
                timeout=timeout,
                max_retries=max_retries,
                base_url=openai_base_url,
            )
            logger.info("Embedding provider: %s", state.embedding_provider.provider_name())
            return
        except Exception as e:
            raise RuntimeError(f"Failed to initialize OpenAI provider: {e}") from e

    if provider_config == "placeholder":
        from userkb.embedding.placeholder import PlaceholderEmbeddingProvider

        state.embedding_provider = PlaceholderEmbeddingProvider(dimension=vector_size)
        logger.info("Embedding provider: %s", state.embedding_provider.provider_name())
        return

    if provider_config != "auto":
        raise ValueError(
            f"Invalid EMBEDDING_PROVIDER '{provider_config}' (expected auto, openai or placeholder)"
        )

    if api_key:
        try:
            from userkb.embedding.openai import OpenAIEmbeddingProvider

            state.embedding_provider = OpenAIEmbeddingProvider(
                api_key=api_key,
                model=embedding_model,
                dimension=vector_size,
                timeout=timeout,
                max_retries=max_retries,
                base_url=openai_base_url,
            )
            logger.info("Embedding provider (auto-selected): %s", state.embedding_provider.provider_name())
            return
        except Exception as e:
            logger.warning("Failed to initialize OpenAI provider, using placeholder: %s", str(e))

    from userkb.embedding.placeholder import PlaceholderEmbeddingProvider

    state.embedding_provider = PlaceholderEmbeddingProvider(dimension=vector_size)
    logger.warning(
        "Using placeholder embeddings (no semantic search). Set OPENAI_API_KEY for semantic retrieval."
    )
