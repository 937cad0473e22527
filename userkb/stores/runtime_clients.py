from __future__ import annotations

import os
from typing import Any, Callable


def init_qdrant(
    *,
    state: Any,
    logger: Any,
    qdrant_client_cls: Any,
    ensure_collection_fn: Callable[[], None],
) -> None:
    """Initialize Qdrant connection and ensure the collection exists."""
    if state.qdrant is not None:
        return

    url = os.getenv("QDRANT_URL")
    api_key = os.getenv("QDRANT_API_KEY")

    if not url:
        logger.info("Qdrant URL not provided; using the in-memory knowledge store")
        return

    try:
        logger.info("Connecting to Qdrant at %s", url)
        state.qdrant = qdrant_client_cls(url=url, api_key=api_key)
        ensure_collection_fn()
        logger.info("Qdrant connection established")
    except ValueError:
        logger.exception("Invalid Qdrant configuration; using the in-memory knowledge store")
        state.qdrant = None
    except Exception:  # pragma: no cover
        logger.exception("Failed to initialize Qdrant client")
        state.qdrant = None


def ensure_qdrant_collection(
    *,
    state: Any,
    logger: Any,
    collection_name: str,
    vector_size: int,
    vector_params_cls: Any,
    distance_enum: Any,
    payload_schema_type_enum: Any,
) -> None:
    """Create the collection and its payload indexes if they do not exist yet.

    An existing collection with a different vector size is rejected with
    ValueError rather than silently mixing dimensions.
    """
    if state.qdrant is None:
        return

    collections = state.qdrant.get_collections()
    existing = {collection.name for collection in collections.collections}
    if collection_name not in existing:
        logger.info("Creating Qdrant collection '%s' with %dd vectors", collection_name, vector_size)
        state.qdrant.create_collection(
            collection_name=collection_name,
            vectors_config=vector_params_cls(size=vector_size, distance=distance_enum.COSINE),
        )
    else:
        info = state.qdrant.get_collection(collection_name)
        vectors = getattr(getattr(getattr(info, "config", None), "params", None), "vectors", None)
        existing_size = getattr(vectors, "size", None)
        if existing_size is not None and existing_size != vector_size:
            raise ValueError(
                f"Vector dimension mismatch: collection={existing_size}d, config={vector_size}d. "
                "Set VECTOR_SIZE to the existing dimension or use a new collection."
            )

    logger.info("Ensuring Qdrant payload indexes for collection '%s'", collection_name)
    for field_name, schema in (
        ("user_id", payload_schema_type_enum.KEYWORD),
        ("content_type", payload_schema_type_enum.KEYWORD),
    ):
        state.qdrant.create_payload_index(
            collection_name=collection_name,
            field_name=field_name,
            field_schema=schema,
        )
