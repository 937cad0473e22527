from __future__ import annotations

from typing import Any, Callable, Optional

from flask import Blueprint, jsonify


def create_health_blueprint(
    get_store: Callable[[], Any],
    get_qdrant_client: Callable[[], Any],
    get_embedder: Callable[[], Any],
    get_orchestrator: Callable[[], Any],
    get_metrics: Callable[[], Any],
    collection_name: str,
    utc_now: Callable[[], str],
) -> Blueprint:
    bp = Blueprint("health", __name__)

    @bp.route("/health", methods=["GET"])
    def health() -> Any:
        store = get_store()
        qdrant_available = get_qdrant_client() is not None

        # Get vector count from Qdrant (gracefully fail if unavailable)
        vector_count: Optional[int] = None
        if qdrant_available:
            try:
                info = get_qdrant_client().get_collection(collection_name)
                vector_count = info.points_count
            except Exception:
                vector_count = None

        embedding: Optional[dict] = None
        degraded = False
        embedder = get_embedder()
        if embedder is not None:
            embedding = embedder.stats()
            # Only failures since the provider last answered count; old outages do not.
            degraded = embedding["fallback"]["degraded"]

        chat_available = get_orchestrator() is not None
        status = "healthy"
        if store is None or embedder is None or not chat_available or degraded:
            status = "degraded"

        return jsonify(
            {
                "status": status,
                "store": store.backend_name() if store is not None else None,
                "qdrant": "connected" if qdrant_available else "disconnected",
                "vector_count": vector_count,
                "embedding": embedding,
                "chat": "available" if chat_available else "unavailable",
                "operations": get_metrics().snapshot(),
                "timestamp": utc_now(),
                "collection": collection_name,
            }
        )

    return bp
