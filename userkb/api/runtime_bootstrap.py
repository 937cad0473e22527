from __future__ import annotations

from typing import Any, Callable

from userkb.api.chat import create_chat_blueprint
from userkb.api.health import create_health_blueprint
from userkb.api.knowledge import create_knowledge_blueprint


def register_blueprints(
    *,
    app: Any,
    get_store_fn: Callable[[], Any],
    get_qdrant_client_fn: Callable[[], Any],
    get_embedder_fn: Callable[[], Any],
    get_retrieval_fn: Callable[[], Any],
    get_orchestrator_fn: Callable[[], Any],
    get_metrics_fn: Callable[[], Any],
    require_admin_token_fn: Callable[[], None],
    collection_name: str,
    utc_now_fn: Callable[[], str],
    logger: Any,
) -> None:
    health_bp = create_health_blueprint(
        get_store_fn,
        get_qdrant_client_fn,
        get_embedder_fn,
        get_orchestrator_fn,
        get_metrics_fn,
        collection_name,
        utc_now_fn,
    )

    knowledge_bp = create_knowledge_blueprint(
        get_store_fn,
        get_embedder_fn,
        get_retrieval_fn,
        require_admin_token_fn,
        logger,
    )

    chat_bp = create_chat_blueprint(get_orchestrator_fn, logger)

    app.register_blueprint(health_bp)
    app.register_blueprint(knowledge_bp)
    app.register_blueprint(chat_bp)
