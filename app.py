"""User knowledge service API.

A small Flask API in front of a per-user knowledge store. It retrieves
relevant facts for a user, runs the two-stage chat turn over Server-Sent
Events, and writes finished turns back as new knowledge. It degrades
instead of failing: without Qdrant it keeps facts in memory, and without a
working embedding provider it falls back to degraded vectors.
"""

from __future__ import annotations

import hmac
import logging
import os
import sys
from typing import Any, Optional

from flask import Flask, abort, jsonify, request
from qdrant_client import QdrantClient
from qdrant_client.models import Distance, PayloadSchemaType, VectorParams
from werkzeug.exceptions import HTTPException

from userkb.api.runtime_bootstrap import register_blueprints
from userkb.chat.completion import OpenAICompletionProvider
from userkb.chat.orchestrator import ChatOrchestrator
from userkb.chat.persistence import ConversationRecorder
from userkb.config import (
    ADMIN_TOKEN,
    API_TOKEN,
    CHAT_CONTEXT_RETRIEVAL,
    CHAT_STAGE1_MODEL,
    CHAT_STAGE2_MODEL,
    CHAT_TURN_TIMEOUT_SECONDS,
    COLLECTION_NAME,
    EMBEDDING_CACHE_SIZE,
    EMBEDDING_CACHE_TTL_SECONDS,
    EMBEDDING_FALLBACK,
    EMBEDDING_MODEL,
    MIN_PERSIST_REPLY_CHARS,
    OPENAI_MAX_RETRIES,
    OPENAI_TIMEOUT_SECONDS,
    RECALL_LIMIT,
    RECALL_PAGE_SIZE,
    VECTOR_SIZE,
)
from userkb.embedding.cache import EmbeddingCache
from userkb.embedding.fallback import DegradedEmbeddingFallback
from userkb.embedding.provider_init import init_embedding_provider as _init_embedding_provider_helper
from userkb.embedding.service import EmbeddingService
from userkb.metrics import operation_metrics
from userkb.search.ranker import RankingConfig
from userkb.search.retrieval import RetrievalService
from userkb.service_state import ServiceState
from userkb.stores.knowledge_store import InMemoryKnowledgeStore, KnowledgeStore
from userkb.stores.qdrant_store import QdrantKnowledgeStore
from userkb.stores.runtime_clients import (
    ensure_qdrant_collection as _ensure_qdrant_collection_helper,
    init_qdrant as _init_qdrant_helper,
)
from userkb.utils.time import utc_now

logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s | %(levelname)s | %(name)s | %(message)s",
    stream=sys.stdout,
)
logger = logging.getLogger("userkb.api")

# Send Flask and Werkzeug logs to stdout with the same format
for logger_name in ["werkzeug", "flask.app"]:
    framework_logger = logging.getLogger(logger_name)
    framework_logger.handlers.clear()
    stdout_handler = logging.StreamHandler(sys.stdout)
    stdout_handler.setFormatter(logging.Formatter("%(asctime)s | %(levelname)s | %(name)s | %(message)s"))
    framework_logger.addHandler(stdout_handler)
    framework_logger.setLevel(logging.INFO)

app = Flask(__name__)

state = ServiceState()


# Endpoints reachable without the API token (load balancer health checks).
PUBLIC_ENDPOINTS = {"health.health"}


def _tokens_match(provided: Optional[str], expected: str) -> bool:
    return provided is not None and hmac.compare_digest(provided.encode("utf-8"), expected.encode("utf-8"))


def _extract_api_token() -> Optional[str]:
    """Token from ``Authorization: Bearer``, ``X-API-Key`` or ``?api_key``.

    The query parameter exists for SSE clients that cannot set headers.
    """
    scheme, _, credentials = request.headers.get("Authorization", "").partition(" ")
    if scheme.lower() == "bearer" and credentials.strip():
        return credentials.strip()
    for candidate in (request.headers.get("X-API-Key"), request.args.get("api_key")):
        if candidate and candidate.strip():
            return candidate.strip()
    return None


def require_admin_token() -> None:
    if not ADMIN_TOKEN:
        abort(403, description="Admin token not configured")
    if not _tokens_match(request.headers.get("X-Admin-Token"), ADMIN_TOKEN):
        abort(401, description="Admin authorization required")


@app.before_request
def require_api_token() -> None:
    if not API_TOKEN or request.endpoint in PUBLIC_ENDPOINTS:
        return
    if not _tokens_match(_extract_api_token(), API_TOKEN):
        abort(401, description="Unauthorized")


@app.errorhandler(Exception)
def handle_exceptions(exc: Exception):
    """Return JSON responses for both HTTP and unexpected errors."""
    if isinstance(exc, HTTPException):
        response = {
            "status": "error",
            "code": exc.code,
            "message": exc.description or exc.name,
        }
        return jsonify(response), exc.code

    logger.exception("Unhandled error")
    response = {
        "status": "error",
        "code": 500,
        "message": "Internal server error",
    }
    return jsonify(response), 500


def ensure_qdrant_collection() -> None:
    _ensure_qdrant_collection_helper(
        state=state,
        logger=logger,
        collection_name=COLLECTION_NAME,
        vector_size=VECTOR_SIZE,
        vector_params_cls=VectorParams,
        distance_enum=Distance,
        payload_schema_type_enum=PayloadSchemaType,
    )


def init_qdrant() -> None:
    _init_qdrant_helper(
        state=state,
        logger=logger,
        qdrant_client_cls=QdrantClient,
        ensure_collection_fn=ensure_qdrant_collection,
    )


def init_embedding_provider() -> None:
    _init_embedding_provider_helper(
        state=state,
        logger=logger,
        vector_size=VECTOR_SIZE,
        embedding_model=EMBEDDING_MODEL,
        timeout=OPENAI_TIMEOUT_SECONDS,
        max_retries=OPENAI_MAX_RETRIES,
    )


def init_embedder() -> None:
    if state.embedder is not None:
        return
    init_embedding_provider()
    state.embedder = EmbeddingService(
        state.embedding_provider,
        fallback=DegradedEmbeddingFallback(state.embedding_provider.dimension(), mode=EMBEDDING_FALLBACK),
        cache=EmbeddingCache(max_entries=EMBEDDING_CACHE_SIZE, ttl_seconds=EMBEDDING_CACHE_TTL_SECONDS),
    )


def init_store() -> None:
    if state.store is not None:
        return
    ranking = RankingConfig.from_env()
    init_qdrant()
    if state.qdrant is not None:
        state.store = QdrantKnowledgeStore(
            state.qdrant,
            collection_name=COLLECTION_NAME,
            dimension=VECTOR_SIZE,
            ranking=ranking,
            page_size=RECALL_PAGE_SIZE,
        )
    else:
        state.store = InMemoryKnowledgeStore(dimension=VECTOR_SIZE, ranking=ranking)
    logger.info("Knowledge store backend: %s", state.store.backend_name())


def init_retrieval() -> None:
    if state.retrieval is not None:
        return
    init_store()
    init_embedder()
    state.retrieval = RetrievalService(state.store, state.embedder, default_limit=RECALL_LIMIT)


def init_completion() -> None:
    if state.completion is not None:
        return
    api_key = os.getenv("OPENAI_API_KEY")
    if not api_key:
        logger.info("OpenAI API key not provided; chat streaming disabled")
        return
    try:
        state.completion = OpenAICompletionProvider(
            api_key,
            stream_model=CHAT_STAGE1_MODEL,
            analysis_model=CHAT_STAGE2_MODEL,
            timeout=OPENAI_TIMEOUT_SECONDS,
            max_retries=OPENAI_MAX_RETRIES,
            base_url=(os.getenv("OPENAI_BASE_URL") or "").strip() or None,
        )
    except Exception:  # pragma: no cover
        logger.exception("Failed to initialize OpenAI completion provider")
        state.completion = None


def init_orchestrator() -> None:
    if state.orchestrator is not None:
        return
    init_completion()
    if state.completion is None:
        return
    init_retrieval()
    state.orchestrator = ChatOrchestrator(
        state.completion,
        recorder=ConversationRecorder(state.store, state.embedder, min_reply_chars=MIN_PERSIST_REPLY_CHARS),
        retrieval=state.retrieval if CHAT_CONTEXT_RETRIEVAL else None,
        turn_timeout=CHAT_TURN_TIMEOUT_SECONDS,
    )


def get_qdrant_client() -> Optional[QdrantClient]:
    return state.qdrant


def get_store() -> KnowledgeStore:
    init_store()
    return state.store


def get_embedder() -> EmbeddingService:
    init_embedder()
    return state.embedder


def get_retrieval() -> RetrievalService:
    init_retrieval()
    return state.retrieval


def get_orchestrator() -> Optional[ChatOrchestrator]:
    init_orchestrator()
    return state.orchestrator


register_blueprints(
    app=app,
    get_store_fn=lambda: get_store(),
    get_qdrant_client_fn=lambda: get_qdrant_client(),
    get_embedder_fn=lambda: get_embedder(),
    get_retrieval_fn=lambda: get_retrieval(),
    get_orchestrator_fn=lambda: get_orchestrator(),
    get_metrics_fn=lambda: operation_metrics,
    require_admin_token_fn=lambda: require_admin_token(),
    collection_name=COLLECTION_NAME,
    utc_now_fn=utc_now,
    logger=logger,
)


if __name__ == "__main__":
    port = int(os.environ.get("PORT", "8001"))
    logger.info("Starting Flask API on port %s", port)
    init_store()
    init_embedder()
    init_orchestrator()
    app.run(host="0.0.0.0", port=port, debug=False, threaded=True)
