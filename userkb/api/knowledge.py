from __future__ import annotations

import time
from typing import Any, Callable, Dict, List, Optional

from flask import Blueprint, abort, jsonify, request

from userkb.config import CONTENT_TYPE_DOCUMENT, RECALL_LIMIT
from userkb.embedding.service import EmbeddingService
from userkb.models import default_importance
from userkb.search.retrieval import RetrievalService
from userkb.stores.knowledge_store import KnowledgeStore
from userkb.utils.text import normalize_user_id

MAX_QUERY_LIMIT = 50
MAX_LIST_LIMIT = 200


def _coerce_limit(value: Any, default: int, maximum: int) -> int:
    if value is None or value == "":
        return default
    try:
        limit = int(value)
    except (TypeError, ValueError):
        abort(400, description="'limit' must be an integer")
    if limit < 1:
        abort(400, description="'limit' must be at least 1")
    return min(limit, maximum)


def _coerce_topics(value: Any) -> List[str]:
    if value is None:
        return []
    if isinstance(value, str):
        return [value]
    if isinstance(value, list) and all(isinstance(topic, str) for topic in value):
        return value
    abort(400, description="'topics' must be a list of strings or a single string")


def _coerce_importance(value: Any, content_type: str) -> float:
    if value is None:
        return default_importance(content_type)
    try:
        score = float(value)
    except (TypeError, ValueError):
        abort(400, description="'importance' must be a number")
    if score < 0:
        abort(400, description="'importance' cannot be negative")
    return score


def _required_str(payload: Dict[str, Any], key: str) -> str:
    value = payload.get(key)
    if not isinstance(value, str) or not value.strip():
        abort(400, description=f"'{key}' is required")
    return value.strip()


def _user_id(value: Any) -> str:
    try:
        return normalize_user_id(value)
    except ValueError as exc:
        abort(400, description=str(exc))


def _optional_str(payload: Dict[str, Any], key: str) -> Optional[str]:
    value = payload.get(key)
    if value is None:
        return None
    if not isinstance(value, str):
        abort(400, description=f"'{key}' must be a string")
    return value.strip() or None


def create_knowledge_blueprint(
    get_store: Callable[[], KnowledgeStore],
    get_embedder: Callable[[], EmbeddingService],
    get_retrieval: Callable[[], RetrievalService],
    require_admin_token: Callable[[], None],
    logger: Any,
) -> Blueprint:
    bp = Blueprint("knowledge", __name__)

    @bp.route("/knowledge", methods=["POST"])
    def insert() -> Any:
        query_start = time.perf_counter()
        payload = request.get_json(silent=True)
        if not isinstance(payload, dict):
            abort(400, description="JSON body is required")

        user_id = _user_id(payload.get("userId"))
        content = _required_str(payload, "content")
        content_type = _optional_str(payload, "contentType") or CONTENT_TYPE_DOCUMENT

        metadata = payload.get("metadata")
        if metadata is not None and not isinstance(metadata, dict):
            abort(400, description="'metadata' must be an object")

        fact = get_store().insert_fact(
            user_id,
            content,
            content_type,
            get_embedder().embed(content),
            metadata,
            topics=_coerce_topics(payload.get("topics")),
            sentiment=_optional_str(payload, "sentiment"),
            intent=_optional_str(payload, "intent"),
            importance_score=_coerce_importance(payload.get("importance"), content_type),
        )
        logger.info("Stored %s fact %s for user %s", content_type, fact.id, user_id)
        return (
            jsonify(
                {
                    "status": "success",
                    "fact": fact.to_dict(),
                    "query_time_ms": round((time.perf_counter() - query_start) * 1000, 2),
                }
            ),
            201,
        )

    @bp.route("/knowledge/query", methods=["POST"])
    def query() -> Any:
        payload = request.get_json(silent=True)
        if not isinstance(payload, dict):
            abort(400, description="JSON body is required")

        user_id = _user_id(payload.get("userId"))
        query_text = payload.get("query")
        if query_text is not None and not isinstance(query_text, str):
            abort(400, description="'query' must be a string")
        limit = _coerce_limit(payload.get("limit"), RECALL_LIMIT, MAX_QUERY_LIMIT)

        result = get_retrieval().retrieve(user_id, query_text or "", limit=limit)
        body = result.to_dict()
        body["status"] = "success"
        return jsonify(body)

    @bp.route("/knowledge/<user_id>", methods=["GET"])
    def list_facts(user_id: str) -> Any:
        user_id = _user_id(user_id)
        content_type = (request.args.get("contentType") or "").strip() or None
        limit = _coerce_limit(request.args.get("limit"), 50, MAX_LIST_LIMIT)
        facts = get_store().list_facts(user_id, content_type=content_type, limit=limit)
        return jsonify(
            {
                "status": "success",
                "userId": user_id,
                "count": len(facts),
                "facts": [fact.to_dict() for fact in facts],
            }
        )

    @bp.route("/knowledge/<user_id>/stats", methods=["GET"])
    def stats(user_id: str) -> Any:
        user_id = _user_id(user_id)
        body = get_store().stats(user_id).to_dict()
        body["status"] = "success"
        return jsonify(body)

    @bp.route("/knowledge/<user_id>", methods=["DELETE"])
    def clear(user_id: str) -> Any:
        require_admin_token()
        user_id = _user_id(user_id)
        removed = get_store().clear(user_id)
        logger.warning("Cleared %d facts for user %s via admin API", removed, user_id)
        return jsonify({"status": "success", "userId": user_id, "deleted": removed})

    return bp
