"""Streaming chat endpoint.

POST /chat/stream answers with Server-Sent Events, one ``data:`` frame per
orchestrator event and a final ``data: [DONE]``. Body validation happens
before the stream opens, so bad requests get the regular JSON error
envelope instead of a half-open stream.
"""

from __future__ import annotations

from typing import Any, Callable, Iterator

from flask import Blueprint, Response, abort, request, stream_with_context

from userkb.chat.events import encode_sse
from userkb.chat.filters import normalize_filters
from userkb.chat.orchestrator import ChatOrchestrator, ChatTurn
from userkb.utils.text import normalize_user_id


def create_chat_blueprint(
    get_orchestrator: Callable[[], ChatOrchestrator],
    logger: Any,
) -> Blueprint:
    bp = Blueprint("chat", __name__)

    @bp.route("/chat/stream", methods=["POST"])
    def chat_stream() -> Response:
        payload = request.get_json(silent=True)
        if not isinstance(payload, dict):
            abort(400, description="JSON body is required")

        try:
            user_id = normalize_user_id(payload.get("userId"))
            filter_state = normalize_filters(payload.get("currentFilterState"))
        except ValueError as exc:
            abort(400, description=str(exc))

        turn = ChatTurn(
            user_id=user_id,
            messages=payload.get("messages") or [],
            filter_state=filter_state,
        )
        orchestrator = get_orchestrator()
        if orchestrator is None:
            abort(503, description="Chat completion provider is not configured")
        try:
            events = orchestrator.run_turn(turn)
        except ValueError as exc:
            abort(400, description=str(exc))

        logger.info("Chat turn started for user %s (%d messages)", turn.user_id, len(turn.messages))

        def generate() -> Iterator[str]:
            try:
                for event in events:
                    yield encode_sse(event)
            finally:
                # Client disconnects close this generator; propagate to the orchestrator.
                events.close()

        return Response(
            stream_with_context(generate()),
            mimetype="text/event-stream",
            headers={
                "Cache-Control": "no-cache",
                "X-Accel-Buffering": "no",  # Disable nginx buffering
                "Connection": "keep-alive",
            },
        )

    return bp
