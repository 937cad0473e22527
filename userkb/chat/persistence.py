from __future__ import annotations

import logging
from typing import Any, Dict, List, Optional

from userkb.config import (
    CONTENT_TYPE_CONVERSATION,
    CONTENT_TYPE_USER_FACT,
    MIN_PERSIST_REPLY_CHARS,
)
from userkb.embedding.service import EmbeddingService
from userkb.metrics import OperationMetrics, operation_metrics
from userkb.models import KnowledgeFact, default_importance
from userkb.stores.knowledge_store import KnowledgeStore
from userkb.utils.text import is_first_person_statement, preview, split_sentences
from userkb.utils.time import utc_now

logger = logging.getLogger(__name__)

CONVERSATION_CONTENT_LIMIT = 2000
EXISTING_FACT_SCAN_LIMIT = 500


def derive_user_facts(user_message: str) -> List[str]:
    """Pick the first-person statements out of a user message.

    "I live in NYC now. What sites do you have?" yields ["I live in NYC now."].
    """
    seen = set()
    facts: List[str] = []
    for sentence in split_sentences(user_message):
        if not is_first_person_statement(sentence):
            continue
        key = sentence.lower()
        if key in seen:
            continue
        seen.add(key)
        facts.append(sentence)
    return facts


class ConversationRecorder:
    """Writes finished chat turns back into the knowledge store.

    Every completed turn is logged as a ``conversation_turn`` fact. User
    facts are only derived when the assistant reply reaches
    ``min_reply_chars``. Nothing here ever raises to the caller.
    """

    def __init__(
        self,
        store: KnowledgeStore,
        embedder: EmbeddingService,
        min_reply_chars: int = MIN_PERSIST_REPLY_CHARS,
        metrics: Optional[OperationMetrics] = None,
    ) -> None:
        self.store = store
        self.embedder = embedder
        self.min_reply_chars = min_reply_chars
        self.metrics = metrics or operation_metrics

    def record_turn(
        self,
        user_id: str,
        user_message: str,
        reply: str,
        metadata: Optional[Dict[str, Any]] = None,
    ) -> List[KnowledgeFact]:
        written: List[KnowledgeFact] = []
        try:
            with self.metrics.track("persistence"):
                written.append(self._record_conversation(user_id, user_message, reply, metadata))
                if len(reply.strip()) >= self.min_reply_chars:
                    written.extend(self._record_user_facts(user_id, user_message))
                else:
                    logger.debug("Reply too short (%d chars); skipping fact derivation", len(reply))
        except Exception:
            logger.exception("Failed to persist chat turn for user %s", user_id)
        return written

    def _record_conversation(
        self,
        user_id: str,
        user_message: str,
        reply: str,
        metadata: Optional[Dict[str, Any]],
    ) -> KnowledgeFact:
        content = f"User: {user_message}\nAssistant: {reply}"[:CONVERSATION_CONTENT_LIMIT]
        turn_metadata = {"source": "chat", "recorded_at": utc_now()}
        turn_metadata.update(metadata or {})
        return self.store.insert_fact(
            user_id,
            content,
            CONTENT_TYPE_CONVERSATION,
            self.embedder.embed(content),
            turn_metadata,
            importance_score=default_importance(CONTENT_TYPE_CONVERSATION),
        )

    def _record_user_facts(self, user_id: str, user_message: str) -> List[KnowledgeFact]:
        candidates = derive_user_facts(user_message)
        if not candidates:
            return []

        existing = {
            fact.content.strip().lower()
            for fact in self.store.list_facts(
                user_id, content_type=CONTENT_TYPE_USER_FACT, limit=EXISTING_FACT_SCAN_LIMIT
            )
        }
        new_facts: List[str] = []
        for sentence in candidates:
            if sentence.lower() in existing:
                logger.debug("Skipping known fact for user %s: %s", user_id, preview(sentence))
                continue
            new_facts.append(sentence)
        if not new_facts:
            return []

        written: List[KnowledgeFact] = []
        for sentence, vector in zip(new_facts, self.embedder.embed_many(new_facts)):
            written.append(
                self.store.insert_fact(
                    user_id,
                    sentence,
                    CONTENT_TYPE_USER_FACT,
                    vector,
                    {"source": "chat", "derived_from": "user_message", "derived_at": utc_now()},
                    importance_score=default_importance(CONTENT_TYPE_USER_FACT),
                )
            )
        logger.info("Derived %d user facts for user %s", len(written), user_id)
        return written
