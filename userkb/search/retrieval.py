from __future__ import annotations

import logging
import time
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

from userkb.config import RECALL_LIMIT
from userkb.embedding.service import EmbeddingService
from userkb.metrics import OperationMetrics, operation_metrics
from userkb.models import RankedFact
from userkb.search.ranker import has_relevant_context
from userkb.stores.knowledge_store import KnowledgeStore

logger = logging.getLogger(__name__)


@dataclass
class RetrievalResult:
    query: str
    facts: List[RankedFact] = field(default_factory=list)
    has_relevant_context: bool = False
    confidence: float = 0.0
    average_confidence: float = 0.0
    elapsed_ms: float = 0.0

    @property
    def context_count(self) -> int:
        return len(self.facts)

    def relevant_facts(self, gate: float) -> List[RankedFact]:
        return [item for item in self.facts if item.confidence_score > gate]

    def to_dict(self) -> Dict[str, Any]:
        return {
            "query": self.query,
            "facts": [item.to_dict() for item in self.facts],
            "hasRelevantContext": self.has_relevant_context,
            "confidence": self.confidence,
            "averageConfidence": self.average_confidence,
            "contextCount": self.context_count,
            "elapsedMs": round(self.elapsed_ms, 2),
        }


class RetrievalService:
    """Embeds a query and returns the user's ranked facts."""

    def __init__(
        self,
        store: KnowledgeStore,
        embedder: EmbeddingService,
        default_limit: int = RECALL_LIMIT,
        metrics: Optional[OperationMetrics] = None,
    ) -> None:
        self.store = store
        self.embedder = embedder
        self.default_limit = default_limit
        self.metrics = metrics or operation_metrics

    def retrieve(self, user_id: str, query_text: str, limit: Optional[int] = None) -> RetrievalResult:
        if not isinstance(user_id, str) or not user_id.strip():
            raise ValueError("'user_id' is required")
        query_text = query_text or ""
        if not query_text.strip():
            return RetrievalResult(query=query_text)

        started = time.perf_counter()
        with self.metrics.track("retrieval"):
            embedding = self.embedder.embed(query_text)
            facts = self.store.query_relevant(
                user_id, query_text, embedding, limit=limit or self.default_limit
            )
        scores = [item.confidence_score for item in facts]
        result = RetrievalResult(
            query=query_text,
            facts=facts,
            has_relevant_context=bool(facts) and has_relevant_context(facts, self.store.ranking),
            confidence=max(scores) if scores else 0.0,
            average_confidence=sum(scores) / len(scores) if scores else 0.0,
            elapsed_ms=(time.perf_counter() - started) * 1000,
        )
        logger.info(
            "Retrieved %d facts for user %s (relevant=%s, confidence=%.2f, %.1fms)",
            result.context_count,
            user_id,
            result.has_relevant_context,
            result.confidence,
            result.elapsed_ms,
        )
        return result


def format_context_for_prompt(result: Optional[RetrievalResult], gate: float) -> str:
    """Render the facts above the confidence gate as a numbered prompt block."""
    if result is None or not result.has_relevant_context:
        return ""
    lines = [
        f"[{index}] {item.fact.content}"
        for index, item in enumerate(result.relevant_facts(gate), start=1)
    ]
    if not lines:
        return ""
    return "Relevant information about this user:\n" + "\n".join(lines)
