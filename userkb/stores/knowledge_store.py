"""Per-user knowledge store interface and the in-memory implementation."""

from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from collections import Counter
from datetime import datetime, timedelta, timezone
from threading import Lock
from typing import Any, Dict, Iterable, List, Optional

from userkb.config import RECALL_LIMIT, VECTOR_SIZE
from userkb.models import KnowledgeFact, MemoryStats, RankedFact
from userkb.search.ranker import RankingConfig, rank_facts
from userkb.utils.time import _normalize_timestamp, _parse_iso_datetime, utc_now

logger = logging.getLogger(__name__)

TOP_TOPIC_LIMIT = 5


def build_fact(
    *,
    user_id: str,
    content: str,
    content_type: str,
    embedding: List[float],
    dimension: int,
    metadata: Optional[Dict[str, Any]] = None,
    topics: Optional[List[str]] = None,
    sentiment: Optional[str] = None,
    intent: Optional[str] = None,
    importance_score: float = 1.0,
    created_at: Optional[str] = None,
) -> KnowledgeFact:
    """Validate inputs and construct a new fact with fresh bookkeeping fields."""
    if not isinstance(user_id, str) or not user_id.strip():
        raise ValueError("'user_id' is required")
    if not isinstance(content, str) or not content.strip():
        raise ValueError("'content' is required")
    if not isinstance(content_type, str) or not content_type.strip():
        raise ValueError("'content_type' is required")
    if embedding is None or len(embedding) != dimension:
        raise ValueError(
            f"Embedding must contain exactly {dimension} values "
            f"(got {0 if embedding is None else len(embedding)})"
        )
    if metadata is not None and not isinstance(metadata, dict):
        raise ValueError("'metadata' must be an object")

    timestamp = _normalize_timestamp(created_at) if created_at else utc_now()
    return KnowledgeFact(
        user_id=user_id,
        content=content,
        content_type=content_type,
        embedding=[float(x) for x in embedding],
        metadata=dict(metadata or {}),
        topics=list(topics or []),
        sentiment=sentiment,
        intent=intent,
        created_at=timestamp,
        updated_at=timestamp,
        last_accessed_at=timestamp,
        access_count=0,
        importance_score=float(importance_score),
    )


class KnowledgeStore(ABC):
    """Append-only, per-user fact storage.

    Every read and delete is scoped by ``user_id``; no operation can return
    or remove another user's facts.
    """

    def __init__(self, dimension: int = VECTOR_SIZE, ranking: Optional[RankingConfig] = None) -> None:
        self.dimension = dimension
        self.ranking = ranking or RankingConfig()

    @abstractmethod
    def insert_fact(
        self,
        user_id: str,
        content: str,
        content_type: str,
        embedding: List[float],
        metadata: Optional[Dict[str, Any]] = None,
        *,
        topics: Optional[List[str]] = None,
        sentiment: Optional[str] = None,
        intent: Optional[str] = None,
        importance_score: float = 1.0,
        created_at: Optional[str] = None,
    ) -> KnowledgeFact:
        """Write a new immutable fact and return it."""

    @abstractmethod
    def query_relevant(
        self,
        user_id: str,
        query_text: str,
        query_embedding: Optional[List[float]],
        limit: int = RECALL_LIMIT,
        *,
        now: Optional[datetime] = None,
    ) -> List[RankedFact]:
        """Return the user's facts ranked for the query, recording the access."""

    @abstractmethod
    def clear(self, user_id: str) -> int:
        """Delete every fact belonging to ``user_id``; returns how many were removed."""

    @abstractmethod
    def count(self, user_id: str) -> int:
        """Number of facts stored for ``user_id``."""

    @abstractmethod
    def list_facts(
        self, user_id: str, content_type: Optional[str] = None, limit: int = 50
    ) -> List[KnowledgeFact]:
        """The user's facts, newest first."""

    @abstractmethod
    def stats(self, user_id: str, *, now: Optional[datetime] = None) -> MemoryStats:
        """Totals per content type, recent activity and average importance for ``user_id``."""

    def backend_name(self) -> str:
        return self.__class__.__name__


def _newest_first_key(fact: KnowledgeFact) -> float:
    created = _parse_iso_datetime(fact.created_at)
    return -(created.timestamp() if created else 0.0)


def summarize_facts(
    user_id: str,
    facts: Iterable[KnowledgeFact],
    *,
    now: datetime,
    recent_window_days: float,
) -> MemoryStats:
    cutoff = now - timedelta(days=recent_window_days)
    by_type: Counter = Counter()
    topics: Counter = Counter()
    recent = 0
    importance_total = 0.0
    for fact in facts:
        by_type[fact.content_type] += 1
        topics.update(topic.strip().lower() for topic in fact.topics if topic and topic.strip())
        importance_total += fact.importance_score
        created = _parse_iso_datetime(fact.created_at)
        if created is not None and created >= cutoff:
            recent += 1
    total = sum(by_type.values())
    return MemoryStats(
        user_id=user_id,
        total=total,
        by_content_type=dict(sorted(by_type.items())),
        recent=recent,
        recent_window_days=recent_window_days,
        average_importance=importance_total / total if total else 0.0,
        top_topics=[topic for topic, _ in topics.most_common(TOP_TOPIC_LIMIT)],
    )


class InMemoryKnowledgeStore(KnowledgeStore):
    """Process-local store; facts are partitioned by user behind one lock.

    Callers only ever receive copies, so a returned fact cannot be used to
    edit what is stored.
    """

    def __init__(self, dimension: int = VECTOR_SIZE, ranking: Optional[RankingConfig] = None) -> None:
        super().__init__(dimension=dimension, ranking=ranking)
        self._facts: Dict[str, List[KnowledgeFact]] = {}
        self._lock = Lock()

    def insert_fact(
        self,
        user_id: str,
        content: str,
        content_type: str,
        embedding: List[float],
        metadata: Optional[Dict[str, Any]] = None,
        *,
        topics: Optional[List[str]] = None,
        sentiment: Optional[str] = None,
        intent: Optional[str] = None,
        importance_score: float = 1.0,
        created_at: Optional[str] = None,
    ) -> KnowledgeFact:
        fact = build_fact(
            user_id=user_id,
            content=content,
            content_type=content_type,
            embedding=embedding,
            dimension=self.dimension,
            metadata=metadata,
            topics=topics,
            sentiment=sentiment,
            intent=intent,
            importance_score=importance_score,
            created_at=created_at,
        )
        with self._lock:
            self._facts.setdefault(user_id, []).append(fact)
        logger.debug("Stored %s fact %s for user %s", content_type, fact.id, user_id)
        return fact.copy()

    def query_relevant(
        self,
        user_id: str,
        query_text: str,
        query_embedding: Optional[List[float]],
        limit: int = RECALL_LIMIT,
        *,
        now: Optional[datetime] = None,
    ) -> List[RankedFact]:
        now = now or datetime.now(timezone.utc)
        with self._lock:
            candidates = list(self._facts.get(user_id, []))
            ranked = rank_facts(
                candidates,
                query_text,
                query_embedding,
                limit=limit,
                config=self.ranking,
                now=now,
            )
            accessed_at = now.isoformat()
            for item in ranked:
                item.fact.access_count += 1
                item.fact.last_accessed_at = accessed_at
                item.fact = item.fact.copy()
        return ranked

    def clear(self, user_id: str) -> int:
        with self._lock:
            removed = self._facts.pop(user_id, [])
        logger.info("Cleared %d facts for user %s", len(removed), user_id)
        return len(removed)

    def count(self, user_id: str) -> int:
        with self._lock:
            return len(self._facts.get(user_id, []))

    def list_facts(
        self, user_id: str, content_type: Optional[str] = None, limit: int = 50
    ) -> List[KnowledgeFact]:
        with self._lock:
            facts = [
                f.copy() for f in self._facts.get(user_id, [])
                if content_type is None or f.content_type == content_type
            ]
        facts.sort(key=_newest_first_key)
        return facts[:limit]

    def stats(self, user_id: str, *, now: Optional[datetime] = None) -> MemoryStats:
        with self._lock:
            facts = list(self._facts.get(user_id, []))
        return summarize_facts(
            user_id,
            facts,
            now=now or datetime.now(timezone.utc),
            recent_window_days=self.ranking.recent_window_days,
        )

    def backend_name(self) -> str:
        return "memory"
