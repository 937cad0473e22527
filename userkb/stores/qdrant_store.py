"""Qdrant-backed knowledge store.

One collection holds every user's facts. Isolation rests on a single
helper: every read, count and delete goes through ``_user_filter`` so the
``user_id`` condition cannot be left out of a query.
"""

from __future__ import annotations

import logging
from datetime import datetime, timezone
from typing import Any, Dict, Iterator, List, Optional, Set

from qdrant_client import models as qdrant_models

from userkb.config import COLLECTION_NAME, RECALL_LIMIT, RECALL_PAGE_SIZE, VECTOR_SIZE
from userkb.models import KnowledgeFact, MemoryStats, RankedFact
from userkb.search.ranker import RankingConfig, is_lexical_match, rank_facts
from userkb.stores.knowledge_store import KnowledgeStore, _newest_first_key, build_fact, summarize_facts

logger = logging.getLogger(__name__)


def _user_filter(user_id: str, *extra: Any) -> qdrant_models.Filter:
    if not isinstance(user_id, str) or not user_id.strip():
        raise ValueError("'user_id' is required")
    conditions: List[Any] = [
        qdrant_models.FieldCondition(key="user_id", match=qdrant_models.MatchValue(value=user_id))
    ]
    conditions.extend(extra)
    return qdrant_models.Filter(must=conditions)


def _point_vector(point: Any) -> List[float]:
    vector = getattr(point, "vector", None)
    if isinstance(vector, dict):
        # Named vectors: take the default (unnamed) or the first one.
        vector = vector.get("") or next(iter(vector.values()), None)
    return list(vector or [])


def _point_to_fact(point: Any) -> Optional[KnowledgeFact]:
    payload = getattr(point, "payload", None) or {}
    if not payload.get("content"):
        return None
    if not payload.get("id"):
        payload = dict(payload, id=str(point.id))
    return KnowledgeFact.from_payload(payload, embedding=_point_vector(point))


class QdrantKnowledgeStore(KnowledgeStore):
    """Knowledge store over one shared Qdrant collection.

    Ranking covers every eligible fact of the user: vector candidates are
    paged above the low similarity bar until they run out, and lexical
    candidates come from a substring check over a paged scroll of the
    user's points. ``page_size`` only bounds a single round trip.
    """

    def __init__(
        self,
        client: Any,
        collection_name: str = COLLECTION_NAME,
        dimension: int = VECTOR_SIZE,
        ranking: Optional[RankingConfig] = None,
        page_size: int = RECALL_PAGE_SIZE,
    ) -> None:
        super().__init__(dimension=dimension, ranking=ranking)
        if page_size <= 0:
            raise ValueError("page_size must be positive")
        self.client = client
        self.collection_name = collection_name
        self.page_size = page_size

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
        self.client.upsert(
            collection_name=self.collection_name,
            points=[
                qdrant_models.PointStruct(
                    id=fact.id,
                    vector=fact.embedding,
                    payload=fact.to_payload(),
                )
            ],
        )
        logger.debug("Stored %s fact %s for user %s in Qdrant", content_type, fact.id, user_id)
        return fact

    def _scroll(self, scroll_filter: qdrant_models.Filter, *, with_vectors: bool = False) -> Iterator[Any]:
        offset = None
        while True:
            points, offset = self.client.scroll(
                collection_name=self.collection_name,
                scroll_filter=scroll_filter,
                limit=self.page_size,
                offset=offset,
                with_payload=True,
                with_vectors=with_vectors,
            )
            yield from points or []
            if offset is None:
                return

    def _vector_candidates(self, user_id: str, query_embedding: Optional[List[float]]) -> List[KnowledgeFact]:
        if not query_embedding:
            return []
        query_filter = _user_filter(user_id)
        facts: List[KnowledgeFact] = []
        offset = 0
        while True:
            response = self.client.query_points(
                collection_name=self.collection_name,
                query=list(query_embedding),
                query_filter=query_filter,
                # Qdrant keeps scores >= threshold; the ranker applies the strict bound.
                score_threshold=self.ranking.similarity_low,
                limit=self.page_size,
                offset=offset,
                with_payload=True,
                with_vectors=True,
            )
            points = list(getattr(response, "points", response) or [])
            facts.extend(fact for fact in (_point_to_fact(p) for p in points) if fact is not None)
            if len(points) < self.page_size:
                return facts
            offset += len(points)

    def _lexical_candidates(self, user_id: str, query_text: str, known_ids: Set[str]) -> List[KnowledgeFact]:
        if not query_text.strip():
            return []
        missing: List[str] = []
        for point in self._scroll(_user_filter(user_id)):
            fact = _point_to_fact(point)
            if fact is None or fact.id in known_ids:
                continue
            if is_lexical_match(query_text, fact.content):
                missing.append(fact.id)
        if not missing:
            return []
        # Substring hits below the similarity bar still need their vectors for ranking.
        points = self.client.retrieve(
            collection_name=self.collection_name,
            ids=missing,
            with_payload=True,
            with_vectors=True,
        )
        return [fact for fact in (_point_to_fact(p) for p in points or []) if fact is not None]

    def query_relevant(
        self,
        user_id: str,
        query_text: str,
        query_embedding: Optional[List[float]],
        limit: int = RECALL_LIMIT,
        *,
        now: Optional[datetime] = None,
    ) -> List[RankedFact]:
        if not query_text or not query_text.strip():
            return []
        now = now or datetime.now(timezone.utc)

        candidates: Dict[str, KnowledgeFact] = {}
        for fact in self._vector_candidates(user_id, query_embedding):
            candidates.setdefault(fact.id, fact)
        for fact in self._lexical_candidates(user_id, query_text, set(candidates)):
            candidates.setdefault(fact.id, fact)
        for fact_id, fact in list(candidates.items()):
            # The filter already scopes the query; this guards against a misconfigured index.
            if fact.user_id != user_id:
                logger.error("Discarding fact %s owned by another user", fact_id)
                del candidates[fact_id]

        ranked = rank_facts(
            candidates.values(),
            query_text,
            query_embedding,
            limit=limit,
            config=self.ranking,
            now=now,
        )
        self._record_access(ranked, now)
        return ranked

    def _record_access(self, ranked: List[RankedFact], now: datetime) -> None:
        accessed_at = now.isoformat()
        for item in ranked:
            item.fact.access_count += 1
            item.fact.last_accessed_at = accessed_at
            try:
                self.client.set_payload(
                    collection_name=self.collection_name,
                    payload={
                        "access_count": item.fact.access_count,
                        "last_accessed_at": accessed_at,
                    },
                    points=[item.fact.id],
                )
            except Exception:
                logger.exception("Failed to record access for fact %s", item.fact.id)

    def clear(self, user_id: str) -> int:
        removed = self.count(user_id)
        self.client.delete(
            collection_name=self.collection_name,
            points_selector=qdrant_models.FilterSelector(filter=_user_filter(user_id)),
        )
        logger.info("Cleared %d facts for user %s", removed, user_id)
        return removed

    def count(self, user_id: str) -> int:
        result = self.client.count(
            collection_name=self.collection_name,
            count_filter=_user_filter(user_id),
            exact=True,
        )
        return int(getattr(result, "count", 0) or 0)

    def list_facts(
        self, user_id: str, content_type: Optional[str] = None, limit: int = 50
    ) -> List[KnowledgeFact]:
        extra = []
        if content_type:
            extra.append(
                qdrant_models.FieldCondition(
                    key="content_type", match=qdrant_models.MatchValue(value=content_type)
                )
            )
        facts = [
            fact
            for fact in (_point_to_fact(p) for p in self._scroll(_user_filter(user_id, *extra)))
            if fact is not None
        ]
        facts.sort(key=_newest_first_key)
        return facts[:limit]

    def stats(self, user_id: str, *, now: Optional[datetime] = None) -> MemoryStats:
        facts = (
            fact for fact in (_point_to_fact(p) for p in self._scroll(_user_filter(user_id))) if fact is not None
        )
        return summarize_facts(
            user_id,
            facts,
            now=now or datetime.now(timezone.utc),
            recent_window_days=self.ranking.recent_window_days,
        )

    def backend_name(self) -> str:
        return "qdrant"
