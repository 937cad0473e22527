from __future__ import annotations

import uuid
from copy import deepcopy
from dataclasses import dataclass, field, replace
from typing import Any, Dict, List, Optional

from userkb.config import IMPORTANCE_DEFAULTS
from userkb.utils.time import utc_now


def default_importance(content_type: str) -> float:
    return IMPORTANCE_DEFAULTS.get(content_type, 1.0)


@dataclass
class KnowledgeFact:
    """One immutable unit of user knowledge.

    Content is never edited after insert; a changed fact is stored as a new
    fact and the ranker's recency bands let the newer one win. Only the
    access bookkeeping fields (``access_count``, ``last_accessed_at``) move.
    """

    user_id: str
    content: str
    content_type: str
    embedding: List[float]
    id: str = field(default_factory=lambda: str(uuid.uuid4()))
    metadata: Dict[str, Any] = field(default_factory=dict)
    topics: List[str] = field(default_factory=list)
    sentiment: Optional[str] = None
    intent: Optional[str] = None
    created_at: str = field(default_factory=utc_now)
    updated_at: str = ""
    last_accessed_at: str = ""
    access_count: int = 0
    importance_score: float = 1.0

    def __post_init__(self) -> None:
        if not self.updated_at:
            self.updated_at = self.created_at
        if not self.last_accessed_at:
            self.last_accessed_at = self.created_at

    def to_payload(self) -> Dict[str, Any]:
        """Serialize every field except the embedding (stored as the vector)."""
        return {
            "id": self.id,
            "user_id": self.user_id,
            "content": self.content,
            "content_type": self.content_type,
            "metadata": dict(self.metadata),
            "topics": list(self.topics),
            "sentiment": self.sentiment,
            "intent": self.intent,
            "created_at": self.created_at,
            "updated_at": self.updated_at,
            "last_accessed_at": self.last_accessed_at,
            "access_count": self.access_count,
            "importance_score": self.importance_score,
        }

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "userId": self.user_id,
            "content": self.content,
            "contentType": self.content_type,
            "metadata": dict(self.metadata),
            "topics": list(self.topics),
            "sentiment": self.sentiment,
            "intent": self.intent,
            "createdAt": self.created_at,
            "updatedAt": self.updated_at,
            "lastAccessedAt": self.last_accessed_at,
            "accessCount": self.access_count,
            "importanceScore": self.importance_score,
        }

    @classmethod
    def from_payload(cls, payload: Dict[str, Any], embedding: Optional[List[float]] = None) -> "KnowledgeFact":
        created_at = payload.get("created_at") or utc_now()
        metadata = payload.get("metadata")
        return cls(
            id=str(payload.get("id")),
            user_id=str(payload.get("user_id") or ""),
            content=str(payload.get("content") or ""),
            content_type=str(payload.get("content_type") or ""),
            embedding=list(embedding or []),
            metadata=metadata if isinstance(metadata, dict) else {},
            topics=list(payload.get("topics") or []),
            sentiment=payload.get("sentiment"),
            intent=payload.get("intent"),
            created_at=created_at,
            updated_at=payload.get("updated_at") or created_at,
            last_accessed_at=payload.get("last_accessed_at") or created_at,
            access_count=int(payload.get("access_count") or 0),
            importance_score=float(payload.get("importance_score", 1.0)),
        )

    def copy(self) -> "KnowledgeFact":
        """Detached copy; changes to it never reach the stored fact."""
        return replace(
            self,
            embedding=list(self.embedding),
            metadata=deepcopy(self.metadata),
            topics=list(self.topics),
        )


@dataclass
class RankedFact:
    fact: KnowledgeFact
    similarity: float
    priority_score: float
    confidence_score: float
    lexical_match: bool = False

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.fact.id,
            "content": self.fact.content,
            "contentType": self.fact.content_type,
            "createdAt": self.fact.created_at,
            "similarity": round(self.similarity, 6),
            "priorityScore": self.priority_score,
            "confidenceScore": self.confidence_score,
        }


@dataclass
class MemoryStats:
    """Aggregate view of one user's stored knowledge."""

    user_id: str
    total: int = 0
    by_content_type: Dict[str, int] = field(default_factory=dict)
    recent: int = 0
    recent_window_days: float = 7.0
    average_importance: float = 0.0
    top_topics: List[str] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "userId": self.user_id,
            "total": self.total,
            "byContentType": dict(self.by_content_type),
            "recent": self.recent,
            "recentWindowDays": self.recent_window_days,
            "averageImportance": round(self.average_importance, 4),
            "topTopics": list(self.top_topics),
        }
