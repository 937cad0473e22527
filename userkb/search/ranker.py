"""Hybrid ranking of knowledge facts.

Each candidate is scored on three signals: lexical containment of the query,
recency bands, and embedding cosine similarity. The score bands are
first-match-wins; ordering is priority, then similarity, then newest first.
"""

from __future__ import annotations

import os
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Iterable, List, Optional, Sequence

from userkb.config import (
    CONFIDENCE_GATE,
    CONTENT_TYPE_USER_FACT,
    FRESH_WINDOW_HOURS,
    RECENT_WINDOW_DAYS,
    SIMILARITY_HIGH,
    SIMILARITY_LOW,
    SIMILARITY_MID,
)
from userkb.models import KnowledgeFact, RankedFact
from userkb.utils.time import _parse_iso_datetime
from userkb.utils.vector import similarity_score

_EPOCH = datetime(1970, 1, 1, tzinfo=timezone.utc)


@dataclass(frozen=True)
class RankingConfig:
    similarity_low: float = SIMILARITY_LOW
    similarity_mid: float = SIMILARITY_MID
    similarity_high: float = SIMILARITY_HIGH
    confidence_gate: float = CONFIDENCE_GATE
    fresh_window_hours: float = FRESH_WINDOW_HOURS
    recent_window_days: float = RECENT_WINDOW_DAYS
    priority_exact: float = 3.0
    priority_recent_user_fact: float = 2.5
    priority_fresh: float = 1.5
    priority_recent: float = 1.0
    priority_base: float = 0.5
    confidence_exact: float = 0.95
    confidence_high: float = 0.9
    confidence_mid: float = 0.8
    confidence_low: float = 0.7

    def __post_init__(self) -> None:
        if not 0.0 <= self.similarity_low < self.similarity_mid < self.similarity_high <= 1.0:
            raise ValueError(
                "Similarity thresholds must satisfy 0 <= low < mid < high <= 1 "
                f"(got {self.similarity_low}, {self.similarity_mid}, {self.similarity_high})"
            )
        if not 0.0 <= self.confidence_gate <= 1.0:
            raise ValueError(f"Confidence gate must be within [0, 1] (got {self.confidence_gate})")
        if self.fresh_window_hours <= 0 or timedelta(hours=self.fresh_window_hours) >= timedelta(
            days=self.recent_window_days
        ):
            raise ValueError("Fresh window must be positive and shorter than the recent window")
        priorities = [
            self.priority_exact,
            self.priority_recent_user_fact,
            self.priority_fresh,
            self.priority_recent,
            self.priority_base,
        ]
        if any(a <= b for a, b in zip(priorities, priorities[1:])):
            raise ValueError(f"Priority bands must be strictly decreasing (got {priorities})")
        confidences = [
            self.confidence_exact,
            self.confidence_high,
            self.confidence_mid,
            self.confidence_low,
        ]
        if any(a <= b for a, b in zip(confidences, confidences[1:])) or confidences[-1] <= 0:
            raise ValueError(f"Confidence bands must be positive and strictly decreasing (got {confidences})")

    @classmethod
    def from_env(cls) -> "RankingConfig":
        """Build from the environment at call time (module constants are read at import)."""

        def _f(name: str, default: float) -> float:
            raw = os.getenv(name)
            return float(raw) if raw not in (None, "") else default

        return cls(
            similarity_low=_f("SIMILARITY_LOW", SIMILARITY_LOW),
            similarity_mid=_f("SIMILARITY_MID", SIMILARITY_MID),
            similarity_high=_f("SIMILARITY_HIGH", SIMILARITY_HIGH),
            confidence_gate=_f("CONFIDENCE_GATE", CONFIDENCE_GATE),
            fresh_window_hours=_f("FRESH_WINDOW_HOURS", FRESH_WINDOW_HOURS),
            recent_window_days=_f("RECENT_WINDOW_DAYS", RECENT_WINDOW_DAYS),
        )


def is_lexical_match(query_text: str, content: str) -> bool:
    needle = (query_text or "").strip().lower()
    if not needle:
        return False
    return needle in (content or "").lower()


def _age(fact: KnowledgeFact, now: datetime) -> Optional[timedelta]:
    created = _parse_iso_datetime(fact.created_at)
    if created is None:
        return None
    # Clock skew: a fact stamped slightly in the future counts as brand new.
    return max(now - created, timedelta(0))


def priority_score(
    fact: KnowledgeFact,
    similarity: float,
    lexical: bool,
    now: datetime,
    config: RankingConfig,
) -> float:
    if lexical:
        return config.priority_exact
    age = _age(fact, now)
    if age is None:
        return config.priority_base
    recent = age <= timedelta(days=config.recent_window_days)
    if recent and fact.content_type == CONTENT_TYPE_USER_FACT and similarity > config.similarity_low:
        return config.priority_recent_user_fact
    if age <= timedelta(hours=config.fresh_window_hours):
        return config.priority_fresh
    if recent:
        return config.priority_recent
    return config.priority_base


def confidence_score(similarity: float, lexical: bool, config: RankingConfig) -> float:
    if lexical:
        return config.confidence_exact
    if similarity > config.similarity_high:
        return config.confidence_high
    if similarity > config.similarity_mid:
        return config.confidence_mid
    if similarity > config.similarity_low:
        return config.confidence_low
    return 0.0


def score_fact(
    fact: KnowledgeFact,
    query_text: str,
    query_embedding: Optional[Sequence[float]],
    *,
    now: datetime,
    config: RankingConfig,
) -> Optional[RankedFact]:
    """Score one fact, or return None when it is not eligible at all."""
    similarity = similarity_score(fact.embedding, query_embedding)
    lexical = is_lexical_match(query_text, fact.content)
    # The recent-user-fact clause needs similarity > low too, so it adds nothing beyond it.
    if not lexical and similarity <= config.similarity_low:
        return None
    confidence = confidence_score(similarity, lexical, config)
    if confidence <= 0.0:
        return None
    return RankedFact(
        fact=fact,
        similarity=similarity,
        priority_score=priority_score(fact, similarity, lexical, now, config),
        confidence_score=confidence,
        lexical_match=lexical,
    )


def _sort_key(ranked: RankedFact):
    created = _parse_iso_datetime(ranked.fact.created_at) or _EPOCH
    return (-ranked.priority_score, -ranked.similarity, -created.timestamp())


def rank_facts(
    facts: Iterable[KnowledgeFact],
    query_text: str,
    query_embedding: Optional[Sequence[float]],
    *,
    limit: int,
    config: Optional[RankingConfig] = None,
    now: Optional[datetime] = None,
) -> List[RankedFact]:
    """Rank candidate facts for a query and return at most ``limit`` of them."""
    if not query_text or not query_text.strip() or limit <= 0:
        return []
    config = config or RankingConfig()
    now = now or datetime.now(timezone.utc)

    ranked: List[RankedFact] = []
    for fact in facts:
        scored = score_fact(fact, query_text, query_embedding, now=now, config=config)
        if scored is not None:
            ranked.append(scored)

    ranked.sort(key=_sort_key)
    return ranked[:limit]


def has_relevant_context(ranked: Sequence[RankedFact], config: Optional[RankingConfig] = None) -> bool:
    gate = (config or RankingConfig()).confidence_gate
    return any(item.confidence_score > gate for item in ranked)
