from __future__ import annotations

import re
from typing import Any, List

_SENTENCE_SPLIT = re.compile(r"(?<=[.!?])\s+|\n+")
_FIRST_PERSON = re.compile(r"\b(i|i'm|i've|i'd|i'll|my|mine|we|our|we're)\b", re.IGNORECASE)
_QUESTION_OPENERS = (
    "what", "who", "where", "when", "why", "how", "which",
    "can", "could", "would", "should", "do", "does", "did",
    "is", "are", "will", "may",
)


def split_sentences(text: str) -> List[str]:
    return [part.strip() for part in _SENTENCE_SPLIT.split(text or "") if part and part.strip()]


def is_question(sentence: str) -> bool:
    stripped = sentence.strip()
    if stripped.endswith("?"):
        return True
    first = stripped.split(" ", 1)[0].lower().strip(",") if stripped else ""
    return first in _QUESTION_OPENERS


def is_first_person_statement(sentence: str, min_words: int = 3) -> bool:
    """True for declarative sentences where the user talks about themselves."""
    if len(sentence.split()) < min_words:
        return False
    if is_question(sentence):
        return False
    return _FIRST_PERSON.search(sentence) is not None


def preview(text: str, limit: int = 80) -> str:
    snippet = " ".join((text or "").split())
    if len(snippet) <= limit:
        return snippet
    return snippet[: limit - 3].rsplit(" ", 1)[0] + "..."


def normalize_user_id(value: Any) -> str:
    """Canonical partition key; surrounding whitespace never selects another user."""
    if not isinstance(value, str) or not value.strip():
        raise ValueError("'userId' is required")
    return value.strip()
