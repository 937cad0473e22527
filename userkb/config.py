from __future__ import annotations

import os
from pathlib import Path
from dotenv import load_dotenv

# Load environment variables before configuring the application.
load_dotenv()
load_dotenv(Path.home() / ".config" / "userkb" / ".env")


def _env_flag(name: str, default: str) -> bool:
    return os.getenv(name, default).strip().lower() not in {"0", "false", "no", "off"}


# Qdrant configuration
COLLECTION_NAME = os.getenv("QDRANT_COLLECTION", "user_knowledge")
VECTOR_SIZE = int(os.getenv("VECTOR_SIZE", "1536"))

# Embedding configuration
# text-embedding-3-small (1536d) is the default; VECTOR_SIZE must match the model output.
EMBEDDING_MODEL = os.getenv("EMBEDDING_MODEL", "text-embedding-3-small")
# random: uniform noise in [-1, 1]; hash: deterministic hash-seeded vector; raise: no fallback
EMBEDDING_FALLBACK = (os.getenv("EMBEDDING_FALLBACK", "random") or "random").strip().lower()
EMBEDDING_CACHE_SIZE = int(os.getenv("EMBEDDING_CACHE_SIZE", "1000"))
EMBEDDING_CACHE_TTL_SECONDS = float(os.getenv("EMBEDDING_CACHE_TTL_SECONDS", "300"))

# OpenAI client settings shared by embeddings and chat completions
OPENAI_TIMEOUT_SECONDS = float(os.getenv("OPENAI_TIMEOUT_SECONDS", "30"))
OPENAI_MAX_RETRIES = int(os.getenv("OPENAI_MAX_RETRIES", "2"))

# Two-stage chat configuration
CHAT_STAGE1_MODEL = os.getenv("CHAT_STAGE1_MODEL", "gpt-4o")
CHAT_STAGE2_MODEL = os.getenv("CHAT_STAGE2_MODEL", "gpt-4o-mini")
CHAT_STAGE1_TEMPERATURE = float(os.getenv("CHAT_STAGE1_TEMPERATURE", "0.7"))
CHAT_STAGE1_MAX_TOKENS = int(os.getenv("CHAT_STAGE1_MAX_TOKENS", "500"))
CHAT_STAGE2_TEMPERATURE = float(os.getenv("CHAT_STAGE2_TEMPERATURE", "0.1"))
CHAT_STAGE2_MAX_TOKENS = int(os.getenv("CHAT_STAGE2_MAX_TOKENS", "500"))
CHAT_TURN_TIMEOUT_SECONDS = float(os.getenv("CHAT_TURN_TIMEOUT_SECONDS", "60"))
CHAT_CONTEXT_RETRIEVAL = _env_flag("CHAT_CONTEXT_RETRIEVAL", "true")
# Replies shorter than this only persist the conversation turn, never derived facts.
MIN_PERSIST_REPLY_CHARS = int(os.getenv("MIN_PERSIST_REPLY_CHARS", "50"))

# Retrieval configuration
RECALL_LIMIT = int(os.getenv("RECALL_LIMIT", "6"))
# Page size for walking a user's candidates in Qdrant; every page is ranked.
RECALL_PAGE_SIZE = int(os.getenv("RECALL_PAGE_SIZE", "100"))

# Operations slower than this log a warning and count as slow in /health.
SLOW_OPERATION_MS = float(os.getenv("SLOW_OPERATION_MS", "1000"))

# Ranking thresholds. Only their relative ordering carries meaning (low < mid < high).
SIMILARITY_LOW = float(os.getenv("SIMILARITY_LOW", "0.25"))
SIMILARITY_MID = float(os.getenv("SIMILARITY_MID", "0.3"))
SIMILARITY_HIGH = float(os.getenv("SIMILARITY_HIGH", "0.4"))
CONFIDENCE_GATE = float(os.getenv("CONFIDENCE_GATE", "0.7"))
RECENT_WINDOW_DAYS = float(os.getenv("RECENT_WINDOW_DAYS", "7"))
FRESH_WINDOW_HOURS = float(os.getenv("FRESH_WINDOW_HOURS", "24"))

# Content types written by the service itself
CONTENT_TYPE_USER_FACT = "user_fact"
CONTENT_TYPE_CONVERSATION = "conversation_turn"
CONTENT_TYPE_DOCUMENT = "document"

# Default importance per content type; unknown types use 1.0
IMPORTANCE_DEFAULTS: dict[str, float] = {
    CONTENT_TYPE_USER_FACT: 1.0,
    CONTENT_TYPE_CONVERSATION: 0.8,
    CONTENT_TYPE_DOCUMENT: 1.0,
    "preference": 1.5,
}

# API authentication
API_TOKEN = os.getenv("USERKB_API_TOKEN")
ADMIN_TOKEN = os.getenv("ADMIN_API_TOKEN")
