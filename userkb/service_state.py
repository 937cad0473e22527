from __future__ import annotations

from dataclasses import dataclass
from typing import Optional

from qdrant_client import QdrantClient

from userkb.chat.completion import CompletionProvider
from userkb.chat.orchestrator import ChatOrchestrator
from userkb.embedding.provider import EmbeddingProvider
from userkb.embedding.service import EmbeddingService
from userkb.search.retrieval import RetrievalService
from userkb.stores.knowledge_store import KnowledgeStore


@dataclass
class ServiceState:
    qdrant: Optional[QdrantClient] = None
    embedding_provider: Optional[EmbeddingProvider] = None
    embedder: Optional[EmbeddingService] = None
    store: Optional[KnowledgeStore] = None
    retrieval: Optional[RetrievalService] = None
    completion: Optional[CompletionProvider] = None
    orchestrator: Optional[ChatOrchestrator] = None
