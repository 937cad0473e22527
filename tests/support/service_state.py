from __future__ import annotations

from typing import Optional

from tests.support.fake_completion import ScriptedCompletionProvider
from tests.support.fake_embedding import TEST_DIMENSION, FakeEmbeddingProvider
from userkb.chat.orchestrator import ChatOrchestrator
from userkb.chat.persistence import ConversationRecorder
from userkb.embedding.fallback import DegradedEmbeddingFallback
from userkb.embedding.service import EmbeddingService
from userkb.search.retrieval import RetrievalService
from userkb.service_state import ServiceState
from userkb.stores.knowledge_store import InMemoryKnowledgeStore


def build_state(completion: Optional[ScriptedCompletionProvider] = None) -> ServiceState:
    """A fully wired in-memory service; chat is only available when ``completion`` is given."""
    provider = FakeEmbeddingProvider()
    embedder = EmbeddingService(provider, fallback=DegradedEmbeddingFallback(TEST_DIMENSION, mode="hash"))
    store = InMemoryKnowledgeStore(dimension=TEST_DIMENSION)
    retrieval = RetrievalService(store, embedder)

    state = ServiceState(
        embedding_provider=provider,
        embedder=embedder,
        store=store,
        retrieval=retrieval,
    )
    if completion is not None:
        state.completion = completion
        state.orchestrator = ChatOrchestrator(
            completion,
            recorder=ConversationRecorder(store, embedder),
            retrieval=retrieval,
        )
    return state
