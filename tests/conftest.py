import sys
from pathlib import Path

import pytest

ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

from tests.support.fake_embedding import TEST_DIMENSION, FakeEmbeddingProvider  # noqa: E402
from userkb.embedding.fallback import DegradedEmbeddingFallback  # noqa: E402
from userkb.embedding.service import EmbeddingService  # noqa: E402
from userkb.stores.knowledge_store import InMemoryKnowledgeStore  # noqa: E402


@pytest.fixture
def provider() -> FakeEmbeddingProvider:
    return FakeEmbeddingProvider()


@pytest.fixture
def embedder(provider: FakeEmbeddingProvider) -> EmbeddingService:
    return EmbeddingService(provider, fallback=DegradedEmbeddingFallback(TEST_DIMENSION, mode="hash"))


@pytest.fixture
def store() -> InMemoryKnowledgeStore:
    return InMemoryKnowledgeStore(dimension=TEST_DIMENSION)
