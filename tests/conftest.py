"""Test-specific fixtures."""

import os

# Must be set before companion modules read configuration.
os.environ["PYTEST_RUNNING"] = "1"
os.environ["EMBEDDING_BACKEND"] = "stub"
os.environ.setdefault("EMBED_DIM", "1536")

import pytest

from companion.memory.history_cache import HistoryCache
from companion.memory.keys import ConversationKey
from companion.memory.manager import MemoryManager
from tests.helpers.fakes import FakeRedis, FakeVectorBackend


@pytest.fixture(autouse=True)
def _lock_test_env(monkeypatch):
    """Keep every test offline and deterministic."""
    monkeypatch.setenv("EMBEDDING_BACKEND", "stub")
    monkeypatch.setenv("EMBED_DIM", "1536")
    for name in (
        "VECTOR_DB",
        "STRICT_VECTOR_STORE",
        "QDRANT_URL",
        "QDRANT_API_KEY",
        "PINECONE_API_KEY",
        "PINECONE_ENVIRONMENT",
        "PINECONE_INDEX",
        "MEM_TOP_K",
        "HISTORY_WINDOW",
    ):
        monkeypatch.delenv(name, raising=False)


@pytest.fixture
def fake_redis() -> FakeRedis:
    return FakeRedis()


@pytest.fixture
def history(fake_redis) -> HistoryCache:
    return HistoryCache(fake_redis)


@pytest.fixture
def alice_key() -> ConversationKey:
    return ConversationKey(companion_name="Alice", model_name="gpt-4", user_id="u1")


@pytest.fixture
def fake_backend() -> FakeVectorBackend:
    return FakeVectorBackend()


@pytest.fixture
def manager(history, fake_backend) -> MemoryManager:
    return MemoryManager(history, fake_backend, requested_backend="fake")
