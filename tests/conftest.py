"""Shared test fixtures."""

import os

os.environ.setdefault('DATABASE_URL', 'sqlite://')
os.environ.setdefault('PROFILE_LLM_ENABLED', 'false')
os.environ.setdefault('LOG_LEVEL', 'WARNING')

import pytest  # noqa: E402
from fakes import FakeEmbedder, FakeGraphStore  # noqa: E402

from agent_memory.services.memory_query import MemoryQueryEngine  # noqa: E402
from agent_memory.services.memory_store import MemoryStore  # noqa: E402
from agent_memory.utils.config import DatabaseConfig, MemoryConfig, ProfileConfig  # noqa: E402
from agent_memory.utils.database_client import DatabaseClient  # noqa: E402


@pytest.fixture
def memory_config():
    return MemoryConfig(default_query_limit=20, summary_max_length=160, default_day_window=14, min_activity_ms=10000)


@pytest.fixture
def profile_config():
    return ProfileConfig(llm_enabled=False,
                         primary_window_days=90,
                         extended_window_days=365,
                         fetch_limit=400,
                         expected_sources=8,
                         collaboration_ratio=0.2)


@pytest.fixture
def database():
    client = DatabaseClient(DatabaseConfig(url='sqlite://', echo=False))
    yield client
    client.engine.dispose()


@pytest.fixture
def graph():
    return FakeGraphStore()


@pytest.fixture
def embedder():
    return FakeEmbedder()


@pytest.fixture
def store(database, graph, embedder, memory_config):
    return MemoryStore(database=database, graph=graph, embedder=embedder, memory_config=memory_config)


@pytest.fixture
def engine(database, graph, embedder, memory_config):
    return MemoryQueryEngine(database=database, graph=graph, embedder=embedder, memory_config=memory_config)
