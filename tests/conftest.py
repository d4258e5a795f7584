"""Shared fixtures.

Stores run against in-memory SQLite databases; every test gets fresh
instances. Timings (backoff, debounce) are shortened so service tests
stay fast.
"""

from collections.abc import AsyncGenerator

import pytest

from autoorganize.config import Config, IngestionConfig, JobConfig, WatcherConfig
from autoorganize.core.content_store import ContentStore
from autoorganize.core.graph_store import SQLiteGraphStore
from autoorganize.core.search import SearchIndex
from autoorganize.models.entity import Entity, EntityType
from autoorganize.services.knowledge_engine import KnowledgeEngine

TEST_PASSWORD = "correct horse battery staple"


@pytest.fixture
def config() -> Config:
    """In-memory configuration with short timings."""
    return Config.in_memory(
        ingestion=IngestionConfig(retry_base_delay=0.01),
        jobs=JobConfig(workers=2, backoff_base=0.01),
        watcher=WatcherConfig(debounce_seconds=0.05),
    )


@pytest.fixture
async def content_store() -> AsyncGenerator[ContentStore, None]:
    store = ContentStore(":memory:")
    await store.initialize()
    yield store
    await store.close()


@pytest.fixture
async def graph_store() -> AsyncGenerator[SQLiteGraphStore, None]:
    store = SQLiteGraphStore(":memory:")
    await store.initialize()
    yield store
    await store.close()


@pytest.fixture
async def search_index(graph_store) -> AsyncGenerator[SearchIndex, None]:
    index = SearchIndex(":memory:", graph_store=graph_store)
    await index.initialize()
    yield index
    await index.close()


@pytest.fixture
async def engine(config) -> AsyncGenerator[KnowledgeEngine, None]:
    """Fully wired engine on in-memory stores."""
    knowledge_engine = KnowledgeEngine(config)
    await knowledge_engine.initialize()
    yield knowledge_engine
    await knowledge_engine.close()


@pytest.fixture
def person() -> Entity:
    return Entity(id="ent_person00001", type=EntityType.PERSON, name="Ada Lovelace", confidence=0.9)


@pytest.fixture
def organization() -> Entity:
    return Entity(
        id="ent_org0000001", type=EntityType.ORGANIZATION, name="Analytical Engines Ltd", confidence=0.8
    )
