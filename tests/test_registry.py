"""Tests for the provider registry."""

import asyncio
from unittest.mock import AsyncMock, patch

import pytest

from core.exceptions import ConfigurationError
from core.models import FileToIndex
from mgrep_local.core.config import MgrepConfig
from registry import ProviderRegistry, configure_registry, get_registry, reset_registry
from services import Indexer, Searcher, ShardedIndexer, ShardedSearcher

from .helpers import FakeEmbedder


@pytest.fixture
def config(temp_dir) -> MgrepConfig:
    return MgrepConfig(
        embedding={"backend": "cpu"},
        storage={
            "db_path": str(temp_dir / "index.duckdb"),
            "shard_path": str(temp_dir / "shards"),
            "use_hnsw": False,
        },
        sharding={"shard_count": 2},
        indexing={"max_chunk_size": 300, "overlap_size": 30, "batch_size": 8, "use_processes": False},
        search={"limit": 4, "threshold": 0.2},
    )


@pytest.fixture
def create_embedder():
    with patch("registry.EmbedderFactory.create_embedder", AsyncMock(return_value=FakeEmbedder())) as factory:
        yield factory


@pytest.fixture
async def registry(config, create_embedder):
    provider_registry = ProviderRegistry(config)
    yield provider_registry
    await provider_registry.dispose()


class TestProviderRegistry:
    async def test_embedder_is_cached(self, registry, create_embedder):
        first = await registry.get_embedder()
        assert await registry.get_embedder() is first
        create_embedder.assert_awaited_once()

    async def test_concurrent_first_calls_create_one_embedder(self, config):
        async def slow_create(_config):
            await asyncio.sleep(0.05)
            return FakeEmbedder()

        registry = ProviderRegistry(config)
        with patch("registry.EmbedderFactory.create_embedder", AsyncMock(side_effect=slow_create)) as factory:
            first, second = await asyncio.gather(registry.get_embedder(), registry.get_embedder())
        try:
            assert first is second
            assert factory.await_count == 1
        finally:
            await registry.dispose()

    async def test_missing_openai_key(self, monkeypatch, create_embedder):
        monkeypatch.delenv("OPENAI_API_KEY", raising=False)
        registry = ProviderRegistry(MgrepConfig(embedding={"backend": "openai"}))
        with pytest.raises(ConfigurationError, match="api_key"):
            await registry.get_embedder()
        create_embedder.assert_not_awaited()

    async def test_chunker_uses_indexing_settings(self, registry):
        chunker = registry.create_chunker()
        assert chunker.max_chunk_size == 300
        assert chunker.overlap_size == 30

    async def test_store_dimensions_follow_embedder(self, registry, temp_dir):
        store = await registry.create_vector_store()
        assert store.dimensions == 16
        assert store.is_connected
        assert store.db_path == temp_dir / "index.duckdb"

    async def test_services_are_wired(self, registry):
        indexer = await registry.create_indexer()
        searcher = await registry.create_searcher(indexer.vector_store)
        assert isinstance(indexer, Indexer)
        assert isinstance(searcher, Searcher)
        assert indexer.batch_size == 8

        await indexer.index_file("a.py", "def login():\n    return token\n")
        results = await searcher.search("login token")
        assert results[0].file_path == "a.py"

    async def test_sharded_services(self, registry):
        store = await registry.create_sharded_store()
        assert store.shard_count == 2

        indexer = await registry.create_sharded_indexer(store)
        searcher = await registry.create_sharded_searcher(store)
        assert isinstance(indexer, ShardedIndexer)
        assert isinstance(searcher, ShardedSearcher)

        await indexer.index_files([FileToIndex(file_path="db.py", content="def run(sql):\n    return query(sql)\n")])
        results = await searcher.search("sql query")
        assert results[0].file_path == "db.py"

    async def test_dispose_closes_everything(self, config, create_embedder):
        registry = ProviderRegistry(config)
        store = await registry.create_vector_store()
        embedder = await registry.get_embedder()

        await registry.dispose()

        assert not store.is_connected
        assert embedder.released

    def test_file_watcher_uses_debounce_setting(self, registry, temp_dir):
        watcher = registry.create_file_watcher([temp_dir], lambda event: None)
        assert watcher._debounce_ms == registry.config.indexing.debounce_ms
        assert not watcher.is_running


class TestGlobalRegistry:
    def test_configure_and_reset(self, config):
        reset_registry()
        try:
            configured = configure_registry(config)
            assert get_registry() is configured
            assert configured.config is config

            other = MgrepConfig(search={"limit": 9})
            assert configure_registry(other) is configured
            assert configured.config.search.limit == 9
        finally:
            reset_registry()
