"""Provider registry and dependency injection container for mgrep-local."""

import asyncio
from pathlib import Path
from typing import Any, Iterable, List, Optional, Union

from loguru import logger

from core.exceptions import ConfigurationError
from mgrep_local.chunker import Chunker
from mgrep_local.core.config import EmbedderFactory, MgrepConfig
from mgrep_local.file_watcher import ChangeHandler, FileWatcher
from providers.database import DuckDBVectorStore, ShardedVectorStore
from providers.embeddings import BaseEmbedder
from services import Indexer, Searcher, ShardedIndexer, ShardedSearcher


class ProviderRegistry:
    """Builds and caches mgrep-local components from an MgrepConfig.

    The embedder is a singleton because model loading is expensive. Stores
    are created on request and remembered so dispose() can close them.
    """

    def __init__(self, config: Optional[MgrepConfig] = None):
        """Initialize the provider registry.

        Args:
            config: Configuration to build from (defaults to MgrepConfig.load_hierarchical())
        """
        self._config = config or MgrepConfig.load_hierarchical()
        self._embedder: Optional[BaseEmbedder] = None
        self._embedder_lock = asyncio.Lock()
        self._stores: List[Any] = []

    @property
    def config(self) -> MgrepConfig:
        return self._config

    def configure(self, config: MgrepConfig) -> None:
        """Swap the configuration; components built afterwards use the new settings."""
        self._config = config
        logger.info("Provider registry configured")

    def create_chunker(self) -> Chunker:
        indexing = self._config.indexing
        return Chunker(
            max_chunk_size=indexing.max_chunk_size,
            overlap_size=indexing.overlap_size,
            respect_boundaries=indexing.respect_boundaries,
        )

    async def get_embedder(self) -> BaseEmbedder:
        """Return the shared embedder, creating and initializing it on first use.

        Concurrent first calls wait on one creation.

        Raises:
            ConfigurationError: If the selected backend is missing required settings
        """
        async with self._embedder_lock:
            if self._embedder is None:
                missing = self._config.get_missing_config()
                if missing:
                    raise ConfigurationError(f"missing {', '.join(missing)}", key="embedding")
                self._embedder = await EmbedderFactory.create_embedder(self._config.embedding)
                logger.debug(f"Registered embedder {self._embedder.name}")
        return self._embedder

    async def create_vector_store(self, db_path: Union[str, Path, None] = None) -> DuckDBVectorStore:
        embedder = await self.get_embedder()
        store = DuckDBVectorStore(
            db_path or self._config.storage.db_path,
            dimensions=embedder.dimensions,
            use_hnsw=self._config.storage.use_hnsw,
        )
        await store.initialize()
        self._stores.append(store)
        return store

    async def create_sharded_store(self, base_path: Union[str, Path, None] = None) -> ShardedVectorStore:
        embedder = await self.get_embedder()
        sharding = self._config.sharding
        store = ShardedVectorStore(
            base_path or self._config.storage.shard_path,
            shard_count=sharding.shard_count,
            dimensions=embedder.dimensions,
            use_hnsw=self._config.storage.use_hnsw,
            centroid_routing=sharding.centroid_routing,
            max_shards=sharding.max_shards,
        )
        await store.initialize()
        self._stores.append(store)
        return store

    async def create_indexer(self, store: Optional[DuckDBVectorStore] = None) -> Indexer:
        return Indexer(
            store or await self.create_vector_store(),
            await self.get_embedder(),
            chunker=self.create_chunker(),
            batch_size=self._config.indexing.batch_size,
        )

    async def create_searcher(self, store: Optional[DuckDBVectorStore] = None) -> Searcher:
        search = self._config.search
        return Searcher(
            store or await self.create_vector_store(),
            await self.get_embedder(),
            default_limit=search.limit,
            default_threshold=search.threshold,
            default_context_lines=search.context_lines,
        )

    async def create_sharded_indexer(self, store: Optional[ShardedVectorStore] = None) -> ShardedIndexer:
        indexing = self._config.indexing
        return ShardedIndexer(
            store or await self.create_sharded_store(),
            await self.get_embedder(),
            chunker=self.create_chunker(),
            batch_size=indexing.batch_size,
            worker_count=indexing.worker_count,
            use_processes=indexing.use_processes,
            embedding_config=self._config.embedding,
        )

    async def create_sharded_searcher(self, store: Optional[ShardedVectorStore] = None) -> ShardedSearcher:
        search = self._config.search
        return ShardedSearcher(
            store or await self.create_sharded_store(),
            await self.get_embedder(),
            default_limit=search.limit,
            similar_threshold=search.similar_threshold,
            default_context_lines=search.context_lines,
        )

    def create_file_watcher(self, paths: Iterable[Union[str, Path]], on_change: ChangeHandler) -> FileWatcher:
        return FileWatcher(
            paths,
            on_change,
            debounce_ms=self._config.indexing.debounce_ms,
            exclude_patterns=self._config.indexing.exclude_patterns,
        )

    async def dispose(self) -> None:
        """Close every store created here and release the embedder."""
        for store in self._stores:
            await store.dispose()
        self._stores.clear()
        if self._embedder is not None:
            await self._embedder.dispose()
            self._embedder = None


# Global registry instance
_registry: Optional[ProviderRegistry] = None


def get_registry() -> ProviderRegistry:
    """Get the global provider registry instance."""
    global _registry
    if _registry is None:
        _registry = ProviderRegistry()
    return _registry


def configure_registry(config: MgrepConfig) -> ProviderRegistry:
    """Configure the global provider registry, creating it if needed."""
    global _registry
    if _registry is None:
        _registry = ProviderRegistry(config)
    else:
        _registry.configure(config)
    return _registry


def reset_registry() -> None:
    """Drop the global registry; callers should dispose it first."""
    global _registry
    _registry = None


__all__ = [
    "ProviderRegistry",
    "configure_registry",
    "get_registry",
    "reset_registry",
]
