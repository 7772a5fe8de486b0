"""Base service class for mgrep-local services."""

from abc import ABC
from typing import Generic, TypeVar

from interfaces.embedding_provider import Embedder

StoreT = TypeVar("StoreT")


class BaseService(ABC, Generic[StoreT]):
    """Base service class holding the vector store and embedder dependencies."""

    def __init__(self, vector_store: StoreT, embedder: Embedder):
        """Initialize service with its store and embedder.

        Args:
            vector_store: DuckDBVectorStore or ShardedVectorStore
            embedder: Embedding backend
        """
        self._store = vector_store
        self._embedder = embedder

    @property
    def vector_store(self) -> StoreT:
        """Get vector store instance."""
        return self._store

    @property
    def embedder(self) -> Embedder:
        """Get embedder instance."""
        return self._embedder
