"""Providers package for mgrep-local - concrete implementations of abstract interfaces."""

from .database import DuckDBVectorStore, ShardedVectorStore
from .embeddings import BaseEmbedder, CpuEmbedder, GpuServerEmbedder, OpenAIEmbedder

__all__ = [
    # Vector stores
    "DuckDBVectorStore",
    "ShardedVectorStore",

    # Embedding backends
    "BaseEmbedder",
    "CpuEmbedder",
    "GpuServerEmbedder",
    "OpenAIEmbedder",
]
