"""Vector store providers package for mgrep-local - DuckDB-backed stores."""

from .duckdb_vector_store import DuckDBVectorStore
from .sharded_vector_store import ShardedVectorStore

__all__ = [
    "DuckDBVectorStore",
    "ShardedVectorStore",
]
