"""Service layer for mgrep-local - indexing and search over vector stores."""

from .base_service import BaseService
from .indexer import Indexer, hash_content
from .searcher import Searcher
from .sharded_indexer import ShardedIndexer
from .sharded_searcher import ShardedSearcher
from .worker_pool import WorkerPool

__all__ = [
    'BaseService',
    'Indexer',
    'Searcher',
    'ShardedIndexer',
    'ShardedSearcher',
    'WorkerPool',
    'hash_content',
]
