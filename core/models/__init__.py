"""Mgrep Core Models Package - Domain model definitions.

The models follow these principles:
- Immutable data structures using dataclasses with frozen=True
- Validation in __post_init__ raising ValidationError
- Plain dictionaries available through to_dict for callers and logs
"""

from .chunk import Chunk, ChunkMetadata
from .embedding import ModelInfo, ModelLoadProgress
from .events import FileChangeEvent
from .index import (
    FileToIndex,
    FileTrackingRecord,
    IndexBatchResult,
    IndexFilesResult,
    IndexProgress,
    IndexStats,
    ShardedIndexResult,
    ShardedIndexStats,
)
from .search import ProgressiveCallback, SearchOptions, SearchResult, SearchStats
from .shard import ShardDescriptor
from .vector import Vector, VectorInsertOptions

__all__ = [
    "Chunk",
    "ChunkMetadata",
    "FileChangeEvent",
    "FileToIndex",
    "FileTrackingRecord",
    "IndexBatchResult",
    "IndexFilesResult",
    "IndexProgress",
    "IndexStats",
    "ModelInfo",
    "ModelLoadProgress",
    "ProgressiveCallback",
    "SearchOptions",
    "SearchResult",
    "SearchStats",
    "ShardDescriptor",
    "ShardedIndexResult",
    "ShardedIndexStats",
    "Vector",
    "VectorInsertOptions",
]
