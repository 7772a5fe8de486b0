"""Mgrep Indexing Domain Models - Tracking records, statistics, progress and results.

These models describe the incremental indexing pipeline: which files are
tracked under which content hash, what a store currently holds, how far a
bulk indexing run has progressed and what each shard produced.
"""

from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Dict, List, Optional

from ..types import ContentHash, FilePath, IndexPhase
from ..exceptions import ValidationError
from .shard import ShardDescriptor


@dataclass(frozen=True)
class FileToIndex:
    """A file path plus the content to index for it."""

    file_path: FilePath
    content: str

    def __post_init__(self):
        if not self.file_path:
            raise ValidationError("file_path", self.file_path, "File path cannot be empty")


@dataclass(frozen=True)
class FileTrackingRecord:
    """Per-file record used to short-circuit unchanged files.

    Attributes:
        file_path: Tracked file
        content_hash: Hash of the content the stored vectors were built from
        language: Language of the file's first chunk
        chunk_count: Number of vectors stored for the file
        last_indexed_at: When the file was last (re)indexed
    """

    file_path: FilePath
    content_hash: ContentHash
    language: str
    chunk_count: int
    last_indexed_at: Optional[datetime] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "file_path": self.file_path,
            "content_hash": self.content_hash,
            "language": self.language,
            "chunk_count": self.chunk_count,
            "last_indexed_at": self.last_indexed_at.isoformat() if self.last_indexed_at else None,
        }


@dataclass(frozen=True)
class IndexStats:
    """Aggregate statistics for a store."""

    total_files: int = 0
    total_chunks: int = 0
    total_embeddings: int = 0
    database_size: int = 0
    last_indexed_at: Optional[datetime] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "total_files": self.total_files,
            "total_chunks": self.total_chunks,
            "total_embeddings": self.total_embeddings,
            "database_size": self.database_size,
            "last_indexed_at": self.last_indexed_at.isoformat() if self.last_indexed_at else None,
        }


@dataclass(frozen=True)
class ShardedIndexStats(IndexStats):
    """Statistics aggregated over every shard, with the per-shard breakdown."""

    shard_count: int = 0
    shards: List[ShardDescriptor] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        data = super().to_dict()
        data["shard_count"] = self.shard_count
        data["shards"] = [shard.to_dict() for shard in self.shards]
        return data


@dataclass(frozen=True)
class IndexProgress:
    """Progress report passed to indexing callbacks."""

    phase: IndexPhase
    current: int
    total: int
    current_file: Optional[str] = None
    shard_id: Optional[int] = None
    shards_complete: Optional[int] = None
    total_shards: Optional[int] = None

    def to_dict(self) -> Dict[str, Any]:
        data: Dict[str, Any] = {
            "phase": self.phase.value,
            "current": self.current,
            "total": self.total,
        }
        for key in ("current_file", "shard_id", "shards_complete", "total_shards"):
            value = getattr(self, key)
            if value is not None:
                data[key] = value
        return data


@dataclass(frozen=True)
class IndexFilesResult:
    """Summary of a non-sharded bulk indexing run."""

    total_chunks: int
    files_processed: int


@dataclass
class IndexBatchResult:
    """What indexing one shard's files produced."""

    shard_id: int
    files_indexed: int = 0
    chunks_created: int = 0
    errors: int = 0
    duration_ms: float = 0.0

    def to_dict(self) -> Dict[str, Any]:
        return {
            "shard_id": self.shard_id,
            "files_indexed": self.files_indexed,
            "chunks_created": self.chunks_created,
            "errors": self.errors,
            "duration_ms": self.duration_ms,
        }


@dataclass
class ShardedIndexResult:
    """Summary of a sharded bulk indexing run."""

    total_chunks: int
    files_processed: int
    by_shard: Dict[int, IndexBatchResult] = field(default_factory=dict)
    duration_ms: float = 0.0
    worker_results: List[Any] = field(default_factory=list)

    @property
    def total_errors(self) -> int:
        return sum(batch.errors for batch in self.by_shard.values())
