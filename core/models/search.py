"""Mgrep Search Domain Models - Results, options and shard timing statistics."""

from dataclasses import dataclass, field, replace
from typing import Any, Awaitable, Callable, Dict, List, Optional, Union

from ..types import FilePath
from ..exceptions import ValidationError
from .chunk import ChunkMetadata


@dataclass(frozen=True)
class SearchResult:
    """A ranked search hit. Derived from stored vectors, never persisted.

    Attributes:
        file_path: Source file of the matching chunk
        chunk_index: Position of the chunk within its file
        content: Chunk text
        similarity: Cosine similarity in [0, 1], possibly keyword-boosted
        metadata: Chunk source-location metadata
        highlight: Optional context snippet with bold-wrapped keywords
        shard_id: Shard the result came from, for sharded searches
    """

    file_path: FilePath
    chunk_index: int
    content: str
    similarity: float
    metadata: ChunkMetadata
    highlight: Optional[str] = None
    shard_id: Optional[int] = None

    def __post_init__(self):
        if not 0.0 <= self.similarity <= 1.0:
            raise ValidationError("similarity", self.similarity, "Similarity must be within [0, 1]")

    @property
    def key(self) -> tuple:
        """Identity of the underlying chunk."""
        return (self.file_path, self.chunk_index)

    def with_similarity(self, similarity: float) -> "SearchResult":
        return replace(self, similarity=similarity)

    def with_highlight(self, highlight: str) -> "SearchResult":
        return replace(self, highlight=highlight)

    def to_dict(self) -> Dict[str, Any]:
        result = {
            "file_path": self.file_path,
            "chunk_index": self.chunk_index,
            "content": self.content,
            "similarity": self.similarity,
            "metadata": self.metadata.to_dict(),
        }
        if self.highlight is not None:
            result["highlight"] = self.highlight
        if self.shard_id is not None:
            result["shard_id"] = self.shard_id
        return result


ProgressiveCallback = Callable[[List[SearchResult], int, bool], Union[None, Awaitable[None]]]


@dataclass
class SearchOptions:
    """Per-query options. Unset values fall back to the searcher's defaults."""

    limit: Optional[int] = None
    threshold: Optional[float] = None
    return_context: bool = False
    context_lines: Optional[int] = None
    progressive: bool = False
    on_progress: Optional[ProgressiveCallback] = None

    def __post_init__(self):
        if self.limit is not None and self.limit < 1:
            raise ValidationError("limit", self.limit, "Limit must be positive")
        if self.threshold is not None and not -1.0 <= self.threshold <= 1.0:
            raise ValidationError("threshold", self.threshold, "Threshold must be within [-1, 1]")
        if self.context_lines is not None and self.context_lines < 0:
            raise ValidationError("context_lines", self.context_lines, "Context lines cannot be negative")


@dataclass(frozen=True)
class SearchStats:
    """Timing summary of a sharded search."""

    total_shards: int
    shards_queried: int
    total_results: int
    duration_ms: float
    shard_durations: Dict[int, float] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "total_shards": self.total_shards,
            "shards_queried": self.shards_queried,
            "total_results": self.total_results,
            "duration_ms": self.duration_ms,
            "shard_durations": dict(self.shard_durations),
        }
