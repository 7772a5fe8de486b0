"""Mgrep Shard Domain Model - Per-shard summary used for statistics and routing."""

from dataclasses import dataclass
from datetime import datetime
from typing import Any, Dict, Optional

from ..types import EmbeddingVector
from ..exceptions import ValidationError


@dataclass(frozen=True)
class ShardDescriptor:
    """Summary of one shard.

    Attributes:
        shard_id: Shard index
        path: Database file backing the shard
        centroid: Mean embedding of every vector in the shard, None when empty
        file_count: Number of files stored in the shard
        chunk_count: Number of vectors stored in the shard
        updated_at: When the centroid was last recomputed
    """

    shard_id: int
    path: str
    centroid: Optional[EmbeddingVector] = None
    file_count: int = 0
    chunk_count: int = 0
    updated_at: Optional[datetime] = None

    def __post_init__(self):
        if self.shard_id < 0:
            raise ValidationError("shard_id", self.shard_id, "Shard id cannot be negative")

    @property
    def is_empty(self) -> bool:
        return self.chunk_count == 0

    def to_dict(self) -> Dict[str, Any]:
        return {
            "shard_id": self.shard_id,
            "path": self.path,
            "has_centroid": self.centroid is not None,
            "file_count": self.file_count,
            "chunk_count": self.chunk_count,
            "updated_at": self.updated_at.isoformat() if self.updated_at else None,
        }
