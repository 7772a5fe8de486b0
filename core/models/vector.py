"""Mgrep Vector Domain Models - Stored embeddings and insert requests."""

from dataclasses import dataclass
from typing import Dict, Any, Optional

from ..types import EmbeddingVector, FilePath, VectorId
from ..exceptions import ValidationError
from .chunk import ChunkMetadata


@dataclass(frozen=True)
class VectorInsertOptions:
    """Everything the vector store needs to persist one chunk embedding.

    Attributes:
        file_path: Source file the chunk belongs to
        chunk_index: 0-based position of the chunk within the file
        content: Chunk text
        embedding: Embedding vector for the chunk
        metadata: Chunk source-location metadata
    """

    file_path: FilePath
    chunk_index: int
    content: str
    embedding: EmbeddingVector
    metadata: ChunkMetadata

    def __post_init__(self):
        if not self.file_path:
            raise ValidationError("file_path", self.file_path, "File path cannot be empty")
        if self.chunk_index < 0:
            raise ValidationError("chunk_index", self.chunk_index, "Chunk index cannot be negative")
        if not self.embedding:
            raise ValidationError("embedding", self.embedding, "Embedding cannot be empty")

    @property
    def dimensions(self) -> int:
        return len(self.embedding)


@dataclass(frozen=True)
class Vector:
    """A chunk embedding as persisted by a vector store."""

    id: VectorId
    file_path: FilePath
    chunk_index: int
    content: str
    embedding: EmbeddingVector
    metadata: ChunkMetadata
    shard_id: Optional[int] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "file_path": self.file_path,
            "chunk_index": self.chunk_index,
            "content": self.content,
            "embedding": list(self.embedding),
            "metadata": self.metadata.to_dict(),
            "shard_id": self.shard_id,
        }
