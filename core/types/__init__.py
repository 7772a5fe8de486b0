"""Mgrep Core Types Package - Common type definitions and aliases.

The types are organized into logical groups:
- Language tags and extension mapping
- Lifecycle and event enumerations
- Common aliases for better readability
"""

from .common import (
    ContentHash,
    Dimensions,
    EmbedderBackend,
    EmbedderState,
    EmbeddingVector,
    FileEventType,
    FilePath,
    IndexPhase,
    Language,
    LineNumber,
    ModelLoadStatus,
    ModelName,
    ShardId,
    Similarity,
    Timestamp,
    VectorId,
)

__all__ = [
    "ContentHash",
    "Dimensions",
    "EmbedderBackend",
    "EmbedderState",
    "EmbeddingVector",
    "FileEventType",
    "FilePath",
    "IndexPhase",
    "Language",
    "LineNumber",
    "ModelLoadStatus",
    "ModelName",
    "ShardId",
    "Similarity",
    "Timestamp",
    "VectorId",
]
