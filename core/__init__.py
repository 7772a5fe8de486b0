"""Mgrep Core Package - Domain models, types, and exceptions.

This package contains the core domain models and types that form the foundation
of the mgrep-local architecture. They are independent of storage and inference
concerns.

Modules:
    models: Domain models for chunks, vectors, search results and shards
    types: Common type definitions and aliases
    exceptions: Core exception classes for error handling
"""

from .exceptions import (
    ConfigurationError,
    EmbeddingError,
    InitializationError,
    MgrepError,
    ShardRoutingError,
    StorageError,
    ValidationError,
)
from .models import Chunk, ChunkMetadata, SearchResult, Vector
from .types import EmbedderBackend, FileEventType, IndexPhase, Language

__all__ = [
    # Domain Models
    "Chunk",
    "ChunkMetadata",
    "SearchResult",
    "Vector",

    # Types
    "EmbedderBackend",
    "FileEventType",
    "IndexPhase",
    "Language",

    # Exceptions
    "MgrepError",
    "ValidationError",
    "ConfigurationError",
    "InitializationError",
    "EmbeddingError",
    "StorageError",
    "ShardRoutingError",
]

__version__ = "0.1.0"
