"""Mgrep Core Types - Common type definitions and aliases.

This module contains type definitions, enums, and type aliases used throughout
the mgrep-local system.
"""

from enum import Enum
from typing import Dict, List, NewType, Optional, Union
from pathlib import Path


# String-based type aliases for better semantic clarity
ModelName = NewType("ModelName", str)       # e.g., "sentence-transformers/all-MiniLM-L6-v2"
FilePath = NewType("FilePath", str)         # File path as string
ContentHash = NewType("ContentHash", str)   # Truncated sha256 hex digest

# Numeric type aliases
VectorId = NewType("VectorId", int)         # Database vector row ID
ShardId = NewType("ShardId", int)           # Shard index in [0, shard_count)
LineNumber = NewType("LineNumber", int)     # 1-based line numbers
Timestamp = NewType("Timestamp", float)     # Unix timestamp
Similarity = NewType("Similarity", float)   # Cosine similarity in [0, 1]
Dimensions = NewType("Dimensions", int)     # Embedding vector dimensions

# Complex types
EmbeddingVector = List[float]              # Vector embedding representation


class EmbedderBackend(Enum):
    """Embedding backends the factory can select."""

    AUTO = "auto"
    CPU = "cpu"
    GPU_SERVER = "gpu_server"
    OPENAI = "openai"

    @classmethod
    def from_string(cls, value: Union[str, "EmbedderBackend"]) -> "EmbedderBackend":
        """Convert string to EmbedderBackend, raising ValueError for unknown names."""
        if isinstance(value, cls):
            return value
        normalized = value.strip().lower().replace("-", "_")
        aliases = {"gpu": "gpu_server", "local": "gpu_server", "llamacpp": "gpu_server"}
        return cls(aliases.get(normalized, normalized))


class EmbedderState(Enum):
    """Embedder lifecycle states."""

    UNINITIALIZED = "uninitialized"
    INITIALIZING = "initializing"
    READY = "ready"
    DISPOSED = "disposed"


class ModelLoadStatus(Enum):
    """Status values reported while a model is prepared."""

    LOADING = "loading"
    DOWNLOADING = "downloading"
    READY = "ready"


class IndexPhase(Enum):
    """Phases reported through indexing progress callbacks."""

    CHUNKING = "chunking"
    EMBEDDING = "embedding"


class FileEventType(Enum):
    """File change event kinds delivered by the watcher."""

    ADDED = "added"
    MODIFIED = "modified"
    DELETED = "deleted"

    @classmethod
    def from_string(cls, value: str) -> "FileEventType":
        return cls(value.lower())


class Language(Enum):
    """Language tags attached to chunks."""

    TYPESCRIPT = "typescript"
    JAVASCRIPT = "javascript"
    PYTHON = "python"
    RUBY = "ruby"
    GO = "go"
    RUST = "rust"
    JAVA = "java"
    KOTLIN = "kotlin"
    SWIFT = "swift"
    C = "c"
    CPP = "cpp"
    CSHARP = "csharp"
    PHP = "php"
    VUE = "vue"
    SVELTE = "svelte"
    MARKDOWN = "markdown"
    JSON = "json"
    YAML = "yaml"
    TOML = "toml"
    SQL = "sql"
    SHELL = "shell"
    CSS = "css"
    SCSS = "scss"
    LESS = "less"
    HTML = "html"
    XML = "xml"
    UNKNOWN = "unknown"

    @classmethod
    def extension_map(cls) -> Dict[str, "Language"]:
        """Return the mapping of lowercase file extensions to languages."""
        return {
            '.ts': cls.TYPESCRIPT,
            '.tsx': cls.TYPESCRIPT,
            '.js': cls.JAVASCRIPT,
            '.jsx': cls.JAVASCRIPT,
            '.mjs': cls.JAVASCRIPT,
            '.cjs': cls.JAVASCRIPT,
            '.py': cls.PYTHON,
            '.rb': cls.RUBY,
            '.go': cls.GO,
            '.rs': cls.RUST,
            '.java': cls.JAVA,
            '.kt': cls.KOTLIN,
            '.swift': cls.SWIFT,
            '.c': cls.C,
            '.h': cls.C,
            '.cpp': cls.CPP,
            '.hpp': cls.CPP,
            '.cs': cls.CSHARP,
            '.php': cls.PHP,
            '.vue': cls.VUE,
            '.svelte': cls.SVELTE,
            '.md': cls.MARKDOWN,
            '.json': cls.JSON,
            '.yaml': cls.YAML,
            '.yml': cls.YAML,
            '.toml': cls.TOML,
            '.sql': cls.SQL,
            '.sh': cls.SHELL,
            '.bash': cls.SHELL,
            '.zsh': cls.SHELL,
            '.css': cls.CSS,
            '.scss': cls.SCSS,
            '.less': cls.LESS,
            '.html': cls.HTML,
            '.xml': cls.XML,
        }

    @classmethod
    def from_file_extension(cls, file_path: Union[str, Path]) -> "Language":
        """Determine language from file extension."""
        extension = Path(file_path).suffix.lower()
        return cls.extension_map().get(extension, cls.UNKNOWN)

    @classmethod
    def from_content(cls, content: Optional[str]) -> "Language":
        """Sniff a language from shebangs and well-known source markers."""
        if not content:
            return cls.UNKNOWN
        if content.startswith("#!/usr/bin/env python") or content.startswith("#!/usr/bin/python"):
            return cls.PYTHON
        if content.startswith("#!/bin/bash") or content.startswith("#!/bin/sh"):
            return cls.SHELL
        if "package main" in content and "func " in content:
            return cls.GO
        if "fn main()" in content or "use std::" in content:
            return cls.RUST
        return cls.UNKNOWN

    @classmethod
    def from_string(cls, value: str) -> "Language":
        """Convert string to Language enum, defaulting to UNKNOWN for invalid values."""
        try:
            return cls(value)
        except ValueError:
            return cls.UNKNOWN
