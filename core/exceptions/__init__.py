"""Mgrep Core Exceptions Package - Core exception classes for error handling.

The exception hierarchy is designed to:
- Provide specific exception types for each failure category
- Keep the originating cause attached for debugging
- Support structured error messages and context
"""

from .core import (
    ConfigurationError,
    EmbeddingError,
    InitializationError,
    MgrepError,
    ShardRoutingError,
    StorageError,
    ValidationError,
)

__all__ = [
    # Base exception
    "MgrepError",

    # Domain-specific exceptions
    "ValidationError",
    "ConfigurationError",
    "InitializationError",
    "EmbeddingError",
    "StorageError",
    "ShardRoutingError",
]
