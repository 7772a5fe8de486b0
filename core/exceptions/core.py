"""Mgrep Core Exceptions - Core exception classes for error handling.

This module contains the exception hierarchy for the mgrep-local system. Embedder
and vector store failures propagate to callers through these types; only the
sharded batch layer and the file watcher catch them per item.
"""

from typing import Optional, Any, Dict


class MgrepError(Exception):
    """Base exception for all mgrep-specific errors.

    Provides context tracking and an optional underlying cause so that errors
    crossing component boundaries keep their diagnostic information.
    """

    def __init__(
        self,
        message: str,
        context: Optional[Dict[str, Any]] = None,
        cause: Optional[BaseException] = None
    ):
        """Initialize mgrep error.

        Args:
            message: Human-readable error description
            context: Optional dictionary with error context (e.g., file paths, shard IDs)
            cause: Optional underlying exception that caused this error
        """
        super().__init__(message)
        self.message = message
        self.context = context or {}
        self.cause = cause

    def __str__(self) -> str:
        """Return formatted error message with context."""
        if self.context:
            context_str = ", ".join(f"{k}={v}" for k, v in self.context.items())
            return f"{self.message} (context: {context_str})"
        return self.message

    def add_context(self, key: str, value: Any) -> "MgrepError":
        """Add context information to the error."""
        self.context[key] = value
        return self


class ValidationError(MgrepError):
    """Raised when data validation fails.

    Used by the domain models when a field does not meet its format or
    range requirements.
    """

    def __init__(
        self,
        field: str,
        value: Any,
        reason: str,
        context: Optional[Dict[str, Any]] = None
    ):
        """Initialize validation error.

        Args:
            field: Name of the field that failed validation
            value: The invalid value
            reason: Description of why validation failed
            context: Optional additional context
        """
        message = f"Validation failed for field '{field}': {reason}"
        super().__init__(message, context)
        self.field = field
        self.value = value
        self.reason = reason


class ConfigurationError(MgrepError):
    """Raised when configuration is missing or invalid."""

    def __init__(
        self,
        reason: str,
        key: Optional[str] = None,
        context: Optional[Dict[str, Any]] = None,
        cause: Optional[BaseException] = None
    ):
        message = f"Configuration error for '{key}': {reason}" if key else f"Configuration error: {reason}"
        super().__init__(message, context, cause)
        self.key = key
        self.reason = reason


class InitializationError(MgrepError):
    """Raised when an embedding backend is unavailable or fails to load.

    This error must reach the caller unchanged: indexers and searchers
    never wrap or swallow it.
    """

    def __init__(
        self,
        backend: str,
        reason: str,
        model: Optional[str] = None,
        context: Optional[Dict[str, Any]] = None,
        cause: Optional[BaseException] = None
    ):
        """Initialize initialization error.

        Args:
            backend: Embedding backend name (e.g., "cpu", "gpu_server", "openai")
            reason: Description of what went wrong
            model: Optional model name
            context: Optional additional context
            cause: Optional underlying exception
        """
        target = f"{backend}/{model}" if model else backend
        message = f"Failed to initialize embedder ({target}): {reason}"
        super().__init__(message, context, cause)
        self.backend = backend
        self.model = model
        self.reason = reason


class EmbeddingError(MgrepError):
    """Raised when embedding inference fails for a given input."""

    def __init__(
        self,
        backend: Optional[str] = None,
        model: Optional[str] = None,
        operation: Optional[str] = None,
        reason: Optional[str] = None,
        context: Optional[Dict[str, Any]] = None,
        cause: Optional[BaseException] = None
    ):
        """Initialize embedding error.

        Args:
            backend: Embedding backend name (e.g., "openai")
            model: Model name (e.g., "text-embedding-3-small")
            operation: Operation that failed (e.g., "embed", "embed_batch")
            reason: Description of what went wrong
            context: Optional additional context
            cause: Optional underlying exception
        """
        parts = []
        if backend:
            parts.append(f"backend={backend}")
        if model:
            parts.append(f"model={model}")
        if operation:
            parts.append(f"operation={operation}")

        prefix = f"Embedding error ({', '.join(parts)})" if parts else "Embedding error"
        message = f"{prefix}: {reason}" if reason else prefix

        super().__init__(message, context, cause)
        self.backend = backend
        self.model = model
        self.operation = operation
        self.reason = reason


class StorageError(MgrepError):
    """Raised when a vector store insert, delete, search or schema operation fails."""

    def __init__(
        self,
        operation: str,
        reason: str,
        store: Optional[str] = None,
        context: Optional[Dict[str, Any]] = None,
        cause: Optional[BaseException] = None
    ):
        """Initialize storage error.

        Args:
            operation: Storage operation that failed (e.g., "insert", "search")
            reason: Description of what went wrong
            store: Optional store path or identifier
            context: Optional additional context
            cause: Optional underlying exception
        """
        message = f"Storage {operation} failed: {reason}"
        if store:
            message = f"Storage {operation} failed on {store}: {reason}"
        super().__init__(message, context, cause)
        self.operation = operation
        self.store = store
        self.reason = reason


class ShardRoutingError(MgrepError):
    """Raised for an invalid or out-of-range shard id."""

    def __init__(
        self,
        shard_id: int,
        shard_count: int,
        reason: Optional[str] = None,
        context: Optional[Dict[str, Any]] = None
    ):
        reason = reason or f"shard id must be in [0, {shard_count})"
        message = f"Invalid shard {shard_id}: {reason}"
        super().__init__(message, context)
        self.shard_id = shard_id
        self.shard_count = shard_count
        self.reason = reason
