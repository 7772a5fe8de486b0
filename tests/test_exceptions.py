"""Tests for the exception hierarchy."""

import pytest

from core.exceptions import (
    ConfigurationError,
    EmbeddingError,
    InitializationError,
    MgrepError,
    ShardRoutingError,
    StorageError,
    ValidationError,
)
from core.models import ChunkMetadata, SearchOptions, SearchResult


class TestExceptionHierarchy:
    def test_all_errors_share_base(self):
        errors = [
            ValidationError("field", 1, "bad"),
            ConfigurationError("missing"),
            InitializationError("cpu", "no model"),
            EmbeddingError("cpu", "m", "embed", "oops"),
            StorageError("insert", "disk full"),
            ShardRoutingError(9, 4),
        ]
        assert all(isinstance(error, MgrepError) for error in errors)

    def test_initialization_error_message(self):
        error = InitializationError("gpu_server", "connection refused", model="qwen")
        assert "gpu_server/qwen" in str(error)
        assert error.reason == "connection refused"

    def test_storage_error_carries_cause_and_store(self):
        cause = OSError("disk full")
        error = StorageError("insert", "disk full", store="/tmp/x.duckdb", cause=cause)
        assert error.cause is cause
        assert "/tmp/x.duckdb" in str(error)

    def test_context_is_rendered(self):
        error = StorageError("search", "closed").add_context("shard_id", 3)
        assert "shard_id=3" in str(error)


class TestModelValidation:
    def test_metadata_line_range(self):
        with pytest.raises(ValidationError) as exc_info:
            ChunkMetadata(start_line=5, end_line=2, language="python")
        assert exc_info.value.field == "line_range"

    def test_similarity_bounds(self):
        metadata = ChunkMetadata(start_line=1, end_line=1, language="python")
        with pytest.raises(ValidationError):
            SearchResult(file_path="a.py", chunk_index=0, content="x", similarity=1.5, metadata=metadata)

    def test_search_options_limit(self):
        with pytest.raises(ValidationError):
            SearchOptions(limit=0)
