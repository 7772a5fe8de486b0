"""VectorStore protocol for mgrep-local - abstract interface for vector persistence."""

from typing import Any, Protocol

from core.models import (
    FileTrackingRecord,
    IndexStats,
    SearchResult,
    Vector,
    VectorInsertOptions,
)


class VectorStore(Protocol):
    """Abstract protocol for a single logical vector store.

    The store is the sole owner of the on-disk vector data it backs. All
    operations raise StorageError on I/O failure; none of them report a
    failure as an empty result.
    """

    @property
    def dimensions(self) -> int:
        """Embedding dimension, fixed for the lifetime of the store."""
        ...

    async def initialize(self) -> None:
        """Open the database and create the schema if needed."""
        ...

    async def insert(self, options: VectorInsertOptions) -> int:
        """Insert one vector and return its id."""
        ...

    async def insert_batch(self, options: list[VectorInsertOptions]) -> list[int]:
        """Insert vectors in one transaction and return their ids in input order."""
        ...

    async def search(
        self, embedding: list[float], limit: int = 10, threshold: float = 0.3
    ) -> list[SearchResult]:
        """Return up to `limit` results with similarity >= threshold, best first."""
        ...

    async def get_vectors_for_file(self, file_path: str) -> list[Vector]:
        """Return a file's vectors ordered by chunk index."""
        ...

    async def delete_vectors_for_file(self, file_path: str) -> int:
        """Delete a file's vectors and tracking record, returning the deleted count."""
        ...

    async def get_file_hash(self, file_path: str) -> str | None:
        """Return the tracked content hash, or None for untracked files."""
        ...

    async def track_file(
        self, file_path: str, file_hash: str, language: str, chunk_count: int
    ) -> None:
        """Create or update a file tracking record."""
        ...

    async def get_file_record(self, file_path: str) -> FileTrackingRecord | None:
        """Return the full tracking record for a file."""
        ...

    async def replace_file_vectors(
        self,
        file_path: str,
        options: list[VectorInsertOptions],
        file_hash: str,
        language: str,
    ) -> list[int]:
        """Atomically replace a file's vectors and tracking record."""
        ...

    async def get_stats(self) -> IndexStats:
        """Return aggregate statistics."""
        ...

    async def compute_centroid(self) -> list[float] | None:
        """Return the mean of all stored embeddings, or None when empty."""
        ...

    async def clear(self) -> None:
        """Delete every vector and tracking record."""
        ...

    async def dispose(self) -> None:
        """Close the database."""
        ...

    async def health_check(self) -> dict[str, Any]:
        """Report store status."""
        ...
