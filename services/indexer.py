"""Indexer service for mgrep-local - chunk, embed and store files incrementally."""

import asyncio
import hashlib
import inspect
from fnmatch import fnmatch
from pathlib import Path
from typing import Awaitable, Callable, Iterable, List, Optional, Sequence, Union

from loguru import logger

from core.models import (
    FileChangeEvent,
    FileToIndex,
    IndexFilesResult,
    IndexProgress,
    IndexStats,
    VectorInsertOptions,
)
from core.types import ContentHash, FilePath, IndexPhase
from interfaces.embedding_provider import Embedder
from interfaces.vector_store import VectorStore
from mgrep_local.chunker import Chunker

from .base_service import BaseService

DEFAULT_BATCH_SIZE = 32

DEFAULT_IGNORE_PATTERNS = [
    "**/node_modules/**",
    "**/.git/**",
    "**/__pycache__/**",
    "**/.venv/**",
    "**/venv/**",
    "**/dist/**",
    "**/build/**",
    "**/.mgrep-shards/**",
    "**/*.duckdb",
    "**/*.duckdb.wal",
]

ProgressCallback = Callable[[IndexProgress], Union[None, Awaitable[None]]]


def hash_content(content: str) -> ContentHash:
    """Content hash used for change detection: first 16 hex chars of sha256."""
    return ContentHash(hashlib.sha256(content.encode("utf-8")).hexdigest()[:16])


def matches_patterns(relative_path: str, patterns: Iterable[str]) -> bool:
    """fnmatch a relative posix path, letting a leading '**/' also match top-level files."""
    for pattern in patterns:
        if fnmatch(relative_path, pattern):
            return True
        if pattern.startswith("**/") and fnmatch(relative_path, pattern[3:]):
            return True
    return False


async def notify_progress(callback: Optional[ProgressCallback], progress: IndexProgress) -> None:
    if callback is None:
        return
    outcome = callback(progress)
    if inspect.isawaitable(outcome):
        await outcome


class Indexer(BaseService[VectorStore]):
    """Turns file contents into stored vectors.

    Files whose content hash matches the tracked hash are skipped. Changed
    files are re-chunked and re-embedded, then swapped in atomically through
    the store's replace_file_vectors, so a failure during embedding leaves
    the previous vectors searchable.
    """

    def __init__(
        self,
        vector_store: VectorStore,
        embedder: Embedder,
        chunker: Optional[Chunker] = None,
        batch_size: int = DEFAULT_BATCH_SIZE,
        progress_callback: Optional[ProgressCallback] = None,
    ):
        """Initialize indexer.

        Args:
            vector_store: Store receiving the vectors
            embedder: Embedding backend
            chunker: Chunker to use (defaults to Chunker())
            batch_size: Chunks per embed_batch call
            progress_callback: Receives IndexProgress updates
        """
        super().__init__(vector_store, embedder)
        if batch_size < 1:
            raise ValueError("batch_size must be positive")
        self._chunker = chunker or Chunker()
        self._batch_size = batch_size
        self._progress_callback = progress_callback

    @property
    def chunker(self) -> Chunker:
        return self._chunker

    @property
    def batch_size(self) -> int:
        return self._batch_size

    async def index_file(self, file_path: str, content: str) -> int:
        """Index one file, returning the number of chunks stored (0 when unchanged).

        Raises:
            EmbeddingError: If embedding fails; stored vectors are left untouched
            StorageError: If the store fails
        """
        try:
            file_hash = hash_content(content)
            if await self._store.get_file_hash(file_path) == file_hash:
                logger.debug(f"Skipping unchanged file: {file_path}")
                return 0

            chunks = self._chunker.chunk(content, file_path)
            if not chunks:
                await self._store.delete_vectors_for_file(file_path)
                logger.debug(f"No chunks produced for {file_path}, removed stale vectors")
                return 0

            embeddings: List[List[float]] = []
            for start in range(0, len(chunks), self._batch_size):
                batch = chunks[start:start + self._batch_size]
                embeddings.extend(await self._embedder.embed_batch([chunk.content for chunk in batch]))
                await notify_progress(
                    self._progress_callback,
                    IndexProgress(
                        phase=IndexPhase.EMBEDDING,
                        current=len(embeddings),
                        total=len(chunks),
                        current_file=file_path,
                    ),
                )

            options = [
                VectorInsertOptions(
                    file_path=FilePath(file_path),
                    chunk_index=index,
                    content=chunk.content,
                    embedding=embedding,
                    metadata=chunk.metadata,
                )
                for index, (chunk, embedding) in enumerate(zip(chunks, embeddings))
            ]
            await self._store.replace_file_vectors(file_path, options, file_hash, chunks[0].language)

            logger.debug(f"Indexed {file_path}: {len(chunks)} chunks")
            return len(chunks)

        except Exception as e:
            logger.error(f"Indexing {file_path} failed: {e}")
            raise

    async def update_file(self, file_path: str, content: str) -> int:
        """Re-index a file; identical to index_file."""
        return await self.index_file(file_path, content)

    async def delete_file(self, file_path: str) -> int:
        """Remove a file's vectors and tracking record, returning the deleted count."""
        deleted = await self._store.delete_vectors_for_file(file_path)
        logger.debug(f"Deleted {deleted} vectors for {file_path}")
        return deleted

    async def index_files(self, files: Sequence[FileToIndex]) -> IndexFilesResult:
        """Index files sequentially. The first failure propagates."""
        total_chunks = 0
        for position, file in enumerate(files):
            await notify_progress(
                self._progress_callback,
                IndexProgress(
                    phase=IndexPhase.CHUNKING,
                    current=position + 1,
                    total=len(files),
                    current_file=file.file_path,
                ),
            )
            total_chunks += await self.index_file(file.file_path, file.content)

        logger.info(f"Indexed {len(files)} files, {total_chunks} chunks")
        return IndexFilesResult(total_chunks=total_chunks, files_processed=len(files))

    async def index_directory(
        self,
        directory: Union[str, Path],
        include_patterns: Optional[List[str]] = None,
        exclude_patterns: Optional[List[str]] = None,
    ) -> IndexFilesResult:
        """Discover files under a directory and index them.

        Without include patterns every file with a known extension is taken.
        Files that are not valid UTF-8 are skipped with a warning.
        """
        files = await asyncio.to_thread(
            self._collect_files,
            Path(directory),
            include_patterns,
            DEFAULT_IGNORE_PATTERNS if exclude_patterns is None else exclude_patterns,
        )
        logger.info(f"Discovered {len(files)} files under {directory}")
        return await self.index_files(files)

    def _collect_files(
        self, directory: Path, include_patterns: Optional[List[str]], exclude_patterns: List[str]
    ) -> List[FileToIndex]:
        if not directory.is_dir():
            raise ValueError(f"Not a directory: {directory}")

        extensions = set(self._chunker.supported_extensions())
        files = []
        for path in sorted(directory.rglob("*")):
            if not path.is_file():
                continue
            relative = path.relative_to(directory).as_posix()
            if matches_patterns(relative, exclude_patterns):
                continue
            if include_patterns is not None:
                if not matches_patterns(relative, include_patterns):
                    continue
            elif path.suffix.lower() not in extensions:
                continue

            try:
                content = path.read_text(encoding="utf-8")
            except UnicodeDecodeError:
                logger.warning(f"Skipping non-UTF-8 file: {path}")
                continue
            files.append(FileToIndex(file_path=FilePath(str(path)), content=content))
        return files

    async def handle_file_change(self, event: FileChangeEvent) -> int:
        """Apply a watcher event: re-index added or modified files, delete removed ones."""
        if event.is_deletion:
            return await self.delete_file(event.file_path)

        content = event.content
        if content is None:
            content = await asyncio.to_thread(Path(event.file_path).read_text, encoding="utf-8")
        return await self.index_file(event.file_path, content)

    async def get_stats(self) -> IndexStats:
        return await self._store.get_stats()

    async def clear(self) -> None:
        await self._store.clear()
