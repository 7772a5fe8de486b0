"""DuckDB vector store implementation for mgrep-local - one logical store in one database file."""

import asyncio
import math
import threading
from datetime import datetime
from pathlib import Path
from typing import Any, Callable, Dict, List, Optional, TypeVar, Union

import duckdb
import numpy as np
from loguru import logger

from core.exceptions import StorageError
from core.models import (
    ChunkMetadata,
    FileTrackingRecord,
    IndexStats,
    SearchResult,
    Vector,
    VectorInsertOptions,
)
from core.types import ContentHash, FilePath, VectorId

T = TypeVar("T")

DEFAULT_DB_PATH = Path.home() / ".cache" / "mgrep-local" / "index.duckdb"
DEFAULT_DIMENSIONS = 384

_VECTOR_COLUMNS = (
    "id, file_path, chunk_index, content, start_line, end_line, "
    "language, function_name, class_scope, is_docstring"
)


class DuckDBVectorStore:
    """DuckDB implementation of the VectorStore protocol.

    Vectors live in a ``vectors`` table with a fixed-size ``FLOAT[D]`` column;
    per-file content hashes live in ``indexed_files``. When the vss extension
    can be loaded an HNSW cosine index accelerates search, otherwise search is
    a brute-force scan with ``array_cosine_similarity``.

    DuckDB calls run in worker threads and are serialized by a per-store lock.
    """

    def __init__(
        self,
        db_path: Union[Path, str] = DEFAULT_DB_PATH,
        dimensions: int = DEFAULT_DIMENSIONS,
        use_hnsw: bool = True,
    ):
        """Initialize DuckDB vector store.

        Args:
            db_path: Path to DuckDB database file or ":memory:"
            dimensions: Embedding dimension, fixed for the lifetime of the store
            use_hnsw: Try to create an HNSW index through the vss extension
        """
        if dimensions < 1:
            raise ValueError("dimensions must be positive")

        self._db_path = db_path if str(db_path) == ":memory:" else Path(db_path).expanduser()
        self._dimensions = dimensions
        self._use_hnsw = use_hnsw
        self._hnsw_enabled = False
        self.connection: Optional[duckdb.DuckDBPyConnection] = None
        self._lock = threading.Lock()

    @property
    def db_path(self) -> Union[Path, str]:
        """Database connection path or identifier."""
        return self._db_path

    @property
    def dimensions(self) -> int:
        return self._dimensions

    @property
    def is_connected(self) -> bool:
        return self.connection is not None

    @property
    def hnsw_enabled(self) -> bool:
        return self._hnsw_enabled

    # Connection management

    async def initialize(self) -> None:
        """Open the database and create the schema if needed."""
        await asyncio.to_thread(self._with_lock, self._connect)

    def _connect(self) -> None:
        if self.connection is not None:
            return

        logger.debug(f"Connecting to DuckDB vector store: {self._db_path}")
        if isinstance(self._db_path, Path):
            self._db_path.parent.mkdir(parents=True, exist_ok=True)

        try:
            self.connection = duckdb.connect(str(self._db_path))
        except duckdb.Error as e:
            raise StorageError("initialize", str(e), store=str(self._db_path), cause=e) from e

        try:
            if self._use_hnsw:
                self._load_vss_extension()
            self._create_schema()
            self._check_dimensions()
            if self._hnsw_enabled:
                self._create_vector_index()
        except BaseException:
            self.connection.close()
            self.connection = None
            raise

    def _load_vss_extension(self) -> None:
        assert self.connection is not None
        try:
            self.connection.execute("INSTALL vss")
            self.connection.execute("LOAD vss")
            self.connection.execute("SET hnsw_enable_experimental_persistence = true")
            self._hnsw_enabled = True
            logger.debug("VSS extension loaded, HNSW indexing enabled")
        except duckdb.Error as e:
            self._hnsw_enabled = False
            logger.warning(f"VSS extension unavailable, using brute-force vector search: {e}")

    def _create_schema(self) -> None:
        assert self.connection is not None
        try:
            self.connection.execute("""
                CREATE TABLE IF NOT EXISTS store_meta (
                    key TEXT PRIMARY KEY,
                    value TEXT NOT NULL
                )
            """)

            self.connection.execute("CREATE SEQUENCE IF NOT EXISTS vectors_id_seq")
            self.connection.execute(f"""
                CREATE TABLE IF NOT EXISTS vectors (
                    id INTEGER PRIMARY KEY DEFAULT nextval('vectors_id_seq'),
                    file_path TEXT NOT NULL,
                    chunk_index INTEGER NOT NULL,
                    content TEXT NOT NULL,
                    embedding FLOAT[{self._dimensions}] NOT NULL,
                    start_line INTEGER NOT NULL,
                    end_line INTEGER NOT NULL,
                    language TEXT,
                    function_name TEXT,
                    class_scope TEXT,
                    is_docstring BOOLEAN DEFAULT FALSE,
                    created_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP
                )
            """)
            self.connection.execute(
                "CREATE INDEX IF NOT EXISTS idx_vectors_file_path ON vectors(file_path)"
            )

            self.connection.execute("""
                CREATE TABLE IF NOT EXISTS indexed_files (
                    file_path TEXT PRIMARY KEY,
                    file_hash TEXT NOT NULL,
                    language TEXT,
                    chunks_count INTEGER NOT NULL,
                    indexed_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP
                )
            """)
        except duckdb.Error as e:
            raise StorageError("create_schema", str(e), store=str(self._db_path), cause=e) from e

    def _check_dimensions(self) -> None:
        assert self.connection is not None
        row = self.connection.execute(
            "SELECT value FROM store_meta WHERE key = 'dimensions'"
        ).fetchone()
        if row is None:
            self.connection.execute(
                "INSERT INTO store_meta (key, value) VALUES ('dimensions', ?)",
                [str(self._dimensions)],
            )
        elif int(row[0]) != self._dimensions:
            raise StorageError(
                "initialize",
                f"store was created with {row[0]} dimensions, embedder produces {self._dimensions}",
                store=str(self._db_path),
            )

    def _create_vector_index(self) -> None:
        assert self.connection is not None
        try:
            self.connection.execute("""
                CREATE INDEX IF NOT EXISTS hnsw_vectors_embedding ON vectors
                USING HNSW (embedding)
                WITH (metric = 'cosine')
            """)
        except duckdb.Error as e:
            self._hnsw_enabled = False
            logger.warning(f"Failed to create HNSW index, using brute-force vector search: {e}")

    async def dispose(self) -> None:
        """Close the database connection."""
        await asyncio.to_thread(self._with_lock, self._disconnect)

    def _disconnect(self) -> None:
        if self.connection is not None:
            self.connection.close()
            self.connection = None
            logger.debug(f"DuckDB vector store closed: {self._db_path}")

    # Execution helpers

    def _with_lock(self, fn: Callable[..., T], *args: Any) -> T:
        with self._lock:
            return fn(*args)

    async def _run(self, operation: str, fn: Callable[..., T], *args: Any) -> T:
        """Run a DuckDB operation in a worker thread, mapping failures to StorageError."""
        return await asyncio.to_thread(self._with_lock, self._guarded, operation, fn, *args)

    def _guarded(self, operation: str, fn: Callable[..., T], *args: Any) -> T:
        if self.connection is None:
            raise StorageError(operation, "store is not initialized", store=str(self._db_path))
        try:
            return fn(*args)
        except duckdb.Error as e:
            logger.error(f"DuckDB {operation} failed on {self._db_path}: {e}")
            raise StorageError(operation, str(e), store=str(self._db_path), cause=e) from e

    def _transaction(self, fn: Callable[..., T], *args: Any) -> T:
        assert self.connection is not None
        self.connection.execute("BEGIN TRANSACTION")
        try:
            result = fn(*args)
        except BaseException:
            self.connection.execute("ROLLBACK")
            raise
        self.connection.execute("COMMIT")
        return result

    def execute_query(self, query: str, params: Optional[List[Any]] = None) -> List[Dict[str, Any]]:
        """Execute a SQL query and return rows as dictionaries. Caller holds the lock."""
        assert self.connection is not None
        cursor = self.connection.execute(query, params or [])
        results = cursor.fetchall()
        if not results:
            return []
        column_names = [desc[0] for desc in cursor.description]
        return [dict(zip(column_names, row)) for row in results]

    # Writes

    def _validate_embedding(self, embedding: List[float]) -> None:
        if len(embedding) != self._dimensions:
            raise StorageError(
                "insert",
                f"embedding has {len(embedding)} dimensions, store expects {self._dimensions}",
                store=str(self._db_path),
            )

    def _insert_rows(self, options: List[VectorInsertOptions]) -> List[VectorId]:
        assert self.connection is not None
        ids: List[VectorId] = []
        query = f"""
            INSERT INTO vectors (
                file_path, chunk_index, content, embedding, start_line, end_line,
                language, function_name, class_scope, is_docstring
            ) VALUES (?, ?, ?, ?::FLOAT[{self._dimensions}], ?, ?, ?, ?, ?, ?)
            RETURNING id
        """
        for option in options:
            self._validate_embedding(option.embedding)
            metadata = option.metadata
            row = self.connection.execute(query, [
                option.file_path,
                option.chunk_index,
                option.content,
                list(option.embedding),
                metadata.start_line,
                metadata.end_line,
                metadata.language,
                metadata.function_name,
                metadata.class_scope,
                metadata.is_docstring,
            ]).fetchone()
            ids.append(VectorId(row[0]))
        return ids

    async def insert(self, options: VectorInsertOptions) -> int:
        ids = await self.insert_batch([options])
        return ids[0]

    async def insert_batch(self, options: List[VectorInsertOptions]) -> List[int]:
        """Insert vectors in one transaction and return their ids in input order."""
        if not options:
            return []
        return await self._run("insert", self._transaction, self._insert_rows, list(options))

    def _delete_file_rows(self, file_path: str, keep_tracking: bool) -> int:
        assert self.connection is not None
        count = self.connection.execute(
            "SELECT COUNT(*) FROM vectors WHERE file_path = ?", [file_path]
        ).fetchone()[0]
        self.connection.execute("DELETE FROM vectors WHERE file_path = ?", [file_path])
        if not keep_tracking:
            self.connection.execute("DELETE FROM indexed_files WHERE file_path = ?", [file_path])
        return int(count)

    async def delete_vectors_for_file(self, file_path: str) -> int:
        """Delete a file's vectors and its tracking record, returning the vector count."""
        count = await self._run("delete", self._transaction, self._delete_file_rows, file_path, False)
        if count:
            logger.debug(f"Deleted {count} vectors for {file_path}")
        return count

    def _track_row(self, file_path: str, file_hash: str, language: str, chunk_count: int) -> None:
        assert self.connection is not None
        self.connection.execute(
            """
            INSERT OR REPLACE INTO indexed_files (file_path, file_hash, language, chunks_count, indexed_at)
            VALUES (?, ?, ?, ?, CURRENT_TIMESTAMP)
            """,
            [file_path, file_hash, language, chunk_count],
        )

    async def track_file(self, file_path: str, file_hash: str, language: str, chunk_count: int) -> None:
        await self._run("track", self._track_row, file_path, file_hash, language, chunk_count)

    def _replace_rows(
        self,
        file_path: str,
        options: List[VectorInsertOptions],
        file_hash: str,
        language: str,
    ) -> List[VectorId]:
        self._delete_file_rows(file_path, True)
        ids = self._insert_rows(options)
        self._track_row(file_path, file_hash, language, len(options))
        return ids

    async def replace_file_vectors(
        self,
        file_path: str,
        options: List[VectorInsertOptions],
        file_hash: str,
        language: str,
    ) -> List[int]:
        """Replace a file's vectors and tracking record in one transaction."""
        for option in options:
            if option.file_path != file_path:
                raise StorageError(
                    "replace", f"vector for {option.file_path} passed while replacing {file_path}"
                )
        return await self._run(
            "replace", self._transaction, self._replace_rows, file_path, list(options), file_hash, language
        )

    def _clear_rows(self) -> None:
        assert self.connection is not None
        self.connection.execute("DELETE FROM vectors")
        self.connection.execute("DELETE FROM indexed_files")

    async def clear(self) -> None:
        await self._run("clear", self._transaction, self._clear_rows)
        logger.info(f"Cleared vector store {self._db_path}")

    # Reads

    def _search_rows(self, embedding: List[float], limit: int, threshold: float) -> List[SearchResult]:
        cast = f"?::FLOAT[{self._dimensions}]"
        rows = self.execute_query(
            f"""
            SELECT {_VECTOR_COLUMNS},
                   array_cosine_similarity(embedding, {cast}) AS similarity
            FROM vectors
            ORDER BY array_cosine_distance(embedding, {cast})
            LIMIT ?
            """,
            [list(embedding), list(embedding), limit],
        )

        results = []
        for row in rows:
            similarity = row["similarity"]
            if similarity is None or math.isnan(similarity) or similarity < threshold:
                continue
            results.append(
                SearchResult(
                    file_path=FilePath(row["file_path"]),
                    chunk_index=row["chunk_index"],
                    content=row["content"],
                    similarity=min(1.0, max(0.0, float(similarity))),
                    metadata=ChunkMetadata.from_dict(row),
                )
            )
        results.sort(key=lambda result: result.similarity, reverse=True)
        return results

    async def search(
        self, embedding: List[float], limit: int = 10, threshold: float = 0.3
    ) -> List[SearchResult]:
        """Return up to `limit` results with similarity >= threshold, best first."""
        if limit < 1:
            return []
        if len(embedding) != self._dimensions:
            raise StorageError(
                "search",
                f"query has {len(embedding)} dimensions, store expects {self._dimensions}",
                store=str(self._db_path),
            )
        return await self._run("search", self._search_rows, embedding, limit, threshold)

    def _file_vectors(self, file_path: str) -> List[Vector]:
        rows = self.execute_query(
            f"SELECT {_VECTOR_COLUMNS}, embedding FROM vectors WHERE file_path = ? ORDER BY chunk_index",
            [file_path],
        )
        return [
            Vector(
                id=VectorId(row["id"]),
                file_path=FilePath(row["file_path"]),
                chunk_index=row["chunk_index"],
                content=row["content"],
                embedding=[float(value) for value in row["embedding"]],
                metadata=ChunkMetadata.from_dict(row),
            )
            for row in rows
        ]

    async def get_vectors_for_file(self, file_path: str) -> List[Vector]:
        return await self._run("get_vectors", self._file_vectors, file_path)

    def _file_record(self, file_path: str) -> Optional[FileTrackingRecord]:
        rows = self.execute_query(
            "SELECT file_path, file_hash, language, chunks_count, indexed_at FROM indexed_files WHERE file_path = ?",
            [file_path],
        )
        if not rows:
            return None
        row = rows[0]
        return FileTrackingRecord(
            file_path=FilePath(row["file_path"]),
            content_hash=ContentHash(row["file_hash"]),
            language=row["language"] or "unknown",
            chunk_count=row["chunks_count"],
            last_indexed_at=row["indexed_at"],
        )

    async def get_file_record(self, file_path: str) -> Optional[FileTrackingRecord]:
        return await self._run("get_file_record", self._file_record, file_path)

    async def get_file_hash(self, file_path: str) -> Optional[str]:
        record = await self.get_file_record(file_path)
        return record.content_hash if record else None

    def _list_files(self) -> List[str]:
        assert self.connection is not None
        rows = self.connection.execute("SELECT file_path FROM indexed_files ORDER BY file_path").fetchall()
        return [row[0] for row in rows]

    async def list_files(self) -> List[str]:
        """Return every tracked file path."""
        return await self._run("list_files", self._list_files)

    def _stats(self) -> IndexStats:
        assert self.connection is not None
        total_chunks = self.connection.execute("SELECT COUNT(*) FROM vectors").fetchone()[0]
        total_files, last_indexed_at = self.connection.execute(
            "SELECT COUNT(*), MAX(indexed_at) FROM indexed_files"
        ).fetchone()
        return IndexStats(
            total_files=int(total_files),
            total_chunks=int(total_chunks),
            total_embeddings=int(total_chunks),
            database_size=self._database_size(),
            last_indexed_at=last_indexed_at if isinstance(last_indexed_at, datetime) else None,
        )

    def _database_size(self) -> int:
        if not isinstance(self._db_path, Path):
            return 0
        size = 0
        for path in (self._db_path, self._db_path.with_name(self._db_path.name + ".wal")):
            if path.exists():
                size += path.stat().st_size
        return size

    async def get_stats(self) -> IndexStats:
        return await self._run("get_stats", self._stats)

    def _centroid(self) -> Optional[List[float]]:
        assert self.connection is not None
        cursor = self.connection.execute("SELECT embedding FROM vectors")
        total: Optional[np.ndarray] = None
        count = 0
        while True:
            rows = cursor.fetchmany(1024)
            if not rows:
                break
            block = np.asarray([row[0] for row in rows], dtype=np.float64)
            total = block.sum(axis=0) if total is None else total + block.sum(axis=0)
            count += len(rows)
        if total is None or count == 0:
            return None
        return (total / count).tolist()

    async def compute_centroid(self) -> Optional[List[float]]:
        """Return the mean of all stored embeddings, or None for an empty store."""
        return await self._run("compute_centroid", self._centroid)

    def _health(self) -> Dict[str, Any]:
        assert self.connection is not None
        version = self.connection.execute("SELECT version()").fetchone()[0]
        tables = [
            row[0]
            for row in self.connection.execute("""
                SELECT table_name FROM information_schema.tables
                WHERE table_schema = 'main' AND table_type = 'BASE TABLE'
            """).fetchall()
        ]
        return {"version": version, "tables": tables}

    async def health_check(self) -> Dict[str, Any]:
        """Perform health check and return status information."""
        status: Dict[str, Any] = {
            "provider": "duckdb",
            "connected": self.is_connected,
            "db_path": str(self._db_path),
            "dimensions": self._dimensions,
            "hnsw_enabled": self._hnsw_enabled,
            "errors": [],
        }
        if not self.is_connected:
            status["errors"].append("Not connected to database")
            return status
        try:
            status.update(await self._run("health_check", self._health))
        except StorageError as e:
            status["errors"].append(str(e))
        return status
