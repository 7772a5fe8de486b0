"""Sharded vector store for mgrep-local - N DuckDB shard files plus a centroid catalog."""

import asyncio
import hashlib
import inspect
import threading
from contextlib import asynccontextmanager
from dataclasses import replace
from datetime import datetime
from pathlib import Path
from typing import Any, AsyncIterator, Dict, Iterable, List, Optional, Union

import duckdb
import numpy as np
from loguru import logger

from core.exceptions import ShardRoutingError, StorageError
from core.models import (
    FileTrackingRecord,
    ProgressiveCallback,
    SearchResult,
    ShardDescriptor,
    ShardedIndexStats,
    Vector,
    VectorInsertOptions,
)

from .duckdb_vector_store import DEFAULT_DIMENSIONS, DuckDBVectorStore

DEFAULT_SHARD_PATH = ".mgrep-shards"
DEFAULT_SHARD_COUNT = 8
META_DB_NAME = "meta.duckdb"


def shard_for_path(file_path: str, shard_count: int) -> int:
    """Route a file path to a shard: first 8 hex digits of its md5, modulo shard_count."""
    digest = hashlib.md5(file_path.encode("utf-8")).hexdigest()
    return int(digest[:8], 16) % shard_count


class CentroidCatalog:
    """Small DuckDB database recording per-shard centroids and counts."""

    def __init__(self, db_path: Path):
        self._db_path = db_path
        self.connection: Optional[duckdb.DuckDBPyConnection] = None
        self._lock = threading.Lock()

    def _connect(self) -> None:
        with self._lock:
            if self.connection is not None:
                return
            self._db_path.parent.mkdir(parents=True, exist_ok=True)
            self.connection = duckdb.connect(str(self._db_path))
            self.connection.execute("""
                CREATE TABLE IF NOT EXISTS shard_centroids (
                    shard_id INTEGER PRIMARY KEY,
                    centroid DOUBLE[],
                    file_count INTEGER NOT NULL,
                    chunk_count INTEGER NOT NULL,
                    updated_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP
                )
            """)

    def _close(self) -> None:
        with self._lock:
            if self.connection is not None:
                self.connection.close()
                self.connection = None

    def _save(self, descriptor: ShardDescriptor) -> None:
        with self._lock:
            assert self.connection is not None
            self.connection.execute(
                """
                INSERT OR REPLACE INTO shard_centroids (shard_id, centroid, file_count, chunk_count, updated_at)
                VALUES (?, ?, ?, ?, ?)
                """,
                [
                    descriptor.shard_id,
                    descriptor.centroid,
                    descriptor.file_count,
                    descriptor.chunk_count,
                    descriptor.updated_at,
                ],
            )

    def _load(self) -> List[Dict[str, Any]]:
        with self._lock:
            assert self.connection is not None
            rows = self.connection.execute(
                "SELECT shard_id, centroid, file_count, chunk_count, updated_at FROM shard_centroids"
            ).fetchall()
        return [
            {
                "shard_id": row[0],
                "centroid": [float(value) for value in row[1]] if row[1] is not None else None,
                "file_count": row[2],
                "chunk_count": row[3],
                "updated_at": row[4],
            }
            for row in rows
        ]

    def _clear(self) -> None:
        with self._lock:
            assert self.connection is not None
            self.connection.execute("DELETE FROM shard_centroids")

    async def _call(self, operation: str, fn, *args):
        try:
            return await asyncio.to_thread(fn, *args)
        except duckdb.Error as e:
            logger.error(f"Centroid catalog {operation} failed: {e}")
            raise StorageError(operation, str(e), store=str(self._db_path), cause=e) from e

    async def initialize(self) -> None:
        await self._call("initialize", self._connect)

    async def save(self, descriptor: ShardDescriptor) -> None:
        await self._call("save_centroid", self._save, descriptor)

    async def load(self) -> List[Dict[str, Any]]:
        return await self._call("load_centroids", self._load)

    async def clear(self) -> None:
        await self._call("clear_centroids", self._clear)

    async def dispose(self) -> None:
        await asyncio.to_thread(self._close)


class ShardedVectorStore:
    """A vector store split across `shard_count` independent DuckDB files.

    Every file lives in exactly one shard, chosen from its path alone, so all
    per-file operations are served by a single shard. Searches merge the
    shards' top results.
    """

    def __init__(
        self,
        base_path: Union[Path, str] = DEFAULT_SHARD_PATH,
        shard_count: int = DEFAULT_SHARD_COUNT,
        dimensions: int = DEFAULT_DIMENSIONS,
        use_hnsw: bool = True,
        centroid_routing: bool = False,
        max_shards: Optional[int] = None,
    ):
        if shard_count < 1:
            raise ValueError("shard_count must be at least 1")
        if max_shards is not None and max_shards < 1:
            raise ValueError("max_shards must be at least 1")

        self._base_path = Path(base_path).expanduser()
        self._shard_count = shard_count
        self._dimensions = dimensions
        self._use_hnsw = use_hnsw
        self._centroid_routing = centroid_routing
        self._max_shards = max_shards

        self._shards: List[DuckDBVectorStore] = [
            DuckDBVectorStore(path, dimensions=dimensions, use_hnsw=use_hnsw)
            for path in self.get_shard_paths()
        ]
        self._detached: set = set()
        self._catalog = CentroidCatalog(self._base_path / META_DB_NAME)
        self._descriptors: Dict[int, ShardDescriptor] = {}
        self._initialized = False

    @property
    def base_path(self) -> Path:
        return self._base_path

    @property
    def shard_count(self) -> int:
        return self._shard_count

    @property
    def dimensions(self) -> int:
        return self._dimensions

    @property
    def use_hnsw(self) -> bool:
        return self._use_hnsw

    async def initialize(self) -> None:
        """Open every shard and the centroid catalog."""
        if self._initialized:
            return
        self._base_path.mkdir(parents=True, exist_ok=True)
        await asyncio.gather(*(shard.initialize() for shard in self._shards))
        await self._catalog.initialize()
        for row in await self._catalog.load():
            if row["shard_id"] < self._shard_count:
                self._descriptors[row["shard_id"]] = ShardDescriptor(
                    path=str(self.get_shard_paths()[row["shard_id"]]), **row
                )
        self._initialized = True
        logger.info(f"Sharded vector store ready: {self._shard_count} shards at {self._base_path}")

    # Routing

    def get_shard_id(self, file_path: str) -> int:
        return shard_for_path(file_path, self._shard_count)

    def get_shard_paths(self) -> List[Path]:
        return [self._base_path / f"shard-{i}.duckdb" for i in range(self._shard_count)]

    def get_shard(self, shard_id: int) -> DuckDBVectorStore:
        """Return the store backing a shard.

        Raises:
            ShardRoutingError: If the id is out of range or the shard is detached
        """
        if not 0 <= shard_id < self._shard_count:
            raise ShardRoutingError(shard_id, self._shard_count)
        if shard_id in self._detached:
            raise ShardRoutingError(shard_id, self._shard_count, "shard is detached for worker indexing")
        return self._shards[shard_id]

    def shard_for_file(self, file_path: str) -> DuckDBVectorStore:
        return self.get_shard(self.get_shard_id(file_path))

    def _attached_ids(self) -> List[int]:
        return [i for i in range(self._shard_count) if i not in self._detached]

    # Per-file operations

    async def insert(self, options: VectorInsertOptions) -> int:
        return await self.shard_for_file(options.file_path).insert(options)

    async def insert_batch(self, options: List[VectorInsertOptions]) -> List[int]:
        """Insert vectors shard by shard and return ids in input order."""
        grouped: Dict[int, List[int]] = {}
        for position, option in enumerate(options):
            grouped.setdefault(self.get_shard_id(option.file_path), []).append(position)

        ids: List[int] = [0] * len(options)
        for shard_id, positions in grouped.items():
            shard_ids = await self.get_shard(shard_id).insert_batch([options[p] for p in positions])
            for position, vector_id in zip(positions, shard_ids):
                ids[position] = vector_id
        return ids

    async def get_vectors_for_file(self, file_path: str) -> List[Vector]:
        shard_id = self.get_shard_id(file_path)
        vectors = await self.get_shard(shard_id).get_vectors_for_file(file_path)
        return [replace(vector, shard_id=shard_id) for vector in vectors]

    async def delete_vectors_for_file(self, file_path: str) -> int:
        return await self.shard_for_file(file_path).delete_vectors_for_file(file_path)

    async def get_file_hash(self, file_path: str) -> Optional[str]:
        return await self.shard_for_file(file_path).get_file_hash(file_path)

    async def get_file_record(self, file_path: str) -> Optional[FileTrackingRecord]:
        return await self.shard_for_file(file_path).get_file_record(file_path)

    async def track_file(self, file_path: str, file_hash: str, language: str, chunk_count: int) -> None:
        await self.shard_for_file(file_path).track_file(file_path, file_hash, language, chunk_count)

    async def replace_file_vectors(
        self,
        file_path: str,
        options: List[VectorInsertOptions],
        file_hash: str,
        language: str,
    ) -> List[int]:
        return await self.shard_for_file(file_path).replace_file_vectors(
            file_path, options, file_hash, language
        )

    # Search

    def rank_shards(self, embedding: List[float]) -> List[int]:
        """Order shard ids for a query.

        Without centroid routing every shard is returned in id order. Detached
        shards are included, so a search over them raises ShardRoutingError
        instead of returning partial results. With centroid routing, shards
        with a centroid are ordered by the cosine similarity of that centroid
        to the query, shards without one follow, and the list is cut to
        `max_shards` when set.
        """
        shard_ids = list(range(self._shard_count))
        if not self._centroid_routing:
            return shard_ids

        query = np.asarray(embedding, dtype=np.float64)
        query_norm = np.linalg.norm(query)
        scored = []
        unscored = []
        for shard_id in shard_ids:
            descriptor = self._descriptors.get(shard_id)
            if descriptor is None or descriptor.centroid is None or query_norm == 0:
                unscored.append(shard_id)
                continue
            centroid = np.asarray(descriptor.centroid, dtype=np.float64)
            norm = np.linalg.norm(centroid)
            score = float(np.dot(query, centroid) / (query_norm * norm)) if norm else 0.0
            scored.append((score, shard_id))

        scored.sort(key=lambda item: item[0], reverse=True)
        ranked = [shard_id for _, shard_id in scored] + unscored
        if self._max_shards is not None:
            ranked = ranked[: self._max_shards]
        return ranked

    @staticmethod
    def _merge(
        merged: List[SearchResult], results: Iterable[SearchResult], limit: int
    ) -> List[SearchResult]:
        combined = merged + list(results)
        combined.sort(key=lambda result: result.similarity, reverse=True)
        return combined[:limit]

    async def search_progressive(
        self,
        embedding: List[float],
        limit: int = 10,
        threshold: float = 0.0,
        on_progress: Optional[ProgressiveCallback] = None,
    ) -> List[SearchResult]:
        """Query shards one at a time, reporting the merged top results after each."""
        shard_ids = self.rank_shards(embedding)
        merged: List[SearchResult] = []

        for position, shard_id in enumerate(shard_ids):
            results = await self.get_shard(shard_id).search(embedding, limit, threshold)
            merged = self._merge(merged, (replace(r, shard_id=shard_id) for r in results), limit)

            if on_progress is not None:
                outcome = on_progress(list(merged), shard_id, position == len(shard_ids) - 1)
                if inspect.isawaitable(outcome):
                    await outcome

        return merged

    async def search(
        self, embedding: List[float], limit: int = 10, threshold: float = 0.0
    ) -> List[SearchResult]:
        return await self.search_progressive(embedding, limit, threshold)

    async def search_parallel(
        self, embedding: List[float], limit: int = 10, threshold: float = 0.0
    ) -> List[SearchResult]:
        """Query every ranked shard concurrently and merge the results."""
        shard_ids = self.rank_shards(embedding)
        shards = [self.get_shard(shard_id) for shard_id in shard_ids]
        per_shard = await asyncio.gather(*(shard.search(embedding, limit, threshold) for shard in shards))
        tagged = [
            replace(result, shard_id=shard_id)
            for shard_id, results in zip(shard_ids, per_shard)
            for result in results
        ]
        return self._merge([], tagged, limit)

    # Maintenance

    async def update_centroids(self, shard_ids: Optional[Iterable[int]] = None) -> List[ShardDescriptor]:
        """Recompute and persist centroids and counts for the given (default: all) shards."""
        targets = list(shard_ids) if shard_ids is not None else list(range(self._shard_count))
        paths = self.get_shard_paths()
        updated = []
        for shard_id in targets:
            shard = self.get_shard(shard_id)
            stats = await shard.get_stats()
            centroid = await shard.compute_centroid()
            descriptor = ShardDescriptor(
                shard_id=shard_id,
                path=str(paths[shard_id]),
                centroid=centroid,
                file_count=stats.total_files,
                chunk_count=stats.total_chunks,
                updated_at=datetime.now(),
            )
            await self._catalog.save(descriptor)
            self._descriptors[shard_id] = descriptor
            updated.append(descriptor)
        logger.debug(f"Updated centroids for {len(updated)} shards")
        return updated

    def get_shard_descriptors(self) -> List[ShardDescriptor]:
        """Return the latest descriptor of every shard, empty ones for shards never summarized."""
        paths = self.get_shard_paths()
        return [
            self._descriptors.get(i) or ShardDescriptor(shard_id=i, path=str(paths[i]))
            for i in range(self._shard_count)
        ]

    async def get_stats(self) -> ShardedIndexStats:
        """Aggregate statistics over every shard.

        Raises:
            ShardRoutingError: If a shard is detached
        """
        paths = self.get_shard_paths()
        shard_ids = list(range(self._shard_count))
        shards = [self.get_shard(i) for i in shard_ids]
        per_shard = await asyncio.gather(*(shard.get_stats() for shard in shards))

        descriptors = []
        for shard_id, stats in zip(shard_ids, per_shard):
            known = self._descriptors.get(shard_id)
            descriptors.append(
                ShardDescriptor(
                    shard_id=shard_id,
                    path=str(paths[shard_id]),
                    centroid=known.centroid if known else None,
                    file_count=stats.total_files,
                    chunk_count=stats.total_chunks,
                    updated_at=known.updated_at if known else None,
                )
            )

        timestamps = [stats.last_indexed_at for stats in per_shard if stats.last_indexed_at]
        return ShardedIndexStats(
            total_files=sum(stats.total_files for stats in per_shard),
            total_chunks=sum(stats.total_chunks for stats in per_shard),
            total_embeddings=sum(stats.total_embeddings for stats in per_shard),
            database_size=sum(stats.database_size for stats in per_shard),
            last_indexed_at=max(timestamps) if timestamps else None,
            shard_count=self._shard_count,
            shards=descriptors,
        )

    async def clear(self) -> None:
        shards = [self.get_shard(i) for i in range(self._shard_count)]
        await asyncio.gather(*(shard.clear() for shard in shards))
        await self._catalog.clear()
        self._descriptors.clear()
        logger.info(f"Cleared all {self._shard_count} shards")

    async def dispose(self) -> None:
        await asyncio.gather(*(shard.dispose() for shard in self._shards))
        await self._catalog.dispose()
        self._detached.clear()
        self._initialized = False

    @asynccontextmanager
    async def detached_shards(self, shard_ids: Iterable[int]) -> AsyncIterator[List[Path]]:
        """Close the given shards so another process can open their files.

        Yields the shard file paths; the shards are reopened on exit.
        """
        ids = sorted(set(shard_ids))
        for shard_id in ids:
            self.get_shard(shard_id)

        await asyncio.gather(*(self._shards[i].dispose() for i in ids))
        self._detached.update(ids)
        logger.debug(f"Detached shards {ids}")
        try:
            yield [self.get_shard_paths()[i] for i in ids]
        finally:
            self._detached.difference_update(ids)
            await asyncio.gather(*(self._shards[i].initialize() for i in ids))
            logger.debug(f"Reattached shards {ids}")

    async def health_check(self) -> Dict[str, Any]:
        shard_status = await asyncio.gather(*(self._shards[i].health_check() for i in self._attached_ids()))
        errors = [error for status in shard_status for error in status["errors"]]
        return {
            "provider": "duckdb-sharded",
            "base_path": str(self._base_path),
            "shard_count": self._shard_count,
            "detached": sorted(self._detached),
            "connected": all(status["connected"] for status in shard_status),
            "errors": errors,
        }
