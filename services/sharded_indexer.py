"""Sharded indexer service for mgrep-local - per-shard batches, sequential or on a worker pool."""

import time
from typing import Callable, Dict, List, Optional, Sequence

from loguru import logger

from core.models import (
    FileToIndex,
    IndexBatchResult,
    IndexProgress,
    IndexStats,
    ShardedIndexResult,
)
from core.types import IndexPhase
from interfaces.embedding_provider import Embedder
from mgrep_local.chunker import Chunker
from mgrep_local.core.config.embedding_config import EmbeddingConfig
from providers.database.sharded_vector_store import ShardedVectorStore
from providers.embeddings.base_provider import BaseEmbedder

from .base_service import BaseService
from .index_worker import (
    IndexWorkerTask,
    WorkerErrorMessage,
    WorkerFile,
    WorkerMessage,
    WorkerProgressMessage,
    embedding_config_payload,
)
from .indexer import DEFAULT_BATCH_SIZE, Indexer, ProgressCallback, notify_progress
from .worker_pool import WorkerPool, assign_round_robin, default_worker_count


class ShardedIndexer(BaseService[ShardedVectorStore]):
    """Indexes files into a ShardedVectorStore.

    Files are grouped by owning shard. `index_files` works through the groups
    in-process and tolerates per-file failures; `index_files_parallel` hands
    the groups to a WorkerPool whose workers each own an embedder and the
    shard databases assigned to them.
    """

    def __init__(
        self,
        sharded_store: ShardedVectorStore,
        embedder: Embedder,
        chunker: Optional[Chunker] = None,
        batch_size: int = DEFAULT_BATCH_SIZE,
        worker_count: Optional[int] = None,
        use_processes: bool = True,
        embedding_config: Optional[EmbeddingConfig] = None,
        embedder_factory: Optional[Callable[[], BaseEmbedder]] = None,
        progress_callback: Optional[ProgressCallback] = None,
    ):
        """Initialize sharded indexer.

        Args:
            sharded_store: Store receiving the vectors
            embedder: Embedding backend used in-process
            chunker: Chunker to use (defaults to Chunker())
            batch_size: Chunks per embed_batch call
            worker_count: Parallel workers (defaults to CPU count minus one)
            use_processes: Run parallel workers as processes instead of threads
            embedding_config: Recipe workers use to build their own embedder
            embedder_factory: Picklable module-level callable used instead of embedding_config
            progress_callback: Receives IndexProgress updates
        """
        super().__init__(sharded_store, embedder)
        self._chunker = chunker or Chunker()
        self._batch_size = batch_size
        self._worker_count = worker_count or default_worker_count()
        self._use_processes = use_processes
        self._embedding_config = embedding_config
        self._embedder_factory = embedder_factory
        self._progress_callback = progress_callback
        self._file_indexer = Indexer(sharded_store, embedder, chunker=self._chunker, batch_size=batch_size)

    @property
    def worker_count(self) -> int:
        return self._worker_count

    async def index_file(self, file_path: str, content: str) -> int:
        """Index one file into its shard, returning the chunk count (0 when unchanged)."""
        return await self._file_indexer.index_file(file_path, content)

    async def delete_file(self, file_path: str) -> int:
        return await self._file_indexer.delete_file(file_path)

    def group_by_shard(self, files: Sequence[FileToIndex]) -> Dict[int, List[FileToIndex]]:
        """Group files by owning shard, keeping input order within each group."""
        groups: Dict[int, List[FileToIndex]] = {}
        for file in files:
            groups.setdefault(self._store.get_shard_id(file.file_path), []).append(file)
        return groups

    async def index_files(self, files: Sequence[FileToIndex]) -> ShardedIndexResult:
        """Index files shard by shard in-process.

        A failing file is logged and counted in its shard's error total; the
        remaining files are still indexed. Centroids are refreshed once at
        the end.
        """
        started = time.perf_counter()
        groups = self.group_by_shard(files)
        by_shard: Dict[int, IndexBatchResult] = {}

        for shards_complete, (shard_id, shard_files) in enumerate(groups.items()):
            shard_started = time.perf_counter()
            batch = IndexBatchResult(shard_id=shard_id)

            for position, file in enumerate(shard_files):
                await notify_progress(
                    self._progress_callback,
                    IndexProgress(
                        phase=IndexPhase.CHUNKING,
                        current=position + 1,
                        total=len(shard_files),
                        current_file=file.file_path,
                        shard_id=shard_id,
                        shards_complete=shards_complete,
                        total_shards=len(groups),
                    ),
                )
                try:
                    chunks = await self.index_file(file.file_path, file.content)
                except Exception as e:
                    batch.errors += 1
                    logger.warning(f"Failed to index {file.file_path} in shard {shard_id}: {e}")
                    continue
                if chunks > 0:
                    batch.files_indexed += 1
                    batch.chunks_created += chunks

            batch.duration_ms = (time.perf_counter() - shard_started) * 1000
            by_shard[shard_id] = batch

        await self._store.update_centroids()

        result = ShardedIndexResult(
            total_chunks=sum(batch.chunks_created for batch in by_shard.values()),
            files_processed=sum(batch.files_indexed for batch in by_shard.values()),
            by_shard=by_shard,
            duration_ms=(time.perf_counter() - started) * 1000,
        )
        logger.info(
            f"Indexed {result.files_processed} files into {len(by_shard)} shards: "
            f"{result.total_chunks} chunks, {result.total_errors} errors"
        )
        return result

    def _build_tasks(self, groups: Dict[int, List[FileToIndex]]) -> List[IndexWorkerTask]:
        if self._embedder_factory is None and self._embedding_config is None:
            raise ValueError("parallel indexing needs embedding_config or embedder_factory")

        embedding_payload = (
            embedding_config_payload(self._embedding_config)
            if self._embedding_config is not None and self._embedder_factory is None
            else None
        )
        chunker_settings = {
            "max_chunk_size": self._chunker.max_chunk_size,
            "overlap_size": self._chunker.overlap_size,
            "respect_boundaries": self._chunker.respect_boundaries,
        }
        shard_paths = self._store.get_shard_paths()
        worker_count = min(self._worker_count, len(groups))
        assignments = assign_round_robin(list(groups), worker_count)

        tasks = []
        for worker_id, shard_ids in sorted(assignments.items()):
            tasks.append(
                IndexWorkerTask(
                    worker_id=worker_id,
                    shard_paths={shard_id: str(shard_paths[shard_id]) for shard_id in shard_ids},
                    files=[
                        WorkerFile(shard_id=shard_id, file_path=file.file_path, content=file.content)
                        for shard_id in shard_ids
                        for file in groups[shard_id]
                    ],
                    dimensions=self._store.dimensions,
                    use_hnsw=self._store.use_hnsw,
                    chunker_settings=chunker_settings,
                    batch_size=self._batch_size,
                    embedding_config=embedding_payload,
                    embedder_factory=self._embedder_factory,
                )
            )
        return tasks

    async def index_files_parallel(self, files: Sequence[FileToIndex]) -> ShardedIndexResult:
        """Index files on a worker pool, one shard group per worker slot.

        The affected shards are detached from this store while workers own
        their database files, and centroids are refreshed afterwards.

        Raises:
            InitializationError: If a worker could not build its embedder or stores
        """
        started = time.perf_counter()
        groups = self.group_by_shard(files)
        if not groups:
            return ShardedIndexResult(total_chunks=0, files_processed=0)

        tasks = self._build_tasks(groups)
        pool = WorkerPool(worker_count=len(tasks), use_processes=self._use_processes)
        remaining = {shard_id: len(shard_files) for shard_id, shard_files in groups.items()}
        done_count = 0

        async def relay(message: WorkerMessage) -> None:
            nonlocal done_count
            if isinstance(message, WorkerProgressMessage):
                shard_id, file_path = message.shard_id, message.file_path
            elif isinstance(message, WorkerErrorMessage) and message.shard_id is not None:
                shard_id, file_path = message.shard_id, message.file_path
            else:
                return
            done_count += 1
            remaining[shard_id] -= 1
            await notify_progress(
                self._progress_callback,
                IndexProgress(
                    phase=IndexPhase.EMBEDDING,
                    current=done_count,
                    total=len(files),
                    current_file=file_path,
                    shard_id=shard_id,
                    shards_complete=sum(1 for count in remaining.values() if count == 0),
                    total_shards=len(groups),
                ),
            )

        try:
            async with self._store.detached_shards(groups):
                worker_results = await pool.run(tasks, relay)
        finally:
            await self._store.update_centroids()

        by_shard: Dict[int, IndexBatchResult] = {}
        for worker_result in worker_results:
            by_shard.update(worker_result.shard_results)

        result = ShardedIndexResult(
            total_chunks=sum(r.total_chunks for r in worker_results),
            files_processed=sum(r.total_files for r in worker_results),
            by_shard=by_shard,
            duration_ms=(time.perf_counter() - started) * 1000,
            worker_results=[r.to_dict() for r in worker_results],
        )
        logger.info(
            f"Parallel indexing with {len(tasks)} workers: {result.files_processed} files, "
            f"{result.total_chunks} chunks, {result.total_errors} errors in {result.duration_ms:.0f}ms"
        )
        return result

    async def get_stats(self) -> IndexStats:
        return await self._store.get_stats()

    async def clear(self) -> None:
        await self._store.clear()

