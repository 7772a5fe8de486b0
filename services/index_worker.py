"""Index worker for mgrep-local - indexes a group of shards in its own process or thread.

A worker owns its embedder and one DuckDBVectorStore per assigned shard. It
only talks to the orchestrator through typed messages on a queue and its
return value; exceptions never cross the process boundary.
"""

import asyncio
import time
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List, Optional, Union

from loguru import logger

from core.models import IndexBatchResult
from mgrep_local.chunker import Chunker
from mgrep_local.core.config.embedding_config import EmbeddingConfig
from mgrep_local.core.config.embedding_factory import EmbedderFactory
from providers.database.duckdb_vector_store import DuckDBVectorStore
from providers.embeddings.base_provider import BaseEmbedder

from .indexer import Indexer

EmbedderFactoryFn = Callable[[], BaseEmbedder]


@dataclass(frozen=True)
class WorkerFile:
    shard_id: int
    file_path: str
    content: str


@dataclass(frozen=True)
class IndexWorkerTask:
    """Everything a worker needs, in picklable form.

    Attributes:
        worker_id: Worker index within the pool
        shard_paths: Database file per assigned shard
        files: Files to index, each tagged with its shard
        dimensions: Store embedding dimension
        use_hnsw: Whether shard stores use the HNSW index
        chunker_settings: Keyword arguments for Chunker
        batch_size: Chunks per embed_batch call
        embedding_config: EmbeddingConfig fields, used when no factory is given
        embedder_factory: Module-level callable returning an embedder
    """

    worker_id: int
    shard_paths: Dict[int, str]
    files: List[WorkerFile]
    dimensions: int
    use_hnsw: bool = True
    chunker_settings: Dict[str, Any] = field(default_factory=dict)
    batch_size: int = 32
    embedding_config: Optional[Dict[str, Any]] = None
    embedder_factory: Optional[EmbedderFactoryFn] = None


@dataclass(frozen=True)
class WorkerProgressMessage:
    worker_id: int
    shard_id: int
    file_path: str
    chunks: int


@dataclass(frozen=True)
class WorkerErrorMessage:
    """A per-file failure, or a fatal startup failure when `fatal` is set."""

    worker_id: int
    error: str
    file_path: Optional[str] = None
    shard_id: Optional[int] = None
    fatal: bool = False


@dataclass(frozen=True)
class WorkerDoneMessage:
    worker_id: int
    total_chunks: int
    total_files: int
    duration_ms: float


WorkerMessage = Union[WorkerProgressMessage, WorkerErrorMessage, WorkerDoneMessage]


@dataclass
class IndexWorkerResult:
    worker_id: int
    shard_results: Dict[int, IndexBatchResult] = field(default_factory=dict)
    total_chunks: int = 0
    total_files: int = 0
    duration_ms: float = 0.0
    failed: bool = False
    error: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "worker_id": self.worker_id,
            "shard_results": {k: v.to_dict() for k, v in self.shard_results.items()},
            "total_chunks": self.total_chunks,
            "total_files": self.total_files,
            "duration_ms": self.duration_ms,
            "failed": self.failed,
            "error": self.error,
        }


def embedding_config_payload(config: EmbeddingConfig) -> Dict[str, Any]:
    """Dump an EmbeddingConfig into a picklable dict, keeping the API key value."""
    payload = config.model_dump(mode="python")
    if config.api_key is not None:
        payload["api_key"] = config.api_key.get_secret_value()
    return payload


async def _create_embedder(task: IndexWorkerTask) -> BaseEmbedder:
    if task.embedder_factory is not None:
        embedder = task.embedder_factory()
        await embedder.initialize()
        return embedder
    config = EmbeddingConfig(**(task.embedding_config or {}))
    return await EmbedderFactory.create_embedder(config)


async def _run_worker(task: IndexWorkerTask, outbox: Any) -> IndexWorkerResult:
    started = time.perf_counter()
    result = IndexWorkerResult(
        worker_id=task.worker_id,
        shard_results={shard_id: IndexBatchResult(shard_id=shard_id) for shard_id in task.shard_paths},
    )

    embedder: Optional[BaseEmbedder] = None
    stores: Dict[int, DuckDBVectorStore] = {}
    try:
        try:
            embedder = await _create_embedder(task)
            for shard_id, path in task.shard_paths.items():
                store = DuckDBVectorStore(path, dimensions=task.dimensions, use_hnsw=task.use_hnsw)
                await store.initialize()
                stores[shard_id] = store
        except Exception as e:
            logger.error(f"Worker {task.worker_id} startup failed: {e}")
            outbox.put(WorkerErrorMessage(worker_id=task.worker_id, error=str(e), fatal=True))
            for file in task.files:
                result.shard_results[file.shard_id].errors += 1
            result.failed = True
            result.error = str(e)
            return result

        chunker = Chunker(**task.chunker_settings)
        indexers = {
            shard_id: Indexer(store, embedder, chunker=chunker, batch_size=task.batch_size)
            for shard_id, store in stores.items()
        }

        for file in task.files:
            batch = result.shard_results[file.shard_id]
            file_started = time.perf_counter()
            try:
                chunks = await indexers[file.shard_id].index_file(file.file_path, file.content)
            except Exception as e:
                batch.errors += 1
                outbox.put(
                    WorkerErrorMessage(
                        worker_id=task.worker_id,
                        error=str(e),
                        file_path=file.file_path,
                        shard_id=file.shard_id,
                    )
                )
                continue
            finally:
                batch.duration_ms += (time.perf_counter() - file_started) * 1000

            if chunks > 0:
                batch.files_indexed += 1
                batch.chunks_created += chunks
                result.total_files += 1
                result.total_chunks += chunks
            outbox.put(
                WorkerProgressMessage(
                    worker_id=task.worker_id,
                    shard_id=file.shard_id,
                    file_path=file.file_path,
                    chunks=chunks,
                )
            )
    finally:
        for store in stores.values():
            await store.dispose()
        if embedder is not None:
            await embedder.dispose()

    result.duration_ms = (time.perf_counter() - started) * 1000
    outbox.put(
        WorkerDoneMessage(
            worker_id=task.worker_id,
            total_chunks=result.total_chunks,
            total_files=result.total_files,
            duration_ms=result.duration_ms,
        )
    )
    return result


def run_index_worker(task: IndexWorkerTask, outbox: Any) -> IndexWorkerResult:
    """Executor entry point: run one worker on a fresh event loop.

    Must stay a module-level function so ProcessPoolExecutor can pickle it.
    """
    try:
        return asyncio.run(_run_worker(task, outbox))
    except Exception as e:
        logger.error(f"Worker {task.worker_id} failed: {e}")
        outbox.put(WorkerErrorMessage(worker_id=task.worker_id, error=str(e), fatal=True))
        return IndexWorkerResult(worker_id=task.worker_id, failed=True, error=str(e))
