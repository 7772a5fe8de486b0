"""Tests for the index worker and worker pool."""

import asyncio
import queue

import pytest

from core.exceptions import InitializationError
from mgrep_local.core.config import EmbeddingConfig
from providers.database import DuckDBVectorStore
from services.index_worker import (
    IndexWorkerTask,
    WorkerDoneMessage,
    WorkerErrorMessage,
    WorkerFile,
    WorkerProgressMessage,
    embedding_config_payload,
    run_index_worker,
)
from services.worker_pool import WorkerPool, assign_round_robin, default_worker_count

from .helpers import FAKE_DIMENSIONS, make_broken_embedder, make_fake_embedder


def make_task(temp_dir, worker_id=0, shard_files=None, factory=make_fake_embedder) -> IndexWorkerTask:
    shard_files = shard_files or {0: [("a.py", "def login():\n    return token\n")]}
    return IndexWorkerTask(
        worker_id=worker_id,
        shard_paths={shard_id: str(temp_dir / f"shard-{shard_id}.duckdb") for shard_id in shard_files},
        files=[
            WorkerFile(shard_id=shard_id, file_path=path, content=content)
            for shard_id, files in shard_files.items()
            for path, content in files
        ],
        dimensions=FAKE_DIMENSIONS,
        use_hnsw=False,
        embedder_factory=factory,
    )


def drain(outbox: queue.Queue) -> list:
    messages = []
    while not outbox.empty():
        messages.append(outbox.get_nowait())
    return messages


class TestAssignment:
    def test_round_robin(self):
        assert assign_round_robin([0, 1, 2, 3, 4], 2) == {0: [0, 2, 4], 1: [1, 3]}

    def test_more_workers_than_shards(self):
        assert assign_round_robin([3, 7], 4) == {0: [3], 1: [7]}

    def test_default_worker_count_is_positive(self):
        assert default_worker_count() >= 1

    def test_invalid_worker_count(self):
        with pytest.raises(ValueError):
            WorkerPool(worker_count=0)


class TestIndexWorker:
    def test_worker_indexes_and_reports(self, temp_dir):
        task = make_task(temp_dir, shard_files={
            0: [("a.py", "def login():\n    return token\n"), ("empty.py", "  \n")],
            1: [("b.py", "def query():\n    return sql\n")],
        })
        outbox = queue.Queue()

        result = run_index_worker(task, outbox)

        assert not result.failed
        assert result.total_files == 2
        assert result.total_chunks == 2
        assert result.shard_results[0].files_indexed == 1
        assert result.shard_results[1].chunks_created == 1

        messages = drain(outbox)
        progress = [m for m in messages if isinstance(m, WorkerProgressMessage)]
        assert [(m.shard_id, m.file_path, m.chunks) for m in progress] == [
            (0, "a.py", 1), (0, "empty.py", 0), (1, "b.py", 1),
        ]
        assert isinstance(messages[-1], WorkerDoneMessage)
        assert messages[-1].total_files == 2

    async def test_worker_writes_to_shard_files(self, temp_dir):
        task = make_task(temp_dir)
        result = await asyncio.to_thread(run_index_worker, task, queue.Queue())
        assert not result.failed

        store = DuckDBVectorStore(task.shard_paths[0], dimensions=FAKE_DIMENSIONS, use_hnsw=False)
        await store.initialize()
        try:
            assert await store.list_files() == ["a.py"]
        finally:
            await store.dispose()

    def test_startup_failure_counts_every_file(self, temp_dir):
        task = make_task(temp_dir, factory=make_broken_embedder, shard_files={
            0: [("a.py", "x = 1\n"), ("b.py", "y = 2\n")],
        })
        outbox = queue.Queue()

        result = run_index_worker(task, outbox)

        assert result.failed
        assert "model files missing" in result.error
        assert result.shard_results[0].errors == 2
        messages = drain(outbox)
        assert len(messages) == 1
        assert isinstance(messages[0], WorkerErrorMessage)
        assert messages[0].fatal

    def test_embedding_config_payload_keeps_secret(self):
        config = EmbeddingConfig(backend="openai", api_key="sk-test", model="text-embedding-3-small")
        payload = embedding_config_payload(config)
        assert payload["api_key"] == "sk-test"
        assert EmbeddingConfig(**payload).api_key.get_secret_value() == "sk-test"


class TestWorkerPool:
    async def test_thread_mode_runs_all_tasks(self, temp_dir):
        tasks = [
            make_task(temp_dir, worker_id=0, shard_files={0: [("a.py", "def a():\n    pass\n")]}),
            make_task(temp_dir, worker_id=1, shard_files={1: [("b.py", "def b():\n    pass\n")]}),
        ]
        messages = []

        results = await WorkerPool(worker_count=2, use_processes=False).run(tasks, messages.append)

        assert [r.worker_id for r in results] == [0, 1]
        assert sum(r.total_files for r in results) == 2
        assert sum(isinstance(m, WorkerDoneMessage) for m in messages) == 2
        assert sum(isinstance(m, WorkerProgressMessage) for m in messages) == 2

    async def test_async_message_handler(self, temp_dir):
        seen = []

        async def on_message(message):
            seen.append(type(message).__name__)

        await WorkerPool(worker_count=1, use_processes=False).run([make_task(temp_dir)], on_message)
        assert seen == ["WorkerProgressMessage", "WorkerDoneMessage"]

    async def test_failed_worker_raises_after_others_finish(self, temp_dir):
        good = make_task(temp_dir, worker_id=0, shard_files={0: [("a.py", "def a():\n    pass\n")]})
        bad = make_task(temp_dir, worker_id=1, shard_files={1: [("b.py", "def b():\n    pass\n")]},
                        factory=make_broken_embedder)

        with pytest.raises(InitializationError) as exc_info:
            await WorkerPool(worker_count=2, use_processes=False).run([good, bad])

        assert exc_info.value.context["failed_workers"] == [1]
        store = DuckDBVectorStore(good.shard_paths[0], dimensions=FAKE_DIMENSIONS, use_hnsw=False)
        await store.initialize()
        try:
            assert await store.list_files() == ["a.py"]
        finally:
            await store.dispose()

    async def test_empty_task_list(self):
        assert await WorkerPool(use_processes=False).run([]) == []

    @pytest.mark.slow
    async def test_process_mode(self, temp_dir):
        tasks = [
            make_task(temp_dir, worker_id=0, shard_files={0: [("a.py", "def a():\n    pass\n")]}),
            make_task(temp_dir, worker_id=1, shard_files={1: [("b.py", "def b():\n    pass\n")]}),
        ]
        messages = []

        results = await WorkerPool(worker_count=2, use_processes=True).run(tasks, messages.append)

        assert sum(r.total_chunks for r in results) == 2
        assert {m.file_path for m in messages if isinstance(m, WorkerProgressMessage)} == {"a.py", "b.py"}
