"""Tests for the ShardedIndexer service."""

import pytest

from core.exceptions import InitializationError
from core.models import FileToIndex
from core.types import IndexPhase
from services import ShardedIndexer

from .helpers import FakeEmbedder, make_broken_embedder, make_fake_embedder


class TestSequentialIndexing:
    async def test_index_files_groups_by_shard(self, sharded_store, embedder, sample_files):
        indexer = ShardedIndexer(sharded_store, embedder, use_processes=False)
        result = await indexer.index_files(sample_files)

        assert result.files_processed == len(sample_files)
        assert result.total_chunks == len(sample_files)
        assert result.total_errors == 0

        expected = {}
        for file in sample_files:
            shard_id = sharded_store.get_shard_id(file.file_path)
            expected[shard_id] = expected.get(shard_id, 0) + 1
        assert {shard_id: batch.files_indexed for shard_id, batch in result.by_shard.items()} == expected

        for file in sample_files:
            owner = sharded_store.get_shard(sharded_store.get_shard_id(file.file_path))
            assert await owner.get_file_hash(file.file_path) is not None

    async def test_centroids_refreshed_after_run(self, sharded_store, embedder, sample_files):
        await ShardedIndexer(sharded_store, embedder).index_files(sample_files)
        descriptors = sharded_store.get_shard_descriptors()
        assert sum(d.chunk_count for d in descriptors) == len(sample_files)
        assert all(d.centroid is not None for d in descriptors if d.chunk_count)

    async def test_per_file_failure_is_counted_not_raised(self, sharded_store):
        files = [
            FileToIndex(file_path="ok.py", content="def ok():\n    return 1\n"),
            FileToIndex(file_path="bad.py", content="def boom():\n    return 2\n"),
        ]
        indexer = ShardedIndexer(sharded_store, FakeEmbedder(fail_on="boom"))
        result = await indexer.index_files(files)

        assert result.files_processed == 1
        assert result.total_errors == 1
        assert result.by_shard[sharded_store.get_shard_id("bad.py")].errors == 1

    async def test_unchanged_files_not_counted(self, sharded_store, embedder, sample_files):
        indexer = ShardedIndexer(sharded_store, embedder)
        await indexer.index_files(sample_files)
        again = await indexer.index_files(sample_files)
        assert again.files_processed == 0
        assert again.total_chunks == 0

    async def test_progress_includes_shard_fields(self, sharded_store, embedder, sample_files):
        updates = []
        indexer = ShardedIndexer(sharded_store, embedder, progress_callback=updates.append)
        await indexer.index_files(sample_files)

        assert len(updates) == len(sample_files)
        assert all(u.phase is IndexPhase.CHUNKING for u in updates)
        total_shards = len(indexer.group_by_shard(sample_files))
        assert all(u.total_shards == total_shards for u in updates)
        assert updates[-1].shards_complete == total_shards - 1

    async def test_single_file_and_delete(self, sharded_store, embedder):
        indexer = ShardedIndexer(sharded_store, embedder)
        assert await indexer.index_file("src/one.py", "def one():\n    pass\n") == 1
        assert await indexer.delete_file("src/one.py") == 1
        assert (await indexer.get_stats()).total_chunks == 0

    def test_group_by_shard_keeps_order(self, sharded_store, embedder, sample_files):
        groups = ShardedIndexer(sharded_store, embedder).group_by_shard(sample_files)
        assert sum(len(files) for files in groups.values()) == len(sample_files)
        for shard_id, files in groups.items():
            positions = [sample_files.index(file) for file in files]
            assert positions == sorted(positions)
            assert all(sharded_store.get_shard_id(f.file_path) == shard_id for f in files)


class TestParallelIndexing:
    async def test_thread_workers_index_every_shard(self, sharded_store, embedder, sample_files):
        updates = []
        indexer = ShardedIndexer(
            sharded_store,
            embedder,
            worker_count=2,
            use_processes=False,
            embedder_factory=make_fake_embedder,
            progress_callback=updates.append,
        )
        result = await indexer.index_files_parallel(sample_files)

        assert result.files_processed == len(sample_files)
        assert result.total_chunks == len(sample_files)
        assert len(result.worker_results) == min(2, len(indexer.group_by_shard(sample_files)))
        assert all(not worker["failed"] for worker in result.worker_results)

        assert len(updates) == len(sample_files)
        assert all(u.phase is IndexPhase.EMBEDDING for u in updates)
        assert updates[-1].current == len(sample_files)
        assert updates[-1].shards_complete == updates[-1].total_shards

        stats = await sharded_store.get_stats()
        assert stats.total_files == len(sample_files)
        assert sum(d.chunk_count for d in sharded_store.get_shard_descriptors()) == len(sample_files)

    async def test_worker_startup_failure_raises(self, sharded_store, embedder, sample_files):
        indexer = ShardedIndexer(
            sharded_store, embedder, worker_count=2, use_processes=False,
            embedder_factory=make_broken_embedder,
        )
        with pytest.raises(InitializationError):
            await indexer.index_files_parallel(sample_files)

        for shard_id in range(sharded_store.shard_count):
            assert sharded_store.get_shard(shard_id).is_connected

    async def test_requires_worker_embedder_recipe(self, sharded_store, embedder, sample_files):
        indexer = ShardedIndexer(sharded_store, embedder, use_processes=False)
        with pytest.raises(ValueError):
            await indexer.index_files_parallel(sample_files)

    async def test_empty_input(self, sharded_store, embedder):
        indexer = ShardedIndexer(sharded_store, embedder, embedder_factory=make_fake_embedder)
        result = await indexer.index_files_parallel([])
        assert result.files_processed == 0
        assert result.by_shard == {}
