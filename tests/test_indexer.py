"""Tests for the Indexer service."""

import pytest

from core.exceptions import EmbeddingError, InitializationError
from core.models import FileChangeEvent, FileToIndex
from core.types import FileEventType, IndexPhase
from services import Indexer, hash_content
from services.indexer import matches_patterns

from .helpers import FakeEmbedder


@pytest.fixture
def indexer(store, embedder):
    return Indexer(store, embedder, batch_size=2)


class TestHelpers:
    def test_hash_content_is_short_sha256(self):
        digest = hash_content("hello")
        assert digest == "2cf24dba5fb0a30e"
        assert hash_content("hello") == digest
        assert hash_content("hello!") != digest

    @pytest.mark.parametrize("path,patterns,expected", [
        ("node_modules/x.js", ["**/node_modules/**"], True),
        ("pkg/node_modules/x.js", ["**/node_modules/**"], True),
        ("index.duckdb", ["**/*.duckdb"], True),
        ("src/app.py", ["**/node_modules/**"], False),
        ("src/app.py", ["src/*.py"], True),
    ])
    def test_matches_patterns(self, path, patterns, expected):
        assert matches_patterns(path, patterns) is expected

    def test_batch_size_validation(self, store, embedder):
        with pytest.raises(ValueError):
            Indexer(store, embedder, batch_size=0)


class TestIndexFile:
    async def test_index_stores_chunks(self, indexer, store, sample_python_code):
        count = await indexer.index_file("auth.py", sample_python_code)
        assert count == 4

        vectors = await store.get_vectors_for_file("auth.py")
        assert [vector.chunk_index for vector in vectors] == [0, 1, 2, 3]
        record = await store.get_file_record("auth.py")
        assert record.content_hash == hash_content(sample_python_code)
        assert record.language == "python"
        assert record.chunk_count == 4

    async def test_unchanged_file_is_skipped(self, indexer, embedder, sample_python_code):
        await indexer.index_file("auth.py", sample_python_code)
        calls = embedder.embed_calls

        assert await indexer.index_file("auth.py", sample_python_code) == 0
        assert embedder.embed_calls == calls

    async def test_changed_file_replaces_vectors(self, indexer, store, sample_python_code):
        await indexer.index_file("auth.py", sample_python_code)
        assert await indexer.update_file("auth.py", "def login():\n    return token\n") == 1

        vectors = await store.get_vectors_for_file("auth.py")
        assert len(vectors) == 1
        assert "login" in vectors[0].content

    async def test_empty_content_removes_stale_vectors(self, indexer, store, sample_python_code):
        await indexer.index_file("auth.py", sample_python_code)
        assert await indexer.index_file("auth.py", "   \n") == 0
        assert await store.get_vectors_for_file("auth.py") == []
        assert await store.get_file_hash("auth.py") is None

    async def test_embedding_failure_keeps_previous_vectors(self, store, sample_python_code):
        good = Indexer(store, FakeEmbedder())
        await good.index_file("auth.py", sample_python_code)

        broken = Indexer(store, FakeEmbedder(fail_on="explode"))
        with pytest.raises(EmbeddingError):
            await broken.index_file("auth.py", sample_python_code + "\n\ndef explode():\n    pass\n")

        assert len(await store.get_vectors_for_file("auth.py")) == 4
        assert await store.get_file_hash("auth.py") == hash_content(sample_python_code)

    async def test_load_failure_leaves_tracking_untouched(self, store, sample_python_code):
        await Indexer(store, FakeEmbedder()).index_file("auth.py", sample_python_code)
        before = await store.get_file_record("auth.py")

        broken = Indexer(store, FakeEmbedder(fail_load=True))
        with pytest.raises(InitializationError):
            await broken.index_file("auth.py", "def login():\n    return token\n")

        after = await store.get_file_record("auth.py")
        assert after.content_hash == before.content_hash
        assert after.chunk_count == before.chunk_count
        assert len(await store.get_vectors_for_file("auth.py")) == 4

    async def test_embedding_progress_reported_per_batch(self, store, embedder, sample_python_code):
        updates = []
        indexer = Indexer(store, embedder, batch_size=3, progress_callback=updates.append)
        await indexer.index_file("auth.py", sample_python_code)

        assert [(u.phase, u.current, u.total) for u in updates] == [
            (IndexPhase.EMBEDDING, 3, 4),
            (IndexPhase.EMBEDDING, 4, 4),
        ]
        assert all(u.current_file == "auth.py" for u in updates)

    async def test_delete_file(self, indexer, store, sample_python_code):
        await indexer.index_file("auth.py", sample_python_code)
        assert await indexer.delete_file("auth.py") == 4
        assert await store.list_files() == []


class TestIndexFiles:
    async def test_index_files_totals(self, indexer, sample_files):
        result = await indexer.index_files(sample_files)
        assert result.files_processed == len(sample_files)
        assert result.total_chunks == len(sample_files)

        stats = await indexer.get_stats()
        assert stats.total_files == len(sample_files)

    async def test_async_progress_callback(self, store, embedder, sample_files):
        phases = []

        async def on_progress(progress):
            if progress.phase is IndexPhase.CHUNKING:
                phases.append((progress.current, progress.total))

        indexer = Indexer(store, embedder, progress_callback=on_progress)
        await indexer.index_files(sample_files[:3])
        assert phases == [(1, 3), (2, 3), (3, 3)]

    async def test_first_failure_propagates(self, store):
        indexer = Indexer(store, FakeEmbedder(fail_on="boom"))
        files = [
            FileToIndex(file_path="a.py", content="def a():\n    return 1\n"),
            FileToIndex(file_path="b.py", content="def boom():\n    return 2\n"),
            FileToIndex(file_path="c.py", content="def c():\n    return 3\n"),
        ]
        with pytest.raises(EmbeddingError):
            await indexer.index_files(files)
        assert await store.list_files() == ["a.py"]

    async def test_clear(self, indexer, sample_files):
        await indexer.index_files(sample_files)
        await indexer.clear()
        assert (await indexer.get_stats()).total_chunks == 0


class TestIndexDirectory:
    async def test_discovers_supported_files(self, indexer, store, temp_dir):
        root = temp_dir / "project"
        (root / "src").mkdir(parents=True)
        (root / "node_modules" / "lib").mkdir(parents=True)
        (root / "src" / "app.py").write_text("def main():\n    return 0\n")
        (root / "src" / "notes.txt").write_text("not code")
        (root / "node_modules" / "lib" / "index.js").write_text("function x() {}\n")
        (root / "src" / "blob.py").write_bytes(b"\xff\xfe\x00binary")

        result = await indexer.index_directory(root)

        assert result.files_processed == 1
        assert await store.list_files() == [str(root / "src" / "app.py")]

    async def test_include_patterns(self, indexer, store, temp_dir):
        (temp_dir / "a.py").write_text("def a():\n    pass\n")
        (temp_dir / "b.go").write_text("package main\n\nfunc b() {}\n")

        result = await indexer.index_directory(temp_dir, include_patterns=["*.go"])
        assert result.files_processed == 1
        assert await store.list_files() == [str(temp_dir / "b.go")]

    async def test_not_a_directory(self, indexer, temp_dir):
        with pytest.raises(ValueError):
            await indexer.index_directory(temp_dir / "missing")


class TestFileChanges:
    async def test_modified_event_reads_from_disk(self, indexer, store, temp_dir):
        path = temp_dir / "watched.py"
        path.write_text("def watched():\n    return 1\n")
        event = FileChangeEvent(file_path=str(path), event_type=FileEventType.MODIFIED)

        assert await indexer.handle_file_change(event) == 1
        assert await store.list_files() == [str(path)]

    async def test_event_with_content(self, indexer, store):
        event = FileChangeEvent(
            file_path="virtual.py", event_type=FileEventType.ADDED, content="def v():\n    pass\n"
        )
        assert await indexer.handle_file_change(event) == 1

    async def test_deleted_event(self, indexer, store):
        await indexer.index_file("gone.py", "def gone():\n    pass\n")
        event = FileChangeEvent(file_path="gone.py", event_type=FileEventType.DELETED)
        assert await indexer.handle_file_change(event) == 1
        assert await store.list_files() == []
