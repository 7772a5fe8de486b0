"""Shared fixtures for the mgrep-local test suite."""

import tempfile
from collections.abc import AsyncGenerator, Generator
from pathlib import Path

import pytest

from core.models import FileToIndex
from core.types import FilePath
from mgrep_local.core.config import reset_config
from providers.database import DuckDBVectorStore, ShardedVectorStore

from .helpers import FAKE_DIMENSIONS, FakeEmbedder


@pytest.fixture
def temp_dir() -> Generator[Path, None, None]:
    """Create a temporary directory for tests."""
    with tempfile.TemporaryDirectory() as tmpdir:
        yield Path(tmpdir)


@pytest.fixture(autouse=True)
def clean_global_config(monkeypatch):
    """Keep MGREP_* variables and the global config out of every test."""
    import os

    for key in list(os.environ):
        if key.startswith("MGREP_"):
            monkeypatch.delenv(key)
    reset_config()
    yield
    reset_config()


@pytest.fixture
def embedder() -> FakeEmbedder:
    return FakeEmbedder()


@pytest.fixture
async def store(temp_dir: Path) -> AsyncGenerator[DuckDBVectorStore, None]:
    vector_store = DuckDBVectorStore(temp_dir / "index.duckdb", dimensions=FAKE_DIMENSIONS, use_hnsw=False)
    await vector_store.initialize()
    yield vector_store
    await vector_store.dispose()


@pytest.fixture
async def sharded_store(temp_dir: Path) -> AsyncGenerator[ShardedVectorStore, None]:
    vector_store = ShardedVectorStore(
        temp_dir / "shards", shard_count=4, dimensions=FAKE_DIMENSIONS, use_hnsw=False
    )
    await vector_store.initialize()
    yield vector_store
    await vector_store.dispose()


@pytest.fixture
def sample_python_code() -> str:
    """Sample Python code for testing."""
    return '''import hashlib


def authenticate_user(username, password):
    """Check a login password against the stored credential hash."""
    digest = hashlib.sha256(password.encode()).hexdigest()
    return digest == load_credential(username)


def run_database_query(connection, sql):
    """Execute an SQL query on the database connection."""
    return connection.execute(sql).fetchall()


class Calculator:
    """Simple math helper."""

    def add(self, a, b):
        return a + b
'''


@pytest.fixture
def sample_files() -> list[FileToIndex]:
    """A small multi-file codebase spanning distinct concepts."""
    contents = {
        "src/auth/login.py": (
            "def login(user, password):\n"
            "    \"\"\"Authenticate a user login with a password token.\"\"\"\n"
            "    return check_credential(user, password)\n"
        ),
        "src/auth/session.py": (
            "def create_session(user):\n"
            "    token = new_token()\n"
            "    return {'session': token, 'user': user}\n"
        ),
        "src/db/query.py": (
            "def run_query(connection, sql):\n"
            "    \"\"\"Run an SQL query against the database.\"\"\"\n"
            "    return connection.execute(sql)\n"
        ),
        "src/db/schema.py": (
            "def create_table(connection):\n"
            "    connection.execute('CREATE TABLE users (id INTEGER)')\n"
        ),
        "src/net/client.py": (
            "def fetch(url):\n"
            "    \"\"\"Send an http request and return the response.\"\"\"\n"
            "    return http_get(url)\n"
        ),
        "src/math/ops.py": (
            "def multiply(a, b):\n"
            "    \"\"\"Multiply two numbers.\"\"\"\n"
            "    return a * b\n"
        ),
        "src/io/files.py": (
            "def read_file(path):\n"
            "    with open(path) as handle:\n"
            "        return handle.read()\n"
        ),
        "src/cache/lru.py": (
            "def evict(cache, key):\n"
            "    \"\"\"Evict a key from the cache.\"\"\"\n"
            "    cache.pop(key, None)\n"
        ),
    }
    return [FileToIndex(file_path=FilePath(path), content=content) for path, content in contents.items()]
