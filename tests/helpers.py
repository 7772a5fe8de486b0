"""Deterministic test doubles shared by the test suite."""

import asyncio
import math
from typing import List, Optional

from core.types import EmbedderBackend
from providers.embeddings.base_provider import BaseEmbedder

FAKE_DIMENSIONS = 16

# Each concept owns one dimension; a text scores on it once per keyword occurrence
CONCEPTS = [
    ("auth", "login", "password", "credential", "token", "session"),
    ("database", "sql", "query", "table", "duckdb", "connection"),
    ("http", "request", "response", "url", "fetch", "server"),
    ("add", "sum", "multiply", "calculate", "number", "math"),
    ("file", "path", "read", "write", "directory"),
    ("test", "assert", "mock"),
    ("log", "logger", "debug", "warning"),
    ("cache", "memo", "evict"),
    ("user", "account", "profile"),
    ("sort", "order", "rank"),
]
BIAS = 0.05


def concept_vector(text: str, dimensions: int = FAKE_DIMENSIONS) -> List[float]:
    """Unit vector counting concept keywords, plus a small constant bias dimension."""
    lowered = text.lower()
    vector = [0.0] * dimensions
    for index, keywords in enumerate(CONCEPTS):
        vector[index] = float(sum(lowered.count(keyword) for keyword in keywords))
    vector[dimensions - 1] = BIAS
    norm = math.sqrt(sum(value * value for value in vector))
    return [value / norm for value in vector]


class FakeEmbedder(BaseEmbedder):
    """Keyword-concept embedder with load counting and failure injection."""

    backend_type = EmbedderBackend.CPU

    def __init__(
        self,
        dimensions: int = FAKE_DIMENSIONS,
        sub_batch_size: int = 32,
        load_delay: float = 0.0,
        fail_load: bool = False,
        fail_on: Optional[str] = None,
    ):
        super().__init__(
            model="fake-concepts",
            dimensions=dimensions,
            max_tokens=256,
            sub_batch_size=sub_batch_size,
        )
        self.load_calls = 0
        self.embed_calls = 0
        self.released = False
        self._load_delay = load_delay
        self._fail_load = fail_load
        self._fail_on = fail_on

    async def _load(self) -> None:
        self.load_calls += 1
        if self._load_delay:
            await asyncio.sleep(self._load_delay)
        if self._fail_load:
            raise RuntimeError("model files missing")

    async def _embed_texts(self, texts: List[str]) -> List[List[float]]:
        self.embed_calls += 1
        if self._fail_on is not None and any(self._fail_on in text for text in texts):
            raise RuntimeError(f"cannot embed text containing {self._fail_on!r}")
        return [concept_vector(text, self._dimensions) for text in texts]

    async def _release(self) -> None:
        self.released = True


def make_fake_embedder() -> FakeEmbedder:
    """Picklable factory handed to worker processes."""
    return FakeEmbedder()


def make_broken_embedder() -> FakeEmbedder:
    return FakeEmbedder(fail_load=True)
