"""Shared embedder lifecycle for mgrep-local embedding backends.

Every backend goes through the same state machine:

    UNINITIALIZED -> INITIALIZING -> READY -> DISPOSED

Initialization is memoized in a single asyncio task, so concurrent callers
(including the lazy initialization inside embed/embed_batch) share one model
load. A failed load returns the embedder to UNINITIALIZED and raises
InitializationError; a later call may retry.
"""

import asyncio
from abc import ABC, abstractmethod
from typing import Any, Callable, Dict, List, Optional

from loguru import logger

from core.exceptions import EmbeddingError, InitializationError, MgrepError
from core.models import ModelInfo, ModelLoadProgress
from core.types import EmbedderBackend, EmbedderState, ModelLoadStatus

from .batch_utils import split_into_batches, truncate_text

DEFAULT_SUB_BATCH_SIZE = 32

ProgressHandler = Callable[[ModelLoadProgress], None]


class BaseEmbedder(ABC):
    """Base class implementing the Embedder protocol for concrete backends.

    Subclasses provide ``_load``, ``_embed_texts`` and optionally ``_release``.
    """

    backend_type: EmbedderBackend

    def __init__(
        self,
        model: str,
        dimensions: int,
        max_tokens: int,
        sub_batch_size: int = DEFAULT_SUB_BATCH_SIZE,
        on_progress: Optional[ProgressHandler] = None,
    ):
        if sub_batch_size < 1:
            raise ValueError("sub_batch_size must be positive")

        self._model = model
        self._dimensions = dimensions
        self._max_tokens = max_tokens
        self._sub_batch_size = sub_batch_size
        self._on_progress = on_progress

        self._state = EmbedderState.UNINITIALIZED
        self._init_task: Optional[asyncio.Task] = None

    @property
    def backend(self) -> EmbedderBackend:
        return self.backend_type

    @property
    def model(self) -> str:
        return self._model

    @property
    def name(self) -> str:
        return f"{self.backend_type.value}/{self._model}"

    @property
    def dimensions(self) -> int:
        return self._dimensions

    @property
    def max_tokens(self) -> int:
        return self._max_tokens

    @property
    def sub_batch_size(self) -> int:
        return self._sub_batch_size

    @property
    def state(self) -> EmbedderState:
        return self._state

    def is_ready(self) -> bool:
        return self._state is EmbedderState.READY

    async def initialize(self) -> None:
        """Load the model once; concurrent callers await the same load."""
        if self._state is EmbedderState.READY:
            return
        if self._state is EmbedderState.DISPOSED:
            raise InitializationError(
                self.backend_type.value, "embedder has been disposed", model=self._model
            )

        if self._init_task is None:
            self._state = EmbedderState.INITIALIZING
            self._init_task = asyncio.ensure_future(self._run_initialize())

        # Cancelling one waiter must not cancel the shared load
        await asyncio.shield(self._init_task)

    async def _run_initialize(self) -> None:
        logger.debug(f"Initializing embedder {self.name}")
        self._report(ModelLoadStatus.LOADING)
        try:
            await self._load()
        except InitializationError:
            self._reset_after_failure()
            raise
        except asyncio.CancelledError:
            self._reset_after_failure()
            raise
        except Exception as e:
            self._reset_after_failure()
            raise InitializationError(
                self.backend_type.value, str(e) or type(e).__name__, model=self._model, cause=e
            ) from e

        self._state = EmbedderState.READY
        self._report(ModelLoadStatus.READY, 1.0)
        logger.info(f"Embedder {self.name} ready ({self._dimensions} dims)")

    def _reset_after_failure(self) -> None:
        if self._state is EmbedderState.INITIALIZING:
            self._state = EmbedderState.UNINITIALIZED
        self._init_task = None

    def _report(self, status: ModelLoadStatus, progress: Optional[float] = None) -> None:
        if self._on_progress is not None:
            self._on_progress(ModelLoadProgress(status=status, model=self._model, progress=progress))

    async def embed(self, text: str) -> List[float]:
        """Embed one text, initializing lazily."""
        await self.initialize()
        vectors = await self._embed_guarded([truncate_text(text, self._max_tokens)], "embed")
        return vectors[0]

    async def embed_batch(self, texts: List[str]) -> List[List[float]]:
        """Embed many texts in bounded sub-batches, preserving input order."""
        if not texts:
            return []

        await self.initialize()
        prepared = [truncate_text(text, self._max_tokens) for text in texts]
        batches = split_into_batches(prepared, self._sub_batch_size)
        logger.debug(f"Embedding {len(prepared)} texts in {len(batches)} sub-batches with {self.name}")

        results = await self._run_batches(batches)
        vectors = [vector for batch in results for vector in batch]
        if len(vectors) != len(texts):
            raise EmbeddingError(
                self.backend_type.value,
                self._model,
                "embed_batch",
                f"expected {len(texts)} embeddings, got {len(vectors)}",
            )
        return vectors

    async def _run_batches(self, batches: List[List[str]]) -> List[List[List[float]]]:
        """Embed sub-batches one after another."""
        results = []
        for batch in batches:
            results.append(await self._embed_guarded(batch, "embed_batch"))
        return results

    async def _embed_guarded(self, texts: List[str], operation: str) -> List[List[float]]:
        try:
            vectors = await self._embed_texts(texts)
        except MgrepError:
            raise
        except Exception as e:
            raise EmbeddingError(
                self.backend_type.value, self._model, operation, str(e) or type(e).__name__, cause=e
            ) from e

        if len(vectors) != len(texts):
            raise EmbeddingError(
                self.backend_type.value,
                self._model,
                operation,
                f"backend returned {len(vectors)} embeddings for {len(texts)} texts",
            )
        return vectors

    def get_model_info(self) -> ModelInfo:
        return ModelInfo(name=self._model, dimensions=self._dimensions, max_tokens=self._max_tokens)

    async def dispose(self) -> None:
        """Release backend resources. A disposed embedder cannot be reused."""
        if self._state is EmbedderState.DISPOSED:
            return
        if self._init_task is not None and not self._init_task.done():
            self._init_task.cancel()
        self._state = EmbedderState.DISPOSED
        self._init_task = None
        await self._release()
        logger.debug(f"Embedder {self.name} disposed")

    async def health_check(self) -> Dict[str, Any]:
        return {
            "backend": self.backend_type.value,
            "model": self._model,
            "state": self._state.value,
            "dimensions": self._dimensions,
            "available": self.is_ready(),
        }

    @abstractmethod
    async def _load(self) -> None:
        """Load the model or connect to the backend."""

    @abstractmethod
    async def _embed_texts(self, texts: List[str]) -> List[List[float]]:
        """Embed already-truncated texts; one vector per text, in order."""

    async def _release(self) -> None:
        """Release backend resources."""
        return None
