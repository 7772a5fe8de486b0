"""CPU embedding backend for mgrep-local - local sentence-transformers inference."""

import asyncio
from pathlib import Path
from typing import Any, List, Optional, Union

from loguru import logger

from core.types import EmbedderBackend, ModelLoadStatus

from .base_provider import DEFAULT_SUB_BATCH_SIZE, BaseEmbedder, ProgressHandler

DEFAULT_CPU_MODEL = "sentence-transformers/all-MiniLM-L6-v2"
DEFAULT_CPU_MAX_TOKENS = 256
DEFAULT_MODEL_CACHE_DIR = Path.home() / ".cache" / "mgrep-local" / "models"

# Known output sizes; other models report theirs once loaded
CPU_MODEL_DIMENSIONS = {
    "sentence-transformers/all-MiniLM-L6-v2": 384,
    "sentence-transformers/all-MiniLM-L12-v2": 384,
    "sentence-transformers/all-mpnet-base-v2": 768,
    "BAAI/bge-small-en-v1.5": 384,
}


class CpuEmbedder(BaseEmbedder):
    """Runs a sentence-transformers model on the local CPU.

    Model loading and inference run in worker threads so the event loop is
    never blocked. Embeddings are L2-normalized.
    """

    backend_type = EmbedderBackend.CPU

    def __init__(
        self,
        model: str = DEFAULT_CPU_MODEL,
        cache_dir: Optional[Union[str, Path]] = None,
        max_tokens: int = DEFAULT_CPU_MAX_TOKENS,
        sub_batch_size: int = DEFAULT_SUB_BATCH_SIZE,
        on_progress: Optional[ProgressHandler] = None,
    ):
        super().__init__(
            model=model,
            dimensions=CPU_MODEL_DIMENSIONS.get(model, 384),
            max_tokens=max_tokens,
            sub_batch_size=sub_batch_size,
            on_progress=on_progress,
        )
        self._cache_dir = Path(cache_dir).expanduser() if cache_dir else DEFAULT_MODEL_CACHE_DIR
        self._encoder: Any = None

    @property
    def cache_dir(self) -> Path:
        return self._cache_dir

    def is_model_cached(self) -> bool:
        """True when the model is a local path or already sits in the cache folder."""
        if Path(self._model).expanduser().exists():
            return True
        if not self._cache_dir.is_dir():
            return False
        # Hub cache layout first, then the legacy sentence-transformers one
        names = (f"models--{self._model.replace('/', '--')}", self._model.replace("/", "_"))
        return any((self._cache_dir / name).exists() for name in names)

    async def _load(self) -> None:
        # Deferred: importing sentence_transformers pulls in torch
        from sentence_transformers import SentenceTransformer

        if not self.is_model_cached():
            logger.info(f"Model {self._model} not cached, downloading to {self._cache_dir}")
            self._report(ModelLoadStatus.DOWNLOADING)

        self._cache_dir.mkdir(parents=True, exist_ok=True)
        logger.info(f"Loading CPU embedding model {self._model} (cache: {self._cache_dir})")

        self._encoder = await asyncio.to_thread(
            SentenceTransformer,
            self._model,
            cache_folder=str(self._cache_dir),
            device="cpu",
        )

        dimensions = self._encoder.get_sentence_embedding_dimension()
        if dimensions:
            self._dimensions = int(dimensions)

    async def _embed_texts(self, texts: List[str]) -> List[List[float]]:
        vectors = await asyncio.to_thread(
            self._encoder.encode,
            texts,
            batch_size=len(texts),
            convert_to_numpy=True,
            normalize_embeddings=True,
            show_progress_bar=False,
        )
        return vectors.tolist()

    async def _release(self) -> None:
        self._encoder = None
