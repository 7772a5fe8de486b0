"""GPU server embedding backend for mgrep-local - local inference server over HTTP.

The server is any local process exposing ``GET /health`` and an
OpenAI-compatible ``POST /v1/embeddings`` endpoint (llama.cpp, MLX and TEI
style servers all qualify). Responses in the ``{"embeddings": [...]}`` shape
are accepted as well.
"""

import asyncio
from typing import Any, Dict, List, Optional

import aiohttp
from loguru import logger

from core.exceptions import EmbeddingError, InitializationError
from core.types import EmbedderBackend

from .base_provider import DEFAULT_SUB_BATCH_SIZE, BaseEmbedder, ProgressHandler

DEFAULT_GPU_SERVER_URL = "http://localhost:8000"
GPU_MAX_TOKENS = 8192
HEALTH_CHECK_TIMEOUT = 5.0

# Model size -> (model name, output dimensions)
GPU_MODEL_SIZES: Dict[str, tuple] = {
    "0.6B": ("Qwen/Qwen3-Embedding-0.6B", 1024),
    "4B": ("Qwen/Qwen3-Embedding-4B", 2560),
    "8B": ("Qwen/Qwen3-Embedding-8B", 3584),
}
DEFAULT_GPU_MODEL_SIZE = "0.6B"


async def check_gpu_server(base_url: str = DEFAULT_GPU_SERVER_URL, timeout: float = 2.0) -> bool:
    """Return True when a GPU inference server answers its health endpoint."""
    url = f"{base_url.rstrip('/')}/health"
    try:
        async with aiohttp.ClientSession(timeout=aiohttp.ClientTimeout(total=timeout)) as session:
            async with session.get(url) as response:
                return response.status == 200
    except (aiohttp.ClientError, asyncio.TimeoutError, OSError) as e:
        logger.debug(f"GPU server probe failed at {url}: {e}")
        return False


class GpuServerEmbedder(BaseEmbedder):
    """Embeds text through a health-checked local GPU inference server."""

    backend_type = EmbedderBackend.GPU_SERVER

    def __init__(
        self,
        base_url: str = DEFAULT_GPU_SERVER_URL,
        model: Optional[str] = None,
        model_size: str = DEFAULT_GPU_MODEL_SIZE,
        dimensions: Optional[int] = None,
        timeout: float = 30.0,
        sub_batch_size: int = DEFAULT_SUB_BATCH_SIZE,
        on_progress: Optional[ProgressHandler] = None,
    ):
        if model_size not in GPU_MODEL_SIZES:
            raise ValueError(f"Unknown GPU model size {model_size!r}; expected one of {sorted(GPU_MODEL_SIZES)}")

        default_model, default_dims = GPU_MODEL_SIZES[model_size]
        super().__init__(
            model=model or default_model,
            dimensions=dimensions or default_dims,
            max_tokens=GPU_MAX_TOKENS,
            sub_batch_size=sub_batch_size,
            on_progress=on_progress,
        )
        self._base_url = base_url.rstrip('/')
        self._model_size = model_size
        self._requested_dimensions = dimensions
        self._timeout = timeout
        self._session: Optional[aiohttp.ClientSession] = None

    @property
    def base_url(self) -> str:
        return self._base_url

    async def _load(self) -> None:
        self._session = aiohttp.ClientSession(timeout=aiohttp.ClientTimeout(total=self._timeout))
        try:
            async with self._session.get(
                f"{self._base_url}/health",
                timeout=aiohttp.ClientTimeout(total=HEALTH_CHECK_TIMEOUT),
            ) as response:
                if response.status != 200:
                    raise InitializationError(
                        self.backend_type.value,
                        f"health check at {self._base_url} returned HTTP {response.status}",
                        model=self._model,
                    )

            # Confirm the served model and its output size
            probe = await self._request(["test"])
            served = len(probe[0])
            if self._requested_dimensions and served != self._requested_dimensions:
                raise InitializationError(
                    self.backend_type.value,
                    f"server returns {served}-dimensional embeddings, expected {self._requested_dimensions}",
                    model=self._model,
                )
            self._dimensions = served
        except BaseException:
            await self._release()
            raise

        logger.info(f"Connected to GPU embedding server at {self._base_url} ({self._model})")

    async def _embed_texts(self, texts: List[str]) -> List[List[float]]:
        if self._session is None:
            raise EmbeddingError(self.backend_type.value, self._model, "embed", "session is closed")
        return await self._request(texts)

    async def _request(self, texts: List[str]) -> List[List[float]]:
        assert self._session is not None
        payload = {"input": texts, "model": self._model}

        async with self._session.post(f"{self._base_url}/v1/embeddings", json=payload) as response:
            if response.status != 200:
                body = await response.text()
                raise EmbeddingError(
                    self.backend_type.value,
                    self._model,
                    "embed",
                    f"HTTP {response.status}: {body[:200]}",
                )
            data: Dict[str, Any] = await response.json()

        if "data" in data:
            items = sorted(data["data"], key=lambda item: item.get("index", 0))
            return [list(item["embedding"]) for item in items]
        if "embeddings" in data:
            return [list(vector) for vector in data["embeddings"]]

        raise EmbeddingError(
            self.backend_type.value, self._model, "embed", f"unexpected response keys: {sorted(data)}"
        )

    async def _release(self) -> None:
        if self._session is not None:
            await self._session.close()
            self._session = None

    async def health_check(self) -> Dict[str, Any]:
        status = await super().health_check()
        status["base_url"] = self._base_url
        status["server_reachable"] = await check_gpu_server(self._base_url, HEALTH_CHECK_TIMEOUT)
        return status
