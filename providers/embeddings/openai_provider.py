"""OpenAI embedding backend for mgrep-local - remote API with batching, concurrency and retries."""

import asyncio
import os
from typing import Any, Dict, List, Optional

import openai
from loguru import logger

from core.exceptions import EmbeddingError, InitializationError
from core.types import EmbedderBackend

from .base_provider import BaseEmbedder, ProgressHandler

DEFAULT_OPENAI_MODEL = "text-embedding-3-small"
OPENAI_MAX_TOKENS = 8191

OPENAI_MODEL_DIMENSIONS = {
    "text-embedding-3-small": 1536,
    "text-embedding-3-large": 3072,
    "text-embedding-ada-002": 1536,
}


class OpenAIEmbedder(BaseEmbedder):
    """OpenAI embedding backend using text-embedding-3-small by default.

    Requests carry up to ``batch_size`` texts and at most
    ``max_concurrent_batches`` requests are in flight. Authentication errors
    fail immediately; rate limits back off exponentially and other API errors
    linearly, up to ``max_retries`` retries.
    """

    backend_type = EmbedderBackend.OPENAI

    def __init__(
        self,
        api_key: Optional[str] = None,
        model: str = DEFAULT_OPENAI_MODEL,
        base_url: Optional[str] = None,
        batch_size: int = 100,
        max_concurrent_batches: int = 4,
        max_retries: int = 3,
        retry_delay: float = 1.0,
        timeout: float = 30.0,
        dimensions: Optional[int] = None,
        on_progress: Optional[ProgressHandler] = None,
    ):
        """Initialize OpenAI embedder.

        Args:
            api_key: OpenAI API key (defaults to OPENAI_API_KEY env var)
            model: Model name to use for embeddings
            base_url: Base URL for the API (defaults to OPENAI_BASE_URL env var)
            batch_size: Maximum texts per API request
            max_concurrent_batches: Maximum requests in flight
            max_retries: Retries after the first failed attempt
            retry_delay: Base delay in seconds between retries
            timeout: Request timeout in seconds
            dimensions: Reduced output size (text-embedding-3 models only)
        """
        supports_dimensions = model.startswith("text-embedding-3")
        if dimensions and not supports_dimensions:
            logger.warning(f"Model {model} does not support custom dimensions; ignoring dimensions={dimensions}")
            dimensions = None

        super().__init__(
            model=model,
            dimensions=dimensions or OPENAI_MODEL_DIMENSIONS.get(model, 1536),
            max_tokens=OPENAI_MAX_TOKENS,
            sub_batch_size=batch_size,
            on_progress=on_progress,
        )

        self._api_key = api_key or os.getenv("OPENAI_API_KEY")
        self._base_url = base_url or os.getenv("OPENAI_BASE_URL")
        self._max_concurrent = max(1, max_concurrent_batches)
        self._max_retries = max_retries
        self._retry_delay = retry_delay
        self._timeout = timeout
        self._requested_dimensions = dimensions

        self._usage_stats = {
            "requests_made": 0,
            "tokens_used": 0,
            "embeddings_generated": 0,
            "errors": 0,
        }

        self._client: Optional[openai.AsyncOpenAI] = None

    @property
    def name(self) -> str:
        return f"openai/{self._model}"

    @property
    def api_key_configured(self) -> bool:
        return self._api_key is not None

    async def _load(self) -> None:
        if not self._api_key:
            raise InitializationError(
                self.backend_type.value,
                "API key is required (set OPENAI_API_KEY or MGREP_EMBEDDING_API_KEY)",
                model=self._model,
            )

        client_kwargs: Dict[str, Any] = {
            "api_key": self._api_key,
            "timeout": self._timeout,
            "max_retries": 0,
        }
        if self._base_url:
            client_kwargs["base_url"] = self._base_url

        self._client = openai.AsyncOpenAI(**client_kwargs)
        logger.debug(f"OpenAI client initialized with base_url={self._base_url}, timeout={self._timeout}")

        # Validate credentials with a small request
        try:
            await self._request(["test"])
        except BaseException:
            await self._release()
            raise

    async def _embed_texts(self, texts: List[str]) -> List[List[float]]:
        return await self._request(texts)

    async def _run_batches(self, batches: List[List[str]]) -> List[List[List[float]]]:
        semaphore = asyncio.Semaphore(self._max_concurrent)

        async def process_batch(batch: List[str]) -> List[List[float]]:
            async with semaphore:
                return await self._embed_guarded(batch, "embed_batch")

        tasks = [asyncio.ensure_future(process_batch(batch)) for batch in batches]
        try:
            return list(await asyncio.gather(*tasks))
        except BaseException:
            # A failed batch fails the call; stop the requests still in flight
            for task in tasks:
                task.cancel()
            await asyncio.gather(*tasks, return_exceptions=True)
            raise

    async def _request(self, texts: List[str]) -> List[List[float]]:
        if self._client is None:
            raise EmbeddingError(self.backend_type.value, self._model, "embed", "client not initialized")

        request: Dict[str, Any] = {"model": self._model, "input": texts}
        if self._requested_dimensions:
            request["dimensions"] = self._requested_dimensions

        attempt = 0
        while True:
            try:
                logger.debug(f"Requesting {len(texts)} embeddings (attempt {attempt + 1})")
                response = await self._client.embeddings.create(**request)
                break
            except openai.AuthenticationError:
                self._usage_stats["errors"] += 1
                raise
            except openai.RateLimitError as e:
                self._usage_stats["errors"] += 1
                if attempt >= self._max_retries:
                    raise
                delay = self._retry_delay * (2 ** attempt)
                logger.warning(f"Rate limit exceeded, retrying in {delay:.1f}s: {e}")
            except openai.APIError as e:
                self._usage_stats["errors"] += 1
                if attempt >= self._max_retries:
                    raise
                delay = self._retry_delay * (attempt + 1)
                logger.warning(f"OpenAI API error, retrying in {delay:.1f}s: {e}")
            await asyncio.sleep(delay)
            attempt += 1

        data = sorted(response.data, key=lambda item: item.index)
        embeddings = [list(item.embedding) for item in data]

        self._usage_stats["requests_made"] += 1
        self._usage_stats["embeddings_generated"] += len(embeddings)
        if getattr(response, "usage", None):
            self._usage_stats["tokens_used"] += response.usage.total_tokens

        return embeddings

    async def _release(self) -> None:
        if self._client is not None:
            await self._client.close()
            self._client = None

    def get_usage_stats(self) -> Dict[str, Any]:
        """Get usage statistics."""
        return self._usage_stats.copy()

    def reset_usage_stats(self) -> None:
        self._usage_stats = {key: 0 for key in self._usage_stats}

    async def health_check(self) -> Dict[str, Any]:
        status = await super().health_check()
        status["api_key_configured"] = self.api_key_configured
        status["usage"] = self.get_usage_stats()
        return status
