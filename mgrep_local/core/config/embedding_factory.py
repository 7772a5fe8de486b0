"""
Embedder factory for mgrep-local.

This module selects and builds embedding backends from EmbeddingConfig. An
explicit backend is built directly; 'auto' probes the local GPU server first
and falls back to the CPU backend when the server is unreachable or fails to
initialize.
"""

from typing import Optional, Union

from loguru import logger

from core.exceptions import InitializationError
from core.types import EmbedderBackend
from providers.embeddings import (
    BaseEmbedder,
    CpuEmbedder,
    GpuServerEmbedder,
    OpenAIEmbedder,
    check_gpu_server,
)

from .embedding_config import EmbeddingConfig

BackendSpec = Union[EmbedderBackend, str, None]


class EmbedderFactory:
    """
    Factory for creating embedders from configuration.

    ``create_provider`` builds without initializing; ``create_embedder``
    returns an initialized embedder and performs backend probing.
    """

    @staticmethod
    def create_provider(config: EmbeddingConfig, backend: BackendSpec = None) -> BaseEmbedder:
        """
        Build an embedder for a concrete backend without initializing it.

        Args:
            config: Validated embedding configuration
            backend: Backend override; 'auto' resolves to CPU here

        Returns:
            Uninitialized embedder

        Raises:
            ValueError: If the backend is unknown or its options are invalid
        """
        resolved = EmbedderBackend.from_string(backend) if backend else config.backend_type
        if resolved is EmbedderBackend.AUTO:
            resolved = EmbedderBackend.CPU

        if resolved is EmbedderBackend.CPU:
            return EmbedderFactory._create_cpu_embedder(config)
        elif resolved is EmbedderBackend.GPU_SERVER:
            return EmbedderFactory._create_gpu_server_embedder(config)
        elif resolved is EmbedderBackend.OPENAI:
            return EmbedderFactory._create_openai_embedder(config)
        else:
            raise ValueError(f"Unsupported backend: {resolved}")

    @staticmethod
    def _create_cpu_embedder(config: EmbeddingConfig) -> CpuEmbedder:
        model = config.get_default_model(EmbedderBackend.CPU)
        logger.debug(f"Creating CPU embedder: model={model}, cache_dir={config.cache_dir}")
        try:
            return CpuEmbedder(
                model=model,
                cache_dir=config.model_cache_dir,
                sub_batch_size=config.sub_batch_size,
            )
        except ValueError as e:
            raise ValueError(f"Failed to create CPU embedder: {e}") from e

    @staticmethod
    def _create_gpu_server_embedder(config: EmbeddingConfig) -> GpuServerEmbedder:
        logger.debug(
            f"Creating GPU server embedder: url={config.gpu_server_url}, "
            f"size={config.gpu_model_size}, model={config.model}"
        )
        try:
            return GpuServerEmbedder(
                base_url=config.gpu_server_url,
                model=config.model,
                model_size=config.gpu_model_size,
                timeout=config.timeout,
                sub_batch_size=config.sub_batch_size,
            )
        except ValueError as e:
            raise ValueError(f"Failed to create GPU server embedder: {e}") from e

    @staticmethod
    def _create_openai_embedder(config: EmbeddingConfig) -> OpenAIEmbedder:
        api_key = config.api_key.get_secret_value() if config.api_key else None
        model = config.get_default_model(EmbedderBackend.OPENAI)
        logger.debug(
            f"Creating OpenAI embedder: model={model}, "
            f"base_url={config.base_url}, api_key={'***' if api_key else None}"
        )
        try:
            return OpenAIEmbedder(
                api_key=api_key,
                model=model,
                base_url=config.base_url,
                batch_size=config.batch_size,
                max_concurrent_batches=config.max_concurrent_batches,
                max_retries=config.max_retries,
                retry_delay=config.retry_delay,
                timeout=config.timeout,
                dimensions=config.dimensions,
            )
        except ValueError as e:
            raise ValueError(f"Failed to create OpenAI embedder: {e}") from e

    @staticmethod
    async def create_embedder(config: EmbeddingConfig, backend: BackendSpec = None) -> BaseEmbedder:
        """
        Build and initialize the best available embedder.

        Args:
            config: Validated embedding configuration
            backend: Backend override; anything but 'auto' bypasses probing

        Returns:
            Initialized embedder

        Raises:
            InitializationError: If an explicitly chosen backend, or the CPU
                fallback, fails to initialize
        """
        resolved = EmbedderBackend.from_string(backend) if backend else config.backend_type
        if resolved is not EmbedderBackend.AUTO:
            return await EmbedderFactory.create_embedder_with_backend(resolved, config)

        if await check_gpu_server(config.gpu_server_url, config.probe_timeout):
            gpu_embedder = EmbedderFactory._create_gpu_server_embedder(config)
            try:
                await gpu_embedder.initialize()
                logger.info(f"Using GPU server embedder at {config.gpu_server_url}")
                return gpu_embedder
            except InitializationError as e:
                logger.warning(f"GPU server embedder unavailable, falling back to CPU: {e}")
                await gpu_embedder.dispose()
        else:
            logger.info(f"No GPU server at {config.gpu_server_url}, using CPU embedder")

        return await EmbedderFactory.create_embedder_with_backend(EmbedderBackend.CPU, config)

    @staticmethod
    async def create_embedder_with_backend(
        backend: Union[EmbedderBackend, str], config: Optional[EmbeddingConfig] = None
    ) -> BaseEmbedder:
        """Build and initialize an embedder for one explicit backend, without probing."""
        config = config or EmbeddingConfig()
        embedder = EmbedderFactory.create_provider(config, backend)
        await embedder.initialize()
        return embedder


async def create_embedder(
    config: Optional[EmbeddingConfig] = None, backend: BackendSpec = None
) -> BaseEmbedder:
    """Build an initialized embedder from the given or global configuration."""
    if config is None:
        from .unified_config import get_config

        config = get_config().embedding
    return await EmbedderFactory.create_embedder(config, backend)
