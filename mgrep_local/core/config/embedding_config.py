"""
Embedding configuration for mgrep-local.

This module provides a type-safe, validated configuration for the embedding
backends, loaded from runtime parameters, environment variables and config
files with consistent behavior for indexing, searching and worker processes.
"""

import os
from pathlib import Path
from typing import Any, Dict, Literal, Optional

from pydantic import Field, SecretStr, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from core.types import EmbedderBackend


class EmbeddingConfig(BaseSettings):
    """
    Configuration for embedding backends.

    Configuration Sources (in order of precedence):
    1. Runtime parameters (highest priority)
    2. Environment variables (MGREP_EMBEDDING_*)
    3. Configuration files (.mgrep-local.json / .mgrep-local.yaml)
    4. Default values (lowest priority)

    Environment Variable Examples:
        MGREP_EMBEDDING_BACKEND=openai
        MGREP_EMBEDDING_API_KEY=sk-...
        MGREP_EMBEDDING_MODEL=text-embedding-3-small
        MGREP_EMBEDDING_GPU_SERVER_URL=http://localhost:8000
        MGREP_EMBEDDING_BATCH_SIZE=100
    """

    model_config = SettingsConfigDict(
        env_prefix='MGREP_EMBEDDING_',
        env_nested_delimiter='__',
        case_sensitive=False,
        validate_default=True,
        extra='ignore',
    )

    # Backend Selection
    backend: Literal['auto', 'cpu', 'gpu_server', 'openai'] = Field(
        default='auto',
        description="Embedding backend; 'auto' probes the GPU server and falls back to CPU"
    )

    model: Optional[str] = Field(
        default=None,
        description="Embedding model name (uses backend default if not specified)"
    )

    cache_dir: Optional[str] = Field(
        default=None,
        description="Model cache directory for the CPU backend"
    )

    # GPU server
    gpu_server_url: str = Field(
        default='http://localhost:8000',
        description="Base URL of the local GPU inference server"
    )

    gpu_model_size: Literal['0.6B', '4B', '8B'] = Field(
        default='0.6B',
        description="Model size served by the GPU server"
    )

    probe_timeout: float = Field(
        default=2.0,
        gt=0,
        le=30,
        description="Seconds to wait for the GPU server health probe"
    )

    # Remote API
    api_key: Optional[SecretStr] = Field(
        default=None,
        description="API key for the openai backend"
    )

    base_url: Optional[str] = Field(
        default=None,
        description="Base URL for the remote embedding API"
    )

    dimensions: Optional[int] = Field(
        default=None,
        ge=1,
        le=8192,
        description="Reduced embedding dimensions (text-embedding-3 models)"
    )

    # Performance Configuration
    batch_size: int = Field(
        default=100,
        ge=1,
        le=2048,
        description="Texts per remote API request"
    )

    sub_batch_size: int = Field(
        default=32,
        ge=1,
        le=1024,
        description="Texts per local inference call"
    )

    max_concurrent_batches: int = Field(
        default=4,
        ge=1,
        le=20,
        description="Maximum concurrent remote API requests"
    )

    timeout: int = Field(
        default=30,
        ge=1,
        le=300,
        description="Request timeout in seconds"
    )

    max_retries: int = Field(
        default=3,
        ge=0,
        le=10,
        description="Maximum number of retry attempts"
    )

    retry_delay: float = Field(
        default=1.0,
        ge=0,
        le=60,
        description="Base delay in seconds between retries"
    )

    @field_validator('backend', mode='before')
    def normalize_backend(cls, v: Any) -> Any:
        """Accept enum members and aliases such as 'gpu' or 'local'."""
        if isinstance(v, (str, EmbedderBackend)):
            return EmbedderBackend.from_string(v).value
        return v

    @field_validator('base_url', 'gpu_server_url')
    def validate_url(cls, v: Optional[str]) -> Optional[str]:
        """Validate and normalize URLs."""
        if v is None:
            return v

        v = v.rstrip('/')
        if not (v.startswith('http://') or v.startswith('https://')):
            raise ValueError('URL must start with http:// or https://')

        return v

    @property
    def backend_type(self) -> EmbedderBackend:
        return EmbedderBackend(self.backend)

    @property
    def model_cache_dir(self) -> Optional[Path]:
        return Path(self.cache_dir).expanduser() if self.cache_dir else None

    def get_default_model(self, backend: Optional[EmbedderBackend] = None) -> str:
        """
        Get the model for a backend, honoring an explicit model setting.

        Args:
            backend: Backend to resolve for (defaults to the configured one)

        Returns:
            Model name
        """
        if self.model:
            return self.model

        defaults = {
            'auto': 'sentence-transformers/all-MiniLM-L6-v2',
            'cpu': 'sentence-transformers/all-MiniLM-L6-v2',
            'gpu_server': f'Qwen/Qwen3-Embedding-{self.gpu_model_size}',
            'openai': 'text-embedding-3-small',
        }
        key = (backend or self.backend_type).value
        return defaults[key]

    def get_provider_config(self) -> Dict[str, Any]:
        """
        Get the backend-specific configuration dictionary.

        Returns:
            Dictionary containing configuration parameters for the selected backend
        """
        base_config: Dict[str, Any] = {
            'backend': self.backend,
            'model': self.model,
            'timeout': self.timeout,
            'sub_batch_size': self.sub_batch_size,
        }

        if self.backend == 'openai':
            base_config.update({
                'batch_size': self.batch_size,
                'max_concurrent_batches': self.max_concurrent_batches,
                'max_retries': self.max_retries,
                'retry_delay': self.retry_delay,
            })
            if self.api_key:
                base_config['api_key'] = self.api_key.get_secret_value()
            if self.base_url:
                base_config['base_url'] = self.base_url
            if self.dimensions:
                base_config['dimensions'] = self.dimensions

        elif self.backend in ('gpu_server', 'auto'):
            base_config['gpu_server_url'] = self.gpu_server_url
            base_config['gpu_model_size'] = self.gpu_model_size

        if self.backend in ('cpu', 'auto') and self.cache_dir:
            base_config['cache_dir'] = self.cache_dir

        return base_config

    def is_backend_configured(self) -> bool:
        """
        Check if the backend has all required configuration.

        The local backends need nothing beyond defaults; the openai backend
        also accepts the OPENAI_API_KEY environment variable at load time.
        """
        return not self.get_missing_config()

    def get_missing_config(self) -> list[str]:
        """
        Get list of missing required configuration parameters.

        Returns:
            List of missing configuration parameter names
        """
        missing = []
        if self.backend == 'openai' and not self.api_key and not os.getenv('OPENAI_API_KEY'):
            missing.append('api_key (MGREP_EMBEDDING_API_KEY or OPENAI_API_KEY)')
        return missing

    def __repr__(self) -> str:
        """String representation hiding sensitive information."""
        api_key_display = "***" if self.api_key else None
        return (
            f"EmbeddingConfig("
            f"backend={self.backend}, "
            f"model={self.get_default_model()}, "
            f"api_key={api_key_display}, "
            f"gpu_server_url={self.gpu_server_url}, "
            f"batch_size={self.batch_size})"
        )
