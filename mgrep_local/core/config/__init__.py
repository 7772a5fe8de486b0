"""
Configuration management package for mgrep-local.

This package provides a unified configuration system that supports:
- Multiple configuration sources (environment variables, JSON/YAML config files, runtime overrides)
- Type-safe configuration validation using Pydantic
- Embedder backend selection with GPU-server probing and CPU fallback
- Secure handling of sensitive configuration data
"""

from .embedding_config import EmbeddingConfig
from .embedding_factory import EmbedderFactory, create_embedder
from .unified_config import (
    IndexingConfig,
    MgrepConfig,
    SearchConfig,
    ShardingConfig,
    StorageConfig,
    get_config,
    reset_config,
    set_config,
)

__all__ = [
    "EmbeddingConfig",
    "EmbedderFactory",
    "IndexingConfig",
    "MgrepConfig",
    "SearchConfig",
    "ShardingConfig",
    "StorageConfig",
    "create_embedder",
    "get_config",
    "reset_config",
    "set_config",
]
