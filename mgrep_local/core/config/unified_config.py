"""
Unified configuration system for mgrep-local.

This module provides a single, type-safe configuration model covering the
embedding backend, storage, sharding, indexing and search components, with
hierarchical loading from config files and environment variables.
"""

import json
from pathlib import Path
from typing import Any, Optional

import yaml
from loguru import logger
from pydantic import BaseModel, Field, field_validator, model_validator
from pydantic_settings import BaseSettings, EnvSettingsSource, SettingsConfigDict

from .embedding_config import EmbeddingConfig

DEFAULT_CACHE_DIR = Path.home() / '.cache' / 'mgrep-local'
GLOBAL_CONFIG_PATH = Path.home() / '.mgrep-local' / 'config.json'
PROJECT_CONFIG_NAMES = ('.mgrep-local.json', '.mgrep-local.yaml', '.mgrep-local.yml')


class StorageConfig(BaseModel):
    """Vector store configuration."""

    db_path: str = Field(
        default=str(DEFAULT_CACHE_DIR / 'index.duckdb'),
        description="DuckDB file for the unsharded store"
    )

    shard_path: str = Field(
        default='.mgrep-shards',
        description="Directory holding shard databases and the centroid meta database"
    )

    use_hnsw: bool = Field(
        default=True,
        description="Create an HNSW index through the DuckDB vss extension when available"
    )


class ShardingConfig(BaseModel):
    """Sharding configuration."""

    enabled: bool = Field(
        default=False,
        description="Use the sharded store, indexer and searcher"
    )

    shard_count: int = Field(
        default=8,
        ge=1,
        le=256,
        description="Number of shards; changing it reroutes every file"
    )

    centroid_routing: bool = Field(
        default=False,
        description="Order shard queries by centroid similarity"
    )

    max_shards: Optional[int] = Field(
        default=None,
        ge=1,
        description="With centroid routing, query only the closest N shards"
    )


class IndexingConfig(BaseModel):
    """Indexing configuration."""

    max_chunk_size: int = Field(
        default=500,
        ge=50,
        le=20000,
        description="Target maximum chunk size in characters"
    )

    overlap_size: int = Field(
        default=50,
        ge=0,
        le=1000,
        description="Characters carried between sliding-window chunks"
    )

    respect_boundaries: bool = Field(
        default=True,
        description="Prefer splitting on function/class boundaries"
    )

    batch_size: int = Field(
        default=32,
        ge=1,
        le=1000,
        description="Chunks embedded per embedder call"
    )

    worker_count: Optional[int] = Field(
        default=None,
        ge=1,
        le=128,
        description="Parallel indexing workers (defaults to CPU count minus one)"
    )

    use_processes: bool = Field(
        default=True,
        description="Run parallel indexing workers as processes instead of threads"
    )

    include_patterns: list[str] = Field(
        default_factory=lambda: [
            '**/*.py', '**/*.ts', '**/*.tsx', '**/*.js', '**/*.jsx', '**/*.go',
            '**/*.rs', '**/*.java', '**/*.kt', '**/*.rb', '**/*.c', '**/*.h',
            '**/*.cpp', '**/*.hpp', '**/*.cs', '**/*.php', '**/*.swift', '**/*.md',
        ],
        description="File patterns to include in indexing"
    )

    exclude_patterns: list[str] = Field(
        default_factory=lambda: [
            '**/node_modules/**', '**/.git/**', '**/__pycache__/**', '**/venv/**',
            '**/.venv/**', '**/dist/**', '**/build/**', '**/.mgrep-shards/**',
        ],
        description="File patterns to exclude from indexing"
    )

    watch: bool = Field(
        default=False,
        description="Enable file watching for automatic updates"
    )

    debounce_ms: int = Field(
        default=500,
        ge=100,
        le=5000,
        description="File change debounce time in milliseconds"
    )

    @model_validator(mode='after')
    def validate_overlap(self) -> 'IndexingConfig':
        if self.overlap_size >= self.max_chunk_size:
            raise ValueError('overlap_size must be smaller than max_chunk_size')
        return self


class SearchConfig(BaseModel):
    """Search configuration."""

    limit: int = Field(default=10, ge=1, le=1000, description="Default result limit")

    threshold: float = Field(
        default=0.3,
        ge=0.0,
        le=1.0,
        description="Default similarity threshold"
    )

    context_lines: int = Field(default=3, ge=0, le=50, description="Highlight context lines")

    similar_threshold: float = Field(
        default=0.5,
        ge=0.0,
        le=1.0,
        description="Default threshold for code-to-code similarity"
    )


class MgrepConfig(BaseSettings):
    """
    Unified configuration for mgrep-local.

    Configuration Sources (in order of precedence):
    1. Runtime parameters (highest priority)
    2. Environment variables (MGREP_*)
    3. Project config file (.mgrep-local.json / .mgrep-local.yaml)
    4. User config file (~/.mgrep-local/config.json)
    5. Default values (lowest priority)

    Environment Variable Examples:
        MGREP_EMBEDDING__BACKEND=cpu
        MGREP_EMBEDDING__API_KEY=sk-...
        MGREP_SHARDING__SHARD_COUNT=16
        MGREP_INDEXING__DEBOUNCE_MS=750
        MGREP_SEARCH__THRESHOLD=0.4
        MGREP_DEBUG=true
    """

    model_config = SettingsConfigDict(
        env_prefix='MGREP_',
        env_nested_delimiter='__',
        case_sensitive=False,
        validate_default=True,
        extra='ignore',
        env_file=None,
    )

    # Component configurations
    embedding: EmbeddingConfig = Field(
        default_factory=EmbeddingConfig,
        description="Embedding backend configuration"
    )

    storage: StorageConfig = Field(
        default_factory=StorageConfig,
        description="Vector store configuration"
    )

    sharding: ShardingConfig = Field(
        default_factory=ShardingConfig,
        description="Sharding configuration"
    )

    indexing: IndexingConfig = Field(
        default_factory=IndexingConfig,
        description="Indexing configuration"
    )

    search: SearchConfig = Field(
        default_factory=SearchConfig,
        description="Search configuration"
    )

    # Global settings
    debug: bool = Field(default=False, description="Enable debug logging")

    log_level: Optional[str] = Field(default=None, description="Explicit loguru level")

    @field_validator('log_level')
    def validate_log_level(cls, v: Optional[str]) -> Optional[str]:
        if v is None:
            return v
        v = v.upper()
        if v not in {'TRACE', 'DEBUG', 'INFO', 'SUCCESS', 'WARNING', 'ERROR', 'CRITICAL'}:
            raise ValueError(f'unknown log level {v}')
        return v

    @classmethod
    def load_hierarchical(cls,
                          project_dir: Path | None = None,
                          **override_values: Any) -> 'MgrepConfig':
        """
        Load configuration from hierarchical sources.

        Args:
            project_dir: Project directory to search for .mgrep-local.json/.yaml
            **override_values: Runtime parameter overrides

        Returns:
            Loaded and validated configuration
        """
        config_data: dict[str, Any] = {}

        # 1. User config file
        _deep_merge(config_data, _load_config_file(GLOBAL_CONFIG_PATH))

        # 2. Project config file (first match wins)
        project_dir = project_dir or Path.cwd()
        for name in PROJECT_CONFIG_NAMES:
            project_config_path = project_dir / name
            if project_config_path.exists():
                _deep_merge(config_data, _load_config_file(project_config_path))
                break

        # 3. Environment variables take precedence over files
        _deep_merge(config_data, EnvSettingsSource(cls)())

        # 4. Runtime overrides
        _deep_merge(config_data, override_values)

        return cls(**config_data)

    def get_missing_config(self) -> list[str]:
        """
        Get list of missing required configuration parameters.

        Returns:
            List of missing configuration parameter names
        """
        return [f'embedding.{item}' for item in self.embedding.get_missing_config()]

    def is_fully_configured(self) -> bool:
        return self.embedding.is_backend_configured()

    def to_dict(self) -> dict[str, Any]:
        """
        Convert configuration to dictionary format.

        Returns:
            Configuration as dictionary
        """
        return self.model_dump(mode='json', exclude_none=True)

    def save_to_file(self, file_path: Path) -> None:
        """
        Save configuration to a JSON or YAML file, chosen by extension.

        Args:
            file_path: Path to save configuration file
        """
        file_path = Path(file_path)
        file_path.parent.mkdir(parents=True, exist_ok=True)
        config_dict = self.to_dict()

        # Remove sensitive data from saved config
        config_dict.get('embedding', {}).pop('api_key', None)

        with open(file_path, 'w', encoding='utf-8') as f:
            if file_path.suffix in ('.yaml', '.yml'):
                yaml.safe_dump(config_dict, f, sort_keys=False)
            else:
                json.dump(config_dict, f, indent=2)

    def __repr__(self) -> str:
        """String representation hiding sensitive information."""
        api_key_display = "***" if self.embedding.api_key else None
        return (
            f"MgrepConfig("
            f"embedding.backend={self.embedding.backend}, "
            f"embedding.model={self.embedding.get_default_model()}, "
            f"embedding.api_key={api_key_display}, "
            f"sharding.shard_count={self.sharding.shard_count}, "
            f"storage.db_path={self.storage.db_path})"
        )


def _load_config_file(path: Path) -> dict[str, Any]:
    """Read a JSON or YAML config file; unreadable files are skipped with a warning."""
    if not path.exists():
        return {}
    try:
        with open(path, encoding='utf-8') as f:
            if path.suffix in ('.yaml', '.yml'):
                data = yaml.safe_load(f)
            else:
                data = json.load(f)
    except (json.JSONDecodeError, yaml.YAMLError, OSError) as e:
        logger.warning(f"Failed to load config file {path}: {e}")
        return {}
    return data if isinstance(data, dict) else {}


def _deep_merge(target: dict[str, Any], source: dict[str, Any]) -> dict[str, Any]:
    """Merge nested dictionaries in place; values from source win."""
    for key, value in source.items():
        if isinstance(value, dict) and isinstance(target.get(key), dict):
            _deep_merge(target[key], value)
        else:
            target[key] = value
    return target


# Global configuration instance
_config_instance: MgrepConfig | None = None


def get_config() -> MgrepConfig:
    """
    Get the global configuration instance.

    Returns:
        Global MgrepConfig instance
    """
    global _config_instance
    if _config_instance is None:
        _config_instance = MgrepConfig.load_hierarchical()
    return _config_instance


def set_config(config: MgrepConfig) -> None:
    """
    Set the global configuration instance.

    Args:
        config: Configuration instance to set as global
    """
    global _config_instance
    _config_instance = config


def reset_config() -> None:
    """Reset the global configuration instance."""
    global _config_instance
    _config_instance = None
