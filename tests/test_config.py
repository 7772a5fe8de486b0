"""Tests for the configuration layer."""

import json

import pytest
import yaml
from pydantic import ValidationError

from mgrep_local.core.config import (
    EmbeddingConfig,
    IndexingConfig,
    MgrepConfig,
    get_config,
    reset_config,
    set_config,
)
from mgrep_local.core.config import unified_config


@pytest.fixture(autouse=True)
def no_user_config(monkeypatch, temp_dir):
    monkeypatch.setattr(unified_config, "GLOBAL_CONFIG_PATH", temp_dir / "home" / "config.json")


class TestEmbeddingConfig:
    def test_defaults(self):
        config = EmbeddingConfig()
        assert config.backend == "auto"
        assert config.gpu_server_url == "http://localhost:8000"
        assert config.get_default_model() == "sentence-transformers/all-MiniLM-L6-v2"

    def test_backend_aliases(self):
        assert EmbeddingConfig(backend="GPU").backend == "gpu_server"
        assert EmbeddingConfig(backend="local").backend == "gpu_server"

    def test_env_overrides(self, monkeypatch):
        monkeypatch.setenv("MGREP_EMBEDDING_BACKEND", "openai")
        monkeypatch.setenv("MGREP_EMBEDDING_API_KEY", "sk-env")
        config = EmbeddingConfig()
        assert config.backend == "openai"
        assert config.api_key.get_secret_value() == "sk-env"
        assert config.get_default_model() == "text-embedding-3-small"

    def test_invalid_url(self):
        with pytest.raises(ValidationError):
            EmbeddingConfig(gpu_server_url="localhost:8000")

    def test_url_trailing_slash_removed(self):
        assert EmbeddingConfig(base_url="https://api.example.com/v1/").base_url == "https://api.example.com/v1"

    def test_missing_openai_key(self, monkeypatch):
        monkeypatch.delenv("OPENAI_API_KEY", raising=False)
        config = EmbeddingConfig(backend="openai")
        assert not config.is_backend_configured()
        assert config.get_missing_config()

    def test_repr_hides_key(self):
        assert "sk-secret" not in repr(EmbeddingConfig(api_key="sk-secret"))


class TestMgrepConfig:
    def test_defaults(self):
        config = MgrepConfig.load_hierarchical()
        assert config.sharding.shard_count == 8
        assert config.search.threshold == 0.3
        assert config.indexing.debounce_ms == 500

    def test_project_json_file(self, temp_dir):
        (temp_dir / ".mgrep-local.json").write_text(json.dumps({
            "sharding": {"shard_count": 4},
            "search": {"limit": 5},
        }))
        config = MgrepConfig.load_hierarchical(project_dir=temp_dir)
        assert config.sharding.shard_count == 4
        assert config.search.limit == 5

    def test_project_yaml_file(self, temp_dir):
        (temp_dir / ".mgrep-local.yaml").write_text(yaml.safe_dump({"embedding": {"backend": "cpu"}}))
        config = MgrepConfig.load_hierarchical(project_dir=temp_dir)
        assert config.embedding.backend == "cpu"

    def test_env_beats_file_and_overrides_beat_env(self, temp_dir, monkeypatch):
        (temp_dir / ".mgrep-local.json").write_text(json.dumps({"sharding": {"shard_count": 4}}))
        monkeypatch.setenv("MGREP_SHARDING__SHARD_COUNT", "16")

        assert MgrepConfig.load_hierarchical(project_dir=temp_dir).sharding.shard_count == 16
        overridden = MgrepConfig.load_hierarchical(project_dir=temp_dir, sharding={"shard_count": 2})
        assert overridden.sharding.shard_count == 2

    def test_user_file_is_lowest_priority(self, temp_dir, monkeypatch):
        user_file = temp_dir / "home" / "config.json"
        user_file.parent.mkdir()
        user_file.write_text(json.dumps({"search": {"limit": 7, "threshold": 0.6}}))
        (temp_dir / ".mgrep-local.json").write_text(json.dumps({"search": {"limit": 3}}))

        config = MgrepConfig.load_hierarchical(project_dir=temp_dir)
        assert config.search.limit == 3
        assert config.search.threshold == 0.6

    def test_malformed_file_is_skipped(self, temp_dir):
        (temp_dir / ".mgrep-local.json").write_text("{not json")
        assert MgrepConfig.load_hierarchical(project_dir=temp_dir).sharding.shard_count == 8

    def test_invalid_debounce_rejected(self):
        with pytest.raises(ValidationError):
            MgrepConfig(indexing={"debounce_ms": 10})

    def test_overlap_must_be_smaller_than_chunk(self):
        with pytest.raises(ValidationError):
            IndexingConfig(max_chunk_size=100, overlap_size=100)

    def test_log_level_normalized(self):
        assert MgrepConfig(log_level="debug").log_level == "DEBUG"
        with pytest.raises(ValidationError):
            MgrepConfig(log_level="chatty")

    def test_save_to_file_strips_api_key(self, temp_dir):
        config = MgrepConfig(embedding=EmbeddingConfig(backend="openai", api_key="sk-secret"))
        path = temp_dir / "saved.yaml"
        config.save_to_file(path)

        saved = yaml.safe_load(path.read_text())
        assert saved["embedding"]["backend"] == "openai"
        assert "api_key" not in saved["embedding"]


class TestGlobalConfig:
    def test_get_set_reset(self):
        first = get_config()
        assert get_config() is first

        custom = MgrepConfig(debug=True)
        set_config(custom)
        assert get_config() is custom

        reset_config()
        assert get_config() is not custom
