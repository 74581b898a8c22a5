"""
Config Tests - Verify defaults, environment overrides and derived paths.
"""

from pathlib import Path

import pytest

from filescope import config as config_module
from filescope.config import IndexerConfig, get_config


class TestIndexerConfig:

    def test_paths_live_in_index_dir(self, temp_dir: Path):
        config = IndexerConfig(index_dir=temp_dir / "idx")

        assert config.index_dir.is_dir()
        assert config.db_path == temp_dir / "idx" / "index.db"
        assert config.cache_path.parent == config.index_dir
        assert config.lock_path.parent == config.index_dir

    def test_relative_index_dir_is_resolved(self, temp_dir: Path, monkeypatch):
        monkeypatch.chdir(temp_dir)
        config = IndexerConfig(index_dir=Path("relative"))

        assert config.index_dir == temp_dir / "relative"

    def test_defaults(self, temp_dir: Path):
        config = IndexerConfig(index_dir=temp_dir)

        assert config.commit_batch_size == 0
        assert config.verify_every == 0
        assert config.preview_chars == 500
        assert config.json_max_depth == 20
        assert "node_modules" in config.skip_dirs

    def test_from_env(self, temp_dir: Path, monkeypatch):
        """Environment variables override the defaults."""
        monkeypatch.setenv("HOME", str(temp_dir))
        monkeypatch.setenv("FILESCOPE_INDEX_DIR", str(temp_dir / "env-index"))
        monkeypatch.setenv("FILESCOPE_MAX_WORKERS", "3")
        monkeypatch.setenv("FILESCOPE_COMMIT_BATCH_SIZE", "250")
        monkeypatch.setenv("FILESCOPE_TEXT_MAX_BYTES", "2048")
        monkeypatch.setenv("FILESCOPE_VERIFY_EVERY", "10")

        config = IndexerConfig.from_env()

        assert config.index_dir == temp_dir / "env-index"
        assert config.index_dir.is_dir()
        assert config.max_workers == 3
        assert config.commit_batch_size == 250
        assert config.text_max_bytes == 2048
        assert config.verify_every == 10

    def test_from_env_bad_number(self, temp_dir: Path, monkeypatch):
        monkeypatch.setenv("HOME", str(temp_dir))
        monkeypatch.setenv("FILESCOPE_MAX_WORKERS", "many")

        with pytest.raises(ValueError):
            IndexerConfig.from_env()


class TestSingleton:

    def test_set_and_get(self, test_config):
        assert get_config() is test_config

    def test_lazy_default_from_env(self, temp_dir: Path, monkeypatch):
        monkeypatch.setenv("HOME", str(temp_dir))
        monkeypatch.setenv("FILESCOPE_INDEX_DIR", str(temp_dir / "lazy"))
        monkeypatch.setattr(config_module, "_default_config", None)

        config = get_config()

        assert config.index_dir == temp_dir / "lazy"
        assert get_config() is config
