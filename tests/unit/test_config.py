"""Unit tests for task loop configuration."""

import json
from pathlib import Path

import pytest

from taskloop.config import LoopConfig, log_file, log_level, read_config, storage_dir_name


class TestEnvironment:
    """Test cases for environment-driven settings."""

    def test_storage_dir_default(self, monkeypatch):
        """The default storage directory is .taskloop."""
        monkeypatch.delenv("TASKLOOP_STORAGE_DIR", raising=False)
        assert storage_dir_name() == ".taskloop"

    def test_storage_dir_override(self, monkeypatch):
        """TASKLOOP_STORAGE_DIR overrides the directory name."""
        monkeypatch.setenv("TASKLOOP_STORAGE_DIR", "  .loops  ")
        assert storage_dir_name() == ".loops"

    def test_blank_storage_dir_uses_default(self, monkeypatch):
        """A blank override is ignored."""
        monkeypatch.setenv("TASKLOOP_STORAGE_DIR", "   ")
        assert storage_dir_name() == ".taskloop"

    def test_log_level(self, monkeypatch):
        """Log level is upper-cased and defaults to INFO."""
        monkeypatch.delenv("TASKLOOP_LOG_LEVEL", raising=False)
        assert log_level() == "INFO"
        monkeypatch.setenv("TASKLOOP_LOG_LEVEL", "debug")
        assert log_level() == "DEBUG"

    def test_log_file(self, monkeypatch, tmp_path):
        """The log file is optional."""
        monkeypatch.delenv("TASKLOOP_LOG_FILE", raising=False)
        assert log_file() is None
        monkeypatch.setenv("TASKLOOP_LOG_FILE", str(tmp_path / "loop.log"))
        assert log_file() == Path(tmp_path / "loop.log")


class TestReadConfig:
    """Test cases for config.json parsing."""

    def _write(self, base_dir, content):
        base_dir.mkdir(parents=True, exist_ok=True)
        (base_dir / "config.json").write_text(content, encoding="utf-8")

    def test_missing_config(self, tmp_path):
        """No file yields an empty config."""
        assert read_config(tmp_path) == LoopConfig()

    def test_max_retries(self, tmp_path):
        """A positive integer is accepted."""
        self._write(tmp_path, json.dumps({"max_retries": 4}))

        config = read_config(tmp_path)

        assert config.max_retries == 4
        assert config.to_dict() == {"max_retries": 4}

    @pytest.mark.parametrize("value", [0, -2, "5", True, None, 2.5])
    def test_invalid_max_retries_ignored(self, tmp_path, value):
        """Anything but a positive integer is ignored."""
        self._write(tmp_path, json.dumps({"max_retries": value}))
        assert read_config(tmp_path).max_retries is None

    def test_malformed_json(self, tmp_path):
        """Broken JSON yields an empty config."""
        self._write(tmp_path, "{oops")
        assert read_config(tmp_path) == LoopConfig()

    def test_non_object(self, tmp_path):
        """A JSON list yields an empty config."""
        self._write(tmp_path, "[3]")
        assert read_config(tmp_path) == LoopConfig()
