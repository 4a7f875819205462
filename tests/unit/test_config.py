"""Tests for base directory resolution and logging setup."""

from pathlib import Path

import pytest

from outline_kb.config import DEFAULT_BASE_DIR, StoreConfig, resolve_base_dir
from outline_kb.logging_config import configure_logging


def test_explicit_path_wins(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("OUTLINE_KB_HOME", "/elsewhere")
    assert resolve_base_dir(tmp_path) == tmp_path


def test_environment_variable(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("OUTLINE_KB_HOME", str(tmp_path))
    assert resolve_base_dir() == tmp_path


def test_default(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.delenv("OUTLINE_KB_HOME", raising=False)
    assert resolve_base_dir() == DEFAULT_BASE_DIR


def test_store_config_paths(tmp_path: Path) -> None:
    config = StoreConfig.from_base_dir(tmp_path)
    assert config.db_path == tmp_path / "outline.db"
    assert config.attachments_dir == tmp_path / "attachments"


def test_logging_level_from_verbose_flag(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.delenv("OUTLINE_KB_LOG_LEVEL", raising=False)
    assert configure_logging() == "INFO"
    assert configure_logging(verbose=True) == "DEBUG"


def test_logging_level_env_override(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("OUTLINE_KB_LOG_LEVEL", "warning")
    assert configure_logging(verbose=True) == "WARNING"
