"""Tests for settings loading and path resolution."""

import logging
from pathlib import Path

import pytest
from pydantic import ValidationError

from chatrelay.config import LoggingSettings, load_config
from chatrelay.main import configure_logging


def test_defaults_when_files_missing(tmp_path):
    """Missing settings and secrets files fall back to defaults."""
    cfg = load_config(
        settings_path=tmp_path / "chatrelay.settings.yaml",
        secrets_path=tmp_path / "chatrelay.secrets.yaml",
    )

    assert cfg.server.port == 3500
    assert cfg.history.initial_page_size == 100
    assert cfg.history.scrollback_page_size == 50
    assert cfg.secrets.jwt.algorithm == "HS256"
    assert Path(cfg.storage.db_path) == tmp_path / "chat_messages.duckdb"


def test_db_path_relative_to_settings_dir(tmp_path):
    """Relative db_path resolves from the settings file directory."""
    settings_file = tmp_path / "chatrelay.settings.yaml"
    settings_file.write_text(
        "storage:\n"
        "  db_path: data/messages.duckdb\n",
        encoding="utf-8",
    )

    cfg = load_config(settings_path=settings_file, secrets_path=tmp_path / "none.yaml")
    assert Path(cfg.storage.db_path) == tmp_path / "data" / "messages.duckdb"


def test_db_path_absolute_remains_unchanged(tmp_path):
    """Absolute db_path is preserved exactly as configured."""
    absolute_path = tmp_path / "absolute" / "messages.duckdb"
    settings_file = tmp_path / "chatrelay.settings.yaml"
    settings_file.write_text(
        "storage:\n"
        f"  db_path: {absolute_path}\n",
        encoding="utf-8",
    )

    cfg = load_config(settings_path=settings_file, secrets_path=tmp_path / "none.yaml")
    assert Path(cfg.storage.db_path) == absolute_path


def test_in_memory_db_path_is_kept(tmp_path):
    settings_file = tmp_path / "chatrelay.settings.yaml"
    settings_file.write_text(
        "storage:\n"
        "  db_path: \":memory:\"\n",
        encoding="utf-8",
    )

    cfg = load_config(settings_path=settings_file, secrets_path=tmp_path / "none.yaml")
    assert cfg.storage.db_path == ":memory:"


def test_secrets_merged_under_secrets_key(tmp_path):
    secrets_file = tmp_path / "chatrelay.secrets.yaml"
    secrets_file.write_text(
        "jwt:\n"
        "  secret_key: s3cret\n",
        encoding="utf-8",
    )

    cfg = load_config(settings_path=tmp_path / "none.yaml", secrets_path=secrets_file)
    assert cfg.secrets.jwt.secret_key == "s3cret"
    assert cfg.secrets.jwt.algorithm == "HS256"


def test_paths_from_environment(tmp_path, monkeypatch):
    settings_file = tmp_path / "custom.yaml"
    settings_file.write_text(
        "server:\n"
        "  port: 4100\n"
        "history:\n"
        "  scrollback_page_size: 25\n",
        encoding="utf-8",
    )
    monkeypatch.setenv("CHATRELAY_SETTINGS", str(settings_file))
    monkeypatch.setenv("CHATRELAY_SECRETS", str(tmp_path / "none.yaml"))

    cfg = load_config()
    assert cfg.server.port == 4100
    assert cfg.history.scrollback_page_size == 25


def test_log_level_is_normalized(tmp_path):
    settings_file = tmp_path / "chatrelay.settings.yaml"
    settings_file.write_text("logging:\n  level: DEBUG\n", encoding="utf-8")

    cfg = load_config(settings_path=settings_file, secrets_path=tmp_path / "none.yaml")
    assert cfg.logging.level == "debug"


def test_unknown_log_level_rejected(tmp_path):
    settings_file = tmp_path / "chatrelay.settings.yaml"
    settings_file.write_text("logging:\n  level: chatty\n", encoding="utf-8")

    with pytest.raises(ValidationError):
        load_config(settings_path=settings_file, secrets_path=tmp_path / "none.yaml")


def test_page_sizes_must_be_positive(tmp_path):
    settings_file = tmp_path / "chatrelay.settings.yaml"
    settings_file.write_text("history:\n  initial_page_size: 0\n", encoding="utf-8")

    with pytest.raises(ValidationError):
        load_config(settings_path=settings_file, secrets_path=tmp_path / "none.yaml")


def test_configure_logging_uses_configured_format(monkeypatch):
    calls = []
    monkeypatch.setattr(logging, "basicConfig", lambda **kwargs: calls.append(kwargs))

    configure_logging(LoggingSettings(level="debug", format="%(levelname)s %(message)s"))

    assert calls == [{"level": logging.DEBUG, "format": "%(levelname)s %(message)s"}]
