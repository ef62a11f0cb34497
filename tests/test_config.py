"""Tests for configuration loading."""

from __future__ import annotations

import structlog

from tracker.config import AppConfig, load_config
from tracker.main import _setup_logging


def test_defaults_when_file_missing(tmp_path, monkeypatch):
    monkeypatch.delenv("TRACKER_CONFIG", raising=False)
    config = load_config(tmp_path / "missing.yaml")
    assert config == AppConfig()
    assert config.trip.auto_pause_after_s == 9.0
    assert config.filter.max_accuracy_m == 65.0
    assert config.sync.batch_interval_s == 3.5


def test_yaml_sections_override_defaults(tmp_path):
    path = tmp_path / "config.yaml"
    path.write_text(
        "filter:\n"
        "  min_move_m: 3.0\n"
        "  unknown_key: 1\n"
        "trip:\n"
        "  stop_gap_s: 120\n"
        "sync:\n"
        "  api_url: http://backend.test\n"
        "storage:\n"
    )
    config = load_config(path)
    assert config.filter.min_move_m == 3.0
    assert not hasattr(config.filter, "unknown_key")
    assert config.trip.stop_gap_s == 120
    assert config.sync.api_url == "http://backend.test"
    assert config.storage.backend == "file"


def test_empty_yaml(tmp_path):
    path = tmp_path / "config.yaml"
    path.write_text("")
    assert load_config(path) == AppConfig()


def test_env_overrides_win(tmp_path, monkeypatch):
    path = tmp_path / "config.yaml"
    path.write_text("sync:\n  batch_size: 10\n")
    monkeypatch.setenv("TRACKER_SYNC_BATCH_SIZE", "25")
    monkeypatch.setenv("TRACKER_SYNC_TOKEN", "abc")
    monkeypatch.setenv("TRACKER_FILTER_MAX_JUMP_M", "250")
    monkeypatch.setenv("TRACKER_STORAGE_BACKEND", "memory")
    monkeypatch.setenv("TRACKER_SERVER_PORT", "9000")

    config = load_config(path)
    assert config.sync.batch_size == 25
    assert config.sync.token == "abc"
    assert config.filter.max_jump_m == 250.0
    assert config.storage.backend == "memory"
    assert config.server.port == 9000


def test_config_path_from_env(tmp_path, monkeypatch):
    path = tmp_path / "custom.yaml"
    path.write_text("logging:\n  format: json\n")
    monkeypatch.setenv("TRACKER_CONFIG", str(path))
    assert load_config().logging.format == "json"


def test_logging_goes_to_stdout_only(tmp_path):
    log_path = tmp_path / "tracker.log"
    path = tmp_path / "config.yaml"
    path.write_text(f"logging:\n  level: debug\n  file: {log_path}\n")
    config = load_config(path)
    assert config.logging.level == "debug"
    assert not hasattr(config.logging, "file")

    try:
        _setup_logging(config)
        assert isinstance(structlog.get_config()["logger_factory"], structlog.PrintLoggerFactory)
    finally:
        structlog.reset_defaults()
    assert not log_path.exists()
