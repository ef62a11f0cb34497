"""Tracker configuration.

Loads from config.yaml if present, with environment variable overrides.
Environment variables use the pattern: TRACKER_<SECTION>_<KEY> (uppercase).
"""

from __future__ import annotations

import os
from dataclasses import dataclass, field
from pathlib import Path

import yaml


@dataclass
class ServerConfig:
    host: str = "127.0.0.1"
    port: int = 8000
    env: str = "dev"  # "dev" or "prod"


@dataclass
class FilterConfig:
    """GPS noise thresholds. Defaults, not ground truth: tune per device."""
    min_move_m: float = 5.0
    jitter_accuracy_factor: float = 0.5
    max_jump_m: float = 100.0
    max_accuracy_m: float = 65.0
    drift_speed_kmh: float = 1.5
    drift_accuracy_m: float = 25.0
    # EMA weights: tight when accurate, loose past the loose threshold.
    ema_tight_weight: float = 0.42
    ema_loose_weight: float = 0.20
    ema_tight_accuracy_m: float = 20.0
    ema_loose_accuracy_m: float = 60.0


@dataclass
class TripConfig:
    auto_pause_speed_kmh: float = 1.0
    auto_pause_after_s: float = 9.0
    auto_resume_speed_kmh: float = 2.0
    auto_resume_after_s: float = 3.0
    stop_gap_s: float = 180.0
    pause_gap_m: float = 20.0
    speed_alpha: float = 0.35
    min_speed_dt_s: float = 0.25
    persist_every_s: float = 5.0
    max_path_points: int = 7000


@dataclass
class SyncConfig:
    api_url: str = ""
    token: str = ""
    batch_interval_s: float = 3.5
    batch_size: int = 50
    timeout_s: float = 10.0


@dataclass
class StorageConfig:
    backend: str = "file"  # "file" or "memory"
    base_dir: str = "data/tracker"


@dataclass
class LoggingConfig:
    level: str = "info"
    format: str = "console"  # "console" or "json"


@dataclass
class AppConfig:
    server: ServerConfig = field(default_factory=ServerConfig)
    filter: FilterConfig = field(default_factory=FilterConfig)
    trip: TripConfig = field(default_factory=TripConfig)
    sync: SyncConfig = field(default_factory=SyncConfig)
    storage: StorageConfig = field(default_factory=StorageConfig)
    logging: LoggingConfig = field(default_factory=LoggingConfig)


_SECTIONS = ("server", "filter", "trip", "sync", "storage", "logging")


def _apply_env_overrides(config: AppConfig) -> None:
    """Override config values from environment variables."""
    mapping = {
        "TRACKER_SERVER_HOST": lambda v: setattr(config.server, "host", v),
        "TRACKER_SERVER_PORT": lambda v: setattr(config.server, "port", int(v)),
        "TRACKER_SERVER_ENV": lambda v: setattr(config.server, "env", v),
        "TRACKER_FILTER_MIN_MOVE_M": lambda v: setattr(config.filter, "min_move_m", float(v)),
        "TRACKER_FILTER_MAX_JUMP_M": lambda v: setattr(config.filter, "max_jump_m", float(v)),
        "TRACKER_FILTER_MAX_ACCURACY_M": lambda v: setattr(config.filter, "max_accuracy_m", float(v)),
        "TRACKER_TRIP_AUTO_PAUSE_AFTER_S": lambda v: setattr(config.trip, "auto_pause_after_s", float(v)),
        "TRACKER_TRIP_AUTO_RESUME_AFTER_S": lambda v: setattr(config.trip, "auto_resume_after_s", float(v)),
        "TRACKER_TRIP_PERSIST_EVERY_S": lambda v: setattr(config.trip, "persist_every_s", float(v)),
        "TRACKER_SYNC_API_URL": lambda v: setattr(config.sync, "api_url", v),
        "TRACKER_SYNC_TOKEN": lambda v: setattr(config.sync, "token", v),
        "TRACKER_SYNC_BATCH_INTERVAL_S": lambda v: setattr(config.sync, "batch_interval_s", float(v)),
        "TRACKER_SYNC_BATCH_SIZE": lambda v: setattr(config.sync, "batch_size", int(v)),
        "TRACKER_STORAGE_BACKEND": lambda v: setattr(config.storage, "backend", v),
        "TRACKER_STORAGE_BASE_DIR": lambda v: setattr(config.storage, "base_dir", v),
        "TRACKER_LOG_LEVEL": lambda v: setattr(config.logging, "level", v),
        "TRACKER_LOG_FORMAT": lambda v: setattr(config.logging, "format", v),
    }
    for env_key, setter in mapping.items():
        val = os.environ.get(env_key)
        if val is not None:
            setter(val)


def load_config(config_path: str | Path | None = None) -> AppConfig:
    """Load configuration from YAML file + environment overrides."""
    config = AppConfig()

    if config_path is None:
        config_path = Path(os.environ.get("TRACKER_CONFIG", "config.yaml"))
    else:
        config_path = Path(config_path)

    if config_path.exists():
        with open(config_path) as f:
            raw = yaml.safe_load(f) or {}

        for section_name in _SECTIONS:
            if section_name not in raw:
                continue
            section = getattr(config, section_name)
            for k, v in (raw[section_name] or {}).items():
                if hasattr(section, k):
                    setattr(section, k, v)

    # Environment overrides always win
    _apply_env_overrides(config)
    return config
