"""Trip tracker: main entry point.

This is the only file that knows about concrete implementations.
It wires together the core engine, sync, storage, and API layers.
"""

from __future__ import annotations

import logging
from contextlib import asynccontextmanager
from typing import TYPE_CHECKING, Callable

import structlog
from fastapi import FastAPI

from tracker.api.monitoring import router as monitoring_router
from tracker.api.trips import router as trips_router
from tracker.config import AppConfig, load_config
from tracker.core.machine import TripStateMachine
from tracker.core.stats import TrackerStats
from tracker.storage.file_storage import FileKeyValueStore
from tracker.storage.history import TripHistory
from tracker.storage.memory_storage import MemoryKeyValueStore
from tracker.storage.snapshot_store import SnapshotStore
from tracker.sync.http_client import HttpSyncClient

if TYPE_CHECKING:
    from tracker.storage.base import KeyValueStore
    from tracker.sync.base import SyncClient

log = structlog.get_logger()

# Module-level singletons (set during startup)
_engine: TripStateMachine | None = None
_stats: TrackerStats | None = None
_config: AppConfig | None = None


def get_engine() -> TripStateMachine:
    assert _engine is not None, "Tracker not initialized"
    return _engine


def get_stats() -> TrackerStats:
    assert _stats is not None, "Tracker not initialized"
    return _stats


def get_config() -> AppConfig:
    assert _config is not None, "Tracker not initialized"
    return _config


def _setup_logging(config: AppConfig) -> None:
    """Configure structlog based on the logging config."""
    processors = [
        structlog.contextvars.merge_contextvars,
        structlog.processors.add_log_level,
        structlog.processors.TimeStamper(fmt="iso"),
    ]

    if config.logging.format == "json":
        processors.append(structlog.processors.JSONRenderer())
    else:
        processors.append(structlog.dev.ConsoleRenderer())

    structlog.configure(
        processors=processors,
        wrapper_class=structlog.make_filtering_bound_logger(
            logging.getLevelName(config.logging.level.upper()),
        ),
        logger_factory=structlog.PrintLoggerFactory(),
    )


def _make_kv(config: AppConfig) -> KeyValueStore:
    if config.storage.backend == "memory":
        return MemoryKeyValueStore()
    return FileKeyValueStore(base_dir=config.storage.base_dir)


def build_engine(
    config: AppConfig,
    *,
    kv: KeyValueStore | None = None,
    remote: SyncClient | None = None,
    stats: TrackerStats | None = None,
    clock: Callable[[], int] | None = None,
) -> TripStateMachine:
    """Assemble an engine from config; collaborators may be injected."""
    kv = kv if kv is not None else _make_kv(config)
    return TripStateMachine(
        snapshots=SnapshotStore(kv),
        history=TripHistory(kv),
        filter_config=config.filter,
        trip_config=config.trip,
        sync_config=config.sync,
        remote=remote,
        stats=stats,
        clock=clock,
    )


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application startup and shutdown."""
    global _engine, _stats, _config

    _config = load_config()
    _setup_logging(_config)

    log.info("tracker_starting",
             env=_config.server.env,
             storage_backend=_config.storage.backend,
             storage_dir=_config.storage.base_dir,
             sync_enabled=bool(_config.sync.api_url))

    _stats = TrackerStats()
    remote: HttpSyncClient | None = None
    if _config.sync.api_url:
        remote = HttpSyncClient(_config.sync.api_url, _config.sync.token,
                                timeout_s=_config.sync.timeout_s)
    _engine = build_engine(_config, remote=remote, stats=_stats)

    if _engine.restore_if_any():
        log.info("active_trip_restored", state=_engine.state.value)

    log.info("tracker_started",
             host=_config.server.host,
             port=_config.server.port)

    yield

    # Shutdown
    await _engine.aclose()
    if remote is not None:
        await remote.aclose()
    log.info("tracker_stopped")


app = FastAPI(
    title="Trip Tracker",
    description="GPS trip recording engine",
    version="0.1.0",
    lifespan=lifespan,
)

app.include_router(trips_router)
app.include_router(monitoring_router)
