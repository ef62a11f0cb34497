"""Health check and monitoring endpoints."""

from __future__ import annotations

import json
import shutil
from dataclasses import asdict
from pathlib import Path

from fastapi import APIRouter

router = APIRouter(prefix="/api/v1")

# Load build info once at import time.
_BUILD_INFO_PATH = Path(__file__).parent.parent / "build_info.json"
_BUILD_INFO: dict = {}
if _BUILD_INFO_PATH.exists():
    try:
        _BUILD_INFO = json.loads(_BUILD_INFO_PATH.read_text())
    except (json.JSONDecodeError, OSError):
        pass


@router.get("/health")
async def health() -> dict:
    """Basic health check."""
    from tracker.main import get_config, get_engine

    engine = get_engine()
    config = get_config()

    storage_path = Path(config.storage.base_dir)
    if config.storage.backend == "memory":
        disk_free_gb = -1
        storage_writable = True
    else:
        try:
            disk = shutil.disk_usage(storage_path if storage_path.exists() else ".")
            disk_free_gb = round(disk.free / (1024 ** 3), 1)
            storage_writable = True
        except OSError:
            disk_free_gb = -1
            storage_writable = False

    buffer = engine.sync_buffer
    result = {
        "status": "ok",
        "version": "0.1.0",
        "trip_state": engine.state.value,
        "pending_points": len(buffer.pending) if buffer is not None else 0,
        "storage_writable": storage_writable,
        "disk_free_gb": disk_free_gb,
    }
    result.update(_BUILD_INFO)
    return result


@router.get("/stats")
async def stats() -> dict:
    """Counters for fixes, filter verdicts, transitions and sync traffic.

    ``fixes.rejected`` is keyed by verdict (``jitter``, ``drift``,
    ``poor_accuracy``, ``teleport``) plus ``segment_start`` for fixes that
    opened a segment.
    """
    from tracker.main import get_stats

    return get_stats().snapshot()


@router.get("/config")
async def get_client_config() -> dict:
    """Thresholds in effect, so the UI can explain what the filter does."""
    from tracker.main import get_config

    config = get_config()
    return {
        "filter": asdict(config.filter),
        "trip": asdict(config.trip),
        "sync": {
            "enabled": bool(config.sync.api_url),
            "batch_interval_s": config.sync.batch_interval_s,
            "batch_size": config.sync.batch_size,
        },
    }
