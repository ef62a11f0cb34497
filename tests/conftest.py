"""Shared test fixtures."""

from __future__ import annotations

import asyncio

import pytest
from httpx import ASGITransport, AsyncClient

import tracker.main as main_module
from tracker.config import AppConfig
from tracker.core.geo import offset_m
from tracker.core.stats import TrackerStats
from tracker.main import build_engine
from tracker.storage.memory_storage import MemoryKeyValueStore

# 2023-11-14T22:13:20Z, somewhere in Lyon.
T0 = 1_700_000_000_000
LAT0 = 45.764043
LNG0 = 4.835659


class FakeClock:
    """Millisecond wall clock the tests move by hand."""

    def __init__(self, now_ms: int = T0) -> None:
        self.now_ms = now_ms

    def __call__(self) -> int:
        return self.now_ms

    def set(self, now_ms: int) -> None:
        self.now_ms = now_ms

    def advance(self, ms: int) -> None:
        self.now_ms += ms


class FakeSyncClient:
    """Records every remote call; can be told to fail or to hold answers."""

    def __init__(self, activity_id: int | None = 42) -> None:
        self.activity_id = activity_id
        self.calls: list[tuple] = []
        self.batches: list[tuple[int, list]] = []
        self.fail_start = False
        self.fail_pushes = 0
        self.start_gate: asyncio.Event | None = None
        self.push_gate: asyncio.Event | None = None

    async def start_activity(self) -> int | None:
        self.calls.append(("start",))
        if self.start_gate is not None:
            await self.start_gate.wait()
        if self.fail_start:
            raise ConnectionError("offline")
        return self.activity_id

    async def push_point_batch(self, activity_id: int, points: list) -> None:
        self.calls.append(("push", activity_id, len(points)))
        if self.push_gate is not None:
            await self.push_gate.wait()
        if self.fail_pushes > 0:
            self.fail_pushes -= 1
            raise ConnectionError("offline")
        self.batches.append((activity_id, list(points)))

    async def pause_activity(self, activity_id: int) -> None:
        self.calls.append(("pause", activity_id))

    async def resume_activity(self, activity_id: int) -> None:
        self.calls.append(("resume", activity_id))

    async def finish_activity(self, activity_id: int, payload) -> None:
        self.calls.append(("finish", activity_id, payload))

    def names(self) -> list[str]:
        return [c[0] for c in self.calls]


def feed(engine, clock: FakeClock, north_m: float, east_m: float, at_ms: int, **kwargs) -> None:
    """Move the clock to T0 + at_ms and deliver a fix offset from the origin."""
    clock.set(T0 + at_ms)
    lat, lng = offset_m(LAT0, LNG0, north_m, east_m)
    kwargs.setdefault("accuracy_m", 5.0)
    engine.on_position(lat, lng, T0 + at_ms, **kwargs)


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def kv() -> MemoryKeyValueStore:
    return MemoryKeyValueStore()


@pytest.fixture
def config() -> AppConfig:
    config = AppConfig()
    config.storage.backend = "memory"
    config.logging.level = "warning"
    return config


@pytest.fixture
def engine(config, kv, clock):
    """Local-only engine (no remote backend)."""
    return build_engine(config, kv=kv, clock=clock)


@pytest.fixture
def fake_remote() -> FakeSyncClient:
    return FakeSyncClient()


@pytest.fixture
def remote_engine(config, kv, clock, fake_remote):
    return build_engine(config, kv=kv, remote=fake_remote, clock=clock)


@pytest.fixture
def _init_tracker(config, kv, clock):
    """Initialize tracker singletons for API tests, using in-memory storage."""
    stats = TrackerStats()
    engine = build_engine(config, kv=kv, stats=stats, clock=clock)

    # Patch module-level singletons
    main_module._config = config
    main_module._stats = stats
    main_module._engine = engine

    yield engine

    # Cleanup
    main_module._config = None
    main_module._stats = None
    main_module._engine = None


@pytest.fixture
async def client(_init_tracker):
    from tracker.main import app

    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as c:
        yield c
