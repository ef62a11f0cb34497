"""Tests for the engine's remote activity lifecycle."""

from __future__ import annotations

import asyncio

import pytest

from conftest import T0, feed
from tracker.core.models import NotSynced, Pending, Synced, TripState
from tracker.main import build_engine
from tracker.storage.snapshot_store import SnapshotStore


@pytest.mark.asyncio
async def test_start_binds_remote_activity(remote_engine, fake_remote, kv):
    remote_engine.start()
    assert isinstance(remote_engine.remote_link, Pending)

    await remote_engine.drain_background()
    assert remote_engine.remote_link == Synced(42)
    assert remote_engine.sync_buffer.activity_id == 42
    assert remote_engine.sync_buffer.timer_running
    assert SnapshotStore(kv).load().remote_activity_id == 42

    await remote_engine.aclose()


@pytest.mark.asyncio
async def test_points_are_uploaded_before_finish(remote_engine, fake_remote, clock):
    remote_engine.start()
    await remote_engine.drain_background()

    feed(remote_engine, clock, 0, 0, 0)
    feed(remote_engine, clock, 25, 0, 10_000)
    feed(remote_engine, clock, 50, 0, 20_000)
    assert len(remote_engine.sync_buffer.pending) == 3

    result = remote_engine.finalize(save=True)
    assert isinstance(remote_engine.remote_link, NotSynced)
    assert remote_engine.sync_buffer is None

    await remote_engine.drain_background()
    assert fake_remote.names() == ["start", "push", "finish"]
    assert fake_remote.batches[0][0] == 42
    assert [p.timestamp_ms for p in fake_remote.batches[0][1]] == [T0, T0 + 10_000, T0 + 20_000]

    _, activity_id, payload = fake_remote.calls[-1]
    assert activity_id == 42
    assert payload.save is True
    assert payload.elapsed_ms == result.summary.duration_ms
    assert payload.distance_m == pytest.approx(50.0, abs=1e-3)
    assert payload.avg_speed_kmh == pytest.approx(result.summary.avg_speed_kmh)


@pytest.mark.asyncio
async def test_discard_still_finishes_remote(remote_engine, fake_remote, clock):
    remote_engine.start()
    await remote_engine.drain_background()
    feed(remote_engine, clock, 0, 0, 0)
    remote_engine.finalize(save=False)
    await remote_engine.drain_background()

    assert fake_remote.calls[-1][0] == "finish"
    assert fake_remote.calls[-1][2].save is False


@pytest.mark.asyncio
async def test_pause_and_resume_are_forwarded(remote_engine, fake_remote, clock):
    remote_engine.start()
    await remote_engine.drain_background()
    feed(remote_engine, clock, 0, 0, 0)

    remote_engine.pause()
    await remote_engine.drain_background()
    # Pending points go out before the pause.
    assert fake_remote.names() == ["start", "push", "pause"]
    assert remote_engine.sync_buffer.pending == []

    remote_engine.resume()
    await remote_engine.drain_background()
    assert fake_remote.names()[-1] == "resume"

    await remote_engine.aclose()


@pytest.mark.asyncio
async def test_late_start_response_is_ignored(remote_engine, fake_remote):
    fake_remote.start_gate = asyncio.Event()
    remote_engine.start()
    await asyncio.sleep(0)
    assert isinstance(remote_engine.remote_link, Pending)

    # Finished before the backend answered: nothing to finish remotely.
    remote_engine.finalize(save=False)
    fake_remote.start_gate.set()
    await remote_engine.drain_background()

    assert remote_engine.state is TripState.IDLE
    assert isinstance(remote_engine.remote_link, NotSynced)
    assert fake_remote.names() == ["start"]


@pytest.mark.asyncio
async def test_late_start_response_does_not_bind_new_trip(remote_engine, fake_remote):
    gate = asyncio.Event()
    fake_remote.start_gate = gate
    remote_engine.start()
    await asyncio.sleep(0)
    remote_engine.reset()

    fake_remote.start_gate = None
    fake_remote.activity_id = 7
    remote_engine.start()
    await asyncio.sleep(0)
    await asyncio.sleep(0)
    assert remote_engine.remote_link == Synced(7)

    # The first trip's request answers only now.
    fake_remote.activity_id = 99
    gate.set()
    await remote_engine.drain_background()
    assert remote_engine.remote_link == Synced(7)
    assert remote_engine.sync_buffer.activity_id == 7

    await remote_engine.aclose()


@pytest.mark.asyncio
async def test_remote_start_failure_stays_local(remote_engine, fake_remote, clock):
    fake_remote.fail_start = True
    remote_engine.start()
    await remote_engine.drain_background()

    assert isinstance(remote_engine.remote_link, NotSynced)
    assert remote_engine.stats.snapshot()["sync"]["remote_errors"] == 1

    feed(remote_engine, clock, 0, 0, 0)
    feed(remote_engine, clock, 50, 0, 30_000)
    assert remote_engine.state is TripState.RECORDING
    assert remote_engine.distance_km == pytest.approx(0.05, abs=1e-6)
    assert fake_remote.names() == ["start"]


@pytest.mark.asyncio
async def test_backend_declining_activity_stays_local(remote_engine, fake_remote):
    fake_remote.activity_id = None
    remote_engine.start()
    await remote_engine.drain_background()

    assert isinstance(remote_engine.remote_link, NotSynced)
    assert remote_engine.stats.snapshot()["sync"]["remote_errors"] == 0


def test_no_event_loop_runs_local_only(remote_engine, fake_remote, clock):
    remote_engine.start()
    assert isinstance(remote_engine.remote_link, NotSynced)
    feed(remote_engine, clock, 0, 0, 0)
    feed(remote_engine, clock, 50, 0, 30_000)
    result = remote_engine.finalize(save=True)
    assert result.saved is not None
    assert fake_remote.calls == []


@pytest.mark.asyncio
async def test_failed_upload_is_retried_on_finish(remote_engine, fake_remote, clock):
    remote_engine.start()
    await remote_engine.drain_background()
    feed(remote_engine, clock, 0, 0, 0)
    feed(remote_engine, clock, 30, 0, 10_000)

    fake_remote.fail_pushes = 1
    remote_engine.pause()
    await remote_engine.drain_background()
    assert len(remote_engine.sync_buffer.pending) == 2
    assert remote_engine.stats.snapshot()["sync"]["upload_failures"] == 1

    remote_engine.finalize(save=True)
    await remote_engine.drain_background()
    assert len(fake_remote.batches) == 1
    assert len(fake_remote.batches[0][1]) == 2
    assert fake_remote.names()[-1] == "finish"


@pytest.mark.asyncio
async def test_full_buffer_flushes_early(config, kv, clock, fake_remote):
    config.sync.batch_size = 2
    engine = build_engine(config, kv=kv, remote=fake_remote, clock=clock)
    engine.start()
    await engine.drain_background()

    feed(engine, clock, 0, 0, 0)
    feed(engine, clock, 30, 0, 10_000)
    await engine.drain_background()

    assert len(fake_remote.batches) == 1
    assert engine.sync_buffer.pending == []
    await engine.aclose()


@pytest.mark.asyncio
async def test_restore_rebinds_remote_activity(config, kv, clock, fake_remote, remote_engine):
    remote_engine.start()
    await remote_engine.drain_background()
    feed(remote_engine, clock, 0, 0, 0)
    remote_engine.pause()
    await remote_engine.aclose()

    revived = build_engine(config, kv=kv, remote=fake_remote, clock=clock)
    assert revived.restore_if_any() is True
    assert revived.remote_link == Synced(42)
    assert revived.sync_buffer.activity_id == 42
    assert revived.sync_buffer.timer_running

    revived.finalize(save=True)
    await revived.drain_background()
    assert fake_remote.calls[-1][:2] == ("finish", 42)


@pytest.mark.asyncio
async def test_restore_while_pending_is_local_only(config, kv, clock, fake_remote, remote_engine):
    fake_remote.start_gate = asyncio.Event()
    remote_engine.start()
    assert SnapshotStore(kv).load().remote_activity_id is None

    revived = build_engine(config, kv=kv, remote=fake_remote, clock=clock)
    assert revived.restore_if_any() is True
    assert isinstance(revived.remote_link, NotSynced)

    fake_remote.start_gate.set()
    await remote_engine.drain_background()
    await remote_engine.aclose()
