"""Replay a simulated ride against the in-process app."""

from __future__ import annotations

import argparse
import random

import pytest

from tools.simulator.simulate import SimRider, make_fix, move_rider, run_ride


def _args(**overrides) -> argparse.Namespace:
    args = dict(
        server="http://test",
        duration=120,
        fix_rate=1.0,
        speedup=1e6,
        noise_m=6.0,
        jump_rate=0.02,
        stop_rate=0.0,
        discard=False,
    )
    args.update(overrides)
    return argparse.Namespace(**args)


def test_stopped_rider_does_not_move():
    random.seed(1)
    rider = SimRider(lat=45.0, lon=4.8, bearing=0.0, speed_mps=0.0, stopped_for_s=10.0)
    move_rider(rider, 1.0, stop_rate=0.0)
    assert (rider.lat, rider.lon) == (45.0, 4.8)
    assert rider.stopped_for_s == 9.0


def test_fix_shape():
    random.seed(2)
    rider = SimRider(lat=45.0, lon=4.8, bearing=90.0, speed_mps=5.0)
    fix = make_fix(rider, 1_700_000_000_000, noise_m=6.0, jump_rate=0.0)
    assert set(fix) >= {"lat", "lng", "timestamp_ms", "accuracy_m", "speed_mps"}
    assert fix["accuracy_m"] >= 3.0


@pytest.mark.asyncio
async def test_simulated_ride_is_saved(client, _init_tracker):
    random.seed(42)
    rider = SimRider(lat=45.764, lon=4.835, bearing=30.0, speed_mps=5.0)
    await run_ride(client, rider, _args())

    assert rider.fixes_sent == 120
    assert rider.errors == 0
    assert _init_tracker.state.value == "idle"

    history = (await client.get("/api/v1/history")).json()
    assert history["total"] == 1
    assert history["trips"][0]["points"] > 0
    assert history["trips"][0]["distance_km"] > 0
