#!/usr/bin/env python3
"""Trip tracker ride simulator.

Replays a noisy GPS ride against a running tracker: riding, stopping at
lights, standing around long enough to auto-pause, and the odd multipath
jump. Useful to eyeball filter and auto-pause behavior end to end.

Usage:
    # 10 minute ride around Lyon, replayed 10x faster than real time
    python -m tools.simulator.simulate --server http://localhost:8000 --duration 600 --speedup 10

    # Noisy receiver, discard the trip at the end
    python -m tools.simulator.simulate --noise-m 15 --jump-rate 0.02 --discard
"""

from __future__ import annotations

import argparse
import asyncio
import math
import random
import time
from dataclasses import dataclass, field

import httpx


@dataclass
class SimRider:
    lat: float
    lon: float
    bearing: float
    speed_mps: float
    stopped_for_s: float = 0.0
    fixes_sent: int = 0
    errors: int = 0
    phases: list[str] = field(default_factory=list)


def move_rider(rider: SimRider, dt_seconds: float, stop_rate: float) -> None:
    """Advance the true position; sometimes stop for a while."""
    if rider.stopped_for_s > 0:
        rider.stopped_for_s = max(0.0, rider.stopped_for_s - dt_seconds)
        rider.speed_mps = 0.0
        if rider.stopped_for_s == 0:
            rider.speed_mps = random.uniform(3, 6)
            rider.phases.append("go")
        return

    if random.random() < stop_rate * dt_seconds:
        # Short light or a long coffee stop.
        rider.stopped_for_s = random.choice([random.uniform(5, 30), random.uniform(60, 240)])
        rider.speed_mps = 0.0
        rider.phases.append("stop")
        return

    rider.bearing = (rider.bearing + random.uniform(-10, 10)) % 360
    rider.speed_mps = max(2.0, min(12.0, rider.speed_mps + random.uniform(-0.8, 0.8)))

    distance_m = rider.speed_mps * dt_seconds
    bearing_rad = math.radians(rider.bearing)
    rider.lat += (distance_m * math.cos(bearing_rad)) / 111_000
    rider.lon += (distance_m * math.sin(bearing_rad)) / (111_000 * math.cos(math.radians(rider.lat)))


def make_fix(rider: SimRider, timestamp_ms: int, noise_m: float, jump_rate: float) -> dict:
    """Observed fix: true position plus receiver noise, sometimes a wild jump."""
    accuracy = max(3.0, random.gauss(noise_m, noise_m / 3))
    err_m = random.gauss(0, accuracy / 2)
    if random.random() < jump_rate:
        err_m = random.uniform(150, 400)
        accuracy = random.uniform(30, 90)
    angle = random.uniform(0, 2 * math.pi)
    lat = rider.lat + (err_m * math.cos(angle)) / 111_000
    lon = rider.lon + (err_m * math.sin(angle)) / (111_000 * math.cos(math.radians(rider.lat)))

    fix = {
        "lat": round(lat, 7),
        "lng": round(lon, 7),
        "timestamp_ms": timestamp_ms,
        "accuracy_m": round(accuracy, 1),
        "heading_deg": round(rider.bearing, 1),
    }
    # Some receivers report no speed at all when standing still.
    if rider.speed_mps > 0 or random.random() < 0.5:
        fix["speed_mps"] = round(max(0.0, rider.speed_mps + random.uniform(-0.3, 0.3)), 2)
    return fix


async def run_ride(client: httpx.AsyncClient, rider: SimRider, args: argparse.Namespace) -> None:
    """Start a trip, stream fixes, then finalize it."""
    resp = await client.post(f"{args.server}/api/v1/trip/start")
    resp.raise_for_status()

    interval = 1.0 / args.fix_rate
    sim_ms = int(time.time() * 1000)
    steps = int(args.duration * args.fix_rate)
    for step in range(steps):
        move_rider(rider, interval, args.stop_rate)
        sim_ms += int(interval * 1000)
        fix = make_fix(rider, sim_ms, args.noise_m, args.jump_rate)
        try:
            resp = await client.post(f"{args.server}/api/v1/positions", json=fix)
            if resp.status_code == 200:
                rider.fixes_sent += 1
            else:
                rider.errors += 1
        except httpx.RequestError:
            rider.errors += 1

        if step % max(1, int(30 * args.fix_rate)) == 0:
            view = (await client.get(f"{args.server}/api/v1/trip")).json()
            print(f"  {view['time']}  {view['state']:<9}  {view['distance_km']:.3f} km  "
                  f"{view['speed_kmh']:.1f} km/h  segments={view['segments']}")

        await asyncio.sleep(interval / args.speedup)

    resp = await client.post(
        f"{args.server}/api/v1/trip/finalize",
        params={"save": "false" if args.discard else "true"},
    )
    resp.raise_for_status()
    result = resp.json()
    summary = result["summary"]
    print(f"\nTrip finalized ({'discarded' if args.discard else 'saved'})")
    print(f"  Duration: {summary['duration_ms'] / 1000:.0f}s")
    print(f"  Distance: {summary['distance_km']:.3f} km")
    print(f"  Avg speed: {summary['avg_speed_kmh']:.1f} km/h")
    if result["saved"]:
        print(f"  Saved as: {result['saved']['id']}")


async def run_simulation(args: argparse.Namespace) -> None:
    center_lat, center_lon = args.center
    rider = SimRider(
        lat=center_lat,
        lon=center_lon,
        bearing=random.uniform(0, 360),
        speed_mps=random.uniform(3, 8),
    )

    print(f"Starting ride: {args.duration}s at {args.fix_rate} fix/s, {args.speedup}x speed")
    print(f"  Start: {center_lat:.4f}, {center_lon:.4f}")
    print(f"  Noise: {args.noise_m} m, jump rate {args.jump_rate}")
    print(f"  Server: {args.server}")
    print()

    start = time.monotonic()
    async with httpx.AsyncClient(timeout=10.0) as client:
        await run_ride(client, rider, args)

        try:
            resp = await client.get(f"{args.server}/api/v1/stats")
            if resp.status_code == 200:
                stats = resp.json()
                print("\nTracker stats:")
                print(f"  Fixes received: {stats['fixes']['received']}")
                print(f"  Fixes accepted: {stats['fixes']['accepted']}")
                print(f"  Rejected: {stats['fixes']['rejected']}")
                print(f"  Auto pauses/resumes: {stats['auto_pauses']}/{stats['auto_resumes']}")
        except httpx.RequestError:
            pass

    elapsed = time.monotonic() - start
    print(f"\nSimulation complete in {elapsed:.1f}s")
    print(f"  Fixes sent: {rider.fixes_sent}  errors: {rider.errors}")
    print(f"  Stops: {rider.phases.count('stop')}")


def main():
    parser = argparse.ArgumentParser(description="Trip tracker ride simulator")
    parser.add_argument("--server", default="http://localhost:8000", help="Tracker URL")
    parser.add_argument("--duration", type=int, default=300, help="Simulated ride length in seconds")
    parser.add_argument("--fix-rate", type=float, default=1.0, help="GPS fixes per second")
    parser.add_argument("--speedup", type=float, default=1.0, help="Replay speed multiplier")
    parser.add_argument("--noise-m", type=float, default=6.0, help="Typical accuracy radius in meters")
    parser.add_argument("--jump-rate", type=float, default=0.005, help="Probability of a wild fix")
    parser.add_argument("--stop-rate", type=float, default=0.004, help="Stops per simulated second")
    parser.add_argument("--center", type=str, default="45.764,4.835",
                        help="Start lat,lon (default: Lyon)")
    parser.add_argument("--discard", action="store_true", help="Discard the trip instead of saving it")

    args = parser.parse_args()

    lat, lon = args.center.split(",")
    args.center = (float(lat), float(lon))

    asyncio.run(run_simulation(args))


if __name__ == "__main__":
    main()
