"""Heading estimation for the map layer.

Fuses the movement bearing (reliable when moving) with the device compass
heading (the only signal when standing still) and low-pass filters the
result on the circle.
"""

from __future__ import annotations

import math

# Below this speed the movement bearing is mostly noise.
MOVE_MIN_KMH = 2.2


def normalize_deg(d: float) -> float:
    return (d % 360 + 360) % 360


def angle_delta(a: float, b: float) -> float:
    """Signed shortest rotation from a to b, in (-180, 180]."""
    d = normalize_deg(b) - normalize_deg(a)
    if d > 180:
        d -= 360
    if d < -180:
        d += 360
    return d


def smooth_angle(prev: float, nxt: float, alpha: float) -> float:
    return normalize_deg(prev + angle_delta(prev, nxt) * alpha)


def bearing_deg(lat1: float, lng1: float, lat2: float, lng2: float) -> float:
    """Initial great-circle bearing from point 1 to point 2."""
    rlat1, rlat2 = math.radians(lat1), math.radians(lat2)
    dlng = math.radians(lng2 - lng1)
    y = math.sin(dlng) * math.cos(rlat2)
    x = math.cos(rlat1) * math.sin(rlat2) - math.sin(rlat1) * math.cos(rlat2) * math.cos(dlng)
    return normalize_deg(math.degrees(math.atan2(y, x)))


class HeadingTracker:
    def __init__(self) -> None:
        self.heading_deg: float = 0.0
        self._prev: tuple[float, float] | None = None

    def update(
        self,
        lat: float,
        lng: float,
        speed_kmh: float,
        gps_heading_deg: float | None = None,
    ) -> float:
        prev = self._prev
        self._prev = (lat, lng)

        if speed_kmh >= MOVE_MIN_KMH and prev is not None and prev != (lat, lng):
            move = bearing_deg(prev[0], prev[1], lat, lng)
            # Faster means a more trustworthy bearing.
            alpha = max(0.15, min(0.45, speed_kmh / 20))
            self.heading_deg = smooth_angle(self.heading_deg, move, alpha)
        elif gps_heading_deg is not None and math.isfinite(gps_heading_deg):
            self.heading_deg = smooth_angle(self.heading_deg, normalize_deg(gps_heading_deg), 0.18)
        return self.heading_deg

    def reset(self) -> None:
        self.heading_deg = 0.0
        self._prev = None
