"""Geospatial helpers (no external dependencies)."""

from __future__ import annotations

import math

# Earth radius in meters (for Haversine).
EARTH_R = 6_371_000.0


def haversine_m(lat1: float, lng1: float, lat2: float, lng2: float) -> float:
    """Great-circle distance in meters between two points."""
    rlat1, rlat2 = math.radians(lat1), math.radians(lat2)
    dlat = math.radians(lat2 - lat1)
    dlng = math.radians(lng2 - lng1)
    a = math.sin(dlat / 2) ** 2 + math.cos(rlat1) * math.cos(rlat2) * math.sin(dlng / 2) ** 2
    return 2 * EARTH_R * math.asin(min(1.0, math.sqrt(a)))


def to_local_xy(lat: float, lng: float, ref_lat: float, ref_lng: float) -> tuple[float, float]:
    """Project a point to meters on a plane tangent at the reference point.

    Equirectangular approximation; good to well under a meter at the
    scale of a single path segment.
    """
    x = math.radians(lng - ref_lng) * EARTH_R * math.cos(math.radians(ref_lat))
    y = math.radians(lat - ref_lat) * EARTH_R
    return x, y


def offset_m(lat: float, lng: float, north_m: float, east_m: float) -> tuple[float, float]:
    """Return the point displaced by the given meters north and east."""
    dlat = math.degrees(north_m / EARTH_R)
    dlng = math.degrees(east_m / (EARTH_R * math.cos(math.radians(lat))))
    return lat + dlat, lng + dlng


def is_valid_coordinate(lat: float, lng: float) -> bool:
    """Finite and inside the WGS84 ranges."""
    if not (math.isfinite(lat) and math.isfinite(lng)):
        return False
    return -90.0 <= lat <= 90.0 and -180.0 <= lng <= 180.0
