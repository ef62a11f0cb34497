"""Segmented point storage for a trip.

A trip's path is an ordered list of segments. Only the last segment is
open; once a new segment is started the previous one is never touched
again (except that nothing is ever merged or reordered).
"""

from __future__ import annotations

import math
from typing import Iterable

from tracker.core.geo import to_local_xy
from tracker.core.models import PathSegment, TrackPoint

DEFAULT_MAX_POINTS = 7000

# Simplification tolerance bounds (meters).
MIN_EPSILON_M = 1.5
MAX_EPSILON_M = 12.0


class SegmentedPath:
    def __init__(self, max_points: int = DEFAULT_MAX_POINTS) -> None:
        self._max_points = max_points
        self._segments: list[PathSegment] = [PathSegment()]
        self._point_count = 0
        self.evicted_points = 0

    @property
    def segments(self) -> tuple[PathSegment, ...]:
        return tuple(self._segments)

    @property
    def current(self) -> PathSegment:
        if not self._segments:
            self._segments.append(PathSegment())
        return self._segments[-1]

    def __len__(self) -> int:
        return self._point_count

    def append_point(self, point: TrackPoint) -> None:
        self.current.points.append(point)
        self._point_count += 1
        self._evict_overflow()

    def start_new_segment(self) -> None:
        """Close the open segment (even if empty) and open a fresh one."""
        self._segments.append(PathSegment())

    def last_point(self) -> TrackPoint | None:
        for seg in reversed(self._segments):
            if seg.points:
                return seg.points[-1]
        return None

    def _evict_overflow(self) -> None:
        excess = self._point_count - self._max_points
        if excess <= 0:
            return
        # Oldest points go first. Closed segments may empty out but stay in
        # place; the active segment always keeps its newest point.
        last = len(self._segments) - 1
        for i, seg in enumerate(self._segments):
            if excess <= 0:
                break
            keep = 1 if i == last else 0
            n = min(excess, len(seg.points) - keep)
            if n <= 0:
                continue
            del seg.points[:n]
            excess -= n
            self._point_count -= n
            self.evicted_points += n

    def clear(self) -> None:
        self._segments = [PathSegment()]
        self._point_count = 0
        self.evicted_points = 0

    def load(self, segments: Iterable[PathSegment]) -> None:
        self._segments = [PathSegment(points=list(s.points)) for s in segments]
        if not self._segments:
            self._segments.append(PathSegment())
        self._point_count = sum(len(s.points) for s in self._segments)

    def copy_segments(self) -> list[PathSegment]:
        """Detached copy, safe to hand to storage or history."""
        return [PathSegment(points=list(s.points)) for s in self._segments]

    def simplify(self, epsilon_m: float) -> list[list[tuple[float, float]]]:
        """Douglas-Peucker per segment. Returns (lat, lng) lists, one per segment."""
        return [
            simplify_points([(p.lat, p.lng) for p in seg.points], epsilon_m)
            for seg in self._segments
        ]


def simplify_epsilon(speed_kmh: float, accuracy_m: float | None) -> float:
    """Tolerance for rendering: tight when slow and accurate, loose when noisy."""
    acc = accuracy_m if accuracy_m is not None else 10.0
    eps = MIN_EPSILON_M + 0.08 * max(0.0, speed_kmh) + 0.1 * max(0.0, acc)
    return min(MAX_EPSILON_M, max(MIN_EPSILON_M, eps))


def _perpendicular_m(p: tuple[float, float], a: tuple[float, float], b: tuple[float, float]) -> float:
    ax, ay = a
    bx, by = b
    px, py = p
    dx, dy = bx - ax, by - ay
    seg_len2 = dx * dx + dy * dy
    if seg_len2 == 0.0:
        return math.hypot(px - ax, py - ay)
    t = ((px - ax) * dx + (py - ay) * dy) / seg_len2
    t = max(0.0, min(1.0, t))
    return math.hypot(px - (ax + t * dx), py - (ay + t * dy))


def simplify_points(coords: list[tuple[float, float]], epsilon_m: float) -> list[tuple[float, float]]:
    """Douglas-Peucker on (lat, lng) pairs with a tolerance in meters.

    Iterative, so long segments cannot hit the recursion limit.
    """
    n = len(coords)
    if n < 3 or epsilon_m <= 0:
        return list(coords)

    ref_lat, ref_lng = coords[0]
    xy = [to_local_xy(lat, lng, ref_lat, ref_lng) for lat, lng in coords]

    keep = [False] * n
    keep[0] = keep[-1] = True
    stack = [(0, n - 1)]
    while stack:
        first, last = stack.pop()
        if last - first < 2:
            continue
        max_d = -1.0
        max_i = first
        for i in range(first + 1, last):
            d = _perpendicular_m(xy[i], xy[first], xy[last])
            if d > max_d:
                max_d = d
                max_i = i
        if max_d > epsilon_m:
            keep[max_i] = True
            stack.append((first, max_i))
            stack.append((max_i, last))

    return [c for c, k in zip(coords, keep) if k]
