"""GPS noise filter: smoothing and distance gating for raw fixes.

Two jobs:

- ``smooth`` blends each raw fix into an exponential moving average whose
  weight shrinks as the reported accuracy gets worse. The smoothed position
  is for display (marker, camera, heading), never for distance.
- ``classify`` decides whether the raw movement since the last stored point
  may count toward distance and speed.
"""

from __future__ import annotations

from enum import Enum
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from tracker.config import FilterConfig


class FixVerdict(str, Enum):
    ACCEPT = "accept"
    JITTER = "jitter"
    DRIFT = "drift"
    POOR_ACCURACY = "poor_accuracy"
    TELEPORT = "teleport"


class GeoFilter:
    """Stateful EMA smoother plus stateless acceptance policy."""

    def __init__(self, config: FilterConfig) -> None:
        self._config = config
        self._last_lat: float | None = None
        self._last_lng: float | None = None

    @property
    def config(self) -> FilterConfig:
        return self._config

    @property
    def position(self) -> tuple[float, float] | None:
        if self._last_lat is None or self._last_lng is None:
            return None
        return self._last_lat, self._last_lng

    def weight_for(self, accuracy_m: float | None) -> float:
        """EMA weight given to a new fix with this accuracy."""
        cfg = self._config
        tight, loose = cfg.ema_tight_weight, cfg.ema_loose_weight
        if accuracy_m is None:
            return (tight + loose) / 2
        if accuracy_m <= cfg.ema_tight_accuracy_m:
            return tight
        if accuracy_m >= cfg.ema_loose_accuracy_m:
            return loose
        span = cfg.ema_loose_accuracy_m - cfg.ema_tight_accuracy_m
        frac = (accuracy_m - cfg.ema_tight_accuracy_m) / span
        return tight + (loose - tight) * frac

    def smooth(self, lat: float, lng: float, accuracy_m: float | None = None) -> tuple[float, float]:
        if self._last_lat is None or self._last_lng is None:
            self._last_lat, self._last_lng = lat, lng
            return lat, lng
        w = self.weight_for(accuracy_m)
        self._last_lat = w * lat + (1 - w) * self._last_lat
        self._last_lng = w * lng + (1 - w) * self._last_lng
        return self._last_lat, self._last_lng

    def reset(self) -> None:
        self._last_lat = None
        self._last_lng = None

    def min_move_for(self, accuracy_m: float | None) -> float:
        """Jitter floor: the baseline, raised to a share of a poor accuracy radius."""
        base = self._config.min_move_m
        if accuracy_m is None:
            return base
        return max(base, accuracy_m * self._config.jitter_accuracy_factor)

    def classify(
        self,
        moved_m: float,
        speed_kmh: float | None,
        accuracy_m: float | None,
    ) -> FixVerdict:
        cfg = self._config
        if moved_m > cfg.max_jump_m:
            return FixVerdict.TELEPORT
        if accuracy_m is not None and accuracy_m > cfg.max_accuracy_m:
            return FixVerdict.POOR_ACCURACY
        if moved_m < self.min_move_for(accuracy_m):
            return FixVerdict.JITTER
        # Slow and vague at the same time: indoor drift, even when the
        # movement alone would pass.
        if (
            speed_kmh is not None
            and accuracy_m is not None
            and speed_kmh < cfg.drift_speed_kmh
            and accuracy_m > cfg.drift_accuracy_m
        ):
            return FixVerdict.DRIFT
        return FixVerdict.ACCEPT

    def should_accept_for_distance(
        self,
        moved_m: float,
        speed_kmh: float | None,
        accuracy_m: float | None,
    ) -> bool:
        return self.classify(moved_m, speed_kmh, accuracy_m) is FixVerdict.ACCEPT
