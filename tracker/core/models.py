"""Trip tracker: core internal data models.

These are plain dataclasses with no framework dependencies.
JSON dicts are converted to/from these at the storage and API boundaries.
"""

from __future__ import annotations

import math
from dataclasses import dataclass, field
from enum import Enum


class TripState(str, Enum):
    IDLE = "idle"
    RECORDING = "recording"
    PAUSED = "paused"


@dataclass(frozen=True, slots=True)
class TrackPoint:
    """A single accepted location fix.

    Attributes:
        lat: Latitude in decimal degrees.
        lng: Longitude in decimal degrees.
        timestamp_ms: Unix epoch milliseconds of the fix.
        speed_mps: Device-reported speed, if any.
        accuracy_m: Horizontal accuracy radius, if any.
    """

    lat: float
    lng: float
    timestamp_ms: int
    speed_mps: float | None = None
    accuracy_m: float | None = None

    def to_dict(self) -> dict:
        return {
            "lat": self.lat,
            "lng": self.lng,
            "timestamp_ms": self.timestamp_ms,
            "speed_mps": self.speed_mps,
            "accuracy_m": self.accuracy_m,
        }

    @classmethod
    def from_dict(cls, data: dict) -> TrackPoint:
        lat = float(data["lat"])
        lng = float(data["lng"])
        if not (math.isfinite(lat) and math.isfinite(lng)):
            raise ValueError("non-finite coordinates")
        speed = data.get("speed_mps")
        acc = data.get("accuracy_m")
        return cls(
            lat=lat,
            lng=lng,
            timestamp_ms=int(data["timestamp_ms"]),
            speed_mps=float(speed) if speed is not None else None,
            accuracy_m=float(acc) if acc is not None else None,
        )


@dataclass
class PathSegment:
    """One continuous stretch of track. Maps never join two segments."""

    points: list[TrackPoint] = field(default_factory=list)

    def to_dict(self) -> dict:
        return {"points": [p.to_dict() for p in self.points]}

    @classmethod
    def from_dict(cls, data: dict) -> PathSegment:
        return cls(points=[TrackPoint.from_dict(p) for p in data.get("points", [])])


@dataclass(frozen=True)
class TripSummary:
    duration_ms: int
    distance_km: float
    avg_speed_kmh: float

    def to_dict(self) -> dict:
        return {
            "duration_ms": self.duration_ms,
            "distance_km": self.distance_km,
            "avg_speed_kmh": self.avg_speed_kmh,
        }


@dataclass(frozen=True)
class SavedTrip:
    """A finished trip kept in the local history."""

    id: str
    started_at_ms: int
    duration_ms: int
    distance_km: float
    segments: tuple[PathSegment, ...] = ()

    @property
    def point_count(self) -> int:
        return sum(len(s.points) for s in self.segments)

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "started_at_ms": self.started_at_ms,
            "duration_ms": self.duration_ms,
            "distance_km": self.distance_km,
            "segments": [s.to_dict() for s in self.segments],
        }

    @classmethod
    def from_dict(cls, data: dict) -> SavedTrip:
        return cls(
            id=str(data["id"]),
            started_at_ms=int(data["started_at_ms"]),
            duration_ms=int(data["duration_ms"]),
            distance_km=float(data["distance_km"]),
            segments=tuple(PathSegment.from_dict(s) for s in data.get("segments", [])),
        )


@dataclass(frozen=True)
class FinalizeResult:
    saved: SavedTrip | None
    summary: TripSummary


@dataclass(frozen=True)
class FinishPayload:
    """Closing figures sent to the remote backend when a trip ends."""

    elapsed_ms: int
    distance_m: float
    avg_speed_kmh: float
    save: bool

    def to_dict(self) -> dict:
        return {
            "elapsed_ms": self.elapsed_ms,
            "distance_m": self.distance_m,
            "avg_speed_kmh": self.avg_speed_kmh,
            "save": self.save,
        }


# Remote link: where the current trip stands with the backend.

@dataclass(frozen=True)
class NotSynced:
    """Local-only trip: no remote activity exists or could be created."""


@dataclass(frozen=True)
class Pending:
    """A remote activity was requested and the answer has not arrived."""


@dataclass(frozen=True)
class Synced:
    activity_id: int


RemoteLink = NotSynced | Pending | Synced


@dataclass
class TripSnapshot:
    """Persisted form of the live engine state."""

    state: TripState
    distance_km: float
    speed_kmh: float
    started_at_ms: int
    paused_accum_ms: int
    pause_started_at_ms: int | None
    segments: list[PathSegment]
    remote_activity_id: int | None = None

    def to_dict(self) -> dict:
        return {
            "state": self.state.value,
            "distance_km": self.distance_km,
            "speed_kmh": self.speed_kmh,
            "started_at_ms": self.started_at_ms,
            "paused_accum_ms": self.paused_accum_ms,
            "pause_started_at_ms": self.pause_started_at_ms,
            "segments": [s.to_dict() for s in self.segments],
            "remote_activity_id": self.remote_activity_id,
        }

    @classmethod
    def from_dict(cls, data: dict) -> TripSnapshot:
        """Parse a snapshot dict. Raises KeyError/TypeError/ValueError on bad input."""
        pause_started = data.get("pause_started_at_ms")
        remote_id = data.get("remote_activity_id")
        segments = [PathSegment.from_dict(s) for s in data["segments"]]
        return cls(
            state=TripState(data["state"]),
            distance_km=float(data.get("distance_km", 0.0)),
            speed_kmh=float(data.get("speed_kmh", 0.0)),
            started_at_ms=int(data["started_at_ms"]),
            paused_accum_ms=int(data.get("paused_accum_ms", 0)),
            pause_started_at_ms=int(pause_started) if pause_started is not None else None,
            segments=segments,
            remote_activity_id=int(remote_id) if remote_id is not None else None,
        )
