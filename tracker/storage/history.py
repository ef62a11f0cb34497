"""Local history of saved trips, most recent first."""

from __future__ import annotations

import json
from typing import TYPE_CHECKING

import structlog

from tracker.core.models import SavedTrip

if TYPE_CHECKING:
    from tracker.storage.base import KeyValueStore

log = structlog.get_logger()

SAVED_KEY = "track_saved"


class TripHistory:
    def __init__(self, kv: KeyValueStore, key: str = SAVED_KEY) -> None:
        self._kv = kv
        self._key = key

    def _read(self) -> list[SavedTrip]:
        raw = self._kv.get(self._key)
        if not raw:
            return []
        try:
            items = json.loads(raw)
            return [SavedTrip.from_dict(item) for item in items]
        except (ValueError, KeyError, TypeError, AttributeError):
            log.warning("history_malformed", key=self._key, size=len(raw))
            return []

    def _write(self, trips: list[SavedTrip]) -> None:
        self._kv.set(self._key, json.dumps([t.to_dict() for t in trips], separators=(",", ":")))

    def add(self, trip: SavedTrip) -> None:
        trips = [t for t in self._read() if t.id != trip.id]
        trips.insert(0, trip)
        self._write(trips)
        log.info("trip_saved", trip_id=trip.id, points=trip.point_count,
                 distance_km=round(trip.distance_km, 3))

    def list_trips(self) -> list[SavedTrip]:
        return sorted(self._read(), key=lambda t: t.started_at_ms, reverse=True)

    def get(self, trip_id: str) -> SavedTrip | None:
        for trip in self._read():
            if trip.id == trip_id:
                return trip
        return None

    def delete(self, trip_id: str) -> bool:
        trips = self._read()
        kept = [t for t in trips if t.id != trip_id]
        if len(kept) == len(trips):
            return False
        self._write(kept)
        log.info("trip_deleted", trip_id=trip_id)
        return True

    def clear(self) -> None:
        self._kv.delete(self._key)
