"""Persistence of the live trip snapshot.

The snapshot is the only state shared across process restarts. It is
written by the engine (throttled, plus forced writes on transitions) and
read once when a tracking view is entered.
"""

from __future__ import annotations

import json
from typing import TYPE_CHECKING

import structlog

from tracker.core.models import TripSnapshot

if TYPE_CHECKING:
    from tracker.storage.base import KeyValueStore

log = structlog.get_logger()

ACTIVE_KEY = "track_active"


class SnapshotStore:
    def __init__(self, kv: KeyValueStore, key: str = ACTIVE_KEY) -> None:
        self._kv = kv
        self._key = key

    def save(self, snapshot: TripSnapshot) -> None:
        payload = json.dumps(snapshot.to_dict(), separators=(",", ":"))
        self._kv.set(self._key, payload)

    def load(self) -> TripSnapshot | None:
        """Best-effort parse. Missing or malformed data means no active trip."""
        try:
            raw = self._kv.get(self._key)
        except OSError:
            log.warning("snapshot_read_failed", key=self._key, exc_info=True)
            return None
        if not raw:
            return None
        try:
            return TripSnapshot.from_dict(json.loads(raw))
        except (ValueError, KeyError, TypeError, AttributeError):
            log.warning("snapshot_malformed", key=self._key, size=len(raw))
            return None

    def clear(self) -> None:
        self._kv.delete(self._key)
