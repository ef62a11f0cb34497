"""Tracker statistics.

In-memory counters for fixes, filter verdicts, transitions and sync
traffic. No framework dependencies.
"""

from __future__ import annotations

import threading
import time


class TrackerStats:
    """Thread-safe counters.

    The engine itself is single-threaded, but the monitoring endpoint may
    read a snapshot from another thread.
    """

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._started_at = time.time()

        self.fixes_received: int = 0
        self.fixes_accepted: int = 0
        self.fixes_dropped: int = 0
        self.rejections: dict[str, int] = {}
        self.segments_started: int = 0
        self.auto_pauses: int = 0
        self.auto_resumes: int = 0
        self.trips_started: int = 0
        self.trips_saved: int = 0
        self.trips_discarded: int = 0
        self.batches_uploaded: int = 0
        self.points_uploaded: int = 0
        self.upload_failures: int = 0
        self.remote_errors: int = 0
        self.snapshots_written: int = 0
        self.snapshot_errors: int = 0
        self.pending_points: int = 0

    def record_fix(self, verdict: str) -> None:
        with self._lock:
            self.fixes_received += 1
            if verdict == "accept":
                self.fixes_accepted += 1
            else:
                self.rejections[verdict] = self.rejections.get(verdict, 0) + 1

    def record_dropped(self) -> None:
        with self._lock:
            self.fixes_received += 1
            self.fixes_dropped += 1

    def record_segment(self) -> None:
        with self._lock:
            self.segments_started += 1

    def record_auto_pause(self) -> None:
        with self._lock:
            self.auto_pauses += 1

    def record_auto_resume(self) -> None:
        with self._lock:
            self.auto_resumes += 1

    def record_trip_started(self) -> None:
        with self._lock:
            self.trips_started += 1

    def record_trip_finished(self, saved: bool) -> None:
        with self._lock:
            if saved:
                self.trips_saved += 1
            else:
                self.trips_discarded += 1

    def record_upload(self, count: int) -> None:
        with self._lock:
            self.batches_uploaded += 1
            self.points_uploaded += count

    def record_upload_failure(self) -> None:
        with self._lock:
            self.upload_failures += 1

    def record_remote_error(self) -> None:
        with self._lock:
            self.remote_errors += 1

    def record_snapshot(self, ok: bool = True) -> None:
        with self._lock:
            if ok:
                self.snapshots_written += 1
            else:
                self.snapshot_errors += 1

    def update_pending(self, depth: int) -> None:
        with self._lock:
            self.pending_points = depth

    def snapshot(self) -> dict:
        """Return a JSON-serializable snapshot of all stats."""
        with self._lock:
            return {
                "uptime_seconds": round(time.time() - self._started_at, 1),
                "fixes": {
                    "received": self.fixes_received,
                    "accepted": self.fixes_accepted,
                    "dropped": self.fixes_dropped,
                    "rejected": dict(self.rejections),
                },
                "segments_started": self.segments_started,
                "auto_pauses": self.auto_pauses,
                "auto_resumes": self.auto_resumes,
                "trips": {
                    "started": self.trips_started,
                    "saved": self.trips_saved,
                    "discarded": self.trips_discarded,
                },
                "sync": {
                    "batches_uploaded": self.batches_uploaded,
                    "points_uploaded": self.points_uploaded,
                    "upload_failures": self.upload_failures,
                    "remote_errors": self.remote_errors,
                    "pending_points": self.pending_points,
                },
                "snapshots": {
                    "written": self.snapshots_written,
                    "errors": self.snapshot_errors,
                },
            }
