"""Active-time accounting for a trip.

Pure arithmetic over millisecond timestamps; the caller supplies "now".
"""

from __future__ import annotations


class TripClock:
    def __init__(self) -> None:
        self.started_at_ms: int = 0
        self.paused_accum_ms: int = 0
        self.pause_started_at_ms: int | None = None

    @property
    def is_paused(self) -> bool:
        return self.pause_started_at_ms is not None

    def start(self, now_ms: int) -> None:
        self.started_at_ms = now_ms
        self.paused_accum_ms = 0
        self.pause_started_at_ms = None

    def pause(self, now_ms: int) -> None:
        if self.pause_started_at_ms is not None:
            return
        self.pause_started_at_ms = now_ms

    def resume(self, now_ms: int) -> None:
        if self.pause_started_at_ms is None:
            return
        self.paused_accum_ms += max(0, now_ms - self.pause_started_at_ms)
        self.pause_started_at_ms = None

    def elapsed_ms(self, now_ms: int, is_paused: bool) -> int:
        """Active milliseconds so far. Does not mutate anything."""
        if is_paused and self.pause_started_at_ms is not None:
            end = self.pause_started_at_ms
        else:
            end = now_ms
        return max(0, end - self.started_at_ms - self.paused_accum_ms)

    def restore(self, started_at_ms: int, paused_accum_ms: int, pause_started_at_ms: int | None) -> None:
        self.started_at_ms = started_at_ms
        self.paused_accum_ms = max(0, paused_accum_ms)
        self.pause_started_at_ms = pause_started_at_ms

    def clear(self) -> None:
        self.started_at_ms = 0
        self.paused_accum_ms = 0
        self.pause_started_at_ms = None


def format_hms(ms: int) -> str:
    """Render a duration as HH:MM:SS."""
    s = max(0, ms // 1000)
    return f"{s // 3600:02d}:{(s % 3600) // 60:02d}:{s % 60:02d}"
