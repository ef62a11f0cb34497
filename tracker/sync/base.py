"""Sync interface (port) for the remote activity backend."""

from __future__ import annotations

from typing import Protocol, TYPE_CHECKING

if TYPE_CHECKING:
    from tracker.core.models import FinishPayload, TrackPoint


class SyncClient(Protocol):
    """Port: mirrors a local trip as a remote activity.

    ``start_activity`` returns None when the backend cannot be reached or
    the user is not signed in; the trip then stays local-only. Every other
    call may raise; callers treat all of them as best effort.
    """

    async def start_activity(self) -> int | None: ...

    async def push_point_batch(self, activity_id: int, points: list[TrackPoint]) -> None: ...

    async def pause_activity(self, activity_id: int) -> None: ...

    async def resume_activity(self, activity_id: int) -> None: ...

    async def finish_activity(self, activity_id: int, payload: FinishPayload) -> None: ...
