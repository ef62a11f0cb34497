"""Batched upload of track points to the remote activity.

Points are held in memory until a flush. A flush happens on a fixed
interval (periodic timer) or once the buffer reaches ``batch_size``,
whichever comes first; ``force`` bypasses both gates. Delivery is
at-least-once: a failed batch goes back to the head of the buffer.
"""

from __future__ import annotations

import asyncio
import time
from typing import TYPE_CHECKING

import structlog

if TYPE_CHECKING:
    from tracker.core.models import TrackPoint
    from tracker.core.stats import TrackerStats
    from tracker.sync.base import SyncClient
    from tracker.sync.tasks import BackgroundTasks

log = structlog.get_logger()


class SyncBuffer:
    def __init__(
        self,
        client: SyncClient,
        tasks: BackgroundTasks,
        *,
        interval_s: float = 3.5,
        batch_size: int = 50,
        stats: TrackerStats | None = None,
    ) -> None:
        self._client = client
        self._tasks = tasks
        self._interval_s = interval_s
        self._batch_size = batch_size
        self._stats = stats
        self._activity_id: int | None = None
        self._pending: list[TrackPoint] = []
        self._busy = False
        self._idle = asyncio.Event()
        self._idle.set()
        self._last_flush = time.monotonic()
        self._timer: asyncio.Task | None = None

    @property
    def activity_id(self) -> int | None:
        return self._activity_id

    @property
    def pending(self) -> list[TrackPoint]:
        return list(self._pending)

    @property
    def busy(self) -> bool:
        return self._busy

    @property
    def timer_running(self) -> bool:
        return self._timer is not None and not self._timer.done()

    def bind(self, activity_id: int) -> None:
        self._activity_id = activity_id
        self._last_flush = time.monotonic()

    def unbind(self) -> None:
        """Forget the activity and everything still pending for it."""
        self.stop_timer()
        self._activity_id = None
        self._pending.clear()
        self._update_stats()

    def enqueue(self, point: TrackPoint) -> None:
        if self._activity_id is None:
            return
        self._pending.append(point)
        self._update_stats()
        if len(self._pending) >= self._batch_size and not self._busy:
            self._tasks.spawn(self.flush(), name="sync_flush_full")

    def drain(self) -> list[TrackPoint]:
        """Take every pending point out of the buffer."""
        batch = self._pending
        self._pending = []
        self._update_stats()
        return batch

    def _due(self) -> bool:
        if len(self._pending) >= self._batch_size:
            return True
        return time.monotonic() - self._last_flush >= self._interval_s

    async def flush(self, force: bool = False) -> bool:
        """Upload pending points. Returns True when a batch was delivered."""
        if force:
            # Several forced flushes may wake together; only one may upload.
            while self._busy:
                await self._idle.wait()
        elif self._busy or not self._due():
            return False

        activity_id = self._activity_id
        if activity_id is None or not self._pending:
            self._last_flush = time.monotonic()
            return False

        batch = self.drain()
        self._busy = True
        self._idle.clear()
        try:
            await self._client.push_point_batch(activity_id, batch)
        except Exception:
            # Re-queue at the head, unless the trip moved on meanwhile.
            if self._activity_id == activity_id:
                self._pending[:0] = batch
                self._update_stats()
            log.warning("batch_upload_failed", activity_id=activity_id,
                        points=len(batch), exc_info=True)
            if self._stats is not None:
                self._stats.record_upload_failure()
            return False
        finally:
            self._busy = False
            self._idle.set()
            self._last_flush = time.monotonic()

        if self._stats is not None:
            self._stats.record_upload(len(batch))
        log.debug("batch_uploaded", activity_id=activity_id, points=len(batch))
        return True

    def start_timer(self) -> None:
        if self.timer_running:
            return
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            log.debug("sync_timer_skipped_no_loop")
            return
        self._timer = loop.create_task(self._run_timer(), name="sync_timer")

    def stop_timer(self) -> None:
        if self._timer is not None:
            self._timer.cancel()
            self._timer = None

    async def _run_timer(self) -> None:
        while True:
            await asyncio.sleep(self._interval_s)
            await self.flush()

    def _update_stats(self) -> None:
        if self._stats is not None:
            self._stats.update_pending(len(self._pending))
