"""Detached background tasks for fire-and-forget network effects."""

from __future__ import annotations

import asyncio
from typing import Coroutine, Any

import structlog

log = structlog.get_logger()


class BackgroundTasks:
    """Keeps strong references to detached tasks until they finish.

    ``spawn`` never blocks. Without a running event loop there is nothing to
    run the coroutine on, so it is closed and None is returned; callers then
    behave as if offline.
    """

    def __init__(self) -> None:
        self._tasks: set[asyncio.Task] = set()

    def __len__(self) -> int:
        return len(self._tasks)

    def spawn(self, coro: Coroutine[Any, Any, Any], name: str) -> asyncio.Task | None:
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            coro.close()
            log.debug("task_skipped_no_loop", task=name)
            return None
        task = loop.create_task(coro, name=name)
        self._tasks.add(task)
        task.add_done_callback(self._on_done)
        return task

    def _on_done(self, task: asyncio.Task) -> None:
        self._tasks.discard(task)
        if task.cancelled():
            return
        exc = task.exception()
        if exc is not None:
            log.error("background_task_failed", task=task.get_name(), exc_info=exc)

    async def drain(self) -> None:
        """Wait until every spawned task, including ones spawned meanwhile, is done."""
        while self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)
