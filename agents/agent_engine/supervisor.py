"""
Supervised fire-and-forget tasks.

spawn() returns the task handle and guarantees that a failure inside the task is
logged when it finishes, instead of vanishing with the task object.
"""
from __future__ import annotations

import asyncio
import logging
from typing import Any, Coroutine, Optional, Set

_log = logging.getLogger(__name__)


class TaskSupervisor:
    def __init__(self, name: str = "tasks") -> None:
        self.name = name
        self._tasks: Set[asyncio.Task] = set()
        self.spawned = 0
        self.failed = 0

    @property
    def pending(self) -> int:
        return len(self._tasks)

    def spawn(self, coro: Coroutine[Any, Any, Any], *, name: str = "") -> asyncio.Task:
        task = asyncio.get_running_loop().create_task(coro, name=name or None)
        self._tasks.add(task)
        self.spawned += 1
        task.add_done_callback(self._on_done)
        return task

    def _on_done(self, task: asyncio.Task) -> None:
        self._tasks.discard(task)
        if task.cancelled():
            _log.info("%s: task %s cancelled", self.name, task.get_name())
            return
        exc = task.exception()
        if exc is not None:
            self.failed += 1
            _log.error("%s: task %s failed", self.name, task.get_name(), exc_info=exc)

    async def drain(self, timeout: Optional[float] = None) -> int:
        """Wait for running tasks; returns how many were still pending after `timeout`."""
        if not self._tasks:
            return 0
        _done, pending = await asyncio.wait(set(self._tasks), timeout=timeout)
        return len(pending)

    async def cancel_all(self) -> None:
        tasks = list(self._tasks)
        for t in tasks:
            t.cancel()
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)
