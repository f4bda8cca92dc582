from __future__ import annotations

import asyncio
import logging
from typing import Any, Coroutine

logger = logging.getLogger(__name__)

# Strong references keep fire-and-forget tasks alive until they finish.
_tasks: set[asyncio.Task] = set()


def _on_done(task: asyncio.Task) -> None:
    _tasks.discard(task)
    if task.cancelled():
        return
    exc = task.exception()
    if exc is not None:
        logger.error("background_task_failed name=%s error=%s", task.get_name(), type(exc).__name__)


def spawn(coro: Coroutine[Any, Any, Any], *, name: str) -> asyncio.Task:
    task = asyncio.create_task(coro, name=name)
    _tasks.add(task)
    task.add_done_callback(_on_done)
    return task


async def drain() -> None:
    # Used at shutdown and in tests to wait for pending writes.
    while _tasks:
        await asyncio.gather(*list(_tasks), return_exceptions=True)
