"""Bookkeeping for fire-and-forget adapter requests."""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Awaitable, Coroutine
from typing import Any, TypeVar

from battmon.core.errors import TransportTimeoutError

LOGGER = logging.getLogger(__name__)
T = TypeVar("T")


class PendingRequests:
    """Keeps references to in-flight request tasks until they finish.

    Completion handlers run inside the tasks themselves. Crashed tasks are
    logged here since nobody awaits them.
    """

    def __init__(self) -> None:
        self._tasks: set[asyncio.Task[Any]] = set()

    def __len__(self) -> int:
        return len(self._tasks)

    def spawn(self, coro: Coroutine[Any, Any, Any], *, name: str) -> asyncio.Task[Any]:
        task = asyncio.get_running_loop().create_task(coro, name=name)
        self._tasks.add(task)
        task.add_done_callback(self._on_done)
        return task

    def _on_done(self, task: asyncio.Task[Any]) -> None:
        self._tasks.discard(task)
        if task.cancelled():
            return
        exc = task.exception()
        if exc is not None:
            LOGGER.error("Request task %s crashed", task.get_name(), exc_info=exc)

    async def drain(self) -> None:
        """Wait until no request is in flight, including ones spawned meanwhile."""
        while self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)

    async def cancel_all(self) -> None:
        tasks = list(self._tasks)
        for task in tasks:
            task.cancel()
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)


async def call_with_timeout(awaitable: Awaitable[T], timeout_s: float) -> T:
    """Await an adapter request, converting an expired deadline to `TransportTimeoutError`."""
    try:
        return await asyncio.wait_for(awaitable, timeout=timeout_s)
    except asyncio.TimeoutError as exc:
        raise TransportTimeoutError(f"Adapter request timed out after {timeout_s}s") from exc
