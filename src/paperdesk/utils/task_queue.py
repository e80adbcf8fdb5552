"""FIFO queue that runs async operations strictly one at a time."""

from __future__ import annotations

import asyncio
import logging
from collections import deque
from collections.abc import Awaitable, Callable
from typing import Any, TypeVar

logger = logging.getLogger(__name__)

T = TypeVar("T")


class SerialTaskQueue:
    """Serializes async operations in submission order.

    ``submit`` enqueues a zero-argument coroutine function and awaits only
    that operation's outcome. A single drain task pops items one at a time
    and keeps going while items remain. Once queued, an operation always
    runs to completion, even if its submitter stops waiting for it.
    """

    def __init__(self, name: str = "queue") -> None:
        self.name = name
        self._pending: deque[tuple[Callable[[], Awaitable[Any]], asyncio.Future[Any]]] = deque()
        self._drain_task: asyncio.Task[None] | None = None

    def __len__(self) -> int:
        return len(self._pending)

    @property
    def is_draining(self) -> bool:
        return self._drain_task is not None and not self._drain_task.done()

    async def submit(self, operation: Callable[[], Awaitable[T]]) -> T:
        loop = asyncio.get_running_loop()
        future: asyncio.Future[T] = loop.create_future()
        self._pending.append((operation, future))
        if not self.is_draining:
            self._drain_task = loop.create_task(self._drain(), name=f"{self.name}-drain")
        # Shield so a cancelled caller does not cancel the queued work itself.
        return await asyncio.shield(future)

    async def join(self) -> None:
        """Wait until everything queued so far has run."""
        while self.is_draining:
            assert self._drain_task is not None
            await asyncio.shield(self._drain_task)

    async def _drain(self) -> None:
        while self._pending:
            operation, future = self._pending.popleft()
            try:
                result = await operation()
            except Exception as exc:
                if future.done():
                    logger.warning("%s: operation failed after its caller stopped waiting: %s", self.name, exc)
                else:
                    future.set_exception(exc)
            else:
                if not future.done():
                    future.set_result(result)
