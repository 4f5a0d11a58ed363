"""Collapse concurrent identical upstream calls into one in-flight task."""

from __future__ import annotations

import asyncio
import logging
from typing import Any, Awaitable, Callable, Dict, TypeVar

logger = logging.getLogger(__name__)

T = TypeVar("T")

__all__ = ["RequestBatcher"]


class _Pending:
    __slots__ = ("task", "waiters", "abandoned")

    def __init__(self, task: "asyncio.Task[Any]") -> None:
        self.task = task
        self.waiters = 0
        self.abandoned = False


class RequestBatcher:
    """
    At most one producer runs per key at a time; later callers await the same
    task. The key is released as soon as the task settles, success or failure.

    The pending map is only touched from coroutines on the owning event loop,
    so no lock is required. A caller being cancelled does not cancel the shared
    task unless it was the last one waiting on it.
    """

    def __init__(self) -> None:
        self._pending: Dict[str, _Pending] = {}
        self.collapsed = 0

    def in_flight(self) -> int:
        return len(self._pending)

    async def run(self, key: str, producer: Callable[[], Awaitable[T]]) -> T:
        pending = self._pending.get(key)
        # A task cancelled by its last waiter is never joined, even before it is released.
        if pending is None or pending.abandoned or pending.task.cancelled():
            task = asyncio.ensure_future(producer())
            pending = _Pending(task)
            self._pending[key] = pending
            task.add_done_callback(lambda _task, key=key, pending=pending: self._release(key, pending))
        else:
            self.collapsed += 1
            logger.debug("batcher.join key=%s waiters=%d", key, pending.waiters + 1)

        pending.waiters += 1
        try:
            return await asyncio.shield(pending.task)
        except asyncio.CancelledError:
            if not pending.task.done() and pending.waiters == 1:
                pending.abandoned = True
                pending.task.cancel()
            raise
        finally:
            pending.waiters -= 1

    def _release(self, key: str, pending: _Pending) -> None:
        if self._pending.get(key) is pending:
            del self._pending[key]
        if pending.task.cancelled():
            return
        exc = pending.task.exception()
        if exc is not None and pending.waiters == 0:
            logger.debug("batcher.orphaned_failure key=%s error=%s", key, exc)
