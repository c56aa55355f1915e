"""Supervised fire-and-forget asyncio tasks.

Search analytics are written after the response is sent; tasks spawned
here are kept referenced until they finish and any exception is logged
instead of vanishing with the task.
"""
from __future__ import annotations

import asyncio
import logging
from typing import Any, Awaitable, Optional, Set

logger = logging.getLogger(__name__)

# strong references so pending tasks are not garbage collected
_background_tasks: Set[asyncio.Task[Any]] = set()


def spawn(coro: Awaitable[Any], *, name: Optional[str] = None) -> asyncio.Task[Any]:
    """Schedule ``coro`` on the running loop and supervise it.

    Args:
        coro: Awaitable to run in the background.
        name: Task name used in log lines.
    """
    task = asyncio.ensure_future(coro)
    if name:
        task.set_name(name)
    _background_tasks.add(task)

    def _finished(t: asyncio.Task[Any]) -> None:
        _background_tasks.discard(t)
        if t.cancelled():
            logger.debug("Background task %s cancelled", name or t)
            return
        exc = t.exception()
        if exc is not None:
            logger.error("Background task %s failed", name or t, exc_info=exc)

    task.add_done_callback(_finished)
    return task


async def drain(timeout: Optional[float] = None) -> None:
    """Wait for every pending background task (used at shutdown and in tests)."""
    pending = [t for t in _background_tasks if not t.done()]
    if pending:
        await asyncio.wait(pending, timeout=timeout)


__all__ = ["spawn", "drain"]
