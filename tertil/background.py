"""Fire-and-forget helpers for work that must not hold up a request.

Notification emails go through here: a failure is logged, never raised into
the request that changed program state.
"""
from __future__ import annotations

import asyncio
import logging
from functools import partial
from typing import Any, Awaitable, Callable, Optional, Set

logger = logging.getLogger(__name__)

# strong references; the event loop only keeps weak ones
_pending: Set[asyncio.Task[Any]] = set()


def spawn(coro: Awaitable[Any], *, name: Optional[str] = None) -> asyncio.Task[Any]:
    """Schedule ``coro`` on the running loop and log it if it fails."""
    task = asyncio.ensure_future(coro)
    if name:
        task.set_name(name)
    _pending.add(task)
    task.add_done_callback(_reap)
    return task


def _reap(task: asyncio.Task[Any]) -> None:
    _pending.discard(task)
    if task.cancelled():
        logger.debug("Background task %s cancelled", task.get_name())
        return
    exc = task.exception()
    if exc is not None:
        logger.error("Background task %s failed", task.get_name(), exc_info=exc)


async def run_sync(func: Callable[..., Any], *args: Any, **kwargs: Any) -> Any:
    """Run blocking code (SMTP) in the default executor."""
    loop = asyncio.get_running_loop()
    return await loop.run_in_executor(None, partial(func, *args, **kwargs))


async def drain() -> None:
    """Wait for every spawned task; used on shutdown and in tests."""
    while _pending:
        await asyncio.gather(*list(_pending), return_exceptions=True)


__all__ = ["spawn", "run_sync", "drain"]
