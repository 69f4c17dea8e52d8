"""Cooperative cancellation for the connection loops.

One ``asyncio.Event`` per run acts as the cancellation signal. It is set once
and never cleared. Every suspension point goes through ``until_cancelled`` or
``sleep_or_cancel`` so a blocked accept/read/receive unblocks as soon as the
signal fires.
"""

import asyncio
import inspect
from typing import Awaitable, TypeVar

T = TypeVar("T")


class LoopCancelled(Exception):
    """The cancellation signal fired before the awaited operation completed."""


async def until_cancelled(aw: Awaitable[T], stop: asyncio.Event) -> T:
    """Await ``aw`` unless ``stop`` is set first.

    The signal is checked before ``aw`` is started. If it fires while waiting,
    ``aw`` is cancelled and awaited before LoopCancelled is raised.
    """
    if stop.is_set():
        if inspect.iscoroutine(aw):
            aw.close()
        raise LoopCancelled()

    task = asyncio.ensure_future(aw)
    stopper = asyncio.ensure_future(stop.wait())
    try:
        await asyncio.wait({task, stopper}, return_when=asyncio.FIRST_COMPLETED)
    finally:
        stopper.cancel()
        if not task.done():
            task.cancel()
            await asyncio.wait({task})

    if task.cancelled():
        raise LoopCancelled()
    return task.result()


async def sleep_or_cancel(delay: float, stop: asyncio.Event) -> bool:
    """Wait ``delay`` seconds. Returns True if the signal fired meanwhile."""
    if stop.is_set():
        return True
    try:
        await asyncio.wait_for(stop.wait(), timeout=delay)
    except asyncio.TimeoutError:
        return False
    return True
