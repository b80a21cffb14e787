"""
Small task helpers shared by the supervisor.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Any, Awaitable, List, Optional

logger = logging.getLogger(__name__)


async def wait_first(*aws: Awaitable[Any]) -> int:
    """
    Wait until the first of several awaitables completes.

    Coroutines are wrapped in tasks owned by this call and cancelled once a
    winner is known. Tasks and futures passed in belong to the caller and are
    left running, so a long-lived task (the RPC read loop) can take part in
    many races.

    Args:
        *aws: Coroutines, tasks or futures

    Returns:
        Index of the awaitable that finished first
    """
    if not aws:
        raise ValueError("wait_first needs at least one awaitable")

    owned: List[asyncio.Future[Any]] = []
    futures: List[asyncio.Future[Any]] = []
    for aw in aws:
        if asyncio.isfuture(aw):
            futures.append(aw)  # type: ignore[arg-type]
        else:
            fut = asyncio.ensure_future(aw)
            owned.append(fut)
            futures.append(fut)

    try:
        done, _ = await asyncio.wait(futures, return_when=asyncio.FIRST_COMPLETED)
    finally:
        for fut in owned:
            if not fut.done():
                fut.cancel()

    # Several may be done at once; the earliest listed wins
    for index, fut in enumerate(futures):
        if fut in done:
            return index
    raise AssertionError("asyncio.wait returned without a finished future")


async def drain_task(task: Optional[asyncio.Future[Any]], timeout: float) -> bool:
    """
    Give a task ``timeout`` seconds to finish, then cancel it.

    Never raises; the task's own result or exception is discarded.

    Returns:
        True if the task finished within the timeout
    """
    if task is None:
        return True
    done, _ = await asyncio.wait({task}, timeout=timeout)
    if task in done:
        if not task.cancelled() and task.exception() is not None:
            logger.debug(f"Drained task failed: {task.exception()}")
        return True
    task.cancel()
    return False
