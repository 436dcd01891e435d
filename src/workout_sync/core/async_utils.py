"""Async utilities for offloading blocking sync passes to worker threads."""

import asyncio
import logging
from typing import Any, Callable, TypeVar

T = TypeVar("T")
logger = logging.getLogger(__name__)


async def run_sync(
    func: Callable[..., T], *args: Any, **kwargs: Any
) -> T:
    """Run a synchronous function in a thread pool without blocking the event loop.

    The sync engine is blocking (HTTP + SQLite); async callers use this to
    await a pass.  Cancelling the awaiting task does not stop the pass; it
    runs to completion in its thread.

    Args:
        func: Synchronous function to call
        *args: Positional arguments for func
        **kwargs: Keyword arguments for func

    Returns:
        Result of func(*args, **kwargs)

    Example:
        outcome = await run_sync(coordinator.sync_all)
    """
    return await asyncio.to_thread(func, *args, **kwargs)
