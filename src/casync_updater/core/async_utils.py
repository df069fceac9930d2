"""Async utilities for running blocking cycle steps off the event loop."""

import asyncio
import functools
import logging
from concurrent.futures import Executor
from typing import Any, Callable, TypeVar

T = TypeVar("T")
logger = logging.getLogger(__name__)

# Module-level semaphore, initialized at service startup
_semaphore: asyncio.Semaphore | None = None


def init_semaphore(max_parallel: int = 4) -> None:
    """Initialize the concurrency semaphore. Call once at service startup."""
    global _semaphore
    _semaphore = asyncio.Semaphore(max_parallel)
    logger.info(
        "Cycle semaphore initialized: max_parallel=%d",
        max_parallel,
    )


def reset_semaphore() -> None:
    """Drop the semaphore (it is bound to the loop that created it)."""
    global _semaphore
    _semaphore = None


async def run_sync(
    func: Callable[..., T], *args: Any, **kwargs: Any
) -> T:
    """Run a synchronous function in a thread pool without blocking the event loop.

    Args:
        func: Synchronous function to call
        *args: Positional arguments for func
        **kwargs: Keyword arguments for func

    Returns:
        Result of func(*args, **kwargs)

    Example:
        report = await run_sync(cycle.run)
    """
    return await asyncio.to_thread(func, *args, **kwargs)


async def run_sync_limited(
    func: Callable[..., T], *args: Any, **kwargs: Any
) -> T:
    """Run a synchronous function in a thread pool, bounded by the concurrency semaphore.

    Falls back to unbounded if semaphore not initialized.

    Args:
        func: Synchronous function to call
        *args: Positional arguments for func
        **kwargs: Keyword arguments for func

    Returns:
        Result of func(*args, **kwargs)
    """
    if _semaphore is None:
        return await asyncio.to_thread(func, *args, **kwargs)
    async with _semaphore:
        return await asyncio.to_thread(func, *args, **kwargs)


async def run_sync_in(
    executor: Executor, func: Callable[..., T], *args: Any, **kwargs: Any
) -> T:
    """Run a synchronous function on a dedicated *executor*.

    Unlike ``run_sync_limited`` the call never waits for the shared
    semaphore; capacity is whatever *executor* provides.
    """
    loop = asyncio.get_running_loop()
    return await loop.run_in_executor(
        executor, functools.partial(func, *args, **kwargs)
    )
