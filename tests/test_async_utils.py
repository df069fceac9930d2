"""
Tests for async_utils module.

Covers run_sync, run_sync_limited, run_sync_in, init_semaphore and
reset_semaphore.
"""

import asyncio
import threading
import time
from concurrent.futures import ThreadPoolExecutor

import casync_updater.core.async_utils as mod
from casync_updater.core.async_utils import (
    init_semaphore,
    reset_semaphore,
    run_sync,
    run_sync_in,
    run_sync_limited,
)


def _sync_add(a: int, b: int) -> int:
    """Simple sync function for testing."""
    return a + b


async def test_run_sync_calls_function():
    """run_sync delegates to asyncio.to_thread with correct args."""
    assert await run_sync(_sync_add, 3, 4) == 7


async def test_run_sync_passes_kwargs():
    """run_sync forwards keyword arguments."""

    def _kw_func(*, name: str) -> str:
        return f"hello {name}"

    assert await run_sync(_kw_func, name="world") == "hello world"


async def test_init_and_reset_semaphore():
    original = mod._semaphore
    try:
        init_semaphore(5)
        assert mod._semaphore is not None
        reset_semaphore()
        assert mod._semaphore is None
    finally:
        mod._semaphore = original


async def test_run_sync_limited_without_semaphore():
    """run_sync_limited falls back to unbounded when semaphore is None."""
    original = mod._semaphore
    try:
        mod._semaphore = None
        assert await run_sync_limited(_sync_add, 5, 6) == 11
    finally:
        mod._semaphore = original


async def test_run_sync_limited_concurrency_bound():
    """run_sync_limited actually limits concurrency via semaphore."""
    original = mod._semaphore
    try:
        init_semaphore(2)

        max_concurrent = 0
        current_concurrent = 0
        lock = threading.Lock()

        def _track_concurrency(val):
            nonlocal max_concurrent, current_concurrent
            with lock:
                current_concurrent += 1
                max_concurrent = max(max_concurrent, current_concurrent)
            time.sleep(0.05)  # Hold for a bit so others overlap
            with lock:
                current_concurrent -= 1
            return val

        results = await asyncio.gather(
            *(run_sync_limited(_track_concurrency, i) for i in range(6))
        )

        assert results == [0, 1, 2, 3, 4, 5]
        assert max_concurrent <= 2
    finally:
        mod._semaphore = original


async def test_run_sync_in_ignores_semaphore():
    """run_sync_in uses the given executor and never waits on the semaphore."""
    original = mod._semaphore
    try:
        init_semaphore(1)
        await mod._semaphore.acquire()
        with ThreadPoolExecutor(max_workers=1, thread_name_prefix="t") as pool:
            name = await asyncio.wait_for(
                run_sync_in(pool, lambda: threading.current_thread().name),
                timeout=2,
            )
        assert name.startswith("t")
    finally:
        mod._semaphore = original
