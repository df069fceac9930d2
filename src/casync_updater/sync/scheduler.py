"""Periodic scheduling of sync cycles.

One asyncio task per entry.  Each entry owns a worker thread in a pool
sized to the number of entries, so entries run concurrently and a slow
entry never delays another one.  Cycles of a single entry are strictly
sequential.

Tick timing: the first tick fires immediately and is followed by the
entry's startup commands.  Each following tick is due at the previous
tick's start plus the interval.  Ticks that fall due while a cycle is
still running are skipped, never queued.
"""

from __future__ import annotations

import asyncio
import logging
import signal
from concurrent.futures import ThreadPoolExecutor
from typing import Callable, Iterable

from casync_updater.core.async_utils import run_sync_in
from casync_updater.logger import EntryLogAdapter
from casync_updater.sync.engine import SyncCycle
from casync_updater.sync.models import CycleReport

logger = logging.getLogger(__name__)

IDLE = "idle"
RUNNING = "running"

ReportCallback = Callable[[CycleReport], None]


class CycleScheduler:
    """Run every ``SyncCycle`` on its own interval until stopped.

    Args:
        cycles: One cycle per configured entry.
        on_report: Optional callback invoked with every completed report.
    """

    def __init__(
        self,
        cycles: Iterable[SyncCycle],
        on_report: ReportCallback | None = None,
    ) -> None:
        self.cycles = list(cycles)
        self.on_report = on_report
        self.states: dict[str, str] = {c.name: IDLE for c in self.cycles}
        self.skipped_ticks: dict[str, int] = {c.name: 0 for c in self.cycles}
        self._stop = asyncio.Event()
        self._pool: ThreadPoolExecutor | None = None

    @property
    def stopping(self) -> bool:
        return self._stop.is_set()

    def stop(self) -> None:
        """Ask every entry loop to finish after its current cycle."""
        if not self._stop.is_set():
            logger.info("Stopping scheduler")
        self._stop.set()

    def install_signal_handlers(self) -> None:
        """Stop cleanly on SIGINT and SIGTERM."""
        loop = asyncio.get_running_loop()
        for sig in (signal.SIGINT, signal.SIGTERM):
            loop.add_signal_handler(sig, self.stop)

    async def run(self) -> None:
        """Run all entry loops until ``stop()`` is called."""
        if not self.cycles:
            logger.warning("No entries configured, nothing to schedule")
            return

        logger.info("Scheduling %d entries", len(self.cycles))
        with ThreadPoolExecutor(
            max_workers=len(self.cycles), thread_name_prefix="cycle"
        ) as pool:
            self._pool = pool
            tasks = [
                asyncio.create_task(self._run_entry(cycle), name=cycle.name)
                for cycle in self.cycles
            ]
            try:
                await asyncio.gather(*tasks)
            finally:
                for task in tasks:
                    task.cancel()
                self._pool = None
        logger.info("All entry loops stopped")

    # ------------------------------------------------------------------
    # Per-entry loop
    # ------------------------------------------------------------------

    async def _run_entry(self, cycle: SyncCycle) -> None:
        log = EntryLogAdapter(logger, {"entry": cycle.name})
        interval = cycle.entry.interval_seconds
        loop = asyncio.get_running_loop()
        first = True

        while not self._stop.is_set():
            started = loop.time()
            await self._run_cycle(cycle, log)
            if first:
                first = False
                await self._run_startup(cycle, log)

            next_tick = started + interval
            now = loop.time()
            if now > next_tick:
                missed = int((now - next_tick) // interval) + 1
                self.skipped_ticks[cycle.name] += missed
                log.warning(
                    "Cycle took %.1fs, skipping %d tick(s)",
                    now - started,
                    missed,
                )
                next_tick += missed * interval
            await self._sleep(next_tick - now)

    async def _run_cycle(
        self, cycle: SyncCycle, log: logging.LoggerAdapter
    ) -> CycleReport | None:
        self.states[cycle.name] = RUNNING
        try:
            report = await run_sync_in(self._pool, cycle.run)
        except Exception:
            log.exception("Unexpected error during cycle")
            return None
        finally:
            self.states[cycle.name] = IDLE

        if self.on_report is not None:
            self.on_report(report)
        return report

    async def _run_startup(
        self, cycle: SyncCycle, log: logging.LoggerAdapter
    ) -> None:
        try:
            await run_sync_in(self._pool, cycle.run_startup)
        except Exception:
            log.exception("Unexpected error running startup actions")

    async def _sleep(self, delay: float) -> None:
        """Sleep up to *delay* seconds, waking early on ``stop()``."""
        if delay <= 0:
            return
        try:
            await asyncio.wait_for(self._stop.wait(), timeout=delay)
        except asyncio.TimeoutError:
            pass
