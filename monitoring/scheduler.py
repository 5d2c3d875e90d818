"""
============================================================================
FLEET WATCHDOG - BACKGROUND TASK SCHEDULER
============================================================================
A lightweight, asyncio-native task scheduler. All jobs run as
coroutines in the same event loop (single process, no broker needed).

Registered Jobs
---------------
1.  watchdog_tick       (MONITOR_TICK_INTERVAL, default 30 s)
    Drains the connection sequencer and, every Nth tick, starts a
    liveness sweep.

2.  registry_refresh    (REGISTRY_REFRESH_INTERVAL, default 10 min)
    Pulls the client list from REGISTRY_SOURCE_URL. Only registered
    when a source is configured.

3.  health_heartbeat    (every 10 min)
    Logs a one-line summary so operators can see the watchdog is
    alive during quiet periods.

Author: Professional Development Team
Version: 1.0.0
License: MIT
============================================================================
"""

import asyncio
import time
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List, Optional, Set

from config.constants import TimeIntervals
from monitoring.context import WatchdogContext
from utils.helpers import TimeHelper
from utils.logger import get_logger


logger = get_logger("Scheduler")


# ============================================================================
# JOB DEFINITION
# ============================================================================

@dataclass
class ScheduledJob:
    """
    Describes a single periodic background job.

    Attributes
    ----------
    name : str
        Identifier used in logs.
    interval_seconds : float
        How often the job runs.
    coroutine_factory : Callable
        An async callable (no arguments) that performs the work.
    next_run : float
        Epoch timestamp when the job should next execute.
    """
    name: str
    interval_seconds: float
    coroutine_factory: Callable
    enabled: bool = True
    last_run: Optional[float] = None
    next_run: float = field(default_factory=time.time)
    run_count: int = 0
    error_count: int = 0


# ============================================================================
# SCHEDULER
# ============================================================================

class Scheduler:
    """
    Asyncio-based periodic job scheduler.

    Usage
    -----
        scheduler = Scheduler(context)
        await scheduler.start()
        # ... later ...
        await scheduler.stop()
    """

    def __init__(
        self,
        context: WatchdogContext,
        *,
        clock: Callable[[], float] = time.time,
        poll_interval: float = 1.0,
    ):
        self.context = context
        self.settings = context.settings
        self._clock = clock

        self._jobs: Dict[str, ScheduledJob] = {}
        self._job_tasks: Set[asyncio.Task] = set()
        self._running = False
        self._loop_task: Optional[asyncio.Task] = None
        self._poll_interval = poll_interval

        self._register_builtin_jobs()

        logger.info(f"Scheduler created with {len(self._jobs)} built-in jobs")

    # ------------------------------------------------------------------
    # JOB REGISTRATION
    # ------------------------------------------------------------------

    def register_job(
        self,
        name: str,
        interval_seconds: float,
        coroutine_factory: Callable,
        enabled: bool = True,
        initial_delay: float = 0.0,
    ) -> None:
        """
        Register a new periodic job.

        ``initial_delay`` postpones the first run; 0 runs it on the
        first poll.
        """
        if name in self._jobs:
            logger.warning(f"[Scheduler] Job '{name}' already registered, overwriting")

        self._jobs[name] = ScheduledJob(
            name=name,
            interval_seconds=interval_seconds,
            coroutine_factory=coroutine_factory,
            enabled=enabled,
            next_run=self._clock() + initial_delay,
        )
        logger.debug(f"[Scheduler] Registered job '{name}' (interval={interval_seconds}s)")

    def get_job(self, name: str) -> Optional[ScheduledJob]:
        return self._jobs.get(name)

    # ------------------------------------------------------------------
    # LIFECYCLE
    # ------------------------------------------------------------------

    async def start(self) -> None:
        """Start the scheduler loop."""
        if self._running:
            logger.warning("Scheduler is already running")
            return
        self._running = True
        self._loop_task = asyncio.create_task(self._main_loop())
        logger.info("✓ Scheduler started")

    async def stop(self) -> None:
        """Stop the scheduler loop and cancel running jobs."""
        self._running = False
        if self._loop_task:
            self._loop_task.cancel()
            try:
                await self._loop_task
            except asyncio.CancelledError:
                pass
            self._loop_task = None

        tasks = list(self._job_tasks)
        for task in tasks:
            task.cancel()
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)
        logger.info("✓ Scheduler stopped")

    # ------------------------------------------------------------------
    # MAIN LOOP
    # ------------------------------------------------------------------

    async def _main_loop(self) -> None:
        logger.info("[Scheduler] Main loop started")
        while self._running:
            self.run_due_jobs()
            try:
                await asyncio.sleep(self._poll_interval)
            except asyncio.CancelledError:
                break
        logger.info("[Scheduler] Main loop exited")

    def run_due_jobs(self) -> List[asyncio.Task]:
        """Launch every enabled job whose time has come."""
        now = self._clock()
        launched = []
        for job in self._jobs.values():
            if job.enabled and now >= job.next_run:
                task = asyncio.create_task(self._execute_job(job), name=f"job:{job.name}")
                self._job_tasks.add(task)
                task.add_done_callback(self._job_tasks.discard)
                launched.append(task)
                # Advance next_run immediately so we don't re-trigger
                job.next_run = now + job.interval_seconds
        return launched

    # ------------------------------------------------------------------
    # JOB EXECUTION
    # ------------------------------------------------------------------

    async def _execute_job(self, job: ScheduledJob) -> None:
        """
        Run a single job, capture timing and errors.
        """
        start_time = time.monotonic()
        try:
            await job.coroutine_factory()
        except Exception as e:
            job.error_count += 1
            logger.exception(
                f"[Scheduler] Job '{job.name}' FAILED after "
                f"{time.monotonic() - start_time:.2f}s: {e}"
            )
            return

        job.run_count += 1
        job.last_run = self._clock()
        logger.debug(
            f"[Scheduler] Job '{job.name}' completed in "
            f"{time.monotonic() - start_time:.2f}s (run #{job.run_count})"
        )

    # ------------------------------------------------------------------
    # DIAGNOSTICS
    # ------------------------------------------------------------------

    def get_job_stats(self) -> List[Dict[str, Any]]:
        """Return status of all registered jobs."""
        return [
            {
                "name": job.name,
                "interval_seconds": job.interval_seconds,
                "enabled": job.enabled,
                "run_count": job.run_count,
                "error_count": job.error_count,
                "last_run": TimeHelper.epoch_to_iso(job.last_run),
                "next_run": TimeHelper.epoch_to_iso(job.next_run),
            }
            for job in self._jobs.values()
        ]

    # ==================================================================
    # BUILT-IN JOBS
    # ==================================================================

    def _register_builtin_jobs(self) -> None:
        tick_interval = self.settings.monitoring.tick_interval
        self.register_job(
            "watchdog_tick",
            interval_seconds=tick_interval,
            coroutine_factory=self._job_watchdog_tick,
            initial_delay=tick_interval,
        )

        refresh_interval = self.settings.registry.refresh_interval
        self.register_job(
            "registry_refresh",
            interval_seconds=refresh_interval,
            coroutine_factory=self._job_registry_refresh,
            enabled=bool(self.settings.registry.source_url),
            initial_delay=refresh_interval,
        )

        self.register_job(
            "health_heartbeat",
            interval_seconds=TimeIntervals.MINUTES_10,
            coroutine_factory=self._job_health_heartbeat,
            initial_delay=TimeIntervals.MINUTES_10,
        )

    async def _job_watchdog_tick(self) -> None:
        await self.context.tick()

    async def _job_registry_refresh(self) -> None:
        count = await self.context.refresh_from_source()
        if count is None:
            logger.warning("[Scheduler] Registry refresh did not complete")

    async def _job_health_heartbeat(self) -> None:
        stats = self.context.get_stats()
        logger.info(
            f"[Heartbeat] ✓ Watchdog alive — up {stats['uptime_human']}, "
            f"clients={stats['registry']['clients']}, "
            f"queued={stats['sequencer']['queue_length']}, "
            f"alerts_queued={stats['alerts']['queue_size']}"
        )
