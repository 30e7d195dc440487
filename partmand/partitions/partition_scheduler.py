"""
Cron-driven scheduling of partition maintenance.

The scheduler registers itself as a trigger with the orchestrator and awaits
``run_maintenance(False)`` at every cron occurrence (UTC).
"""

import asyncio
import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Optional

import croniter

from .partition_errors import ConfigError
from .partition_maintenance import MaintenanceOrchestrator
from .partition_operator import Clock, utc_now

logger = logging.getLogger(__name__)

DEFAULT_CRON = "0 2 * * *"
TRIGGER_NAME = "cron"


@dataclass
class SchedulerStatus:
    """Status information for the scheduler."""
    running: bool
    cron: str
    next_run: Optional[datetime]
    last_run: Optional[datetime]
    total_runs: int
    successful_runs: int
    failed_runs: int
    skipped_runs: int
    last_error: Optional[str]
    uptime_seconds: float


class MaintenanceScheduler:
    """Periodically triggers partition maintenance on a cron schedule."""

    def __init__(self, orchestrator: MaintenanceOrchestrator, cron: str = DEFAULT_CRON,
                 enabled: bool = True, clock: Clock = utc_now):
        if not croniter.croniter.is_valid(cron):
            raise ConfigError(f"Invalid cron expression: {cron!r}")
        self.orchestrator = orchestrator
        self.cron = cron
        self.enabled = enabled
        self.clock = clock

        self._running = False
        self._task: Optional[asyncio.Task] = None
        self._start_time: Optional[datetime] = None
        self._next_run: Optional[datetime] = None
        self._last_run: Optional[datetime] = None
        self._total_runs = 0
        self._successful_runs = 0
        self._failed_runs = 0
        self._skipped_runs = 0
        self._last_error: Optional[str] = None

    def next_run_after(self, moment: datetime) -> datetime:
        return croniter.croniter(self.cron, moment).get_next(datetime)

    async def start(self):
        """Start the maintenance scheduler."""
        if self._running:
            logger.warning("Partition maintenance scheduler is already running")
            return

        if not self.enabled:
            logger.info("Partition maintenance scheduler is disabled")
            return

        self._running = True
        self._start_time = self.clock()
        self.orchestrator.register_trigger(TRIGGER_NAME)
        self._task = asyncio.create_task(self._scheduler_loop())
        logger.info(f"Partition maintenance scheduler started (cron: {self.cron})")

    async def stop(self):
        """Stop the scheduler and wait for the loop to exit."""
        if not self._running:
            return

        logger.info("Stopping partition maintenance scheduler...")
        self._running = False
        self.orchestrator.unregister_trigger(TRIGGER_NAME)
        if self._task:
            self._task.cancel()
            try:
                await self._task
            except asyncio.CancelledError:
                pass
            self._task = None
        self._next_run = None
        logger.info("Partition maintenance scheduler stopped")

    async def _scheduler_loop(self):
        while self._running:
            self._next_run = self.next_run_after(self.clock())
            delay = (self._next_run - self.clock()).total_seconds()
            logger.debug(f"Next partition maintenance at {self._next_run.isoformat()}")
            await asyncio.sleep(max(delay, 0))
            await self.run_once()

    async def run_once(self):
        """Trigger one maintenance run; failures are counted and logged, not raised."""
        self._last_run = self.clock()
        try:
            report = await self.orchestrator.run_maintenance(False)
        except Exception as e:
            self._failed_runs += 1
            self._total_runs += 1
            self._last_error = str(e)
            logger.error(f"Scheduled partition maintenance failed: {e}")
            return None

        if report is None:
            self._skipped_runs += 1
            return None

        self._total_runs += 1
        if report.error_count:
            self._failed_runs += 1
            self._last_error = f"{report.error_count} partition operations failed"
        else:
            self._successful_runs += 1
            self._last_error = None
        return report

    def get_status(self) -> SchedulerStatus:
        uptime = (self.clock() - self._start_time).total_seconds() if self._running and self._start_time else 0.0
        return SchedulerStatus(
            running=self._running,
            cron=self.cron,
            next_run=self._next_run,
            last_run=self._last_run,
            total_runs=self._total_runs,
            successful_runs=self._successful_runs,
            failed_runs=self._failed_runs,
            skipped_runs=self._skipped_runs,
            last_error=self._last_error,
            uptime_seconds=uptime,
        )
