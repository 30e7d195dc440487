"""
Maintenance orchestration.

Runs provisioning, statistics, retirement and reclamation over every enabled
table, one table at a time, with at most one run in flight per process.
"""

import asyncio
import logging
import threading
from contextlib import contextmanager
from typing import Awaitable, List, Optional, Set, TypeVar

from .partition_errors import ConfigError, StorageUnavailableError
from .partition_health import HealthAssessor
from .partition_logging import MaintenanceLogger
from .partition_models import (
    MaintenanceReport, MaintenanceState, OperationResult, OrchestratorStatus,
    PartitionConfig, TableMaintenanceResult
)
from .partition_operator import DEFAULT_STORAGE_CALL_TIMEOUT, Clock, utc_now
from .partition_provisioning import ProvisioningOperator
from .partition_reclamation import ReclamationOperator
from .partition_retirement import RetirementOperator
from .partition_statistics import StatisticsOperator
from ..storage.interfaces import CatalogStore

logger = logging.getLogger(__name__)

T = TypeVar("T")


class RunGuard:
    """Non-blocking IDLE/RUNNING guard. State changes only through ``acquire``."""

    def __init__(self):
        self._lock = threading.Lock()
        self._state = MaintenanceState.IDLE

    @property
    def state(self) -> MaintenanceState:
        return self._state

    @property
    def is_running(self) -> bool:
        return self._state is MaintenanceState.RUNNING

    @contextmanager
    def acquire(self):
        """Yield True if the guard moved IDLE -> RUNNING, False if a run already holds it."""
        if not self._lock.acquire(blocking=False):
            yield False
            return
        self._state = MaintenanceState.RUNNING
        try:
            yield True
        finally:
            self._state = MaintenanceState.IDLE
            self._lock.release()


class MaintenanceOrchestrator:
    """
    Sequences the partition operators across enabled tables.

    Per-partition failures are absorbed into the operator results. A
    ConfigError skips the affected table. FatalError and unexpected
    exceptions end the run and propagate to the caller.
    """

    def __init__(self, catalog: CatalogStore,
                 provisioning: ProvisioningOperator,
                 statistics: StatisticsOperator,
                 retirement: RetirementOperator,
                 reclamation: ReclamationOperator,
                 health: HealthAssessor,
                 maintenance_logger: Optional[MaintenanceLogger] = None,
                 metrics=None,
                 enabled: bool = True,
                 clock: Clock = utc_now,
                 timeout: float = DEFAULT_STORAGE_CALL_TIMEOUT):
        self.catalog = catalog
        self.provisioning = provisioning
        self.statistics = statistics
        self.retirement = retirement
        self.reclamation = reclamation
        self.health = health
        self.maintenance_logger = maintenance_logger or MaintenanceLogger(write_audit_trail=False)
        self.metrics = metrics
        self.enabled = enabled
        self.clock = clock
        self.timeout = timeout

        self._guard = RunGuard()
        self._triggers: Set[str] = set()

    def register_trigger(self, name: str = "scheduler") -> None:
        self._triggers.add(name)

    def unregister_trigger(self, name: str = "scheduler") -> None:
        self._triggers.discard(name)

    def get_status(self) -> OrchestratorStatus:
        return OrchestratorStatus(is_running=self._guard.is_running, job_scheduled=bool(self._triggers))

    async def run_maintenance(self, dry_run: bool = False) -> Optional[MaintenanceReport]:
        """
        Run one maintenance pass over all enabled tables.

        Returns None without touching storage when maintenance is globally
        disabled or another run holds the guard.
        """
        if not self.enabled:
            logger.info("Partition maintenance is disabled, skipping")
            return None

        with self._guard.acquire() as acquired:
            if not acquired:
                logger.warning("Partition maintenance already in progress, skipping")
                if self.metrics:
                    self.metrics.record_run(outcome="skipped")
                return None

            if self.metrics:
                self.metrics.set_running(True)
            try:
                report = await self._run(dry_run)
            except Exception:
                logger.exception("Partition maintenance failed")
                if self.metrics:
                    self.metrics.record_run(outcome="failed")
                raise
            finally:
                if self.metrics:
                    self.metrics.set_running(False)

            if self.metrics:
                self.metrics.record_run(report)
            return report

    async def _run(self, dry_run: bool) -> MaintenanceReport:
        report = MaintenanceReport(started_at=self.clock(), dry_run=dry_run)
        logger.info(f"Starting partition maintenance (dry_run={dry_run})")

        self.maintenance_logger.log_health(await self.health.get_health_summary(), "before")

        configs = await self._call(self.catalog.list_configs(enabled_only=True))
        for config in configs:
            report.tables.append(await self._maintain_table(config, dry_run))

        self.maintenance_logger.log_health(await self.health.get_health_summary(), "after")

        report.finished_at = self.clock()
        self.maintenance_logger.log_maintenance_report(report)
        return report

    async def _maintain_table(self, config: PartitionConfig, dry_run: bool) -> TableMaintenanceResult:
        table = config.table_name
        result = TableMaintenanceResult(table_name=table)
        logger.info(f"Maintaining {table} (retention={config.retention_months} months, "
                    f"future={config.future_partitions})")

        try:
            result.provisioned = await self.provisioning.create_future_partitions(
                table, config.future_partitions)
            self._record(self.provisioning.operation, table, result.provisioned)

            result.analyzed = await self.statistics.analyze_partitions(table)
            self._record(self.statistics.operation, table, result.analyzed)

            result.retired = await self.retirement.drop_old_partitions(
                table, config.retention_months, dry_run)
            self._record(self.retirement.operation, table, result.retired, dry_run)

            result.vacuumed = await self.reclamation.vacuum_partitions(table, full=False)
            self._record(self.reclamation.operation, table, result.vacuumed)
        except ConfigError as e:
            logger.error(f"Skipping {table}: {e}")
            result.error_message = str(e)

        return result

    def _record(self, operation: str, table: str, results: List[OperationResult], dry_run: bool = False):
        self.maintenance_logger.log_operation_results(operation, table, results, dry_run)
        if self.metrics:
            self.metrics.record_results(operation, table, results)

    async def _call(self, awaitable: Awaitable[T]) -> T:
        try:
            return await asyncio.wait_for(awaitable, timeout=self.timeout)
        except asyncio.TimeoutError as e:
            raise StorageUnavailableError(f"Catalog read timed out after {self.timeout}s") from e
