"""
Main partition manager - wires the partition system together.

This is the entry point used by the CLI and by embedding applications.
"""

import logging
from typing import List, Optional, Tuple

from prometheus_client import CollectorRegistry

from .partition_config import DatabaseSettings, ManagerSettings, PartitionConfigManager
from .partition_health import HealthAssessor
from .partition_logging import MaintenanceLogger
from .partition_maintenance import MaintenanceOrchestrator
from .partition_models import (
    HealthSummary, MaintenanceReport, OperationResult, OrchestratorStatus,
    PartitionConfig, PartitionMetadata
)
from .partition_operator import Clock, utc_now
from .partition_provisioning import ProvisioningOperator
from .partition_reclamation import ReclamationOperator
from .partition_retirement import RetirementOperator
from .partition_scheduler import MaintenanceScheduler
from .partition_statistics import StatisticsOperator
from ..monitoring.maintenance_metrics import MaintenanceMetricsCollector
from ..storage.interfaces import CatalogStore, StorageBackend
from ..storage.postgres_backend import (
    PostgresCatalogStore, PostgresConnectionManager, PostgresStorageBackend
)
from ..storage.sqlite_backend import SQLiteCatalogStore, SQLiteStorageBackend

logger = logging.getLogger(__name__)


def create_storage(database: DatabaseSettings) -> Tuple[StorageBackend, CatalogStore]:
    """Backend and catalog for the configured database."""
    if database.backend == "postgres":
        connections = PostgresConnectionManager(
            database.dsn, min_size=database.pool_min_size, max_size=database.pool_max_size
        )
        return (PostgresStorageBackend(connections, database.schema),
                PostgresCatalogStore(connections, database.schema))
    return SQLiteStorageBackend(database.path), SQLiteCatalogStore(database.path)


class PartitionManager:
    """
    Partition manager facade.

    Owns the operators, health assessor, orchestrator, scheduler and metrics
    for one database. Direct operator calls bypass the maintenance run guard.
    """

    def __init__(self, settings: ManagerSettings,
                 backend: Optional[StorageBackend] = None,
                 catalog: Optional[CatalogStore] = None,
                 clock: Clock = utc_now,
                 registry: Optional[CollectorRegistry] = None):
        self.settings = settings
        if backend is None or catalog is None:
            backend, catalog = create_storage(settings.database)
        self.backend = backend
        self.catalog = catalog
        self.clock = clock

        timeout = settings.maintenance.storage_call_timeout_seconds
        self.maintenance_logger = MaintenanceLogger(
            logs_dir=settings.maintenance.logs_dir,
            write_audit_trail=settings.maintenance.write_audit_trail,
            log_operations=settings.maintenance.log_operations,
            clock=clock,
        )

        self.provisioning = ProvisioningOperator(backend, catalog, clock, timeout)
        self.statistics = StatisticsOperator(backend, catalog, clock, timeout)
        self.retirement = RetirementOperator(backend, catalog, clock, timeout)
        self.reclamation = ReclamationOperator(backend, catalog, clock, timeout)
        self.health = HealthAssessor(catalog, clock, timeout)
        self.metrics = MaintenanceMetricsCollector(self.health, registry)

        self.orchestrator = MaintenanceOrchestrator(
            catalog,
            self.provisioning,
            self.statistics,
            self.retirement,
            self.reclamation,
            self.health,
            maintenance_logger=self.maintenance_logger,
            metrics=self.metrics,
            enabled=settings.enabled,
            clock=clock,
            timeout=timeout,
        )
        self.scheduler = MaintenanceScheduler(
            self.orchestrator,
            cron=settings.scheduler.cron,
            enabled=settings.scheduler.enabled,
            clock=clock,
        )

        logger.info(f"Partition manager initialized ({settings.database.backend} backend, "
                    f"{len(settings.tables)} configured tables)")

    async def initialize(self) -> int:
        """Prepare storage and seed table configs that are not in the catalog yet."""
        await self.backend.initialize()
        await self.catalog.initialize()
        seeded = await self.catalog.seed_configs(self.settings.tables)
        if seeded:
            logger.info(f"Seeded {seeded} partition configs")
        return seeded

    async def close(self):
        await self.scheduler.stop()
        await self.backend.close()

    async def get_health_summary(self) -> List[HealthSummary]:
        return await self.health.get_health_summary()

    async def list_partitions(self, table_filter: Optional[str] = None) -> List[PartitionMetadata]:
        return await self.health.list_partitions(table_filter)

    async def get_config(self, table_name: str) -> Optional[PartitionConfig]:
        return await self.catalog.get_config(table_name)

    async def save_config(self, config: PartitionConfig):
        await self.catalog.save_config(config)

    async def create_future_partitions(self, table_name: str, horizon: int) -> List[OperationResult]:
        results = await self.provisioning.create_future_partitions(table_name, horizon)
        return self._record(self.provisioning.operation, table_name, results)

    async def analyze_partitions(self, table_name: str) -> List[OperationResult]:
        results = await self.statistics.analyze_partitions(table_name)
        return self._record(self.statistics.operation, table_name, results)

    async def drop_old_partitions(self, table_name: str, retention_months: int,
                                  dry_run: bool = True) -> List[OperationResult]:
        results = await self.retirement.drop_old_partitions(table_name, retention_months, dry_run)
        return self._record(self.retirement.operation, table_name, results, dry_run)

    async def vacuum_partitions(self, table_name: str, full: bool = False) -> List[OperationResult]:
        results = await self.reclamation.vacuum_partitions(table_name, full)
        return self._record(self.reclamation.operation, table_name, results)

    async def run_maintenance(self, dry_run: bool = False) -> Optional[MaintenanceReport]:
        return await self.orchestrator.run_maintenance(dry_run)

    def get_status(self) -> OrchestratorStatus:
        return self.orchestrator.get_status()

    async def start_scheduler(self):
        await self.scheduler.start()

    async def stop_scheduler(self):
        await self.scheduler.stop()

    async def collect_metrics(self):
        return await self.metrics.collect()

    def _record(self, operation: str, table_name: str, results: List[OperationResult],
                dry_run: bool = False) -> List[OperationResult]:
        self.maintenance_logger.log_operation_results(operation, table_name, results, dry_run)
        self.metrics.record_results(operation, table_name, results)
        return results


def create_partition_manager(config_path: str, db_path: Optional[str] = None) -> PartitionManager:
    """Create a PartitionManager from a config file, optionally overriding the SQLite path."""
    settings = PartitionConfigManager(config_path).config
    if db_path is not None:
        settings.database.backend = "sqlite"
        settings.database.path = db_path
    return PartitionManager(settings)
