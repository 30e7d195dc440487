"""
Prometheus metrics for partition maintenance.

Counters are updated as operators and runs complete; per-table gauges are
refreshed from the health assessor on ``collect()``.
"""

from typing import Any, Dict, List, Optional

from prometheus_client import CollectorRegistry

from .metrics_collector import MetricsCollector
from ..partitions.partition_models import HealthStatus, MaintenanceReport, OperationResult


class MaintenanceMetricsCollector(MetricsCollector):
    """Run, operation and health metrics for the partition manager."""

    def __init__(self, health_assessor=None, registry: Optional[CollectorRegistry] = None):
        self.health_assessor = health_assessor
        super().__init__(registry)

    def _initialize_metrics(self) -> None:
        self.runs_total = self.create_counter(
            'partmand_maintenance_runs_total',
            'Maintenance runs by outcome',
            ['outcome']
        )
        self.run_duration = self.create_histogram(
            'partmand_maintenance_run_duration_seconds',
            'Duration of maintenance runs',
            buckets=[1, 5, 15, 60, 300, 900, 3600]
        )
        self.maintenance_running = self.create_gauge(
            'partmand_maintenance_running',
            'Whether a maintenance run is in progress'
        )
        self.operation_results_total = self.create_counter(
            'partmand_operation_results_total',
            'Per-partition operator results',
            ['operation', 'table', 'status']
        )
        self.partitions = self.create_gauge(
            'partmand_partitions',
            'Partitions recorded in the catalog',
            ['table']
        )
        self.rows = self.create_gauge(
            'partmand_partition_rows',
            'Rows across all partitions of a table',
            ['table']
        )
        self.size_mb = self.create_gauge(
            'partmand_partition_size_mb',
            'Size of all partitions of a table in MB',
            ['table']
        )
        self.partitions_to_drop = self.create_gauge(
            'partmand_partitions_to_drop',
            'Partitions past the retention window',
            ['table']
        )
        self.health_status = self.create_gauge(
            'partmand_table_health',
            'Current health status of a table (1 for the active status)',
            ['table', 'status']
        )

    def set_running(self, running: bool) -> None:
        self.maintenance_running.set(1 if running else 0)

    def record_results(self, operation: str, table_name: str, results: List[OperationResult]) -> None:
        for result in results:
            self.operation_results_total.labels(
                operation=operation, table=table_name, status=result.status.value
            ).inc()

    def record_run(self, report: Optional[MaintenanceReport] = None, outcome: Optional[str] = None) -> None:
        """Count a run. ``outcome`` defaults to completed/completed_with_errors from the report."""
        if outcome is None:
            outcome = "completed_with_errors" if report and report.error_count else "completed"
        self.runs_total.labels(outcome=outcome).inc()
        if report is not None and report.finished_at is not None:
            self.run_duration.observe(report.duration_seconds)

    async def collect_metrics(self) -> Dict[str, Any]:
        if self.health_assessor is None:
            return {}

        summaries = await self.health_assessor.get_health_summary()
        data = {}
        for summary in summaries:
            table = summary.table_name
            self.partitions.labels(table=table).set(summary.total_partitions)
            self.rows.labels(table=table).set(summary.total_rows)
            self.size_mb.labels(table=table).set(summary.total_size_mb)
            self.partitions_to_drop.labels(table=table).set(summary.partitions_to_drop)
            for status in HealthStatus:
                self.health_status.labels(table=table, status=status.value).set(
                    1 if summary.health_status == status else 0
                )
            data[table] = summary.to_dict()

        self.logger.info("Partition health metrics refreshed", tables=len(data))
        return data
