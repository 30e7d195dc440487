"""
Unit tests for the maintenance orchestrator and its run guard.
"""

import asyncio
from datetime import datetime, timezone
from unittest.mock import AsyncMock, Mock

import pytest

from partmand.partitions.partition_errors import StorageUnavailableError
from partmand.partitions.partition_health import HealthAssessor
from partmand.partitions.partition_maintenance import MaintenanceOrchestrator, RunGuard
from partmand.partitions.partition_models import (
    MaintenanceState, PartitionConfig, PartitionStats, ProvisionStatus, RetireStatus
)
from partmand.partitions.partition_provisioning import ProvisioningOperator
from partmand.partitions.partition_reclamation import ReclamationOperator
from partmand.partitions.partition_retirement import RetirementOperator
from partmand.partitions.partition_statistics import StatisticsOperator
from partmand.storage.interfaces import CatalogStore, StorageBackend

NOW = datetime(2026, 10, 15, 2, 0, tzinfo=timezone.utc)


class TestRunGuard:
    """Test the IDLE/RUNNING guard."""

    def test_second_acquire_is_rejected_while_held(self):
        guard = RunGuard()

        with guard.acquire() as first:
            assert first is True
            assert guard.state == MaintenanceState.RUNNING
            with guard.acquire() as second:
                assert second is False
            assert guard.is_running

        assert guard.state == MaintenanceState.IDLE

    def test_released_after_exception(self):
        guard = RunGuard()

        with pytest.raises(RuntimeError):
            with guard.acquire():
                raise RuntimeError("boom")

        with guard.acquire() as acquired:
            assert acquired is True


class TestMaintenanceOrchestrator:
    """Test orchestrated runs against mocked storage."""

    def setup_method(self):
        self.backend = AsyncMock(spec=StorageBackend)
        self.catalog = AsyncMock(spec=CatalogStore)
        self.configs = {
            "events": PartitionConfig("events", retention_months=12, future_partitions=0),
        }
        self.catalog.list_configs.side_effect = lambda enabled_only=False: list(self.configs.values())
        self.catalog.get_config.side_effect = lambda name: self.configs.get(name)
        self.catalog.list_metadata.return_value = []
        self.catalog.get_metadata.return_value = None
        self.backend.create_partition.return_value = True
        self.backend.list_partitions.return_value = ["events_2025_09", "events_2026_10"]
        self.backend.partition_stats.return_value = PartitionStats(row_count=1, size_bytes=1024)
        self.metrics = Mock()
        self.orchestrator = self._orchestrator()

    def _orchestrator(self, enabled=True):
        kwargs = {"clock": lambda: NOW, "timeout": 5.0}
        return MaintenanceOrchestrator(
            self.catalog,
            ProvisioningOperator(self.backend, self.catalog, **kwargs),
            StatisticsOperator(self.backend, self.catalog, **kwargs),
            RetirementOperator(self.backend, self.catalog, **kwargs),
            ReclamationOperator(self.backend, self.catalog, **kwargs),
            HealthAssessor(self.catalog, **kwargs),
            metrics=self.metrics,
            enabled=enabled,
            **kwargs,
        )

    @pytest.mark.asyncio
    async def test_run_covers_every_enabled_table(self):
        report = await self.orchestrator.run_maintenance(dry_run=False)

        assert report is not None
        assert report.dry_run is False
        assert report.finished_at == NOW
        table = report.tables[0]
        assert table.table_name == "events"
        assert [r.status for r in table.provisioned] == [ProvisionStatus.CREATED]
        assert len(table.analyzed) == 2
        assert [r.partition_name for r in table.retired] == ["events_2025_09"]
        assert table.retired[0].status == RetireStatus.DROPPED
        assert len(table.vacuumed) == 2
        self.catalog.list_configs.assert_any_await(enabled_only=True)
        self.backend.vacuum_partition.assert_any_await("events_2026_10", False)

    @pytest.mark.asyncio
    async def test_dry_run_only_affects_retirement(self):
        report = await self.orchestrator.run_maintenance(dry_run=True)

        assert report.tables[0].retired[0].status == RetireStatus.DRY_RUN
        self.backend.drop_partition.assert_not_awaited()
        self.backend.create_partition.assert_awaited_once()
        assert self.backend.vacuum_partition.await_count == 2

    @pytest.mark.asyncio
    async def test_disabled_orchestrator_skips_without_storage_access(self):
        orchestrator = self._orchestrator(enabled=False)

        assert await orchestrator.run_maintenance(dry_run=False) is None

        self.catalog.list_configs.assert_not_awaited()
        self.backend.create_partition.assert_not_awaited()
        self.backend.drop_partition.assert_not_awaited()
        self.metrics.record_run.assert_not_called()

    @pytest.mark.asyncio
    async def test_overlapping_runs_execute_once(self):
        async def slow_create(partition):
            await asyncio.sleep(0.01)
            return True

        self.backend.create_partition.side_effect = slow_create

        first, second = await asyncio.gather(
            self.orchestrator.run_maintenance(False),
            self.orchestrator.run_maintenance(False),
        )

        reports = [r for r in (first, second) if r is not None]
        assert len(reports) == 1
        assert (first is None) != (second is None)
        self.backend.create_partition.assert_awaited_once()
        assert self.backend.vacuum_partition.await_count == 2
        self.metrics.record_run.assert_any_call(outcome="skipped")
        assert self.orchestrator.get_status().is_running is False

    @pytest.mark.asyncio
    async def test_misconfigured_table_is_skipped(self):
        self.configs["ghost"] = PartitionConfig("ghost")
        self.catalog.get_config.side_effect = lambda name: None if name == "ghost" else self.configs.get(name)

        report = await self.orchestrator.run_maintenance(False)

        by_table = {t.table_name: t for t in report.tables}
        assert by_table["ghost"].error_message is not None
        assert by_table["ghost"].provisioned == []
        assert by_table["events"].error_message is None
        assert len(by_table["events"].vacuumed) == 2

    @pytest.mark.asyncio
    async def test_fatal_error_ends_run_and_releases_guard(self):
        self.backend.create_partition.side_effect = StorageUnavailableError("connection refused")

        with pytest.raises(StorageUnavailableError):
            await self.orchestrator.run_maintenance(False)

        assert self.orchestrator.get_status().is_running is False
        self.metrics.record_run.assert_called_once_with(outcome="failed")
        self.metrics.set_running.assert_called_with(False)

        self.backend.create_partition.side_effect = None
        assert await self.orchestrator.run_maintenance(False) is not None

    @pytest.mark.asyncio
    async def test_metrics_record_each_batch_and_run(self):
        report = await self.orchestrator.run_maintenance(False)

        operations = [c.args[0] for c in self.metrics.record_results.call_args_list]
        assert operations == [
            "create_future_partitions", "analyze_partitions", "drop_old_partitions", "vacuum_partitions"
        ]
        self.metrics.record_run.assert_called_once_with(report)
        assert [c.args[0] for c in self.metrics.set_running.call_args_list] == [True, False]

    @pytest.mark.asyncio
    async def test_per_partition_failures_are_reported_not_raised(self):
        self.backend.vacuum_partition.side_effect = [RuntimeError("disk full"), None]

        report = await self.orchestrator.run_maintenance(False)

        assert report.error_count == 1

    def test_status_reflects_registered_triggers(self):
        assert self.orchestrator.get_status().job_scheduled is False

        self.orchestrator.register_trigger("cron")
        assert self.orchestrator.get_status().job_scheduled is True

        self.orchestrator.unregister_trigger("cron")
        self.orchestrator.unregister_trigger("cron")
        assert self.orchestrator.get_status().job_scheduled is False
