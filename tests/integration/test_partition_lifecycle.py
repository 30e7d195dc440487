"""
Integration tests for the partition lifecycle on a real SQLite database.

The clock is pinned to 2026-10-15 so period offsets map to fixed names:
offset 0 is events_2026_10 and offset -13 is events_2025_09.
"""

import asyncio
import json
import shutil
import sqlite3
import tempfile
from datetime import datetime, timezone
from pathlib import Path
from unittest.mock import AsyncMock, patch

import pytest
from prometheus_client import CollectorRegistry

from partmand.partitions.partition_config import (
    DatabaseSettings, MaintenanceSettings, ManagerSettings, SchedulerSettings
)
from partmand.partitions.partition_errors import PartitionOperationError
from partmand.partitions.partition_manager import PartitionManager
from partmand.partitions.partition_models import (
    HealthStatus, PartitionConfig, ProvisionStatus, RetireStatus
)
from partmand.partitions.partition_naming import partition_for_offset

NOW = datetime(2026, 10, 15, 12, 0, tzinfo=timezone.utc)


class TestPartitionLifecycle:
    """Provision, analyze, retire and report against SQLite."""

    def setup_method(self):
        self.temp_dir = tempfile.mkdtemp()
        self.db_path = str(Path(self.temp_dir) / "partitions.db")
        self.logs_dir = Path(self.temp_dir) / "logs"

        with sqlite3.connect(self.db_path) as conn:
            conn.execute("CREATE TABLE events (id INTEGER, occurred_at TEXT, payload TEXT)")

        self.registry = CollectorRegistry()
        settings = ManagerSettings(
            database=DatabaseSettings(backend="sqlite", path=self.db_path),
            maintenance=MaintenanceSettings(storage_call_timeout_seconds=30, logs_dir=str(self.logs_dir)),
            scheduler=SchedulerSettings(enabled=False),
            tables=[PartitionConfig("events", retention_months=12, future_partitions=6)],
        )
        self.manager = PartitionManager(settings, clock=lambda: NOW, registry=self.registry)

    def teardown_method(self):
        shutil.rmtree(self.temp_dir)

    async def _create_offsets(self, offsets):
        for offset in offsets:
            await self.manager.backend.create_partition(partition_for_offset("events", NOW, offset))

    async def _physical(self):
        return await self.manager.backend.list_partitions("events")

    @pytest.mark.asyncio
    async def test_provision_fresh_table(self):
        await self.manager.initialize()

        results = await self.manager.create_future_partitions("events", 6)

        assert len(results) == 7
        assert all(r.status == ProvisionStatus.CREATED for r in results)
        assert await self._physical() == [
            "events_2026_10", "events_2026_11", "events_2026_12", "events_2027_01",
            "events_2027_02", "events_2027_03", "events_2027_04",
        ]
        catalog = await self.manager.list_partitions("events")
        assert len(catalog) == 7
        assert catalog[0].partition_name == "events_2027_04"

    @pytest.mark.asyncio
    async def test_provisioning_converges(self):
        await self.manager.initialize()

        await self.manager.create_future_partitions("events", 6)
        again = await self.manager.create_future_partitions("events", 6)

        assert all(r.status == ProvisionStatus.CREATED for r in again)
        assert all("already exists" in r.message for r in again)
        assert len(await self._physical()) == 7

    @pytest.mark.asyncio
    async def test_dry_run_selects_expired_partition_only(self):
        await self.manager.initialize()
        await self._create_offsets(range(-13, 7))
        await self.manager.analyze_partitions("events")
        before_health = await self.manager.get_health_summary()
        before_list = await self._physical()
        before_catalog = await self.manager.list_partitions("events")

        results = await self.manager.drop_old_partitions("events", 12, dry_run=True)

        assert [r.partition_name for r in results] == ["events_2025_09"]
        assert results[0].status == RetireStatus.DRY_RUN
        assert "Would drop" in results[0].message
        assert await self._physical() == before_list
        assert len(before_list) == 20
        assert await self.manager.list_partitions("events") == before_catalog
        assert len(before_catalog) == 20
        assert await self.manager.get_health_summary() == before_health

    @pytest.mark.asyncio
    async def test_execute_drop_clears_cleanup(self):
        await self.manager.initialize()
        await self._create_offsets(range(-13, 7))
        await self.manager.analyze_partitions("events")

        summary = (await self.manager.get_health_summary())[0]
        assert summary.health_status == HealthStatus.CLEANUP_NEEDED
        assert summary.partitions_to_drop == 1

        results = await self.manager.drop_old_partitions("events", 12, dry_run=False)

        assert [r.status for r in results] == [RetireStatus.DROPPED]
        assert "events_2025_09" not in await self._physical()
        summary = (await self.manager.get_health_summary())[0]
        assert summary.partitions_to_drop == 0
        assert summary.health_status == HealthStatus.HEALTHY
        assert summary.total_partitions == 19

        again = await self.manager.drop_old_partitions("events", 12, dry_run=False)
        assert again == []

    @pytest.mark.asyncio
    async def test_failed_catalog_delete_is_cleaned_up_by_next_drop(self):
        await self.manager.initialize()
        await self._create_offsets(range(-13, 7))
        await self.manager.analyze_partitions("events")

        failing_delete = AsyncMock(side_effect=PartitionOperationError("events_2025_09", "catalog is locked"))
        with patch.object(self.manager.catalog, "delete_metadata", failing_delete):
            results = await self.manager.drop_old_partitions("events", 12, dry_run=False)

        assert [r.status for r in results] == [RetireStatus.ERROR]
        assert "events_2025_09" not in await self._physical()
        assert await self.manager.catalog.get_metadata("events_2025_09") is not None
        summary = (await self.manager.get_health_summary())[0]
        assert summary.partitions_to_drop == 1

        preview = await self.manager.drop_old_partitions("events", 12, dry_run=True)
        assert [(r.partition_name, r.status) for r in preview] == [("events_2025_09", RetireStatus.DRY_RUN)]
        assert await self.manager.catalog.get_metadata("events_2025_09") is not None

        results = await self.manager.drop_old_partitions("events", 12, dry_run=False)

        assert [(r.partition_name, r.status) for r in results] == [("events_2025_09", RetireStatus.DROPPED)]
        assert await self.manager.catalog.get_metadata("events_2025_09") is None
        summary = (await self.manager.get_health_summary())[0]
        assert summary.partitions_to_drop == 0
        assert summary.health_status == HealthStatus.HEALTHY

    @pytest.mark.asyncio
    async def test_smaller_retention_drops_superset(self):
        await self.manager.initialize()
        await self._create_offsets(range(-15, 1))

        long_window = {r.partition_name for r in await self.manager.drop_old_partitions("events", 12)}
        short_window = {r.partition_name for r in await self.manager.drop_old_partitions("events", 6)}

        assert long_window == {"events_2025_07", "events_2025_08", "events_2025_09"}
        assert long_window < short_window
        assert "events_2026_03" in short_window
        assert "events_2026_04" not in short_window

    @pytest.mark.asyncio
    async def test_row_counts_flow_into_health(self):
        await self.manager.initialize()
        await self.manager.create_future_partitions("events", 0)
        with sqlite3.connect(self.db_path) as conn:
            conn.executemany(
                'INSERT INTO "events_2026_10" VALUES (?, ?, ?)',
                [(i, "2026-10-02", "x") for i in range(40)]
            )

        analyzed = await self.manager.analyze_partitions("events")

        assert analyzed[0].row_count == 40
        summary = (await self.manager.get_health_summary())[0]
        assert summary.total_rows == 40

    @pytest.mark.asyncio
    async def test_run_maintenance_report_and_audit_trail(self):
        await self.manager.initialize()
        await self._create_offsets([-14, -13, -1])

        report = await self.manager.run_maintenance(dry_run=False)

        assert report is not None
        table = report.tables[0]
        assert len(table.provisioned) == 7
        assert [r.partition_name for r in table.retired] == ["events_2025_08", "events_2025_09"]
        assert all(r.status == RetireStatus.DROPPED for r in table.retired)
        assert len(table.vacuumed) == 8
        assert report.error_count == 0

        audit_file = self.logs_dir / "partition_operations_2026-10-15.jsonl"
        with open(audit_file) as f:
            operations = [json.loads(line)["operation"] for line in f]
        assert operations == [
            "create_future_partitions", "analyze_partitions", "drop_old_partitions",
            "vacuum_partitions", "run_maintenance",
        ]
        assert self.registry.get_sample_value(
            "partmand_maintenance_runs_total", {"outcome": "completed"}
        ) == 1

    @pytest.mark.asyncio
    async def test_overlapping_runs_against_real_storage(self):
        await self.manager.initialize()

        first, second = await asyncio.gather(
            self.manager.run_maintenance(False),
            self.manager.run_maintenance(False),
        )

        assert (first is None) != (second is None)
        report = first or second
        assert len(report.tables[0].provisioned) == 7
        assert len(await self._physical()) == 7
        assert self.manager.get_status().is_running is False

    @pytest.mark.asyncio
    async def test_disabled_table_is_not_maintained(self):
        await self.manager.initialize()
        await self.manager.save_config(PartitionConfig("events", is_enabled=False))

        report = await self.manager.run_maintenance(False)

        assert report.tables == []
        assert await self._physical() == []
        summary = (await self.manager.get_health_summary())[0]
        assert summary.health_status == HealthStatus.NO_PARTITIONS
        assert summary.is_enabled is False

    @pytest.mark.asyncio
    async def test_globally_disabled_manager_skips_maintenance(self):
        settings = ManagerSettings(
            enabled=False,
            database=DatabaseSettings(backend="sqlite", path=self.db_path),
            maintenance=MaintenanceSettings(write_audit_trail=False),
            scheduler=SchedulerSettings(enabled=False),
            tables=[PartitionConfig("events")],
        )
        manager = PartitionManager(settings, clock=lambda: NOW, registry=CollectorRegistry())
        await manager.initialize()

        assert await manager.run_maintenance(False) is None
        assert await manager.scheduler.run_once() is None
        assert manager.scheduler.get_status().skipped_runs == 1
        assert await self._physical() == []
