"""
Unit tests for maintenance logging and the JSONL audit trail.
"""

import json
import shutil
import tempfile
import unittest
from datetime import datetime, timedelta, timezone
from pathlib import Path

from partmand.partitions.partition_logging import MaintenanceLogger, summarize_results
from partmand.partitions.partition_models import (
    MaintenanceReport, OperationResult, ProvisionStatus, RetireStatus, TableMaintenanceResult
)

NOW = datetime(2026, 10, 15, 2, 0, tzinfo=timezone.utc)


class TestSummarizeResults(unittest.TestCase):
    """Test batch counting."""

    def test_counts_by_outcome(self):
        results = [
            OperationResult("a", RetireStatus.DROPPED),
            OperationResult("b", RetireStatus.DRY_RUN),
            OperationResult("c", RetireStatus.ERROR, "boom"),
            OperationResult("d", RetireStatus.DRY_RUN),
        ]

        self.assertEqual(summarize_results(results), {"total": 4, "success": 1, "error": 1, "dry_run": 2})

    def test_empty_batch(self):
        self.assertEqual(summarize_results([]), {"total": 0, "success": 0, "error": 0, "dry_run": 0})


class TestMaintenanceLogger(unittest.TestCase):
    """Test audit trail output."""

    def setUp(self):
        """Set up test fixtures."""
        self.temp_dir = tempfile.mkdtemp()
        self.logs_dir = Path(self.temp_dir) / "logs"
        self.maintenance_logger = MaintenanceLogger(str(self.logs_dir), clock=lambda: NOW)

    def tearDown(self):
        """Clean up test fixtures."""
        shutil.rmtree(self.temp_dir)

    def _entries(self):
        with open(self.logs_dir / "partition_operations_2026-10-15.jsonl") as f:
            return [json.loads(line) for line in f]

    def test_operation_results_are_appended_as_json_lines(self):
        results = [
            OperationResult("events_2026_10", ProvisionStatus.CREATED, "Created partition events_2026_10"),
            OperationResult("events_2026_11", ProvisionStatus.ERROR, "relation is locked"),
        ]

        counts = self.maintenance_logger.log_operation_results("create_future_partitions", "events", results)
        self.maintenance_logger.log_operation_results("vacuum_partitions", "events", [])

        self.assertEqual(counts["error"], 1)
        entries = self._entries()
        self.assertEqual(len(entries), 2)
        self.assertEqual(entries[0]["operation"], "create_future_partitions")
        self.assertEqual(entries[0]["table_name"], "events")
        self.assertEqual(entries[0]["timestamp"], NOW.isoformat())
        self.assertEqual(entries[0]["results"][1]["status"], "ERROR")
        self.assertEqual(entries[1]["results"], [])

    def test_dry_run_flag_is_recorded(self):
        results = [OperationResult("events_2025_09", RetireStatus.DRY_RUN, "Would drop", row_count=3, size_mb=0.1)]

        with self.assertLogs("partmand.partitions.partition_logging", level="INFO") as logs:
            self.maintenance_logger.log_operation_results("drop_old_partitions", "events", results, dry_run=True)

        self.assertTrue(any("DRY RUN: Would drop" in line for line in logs.output))
        entry = self._entries()[0]
        self.assertTrue(entry["dry_run"])
        self.assertEqual(entry["results"][0]["row_count"], 3)

    def test_detail_lines_can_be_suppressed(self):
        quiet = MaintenanceLogger(str(self.logs_dir), log_operations=False, clock=lambda: NOW)
        results = [OperationResult("events_2025_09", RetireStatus.ERROR, "lock timeout")]

        with self.assertLogs("partmand.partitions.partition_logging", level="INFO") as logs:
            quiet.log_operation_results("drop_old_partitions", "events", results)

        self.assertEqual(len(logs.output), 1)
        self.assertNotIn("lock timeout", logs.output[0])

    def test_maintenance_report_entry(self):
        report = MaintenanceReport(started_at=NOW, dry_run=False)
        report.tables.append(TableMaintenanceResult("events"))
        report.tables.append(TableMaintenanceResult("goal_completions", error_message="No partition config"))
        report.finished_at = NOW + timedelta(seconds=3)

        self.maintenance_logger.log_maintenance_report(report)

        entry = self._entries()[0]
        self.assertEqual(entry["operation"], "run_maintenance")
        self.assertEqual(entry["tables"], ["events", "goal_completions"])
        self.assertEqual(entry["skipped_tables"], ["goal_completions"])
        self.assertEqual(entry["duration_seconds"], 3.0)

    def test_audit_trail_disabled(self):
        disabled_dir = Path(self.temp_dir) / "disabled"
        quiet = MaintenanceLogger(str(disabled_dir), write_audit_trail=False, clock=lambda: NOW)

        quiet.log_operation_results("vacuum_partitions", "events", [])

        self.assertIsNone(quiet.audit_file())
        self.assertFalse(disabled_dir.exists())

    def test_format_duration(self):
        self.assertEqual(self.maintenance_logger._format_duration(1.5), "1.50s")
        self.assertEqual(self.maintenance_logger._format_duration(90), "1.5m")
        self.assertEqual(self.maintenance_logger._format_duration(5400), "1.5h")


if __name__ == '__main__':
    unittest.main()
