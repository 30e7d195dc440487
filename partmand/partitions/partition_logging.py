"""
Logging and audit trail for partition maintenance.

Each operator batch is summarized in the application log and appended as one
JSON line to ``<logs_dir>/partition_operations_<date>.jsonl``.
"""

import json
import logging
from pathlib import Path
from typing import Any, Dict, List, Optional

from .partition_models import HealthSummary, MaintenanceReport, OperationResult, RetireStatus
from .partition_operator import Clock, utc_now

logger = logging.getLogger(__name__)


def summarize_results(results: List[OperationResult]) -> Dict[str, int]:
    """Success / error / dry-run counts for one batch."""
    errors = sum(1 for r in results if r.is_error)
    dry_runs = sum(1 for r in results if r.status == RetireStatus.DRY_RUN)
    return {
        "total": len(results),
        "success": len(results) - errors - dry_runs,
        "error": errors,
        "dry_run": dry_runs,
    }


class MaintenanceLogger:
    """Handles logging and the JSONL audit trail for partition operations."""

    def __init__(self, logs_dir: str = "logs/partitions", write_audit_trail: bool = True,
                 log_operations: bool = True, clock: Clock = utc_now):
        self.logs_dir = Path(logs_dir)
        self.write_audit_trail = write_audit_trail
        self.log_operations = log_operations
        self.clock = clock
        if self.write_audit_trail:
            self.logs_dir.mkdir(parents=True, exist_ok=True)

    def log_operation_results(self, operation: str, table_name: str, results: List[OperationResult],
                              dry_run: bool = False) -> Dict[str, int]:
        """Log one operator batch and record it in the audit trail."""
        counts = summarize_results(results)
        logger.info(f"{operation} on {table_name}: {counts['success']} succeeded, "
                    f"{counts['error']} failed, {counts['dry_run']} dry-run")

        if self.log_operations:
            for result in results:
                if result.is_error:
                    logger.error(f"  {result.partition_name}: {result.message}")
                elif result.status == RetireStatus.DRY_RUN:
                    logger.info(f"  DRY RUN: {result.message}")
                elif result.status == RetireStatus.DROPPED:
                    logger.info(f"  {result.message} ({result.size_mb} MB)")

        self._store_operation_log({
            "timestamp": self.clock().isoformat(),
            "operation": operation,
            "table_name": table_name,
            "dry_run": dry_run,
            "counts": counts,
            "results": [result.to_dict() for result in results],
        })
        return counts

    def log_health(self, summaries: List[HealthSummary], stage: str):
        for summary in summaries:
            logger.info(f"[{stage}] {summary.table_name}: {summary.health_status.value} - "
                        f"{summary.total_partitions} partitions, {summary.total_rows} rows, "
                        f"{summary.total_size_mb} MB, {summary.partitions_to_drop} to drop")

    def log_maintenance_report(self, report: MaintenanceReport):
        """Log the outcome of a whole orchestrated run."""
        duration = self._format_duration(report.duration_seconds)
        skipped = [t.table_name for t in report.tables if t.error_message]
        if report.error_count or skipped:
            logger.warning(f"Maintenance finished in {duration} with {report.error_count} errors "
                           f"across {len(report.tables)} tables (skipped: {skipped or 'none'})")
        else:
            logger.info(f"Maintenance finished in {duration} for {len(report.tables)} tables "
                        f"(dry_run={report.dry_run})")

        self._store_operation_log({
            "timestamp": self.clock().isoformat(),
            "operation": "run_maintenance",
            "dry_run": report.dry_run,
            "started_at": report.started_at.isoformat(),
            "duration_seconds": report.duration_seconds,
            "tables": [t.table_name for t in report.tables],
            "skipped_tables": skipped,
            "error_count": report.error_count,
        })

    def _format_duration(self, duration_seconds: float) -> str:
        """Format duration in a human-readable format."""
        if duration_seconds < 60:
            return f"{duration_seconds:.2f}s"
        elif duration_seconds < 3600:
            return f"{duration_seconds / 60:.1f}m"
        else:
            return f"{duration_seconds / 3600:.1f}h"

    def audit_file(self) -> Optional[Path]:
        if not self.write_audit_trail:
            return None
        return self.logs_dir / f"partition_operations_{self.clock().strftime('%Y-%m-%d')}.jsonl"

    def _store_operation_log(self, log_entry: Dict[str, Any]):
        """Append a log entry to today's audit file."""
        log_file = self.audit_file()
        if log_file is None:
            return
        try:
            with open(log_file, 'a') as f:
                f.write(json.dumps(log_entry) + '\n')
        except OSError as e:
            logger.error(f"Failed to store operation log: {e}")
