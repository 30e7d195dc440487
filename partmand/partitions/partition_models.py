"""
Data models for the partition manager.

This module contains all the data classes and enums shared by the catalog,
the operators and the maintenance orchestrator.
"""

import re
from dataclasses import dataclass, field
from datetime import date, datetime
from enum import Enum
from typing import Any, Dict, List, Optional, Union

from .partition_errors import ConfigError

BYTES_PER_MB = 1024 * 1024

# Table names end up in DDL, so only plain identifiers are accepted.
IDENTIFIER_PATTERN = re.compile(r"[A-Za-z_][A-Za-z0-9_]*")


class ProvisionStatus(str, Enum):
    """Outcome of ensuring a single future partition exists."""
    CREATED = "CREATED"
    ERROR = "ERROR"


class RetireStatus(str, Enum):
    """Outcome of retiring a single partition."""
    DRY_RUN = "DRY_RUN"
    DROPPED = "DROPPED"
    ERROR = "ERROR"


class AnalyzeStatus(str, Enum):
    """Outcome of refreshing statistics for a single partition."""
    ANALYZED = "ANALYZED"
    ERROR = "ERROR"


class VacuumStatus(str, Enum):
    """Outcome of reclaiming storage for a single partition."""
    VACUUMED = "VACUUMED"
    ERROR = "ERROR"


OperationStatus = Union[ProvisionStatus, RetireStatus, AnalyzeStatus, VacuumStatus]


class HealthStatus(str, Enum):
    """Categorical health of a partitioned table."""
    HEALTHY = "HEALTHY"
    CLEANUP_NEEDED = "CLEANUP_NEEDED"
    NO_PARTITIONS = "NO_PARTITIONS"


class MaintenanceState(Enum):
    """State of the orchestrator run guard."""
    IDLE = "idle"
    RUNNING = "running"


@dataclass
class PartitionConfig:
    """Retention and provisioning policy for one parent table."""
    table_name: str
    retention_months: int = 12
    future_partitions: int = 6
    is_enabled: bool = True
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    def validate(self) -> "PartitionConfig":
        """Raise ConfigError unless the policy values are usable."""
        if not isinstance(self.table_name, str) or not IDENTIFIER_PATTERN.fullmatch(self.table_name):
            raise ConfigError(f"Invalid table name in partition config: {self.table_name!r}")
        for field_name in ("retention_months", "future_partitions"):
            value = getattr(self, field_name)
            if isinstance(value, bool) or not isinstance(value, int) or value < 0:
                raise ConfigError(
                    f"{field_name} for {self.table_name} must be a non-negative integer, got {value!r}"
                )
        return self


@dataclass
class PartitionMetadata:
    """Observed metadata for one physical partition."""
    parent_table: str
    partition_name: str
    partition_date: date
    row_count: int = 0
    size_bytes: int = 0
    last_analyzed_at: Optional[datetime] = None
    created_at: Optional[datetime] = None
    last_vacuumed_at: Optional[datetime] = None

    @property
    def size_mb(self) -> float:
        return round(self.size_bytes / BYTES_PER_MB, 2)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "parent_table": self.parent_table,
            "partition_name": self.partition_name,
            "partition_date": self.partition_date.isoformat(),
            "row_count": self.row_count,
            "size_bytes": self.size_bytes,
            "size_mb": self.size_mb,
            "last_analyzed_at": self.last_analyzed_at.isoformat() if self.last_analyzed_at else None,
            "last_vacuumed_at": self.last_vacuumed_at.isoformat() if self.last_vacuumed_at else None,
        }


@dataclass(frozen=True)
class PartitionRange:
    """A monthly partition and its half-open date range."""
    parent_table: str
    partition_name: str
    period_index: int
    range_start: date
    range_end: date


@dataclass
class PartitionStats:
    """Row count and on-disk size reported by the storage backend."""
    row_count: int
    size_bytes: int


@dataclass
class OperationResult:
    """Per-partition outcome of an operator call."""
    partition_name: str
    status: OperationStatus
    message: str = ""
    row_count: Optional[int] = None
    size_mb: Optional[float] = None

    @property
    def is_error(self) -> bool:
        return self.status.value == "ERROR"

    def to_dict(self) -> Dict[str, Any]:
        result = {
            "partition_name": self.partition_name,
            "status": self.status.value,
            "message": self.message,
        }
        if self.row_count is not None:
            result["row_count"] = self.row_count
        if self.size_mb is not None:
            result["size_mb"] = self.size_mb
        return result


@dataclass
class HealthSummary:
    """Aggregated health of one configured table."""
    table_name: str
    total_partitions: int
    total_rows: int
    total_size_mb: float
    retention_months: int
    partitions_to_drop: int
    health_status: HealthStatus
    oldest_partition: Optional[date] = None
    newest_partition: Optional[date] = None
    is_enabled: bool = True

    def to_dict(self) -> Dict[str, Any]:
        return {
            "table_name": self.table_name,
            "total_partitions": self.total_partitions,
            "total_rows": self.total_rows,
            "total_size_mb": self.total_size_mb,
            "oldest_partition": self.oldest_partition.isoformat() if self.oldest_partition else None,
            "newest_partition": self.newest_partition.isoformat() if self.newest_partition else None,
            "retention_months": self.retention_months,
            "partitions_to_drop": self.partitions_to_drop,
            "health_status": self.health_status.value,
            "is_enabled": self.is_enabled,
        }


@dataclass
class OrchestratorStatus:
    """Status reported by the maintenance orchestrator."""
    is_running: bool
    job_scheduled: bool


@dataclass
class TableMaintenanceResult:
    """Results of one orchestrated pass over a single table."""
    table_name: str
    provisioned: List[OperationResult] = field(default_factory=list)
    analyzed: List[OperationResult] = field(default_factory=list)
    retired: List[OperationResult] = field(default_factory=list)
    vacuumed: List[OperationResult] = field(default_factory=list)
    error_message: Optional[str] = None

    @property
    def error_count(self) -> int:
        batches = (self.provisioned, self.analyzed, self.retired, self.vacuumed)
        return sum(1 for batch in batches for result in batch if result.is_error)


@dataclass
class MaintenanceReport:
    """Summary of one orchestration run."""
    started_at: datetime
    dry_run: bool
    tables: List[TableMaintenanceResult] = field(default_factory=list)
    finished_at: Optional[datetime] = None

    @property
    def duration_seconds(self) -> float:
        if self.finished_at is None:
            return 0.0
        return (self.finished_at - self.started_at).total_seconds()

    @property
    def error_count(self) -> int:
        return sum(table.error_count for table in self.tables)
