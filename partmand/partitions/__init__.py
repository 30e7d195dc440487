"""
Partition lifecycle management.

Naming and range calculation, the partition operators, health assessment and
the maintenance orchestrator. Import operators and the manager from their
modules; this package only re-exports the shared models and errors.
"""

from .partition_errors import (
    ConfigError, FatalError, PartitionManagerError, PartitionOperationError, StorageUnavailableError
)
from .partition_models import (
    AnalyzeStatus, HealthStatus, HealthSummary, MaintenanceReport, MaintenanceState,
    OperationResult, OrchestratorStatus, PartitionConfig, PartitionMetadata, PartitionRange,
    ProvisionStatus, RetireStatus, VacuumStatus
)

__all__ = [
    'ConfigError',
    'FatalError',
    'PartitionManagerError',
    'PartitionOperationError',
    'StorageUnavailableError',
    'AnalyzeStatus',
    'HealthStatus',
    'HealthSummary',
    'MaintenanceReport',
    'MaintenanceState',
    'OperationResult',
    'OrchestratorStatus',
    'PartitionConfig',
    'PartitionMetadata',
    'PartitionRange',
    'ProvisionStatus',
    'RetireStatus',
    'VacuumStatus',
]
