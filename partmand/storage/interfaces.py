"""
Storage interfaces for the partition manager.

This module provides the abstract command surface consumed from the database
(StorageBackend) and the persistent partition catalog (CatalogStore).
"""

from abc import ABC, abstractmethod
from datetime import date, datetime
from typing import Iterable, List, Optional

from ..partitions.partition_errors import ConfigError
from ..partitions.partition_models import (
    IDENTIFIER_PATTERN, PartitionConfig, PartitionMetadata, PartitionRange, PartitionStats
)


def validate_identifier(name: str) -> str:
    """Reject table names that cannot be used unquoted in DDL."""
    if not isinstance(name, str) or not IDENTIFIER_PATTERN.fullmatch(name):
        raise ConfigError(f"Invalid table name: {name!r}")
    return name


class StorageBackend(ABC):
    """Abstract interface for partition DDL and maintenance commands."""

    async def initialize(self) -> None:
        """Prepare the backend for use."""

    async def close(self) -> None:
        """Release backend resources."""

    @abstractmethod
    async def create_partition(self, partition: PartitionRange) -> bool:
        """
        Create the partition if it does not exist.

        Returns True when it was created, False when it already existed.
        Raises PartitionOperationError when the name is taken by an
        incompatible object or the database rejects the DDL.
        """
        pass

    @abstractmethod
    async def drop_partition(self, partition: PartitionRange) -> None:
        """Physically remove the partition and its rows."""
        pass

    @abstractmethod
    async def list_partitions(self, parent_table: str) -> List[str]:
        """Names of the physical child tables of ``parent_table``."""
        pass

    @abstractmethod
    async def partition_stats(self, partition_name: str) -> PartitionStats:
        """Current row count and on-disk size of a partition."""
        pass

    @abstractmethod
    async def analyze_partition(self, partition_name: str) -> None:
        """Refresh planner statistics for a partition."""
        pass

    @abstractmethod
    async def vacuum_partition(self, partition_name: str, full: bool = False) -> None:
        """Reclaim dead space; ``full`` requests the exclusive-locking pass."""
        pass


class CatalogStore(ABC):
    """Abstract interface for the partition_config / partition_metadata catalog."""

    async def initialize(self) -> None:
        """Create catalog tables if needed."""

    @abstractmethod
    async def list_configs(self, enabled_only: bool = False) -> List[PartitionConfig]:
        pass

    @abstractmethod
    async def get_config(self, table_name: str) -> Optional[PartitionConfig]:
        pass

    @abstractmethod
    async def save_config(self, config: PartitionConfig) -> None:
        """Insert or update a table's policy."""
        pass

    @abstractmethod
    async def seed_configs(self, configs: Iterable[PartitionConfig]) -> int:
        """Insert configs that are not present yet; existing rows are left untouched."""
        pass

    @abstractmethod
    async def list_metadata(self, parent_table: Optional[str] = None) -> List[PartitionMetadata]:
        """Metadata rows ordered by partition_date descending."""
        pass

    @abstractmethod
    async def get_metadata(self, partition_name: str) -> Optional[PartitionMetadata]:
        pass

    @abstractmethod
    async def ensure_metadata(self, parent_table: str, partition_name: str,
                              partition_date: date, created_at: datetime) -> bool:
        """Insert a zeroed metadata row unless one exists. Returns True if inserted."""
        pass

    @abstractmethod
    async def update_statistics(self, parent_table: str, partition_name: str, partition_date: date,
                                row_count: int, size_bytes: int, analyzed_at: datetime) -> None:
        """Upsert row count, size and last_analyzed_at."""
        pass

    @abstractmethod
    async def mark_vacuumed(self, partition_name: str, vacuumed_at: datetime) -> None:
        pass

    @abstractmethod
    async def delete_metadata(self, partition_name: str) -> None:
        pass
