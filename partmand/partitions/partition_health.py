"""
Health assessment for partitioned tables.

Reads only the catalog, so it can be queried at any time, including while a
maintenance run is in progress.
"""

import asyncio
import logging
from typing import Awaitable, List, Optional, TypeVar

from .partition_errors import StorageUnavailableError
from .partition_models import BYTES_PER_MB, HealthStatus, HealthSummary, PartitionConfig, PartitionMetadata
from .partition_naming import is_expired, partition_for_period, period_index, retention_cutoff
from .partition_operator import DEFAULT_STORAGE_CALL_TIMEOUT, Clock, utc_now
from ..storage.interfaces import CatalogStore

logger = logging.getLogger(__name__)

T = TypeVar("T")


def classify_health(total_partitions: int, partitions_to_drop: int) -> HealthStatus:
    """Empty tables first, then pending cleanup, otherwise healthy."""
    if total_partitions == 0:
        return HealthStatus.NO_PARTITIONS
    if partitions_to_drop > 0:
        return HealthStatus.CLEANUP_NEEDED
    return HealthStatus.HEALTHY


class HealthAssessor:
    """Aggregates partition metadata into per-table health summaries."""

    def __init__(self, catalog: CatalogStore, clock: Clock = utc_now,
                 timeout: float = DEFAULT_STORAGE_CALL_TIMEOUT):
        self.catalog = catalog
        self.clock = clock
        self.timeout = timeout

    async def _call(self, awaitable: Awaitable[T]) -> T:
        try:
            return await asyncio.wait_for(awaitable, timeout=self.timeout)
        except asyncio.TimeoutError as e:
            raise StorageUnavailableError(f"Catalog read timed out after {self.timeout}s") from e

    async def get_health_summary(self) -> List[HealthSummary]:
        """Health of every configured table, enabled or not."""
        configs = await self._call(self.catalog.list_configs())
        now = self.clock()

        summaries = []
        for config in configs:
            metadata = await self._call(self.catalog.list_metadata(config.table_name))
            summaries.append(self.summarize(config, metadata, now))
        return summaries

    def summarize(self, config: PartitionConfig, metadata: List[PartitionMetadata], now) -> HealthSummary:
        cutoff = retention_cutoff(now, config.retention_months)
        to_drop = sum(
            1 for meta in metadata
            if is_expired(partition_for_period(meta.parent_table, period_index(meta.partition_date)), cutoff)
        )
        dates = [meta.partition_date for meta in metadata]
        total_bytes = sum(meta.size_bytes for meta in metadata)

        return HealthSummary(
            table_name=config.table_name,
            total_partitions=len(metadata),
            total_rows=sum(meta.row_count for meta in metadata),
            total_size_mb=round(total_bytes / BYTES_PER_MB, 2),
            retention_months=config.retention_months,
            partitions_to_drop=to_drop,
            health_status=classify_health(len(metadata), to_drop),
            oldest_partition=min(dates) if dates else None,
            newest_partition=max(dates) if dates else None,
            is_enabled=config.is_enabled,
        )

    async def list_partitions(self, table_filter: Optional[str] = None) -> List[PartitionMetadata]:
        """Catalog entries, newest period first."""
        return await self._call(self.catalog.list_metadata(table_filter))
