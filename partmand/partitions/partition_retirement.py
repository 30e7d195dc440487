"""
Retirement of partitions that fell out of the retention window.

A partition is retired only when its whole range ends on or before the
retention cutoff. Expired catalog entries whose partition no longer exists
(a drop whose metadata delete failed) are removed on the next pass. Dry runs
read the catalog and never touch storage state.
"""

import logging
from datetime import date
from typing import List

from .partition_errors import ConfigError, FatalError
from .partition_models import BYTES_PER_MB, OperationResult, PartitionMetadata, PartitionRange, RetireStatus
from .partition_naming import is_expired, partition_for_period, period_index, retention_cutoff
from .partition_operator import PartitionOperator

logger = logging.getLogger(__name__)


class RetirementOperator(PartitionOperator):
    """Drops partitions older than a table's retention window."""

    operation = "drop_old_partitions"

    async def drop_old_partitions(self, table_name: str, retention_months: int,
                                  dry_run: bool = True) -> List[OperationResult]:
        if isinstance(retention_months, bool) or not isinstance(retention_months, int) or retention_months < 0:
            raise ConfigError(f"Retention must be a non-negative integer, got {retention_months!r}")
        await self._require_config(table_name)

        cutoff = retention_cutoff(self.clock(), retention_months)
        existing = await self._existing_partitions(table_name)
        candidates = [p for p in existing if is_expired(p, cutoff)]
        stale = await self._stale_entries(table_name, {p.partition_name for p in existing}, cutoff)

        mode = "DRY RUN: " if dry_run else ""
        logger.info(f"{mode}{len(candidates)} partitions of {table_name} end on or before {cutoff}")
        if stale:
            logger.warning(f"{mode}{len(stale)} catalog entries of {table_name} have no partition")

        results = []
        for partition in candidates:
            try:
                if dry_run:
                    results.append(await self._preview(partition))
                else:
                    results.append(await self._drop(partition))
            except (ConfigError, FatalError):
                raise
            except Exception as e:
                message = self._log_failure(partition.partition_name, e)
                results.append(OperationResult(partition.partition_name, RetireStatus.ERROR, message))

        for meta in stale:
            try:
                results.append(await self._forget(meta, dry_run))
            except (ConfigError, FatalError):
                raise
            except Exception as e:
                message = self._log_failure(meta.partition_name, e)
                results.append(OperationResult(meta.partition_name, RetireStatus.ERROR, message))

        return results

    async def _stale_entries(self, table_name: str, existing_names: set, cutoff: date) -> List[PartitionMetadata]:
        """Expired catalog entries of ``table_name`` without a physical partition, oldest first."""
        metadata = await self._read(self.catalog.list_metadata(table_name),
                                    f"reading catalog entries of {table_name}")
        stale = [
            meta for meta in metadata
            if meta.partition_name not in existing_names
            and is_expired(partition_for_period(table_name, period_index(meta.partition_date)), cutoff)
        ]
        return sorted(stale, key=lambda meta: meta.partition_date)

    async def _forget(self, meta: PartitionMetadata, dry_run: bool) -> OperationResult:
        name = meta.partition_name
        if dry_run:
            return OperationResult(name, RetireStatus.DRY_RUN,
                                   f"Would remove catalog entry for missing partition {name}",
                                   row_count=meta.row_count, size_mb=meta.size_mb)
        await self._call(self.catalog.delete_metadata(name))
        logger.info(f"Removed catalog entry for missing partition {name}")
        return OperationResult(name, RetireStatus.DROPPED,
                               f"Partition {name} was already dropped; removed its catalog entry",
                               row_count=0, size_mb=0.0)

    async def _preview(self, partition: PartitionRange) -> OperationResult:
        metadata = await self._call(self.catalog.get_metadata(partition.partition_name))
        row_count = metadata.row_count if metadata else 0
        size_mb = metadata.size_mb if metadata else 0.0
        return OperationResult(
            partition.partition_name,
            RetireStatus.DRY_RUN,
            f"Would drop partition {partition.partition_name} "
            f"[{partition.range_start}, {partition.range_end}) with {row_count} rows",
            row_count=row_count,
            size_mb=size_mb,
        )

    async def _drop(self, partition: PartitionRange) -> OperationResult:
        stats = await self._call(self.backend.partition_stats(partition.partition_name))
        await self._call(self.backend.drop_partition(partition))
        await self._call(self.catalog.delete_metadata(partition.partition_name))
        logger.info(f"Dropped partition {partition.partition_name} ({stats.row_count} rows)")
        return OperationResult(
            partition.partition_name,
            RetireStatus.DROPPED,
            f"Dropped partition {partition.partition_name} with {stats.row_count} rows",
            row_count=stats.row_count,
            size_mb=round(stats.size_bytes / BYTES_PER_MB, 2),
        )
