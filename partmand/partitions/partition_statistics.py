"""
Statistics refresh for existing partitions.
"""

import logging
from typing import List

from .partition_errors import ConfigError, FatalError
from .partition_models import AnalyzeStatus, BYTES_PER_MB, OperationResult
from .partition_operator import PartitionOperator

logger = logging.getLogger(__name__)


class StatisticsOperator(PartitionOperator):
    """Analyzes each partition and records its row count and size in the catalog."""

    operation = "analyze_partitions"

    async def analyze_partitions(self, table_name: str) -> List[OperationResult]:
        await self._require_config(table_name)
        partitions = await self._existing_partitions(table_name)
        logger.info(f"Analyzing {len(partitions)} partitions of {table_name}")

        results = []
        for partition in partitions:
            name = partition.partition_name
            try:
                await self._call(self.backend.analyze_partition(name))
                stats = await self._call(self.backend.partition_stats(name))
                await self._call(self.catalog.update_statistics(
                    table_name, name, partition.range_start,
                    stats.row_count, stats.size_bytes, self.clock()
                ))
            except (ConfigError, FatalError):
                raise
            except Exception as e:
                results.append(OperationResult(name, AnalyzeStatus.ERROR, self._log_failure(name, e)))
                continue

            results.append(OperationResult(
                name,
                AnalyzeStatus.ANALYZED,
                f"Analyzed {name}: {stats.row_count} rows",
                row_count=stats.row_count,
                size_mb=round(stats.size_bytes / BYTES_PER_MB, 2),
            ))

        return results
