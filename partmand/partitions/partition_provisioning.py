"""
Provisioning of future partitions.
"""

import logging
from typing import List

from .partition_errors import ConfigError, FatalError
from .partition_models import OperationResult, ProvisionStatus
from .partition_naming import MAX_PERIOD_INDEX, partition_for_offset, period_index
from .partition_operator import PartitionOperator

logger = logging.getLogger(__name__)


class ProvisioningOperator(PartitionOperator):
    """Ensures the current period and the next ``horizon`` periods exist."""

    operation = "create_future_partitions"

    async def create_future_partitions(self, table_name: str, horizon: int) -> List[OperationResult]:
        """
        Ensure partitions for periods ``0..horizon`` relative to now.

        Returns one result per period, in period order. Existing partitions
        count as success.
        """
        if isinstance(horizon, bool) or not isinstance(horizon, int) or horizon < 0:
            raise ConfigError(f"Horizon must be a non-negative integer, got {horizon!r}")
        now = self.clock()
        if period_index(now) + horizon > MAX_PERIOD_INDEX:
            raise ConfigError(f"Horizon {horizon} reaches past the last supported period (9998-12)")
        await self._require_config(table_name)

        logger.info(f"Provisioning {horizon + 1} partitions for {table_name}")

        results = []
        for offset in range(horizon + 1):
            partition = partition_for_offset(table_name, now, offset)
            try:
                created = await self._call(self.backend.create_partition(partition))
                await self._call(self.catalog.ensure_metadata(
                    table_name, partition.partition_name, partition.range_start, now
                ))
            except (ConfigError, FatalError):
                raise
            except Exception as e:
                message = self._log_failure(partition.partition_name, e)
                results.append(OperationResult(partition.partition_name, ProvisionStatus.ERROR, message))
                continue

            if created:
                message = f"Created partition {partition.partition_name}"
            else:
                message = f"Partition {partition.partition_name} already exists"
            results.append(OperationResult(partition.partition_name, ProvisionStatus.CREATED, message))

        return results
