"""
Storage reclamation (vacuum) for existing partitions.
"""

import logging
from typing import List

from .partition_errors import ConfigError, FatalError
from .partition_models import OperationResult, VacuumStatus
from .partition_operator import PartitionOperator

logger = logging.getLogger(__name__)


class ReclamationOperator(PartitionOperator):
    """Vacuums each partition. Never removes rows or catalog entries."""

    operation = "vacuum_partitions"

    async def vacuum_partitions(self, table_name: str, full: bool = False) -> List[OperationResult]:
        await self._require_config(table_name)
        partitions = await self._existing_partitions(table_name)
        mode = "full" if full else "standard"
        logger.info(f"Running {mode} vacuum on {len(partitions)} partitions of {table_name}")

        results = []
        for partition in partitions:
            name = partition.partition_name
            try:
                await self._call(self.backend.vacuum_partition(name, full))
                await self._call(self.catalog.mark_vacuumed(name, self.clock()))
            except (ConfigError, FatalError):
                raise
            except Exception as e:
                results.append(OperationResult(name, VacuumStatus.ERROR, self._log_failure(name, e)))
                continue

            results.append(OperationResult(name, VacuumStatus.VACUUMED, f"Vacuumed {name} ({mode})"))

        return results
