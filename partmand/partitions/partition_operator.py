"""
Shared plumbing for the partition operators.

Every operator works on one parent table at a time, turns each per-partition
failure into an ERROR result and lets FatalError escape.
"""

import asyncio
import logging
from datetime import datetime, timezone
from typing import Awaitable, Callable, List, Optional, TypeVar

from .partition_errors import ConfigError, PartitionOperationError, StorageUnavailableError
from .partition_models import PartitionConfig, PartitionRange
from .partition_naming import parse_partition_name
from ..storage.interfaces import CatalogStore, StorageBackend

logger = logging.getLogger(__name__)

T = TypeVar("T")

Clock = Callable[[], datetime]

DEFAULT_STORAGE_CALL_TIMEOUT = 300.0


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def describe_failure(error: Exception, timeout: Optional[float] = None) -> str:
    """Message recorded in an ERROR result."""
    if isinstance(error, asyncio.TimeoutError):
        return f"Storage call timed out after {timeout}s"
    if isinstance(error, PartitionOperationError):
        return error.message
    return f"{type(error).__name__}: {error}"


class PartitionOperator:
    """Base class holding the storage seams, the clock and the call timeout."""

    operation = "operation"

    def __init__(self, backend: StorageBackend, catalog: CatalogStore,
                 clock: Clock = utc_now, timeout: float = DEFAULT_STORAGE_CALL_TIMEOUT):
        self.backend = backend
        self.catalog = catalog
        self.clock = clock
        self.timeout = timeout

    async def _call(self, awaitable: Awaitable[T]) -> T:
        """Await a storage call bounded by the configured timeout."""
        return await asyncio.wait_for(awaitable, timeout=self.timeout)

    async def _read(self, awaitable: Awaitable[T], description: str) -> T:
        """Like ``_call``, for reads the whole operation depends on: a timeout is fatal."""
        try:
            return await self._call(awaitable)
        except asyncio.TimeoutError as e:
            raise StorageUnavailableError(f"Timed out {description} after {self.timeout}s") from e

    async def _require_config(self, table_name: str) -> PartitionConfig:
        config = await self._read(self.catalog.get_config(table_name), f"reading config of {table_name}")
        if config is None:
            raise ConfigError(f"No partition config for table {table_name}")
        return config

    async def _existing_partitions(self, table_name: str) -> List[PartitionRange]:
        """Physical monthly partitions of ``table_name``, oldest first."""
        names = await self._read(self.backend.list_partitions(table_name),
                                 f"listing partitions of {table_name}")
        partitions = [parse_partition_name(table_name, name) for name in names]
        return sorted((p for p in partitions if p is not None), key=lambda p: p.period_index)

    def _log_failure(self, partition_name: str, error: Exception) -> str:
        message = describe_failure(error, self.timeout)
        logger.error(f"{self.operation} failed for {partition_name}: {message}")
        return message
