"""
Exception hierarchy for the partition manager.

ConfigError and FatalError propagate to callers. PartitionOperationError is
raised by storage backends for a single partition and is always captured by
the operators as an ERROR result.
"""


class PartitionManagerError(Exception):
    """Base class for all partition manager errors."""


class ConfigError(PartitionManagerError):
    """Missing or malformed partition configuration."""


class PartitionOperationError(PartitionManagerError):
    """A create/analyze/drop/vacuum call failed for one partition."""

    def __init__(self, partition_name: str, message: str):
        super().__init__(message)
        self.partition_name = partition_name
        self.message = message


class FatalError(PartitionManagerError):
    """Unrecoverable condition; aborts the enclosing call."""


class StorageUnavailableError(FatalError):
    """The storage backend cannot be reached."""
