"""
partmand - Partition lifecycle manager for time-partitioned event tables.

This package keeps monthly range partitions of large event tables healthy:
it provisions future partitions, retires partitions that fall outside the
retention window, refreshes statistics, reclaims storage and reports health.
"""

__version__ = "0.1.0"
