"""
Partition naming and range calculation.

Periods are calendar months identified by a period index, the number of
months since year 0 (``year * 12 + month - 1``). A partition for a period is
named ``<parent>_<YYYY>_<MM>`` and covers the half-open range
``[first day of month, first day of next month)``.

Everything here is pure: no clock reads, no I/O.
"""

import re
from datetime import date, datetime
from typing import Optional, Union

from .partition_models import PartitionRange

# Every range end must be a valid date, so the last supported period is 9998-12.
MIN_PERIOD_INDEX = 1 * 12
MAX_PERIOD_INDEX = 9998 * 12 + 11


def period_index(value: Union[date, datetime]) -> int:
    """Period index of the month containing ``value``."""
    return value.year * 12 + value.month - 1


def period_start(index: int) -> date:
    """First day of the period with the given index."""
    if not MIN_PERIOD_INDEX <= index <= MAX_PERIOD_INDEX:
        raise ValueError(f"Period index {index} is outside the supported range")
    year, month_zero = divmod(index, 12)
    return date(year, month_zero + 1, 1)


def partition_name(parent_table: str, partition_date: date) -> str:
    """Deterministic partition name for the period starting at ``partition_date``."""
    return f"{parent_table}_{partition_date.year:04d}_{partition_date.month:02d}"


def partition_for_period(parent_table: str, index: int) -> PartitionRange:
    """Partition identifier and range for an absolute period index."""
    start = period_start(index)
    end = date(start.year + 1, 1, 1) if start.month == 12 else date(start.year, start.month + 1, 1)
    return PartitionRange(
        parent_table=parent_table,
        partition_name=partition_name(parent_table, start),
        period_index=index,
        range_start=start,
        range_end=end,
    )


def partition_for_offset(parent_table: str, now: Union[date, datetime], offset: int) -> PartitionRange:
    """Partition ``offset`` periods away from the period containing ``now``."""
    return partition_for_period(parent_table, period_index(now) + offset)


def retention_cutoff(now: Union[date, datetime], retention_months: int) -> date:
    """
    Start of the oldest retained period.

    A partition is eligible for retirement only if its whole range ends on or
    before this date. Windows reaching past the first supported period clamp
    to it, so nothing is expired.
    """
    return period_start(max(period_index(now) - retention_months, MIN_PERIOD_INDEX))


def is_expired(partition: PartitionRange, cutoff: date) -> bool:
    """True when the partition lies entirely before ``cutoff``."""
    return partition.range_end <= cutoff


def parse_partition_name(parent_table: str, name: str) -> Optional[PartitionRange]:
    """
    Inverse of :func:`partition_name`.

    Returns None for names that are not monthly partitions of ``parent_table``
    (default partitions, partitions of a different parent sharing the prefix).
    """
    match = re.fullmatch(rf"{re.escape(parent_table)}_(\d{{4}})_(\d{{2}})", name)
    if not match:
        return None
    year, month = int(match.group(1)), int(match.group(2))
    if not 1 <= month <= 12:
        return None
    index = year * 12 + month - 1
    if not MIN_PERIOD_INDEX <= index <= MAX_PERIOD_INDEX:
        return None
    return partition_for_period(parent_table, index)
