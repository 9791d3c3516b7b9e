"""
Range arithmetic and bound-literal handling.

The attach step is only metadata-only when PostgreSQL can prove the partition
constraint from the validated check constraint. The helpers here build the
partition layout, enforce that it is contiguous, and extract the bound
literals back out of `pg_get_constraintdef()` output for comparison.
"""

from __future__ import annotations

import re
from datetime import datetime
from typing import List, Optional, Sequence, Tuple

from dateutil.relativedelta import relativedelta

from pg_cutover.domain.models import CutoverTarget, PartitionRange
from pg_cutover.exceptions import PartitionLayoutError


def add_months(value: datetime, months: int) -> datetime:
    """Shift a timestamp by whole months, clamping the day to the target month."""
    return value + relativedelta(months=months)


def future_partition_name(table: str, start: datetime) -> str:
    return f"{table}_p{start:%Y_%m}"


def build_partition_plan(
    target: CutoverTarget, interval_months: int = 1, premake: int = 0
) -> List[PartitionRange]:
    """
    Legacy range followed by `premake` empty partitions of `interval_months` each.
    """
    if interval_months < 1:
        raise PartitionLayoutError(f"interval_months must be >= 1, got {interval_months}")
    if premake < 0:
        raise PartitionLayoutError(f"premake must be >= 0, got {premake}")

    ranges = [target.legacy_range]
    cursor = target.legacy_range.end
    for _ in range(premake):
        upper = add_months(cursor, interval_months)
        ranges.append(
            PartitionRange(
                name=future_partition_name(target.table, cursor),
                start=cursor,
                end=upper,
            )
        )
        cursor = upper

    validate_layout(ranges)
    return ranges


def validate_layout(ranges: Sequence[PartitionRange]) -> None:
    """
    Raise PartitionLayoutError unless ranges are contiguous and non-overlapping.

    Ranges are compared in start order; names must be unique.
    """
    if not ranges:
        raise PartitionLayoutError("No partition ranges supplied")

    names = [r.name for r in ranges]
    duplicates = sorted({n for n in names if names.count(n) > 1})
    if duplicates:
        raise PartitionLayoutError(f"Duplicate partition names: {', '.join(duplicates)}")

    ordered = sorted(ranges, key=lambda r: r.start)
    for previous, current in zip(ordered, ordered[1:]):
        if current.start < previous.end:
            raise PartitionLayoutError(
                f"Partitions {previous.name} and {current.name} overlap "
                f"([{previous.lower_literal}, {previous.upper_literal}) vs "
                f"[{current.lower_literal}, {current.upper_literal}))"
            )
        if current.start > previous.end:
            raise PartitionLayoutError(
                f"Gap between {previous.name} and {current.name}: "
                f"{previous.upper_literal} .. {current.lower_literal}"
            )


def _column_pattern(column: str) -> str:
    return r'"?' + re.escape(column) + r'"?'


def parse_check_bounds(definition: str, column: str) -> Optional[Tuple[str, str]]:
    """
    Extract the (lower, upper) literals of a range check constraint.

    Accepts the deparsed form PostgreSQL returns, e.g.
    ``CHECK (((created_at IS NOT NULL) AND (created_at >= '2019-01-01 00:00:00'::timestamp
    without time zone) AND (created_at < '2024-07-01 00:00:00'::timestamp without time zone)))``.
    Returns None when either bound is missing.
    """
    col = _column_pattern(column)
    lower = re.search(col + r"\s*>=\s*'((?:[^']|'')*)'", definition)
    upper = re.search(col + r"\s*<\s*'((?:[^']|'')*)'", definition)
    if not lower or not upper:
        return None
    return lower.group(1).replace("''", "'"), upper.group(1).replace("''", "'")


def check_requires_not_null(definition: str, column: str) -> bool:
    """Whether the constraint text carries `<column> IS NOT NULL`."""
    return re.search(_column_pattern(column) + r"\s+IS\s+NOT\s+NULL", definition, re.I) is not None


def verification_window(legacy: PartitionRange, months: int = 1) -> Tuple[datetime, datetime]:
    """
    The last `months` of the legacy range, clipped to its start.

    Used as the filter of the pruning check: a query bounded by this window must
    touch the legacy partition only.
    """
    lower = max(add_months(legacy.end, -months), legacy.start)
    return lower, legacy.end


__all__ = [
    "add_months",
    "future_partition_name",
    "build_partition_plan",
    "validate_layout",
    "parse_check_bounds",
    "check_requires_not_null",
    "verification_window",
]
