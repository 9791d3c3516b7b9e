"""
Profiling utilities for pg-cutover.

Measures wall-clock time of a runbook phase. For the cutover phase this is
the upper bound of the ACCESS EXCLUSIVE lock window, which is the number the
operator cares about.

Usage:
    from pg_cutover.utils.profiler import profile_block

    with profile_block("cutover") as stats:
        phase.execute()

    print(stats.duration_seconds)
"""

from __future__ import annotations

import contextlib
import time
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Generator, Optional


@dataclass
class ProfileStats:
    """
    Container for profiling measurements.
    """

    label: str
    start_ts: float = field(default=0.0)
    end_ts: float = field(default=0.0)
    duration_seconds: float = field(default=0.0)
    started_at: Optional[str] = field(default=None)
    extra: dict[str, Any] = field(default_factory=dict)


@contextlib.contextmanager
def profile_block(label: str) -> Generator[ProfileStats, None, None]:
    """
    Context manager timing a block of code.

    Parameters
    ----------
    label : str
        Human-friendly label for the profiled block.

    Notes
    -----
    Timing is recorded even when the block raises, so a failed phase still
    reports how long it held its locks.
    """
    stats = ProfileStats(label=label)
    stats.started_at = datetime.now(timezone.utc).isoformat()
    stats.start_ts = time.perf_counter()
    try:
        yield stats
    finally:
        stats.end_ts = time.perf_counter()
        stats.duration_seconds = stats.end_ts - stats.start_ts


__all__ = ["ProfileStats", "profile_block"]
