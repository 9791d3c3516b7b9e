"""
Utilities package for pg-cutover.

Exports shared helpers for logging and profiling.
Keep this package lightweight and free of domain-specific logic.
"""

from pg_cutover.utils.logging import configure_logging, get_logger
from pg_cutover.utils.profiler import ProfileStats, profile_block

__all__ = [
    "configure_logging",
    "get_logger",
    "ProfileStats",
    "profile_block",
]
