"""
pg-cutover - Zero-downtime range-partition cutover for a live PostgreSQL table.

Converts a large, continuously written table into a range-partitioned table
without a maintenance window. The runbook has five phases:

- prepare: concurrent unique index on (id, partition key) and a NOT VALID
  range check constraint
- validate: VALIDATE CONSTRAINT under SHARE UPDATE EXCLUSIVE
- cutover: one short transaction that renames the source, swaps in the
  partitioned shell and attaches the source as its first partition
- rehome: triggers and sequence ownership move to the new parent
- verify: partition pruning, index validity and row-count reconciliation
"""

from __future__ import annotations

__version__ = "0.1.0"
__license__ = "MIT"

# Public API exports
from pg_cutover.config import Settings, get_settings
from pg_cutover.exceptions import (
    BoundsMismatchError,
    CutoverError,
    InvalidIndexError,
    PartitionLayoutError,
    PreflightError,
    VerificationError,
)
from pg_cutover.orchestrator import RunConfig, available_phases, render_plan, run_phases
from pg_cutover.phases.abstract import AbstractPhase, PhaseResult, RunbookPhase
from pg_cutover.utils.logging import configure_logging, get_logger
from pg_cutover.utils.profiler import ProfileStats, profile_block

__all__ = [
    # Version info
    "__version__",
    "__license__",
    # Configuration
    "Settings",
    "get_settings",
    # Errors
    "CutoverError",
    "PreflightError",
    "InvalidIndexError",
    "BoundsMismatchError",
    "PartitionLayoutError",
    "VerificationError",
    # Orchestration
    "RunConfig",
    "available_phases",
    "render_plan",
    "run_phases",
    # Phase abstractions
    "RunbookPhase",
    "AbstractPhase",
    "PhaseResult",
    # Logging
    "configure_logging",
    "get_logger",
    # Profiling
    "ProfileStats",
    "profile_block",
]
