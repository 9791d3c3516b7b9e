"""
Domain package for pg-cutover.

Exports the schema objects, partition ranges and reports shared by the phases
and the orchestrator. Keep this package free of database I/O.
"""

from pg_cutover.domain.bounds import (
    add_months,
    build_partition_plan,
    parse_check_bounds,
    validate_layout,
    verification_window,
)
from pg_cutover.domain.models import (
    CheckState,
    ConstraintInfo,
    CutoverTarget,
    IndexInfo,
    PartitionRange,
    PreflightReport,
    TransactionRecord,
    TriggerInfo,
    UniqueKeyState,
    VerificationReport,
    format_bound,
)

__all__ = [
    "add_months",
    "build_partition_plan",
    "parse_check_bounds",
    "validate_layout",
    "verification_window",
    "CheckState",
    "ConstraintInfo",
    "CutoverTarget",
    "IndexInfo",
    "PartitionRange",
    "PreflightReport",
    "TransactionRecord",
    "TriggerInfo",
    "UniqueKeyState",
    "VerificationReport",
    "format_bound",
]
