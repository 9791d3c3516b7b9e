"""
Pre-flight state machines.

Two independent machines must both reach their terminal state before the
cutover transaction may start:

    NO_UNIQUE_KEY -> UNIQUE_KEY_BUILDING -> UNIQUE_KEY_VALID   (or UNIQUE_KEY_INVALID)
    NO_CHECK      -> CHECK_NOT_VALID     -> CHECK_VALIDATED

The states are derived from the catalog on every call; nothing is cached
between invocations, so the operator can re-run any command at any time.
"""

from __future__ import annotations

from typing import Optional

import psycopg

from pg_cutover.domain.bounds import check_requires_not_null, parse_check_bounds
from pg_cutover.domain.models import (
    CheckState,
    ConstraintInfo,
    CutoverTarget,
    IndexInfo,
    PreflightReport,
    UniqueKeyState,
)
from pg_cutover.exceptions import (
    BoundsMismatchError,
    InvalidIndexError,
    PreflightError,
)
from pg_cutover.infrastructure import catalog
from pg_cutover.utils.logging import get_logger

log = get_logger(__name__)


def unique_key_state(index: Optional[IndexInfo], building: bool) -> UniqueKeyState:
    if index is None:
        return UniqueKeyState.NO_UNIQUE_KEY
    if index.is_valid:
        return UniqueKeyState.UNIQUE_KEY_VALID
    if building:
        return UniqueKeyState.UNIQUE_KEY_BUILDING
    return UniqueKeyState.UNIQUE_KEY_INVALID


def check_state(constraint: Optional[ConstraintInfo]) -> CheckState:
    if constraint is None:
        return CheckState.NO_CHECK
    if constraint.validated:
        return CheckState.CHECK_VALIDATED
    return CheckState.CHECK_NOT_VALID


def inspect_preflight(cur: psycopg.Cursor, target: CutoverTarget) -> PreflightReport:
    """Read both state machines and the bound comparison from the catalog."""
    schema, table = target.schema_name, target.table

    kind = catalog.relkind(cur, schema, table)
    if kind is None:
        raise PreflightError(f"Table {schema}.{table} does not exist")

    column = catalog.column_info(cur, schema, table, target.partition_column)
    if column is None:
        raise PreflightError(
            f"Column {target.partition_column!r} not found on {schema}.{table}"
        )
    type_name, column_not_null, _ = column

    index = catalog.get_index(cur, schema, target.unique_index)
    building = False
    if index is not None and not index.is_valid:
        building = catalog.index_build_in_progress(cur, schema, target.unique_index)

    constraint = catalog.get_constraint(cur, schema, table, target.check_constraint)
    expected = catalog.render_bounds(
        cur,
        type_name,
        (target.legacy_range.lower_literal, target.legacy_range.upper_literal),
    )

    constraint_bounds = None
    not_null_proven = column_not_null
    if constraint is not None:
        constraint_bounds = parse_check_bounds(constraint.definition, target.partition_column)
        not_null_proven = column_not_null or check_requires_not_null(
            constraint.definition, target.partition_column
        )

    report = PreflightReport(
        table=f"{schema}.{table}",
        unique_index=target.unique_index,
        unique_key=unique_key_state(index, building),
        check=check_state(constraint),
        expected_bounds=expected,
        constraint_bounds=constraint_bounds,
        not_null_proven=not_null_proven,
        referencing_foreign_keys=catalog.referencing_foreign_keys(cur, schema, table),
        already_partitioned=kind == "p",
    )
    log.info(
        "[PREFLIGHT] state",
        extra={
            "table": report.table,
            "unique_key": report.unique_key.value,
            "check": report.check.value,
            "bounds_match": report.bounds_match,
        },
    )
    return report


def require_ready(report: PreflightReport) -> None:
    """
    Raise the most specific PreflightError for a report that is not ready.

    This is a manual gate: nothing is retried or repaired here.
    """
    if report.already_partitioned:
        raise PreflightError(f"{report.table} is already partitioned; nothing to cut over")
    if report.unique_key is UniqueKeyState.UNIQUE_KEY_INVALID:
        raise InvalidIndexError(report.unique_index)
    if report.unique_key is not UniqueKeyState.UNIQUE_KEY_VALID:
        raise PreflightError(
            f"Unique key on {report.table} is {report.unique_key.value}; "
            "wait for the concurrent build or run the prepare phase"
        )
    if report.check is not CheckState.CHECK_VALIDATED:
        raise PreflightError(
            f"Range check on {report.table} is {report.check.value}; run the validate phase"
        )
    if not report.bounds_match:
        raise BoundsMismatchError(report.expected_bounds, report.constraint_bounds or ())
    if not report.not_null_proven:
        raise PreflightError(
            "Partition column is nullable and the check constraint does not include "
            "IS NOT NULL; ATTACH would scan the table"
        )
    if report.referencing_foreign_keys:
        raise PreflightError(
            "Foreign keys reference the table and would block dropping its primary key: "
            + ", ".join(report.referencing_foreign_keys)
        )


__all__ = [
    "unique_key_state",
    "check_state",
    "inspect_preflight",
    "require_ready",
]
