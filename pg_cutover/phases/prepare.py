"""
Phase 1: constraint preparation.

Builds the unique index on (id, partition column) concurrently and registers
the range check constraint NOT VALID. Neither step blocks ordinary reads or
writes. The phase is re-runnable: steps whose object already exists are
skipped, an invalid index stops the phase instead of being rebuilt.
"""

from __future__ import annotations

from typing import List, Optional

import psycopg
from psycopg import sql

from pg_cutover import statements
from pg_cutover.config import Settings
from pg_cutover.domain.bounds import parse_check_bounds
from pg_cutover.domain.models import UniqueKeyState
from pg_cutover.exceptions import BoundsMismatchError, InvalidIndexError, PreflightError
from pg_cutover.infrastructure import catalog
from pg_cutover.phases.abstract import AbstractPhase, PhaseResult
from pg_cutover.phases.preflight import unique_key_state
from pg_cutover.utils.logging import get_logger

log = get_logger(__name__)


class PreparePhase(AbstractPhase):
    """
    CREATE UNIQUE INDEX CONCURRENTLY + ADD CONSTRAINT ... NOT VALID.
    """

    name: str = "prepare"
    description: str = "Concurrent unique index build and NOT VALID range check (no blocking locks)."
    autocommit: bool = True

    def __init__(
        self,
        settings: Optional[Settings] = None,
        dsn_override: Optional[str] = None,
        capture_baseline: bool = False,
    ) -> None:
        super().__init__(settings, dsn_override)
        self.capture_baseline = capture_baseline

    def plan(self, cur: Optional[psycopg.Cursor] = None) -> List[sql.Composable]:
        return [
            statements.create_unique_index_concurrently(self.target),
            statements.add_check_not_valid(self.target),
        ]

    def _check_source(self, cur: psycopg.Cursor) -> str:
        """Validate the source table and return the partition column type."""
        schema, table = self.target.schema_name, self.target.table
        kind = catalog.relkind(cur, schema, table)
        if kind is None:
            raise PreflightError(f"Table {schema}.{table} does not exist")
        if kind == "p":
            raise PreflightError(f"{schema}.{table} is already partitioned")

        id_column = catalog.column_info(cur, schema, table, self.target.id_column)
        if id_column is None:
            raise PreflightError(f"Column {self.target.id_column!r} not found on {schema}.{table}")
        if id_column[2]:
            raise PreflightError(
                f"{schema}.{table}.{self.target.id_column} is an identity column; "
                "LIKE cannot share its sequence with the partitioned table"
            )

        column = catalog.column_info(cur, schema, table, self.target.partition_column)
        if column is None:
            raise PreflightError(
                f"Column {self.target.partition_column!r} not found on {schema}.{table}"
            )
        type_name = column[0]

        if not catalog.bound_in_future(cur, type_name, self.target.legacy_range.upper_literal):
            raise PreflightError(
                f"Range end {self.target.legacy_range.upper_literal} is not in the future; "
                "live inserts would violate the check constraint"
            )
        return type_name

    def _ensure_unique_index(self, cur: psycopg.Cursor, executed: List[str], skipped: List[str]) -> None:
        schema, index_name = self.target.schema_name, self.target.unique_index
        index = catalog.get_index(cur, schema, index_name)
        building = index is not None and not index.is_valid and catalog.index_build_in_progress(
            cur, schema, index_name
        )
        state = unique_key_state(index, building)

        if state is UniqueKeyState.UNIQUE_KEY_VALID:
            skipped.append(f"unique index {index_name} already valid")
            return
        if state is UniqueKeyState.UNIQUE_KEY_BUILDING:
            raise PreflightError(f"Index {index_name} is still being built by another session")
        if state is UniqueKeyState.UNIQUE_KEY_INVALID:
            raise InvalidIndexError(index_name)

        self._run(cur, statements.create_unique_index_concurrently(self.target), executed)

        # A concurrent build can leave an invalid index behind; check the catalog.
        index = catalog.get_index(cur, schema, index_name)
        if index is None or not index.is_valid:
            raise InvalidIndexError(index_name)
        log.info(f"[PREPARE] unique index {index_name} is valid", extra={"index": index_name})

    def _ensure_check(
        self, cur: psycopg.Cursor, type_name: str, executed: List[str], skipped: List[str]
    ) -> None:
        schema, table = self.target.schema_name, self.target.table
        constraint = catalog.get_constraint(cur, schema, table, self.target.check_constraint)
        if constraint is None:
            self._run(cur, statements.add_check_not_valid(self.target), executed)
            return

        expected = catalog.render_bounds(
            cur,
            type_name,
            (self.target.legacy_range.lower_literal, self.target.legacy_range.upper_literal),
        )
        actual = parse_check_bounds(constraint.definition, self.target.partition_column)
        if actual != expected:
            raise BoundsMismatchError(expected, actual or ())
        skipped.append(f"check constraint {constraint.name} already present")

    def _count_rows(self, cur: psycopg.Cursor) -> int:
        cur.execute(statements.count_rows(self.target.schema_name, self.target.table))
        return int(cur.fetchone()[0])

    def execute(self) -> PhaseResult:
        executed: List[str] = []
        skipped: List[str] = []
        extra: dict = {}

        with self._connect() as conn:
            with conn.cursor() as cur:
                type_name = self._check_source(cur)
                self._ensure_unique_index(cur, executed, skipped)
                self._ensure_check(cur, type_name, executed, skipped)
                if self.capture_baseline:
                    extra["baseline_rows"] = self._count_rows(cur)
                    log.info(
                        f"[PREPARE] baseline row count {extra['baseline_rows']:,}",
                        extra={"baseline_rows": extra["baseline_rows"]},
                    )

        return PhaseResult(
            phase=self.name,
            statements=executed,
            skipped=skipped,
            notes="Unique index valid; range check registered NOT VALID.",
            extra=extra,
        )


class RebuildIndexPhase(AbstractPhase):
    """
    Operator-invoked repair of an invalid unique index.

    DROP INDEX CONCURRENTLY followed by a fresh CREATE UNIQUE INDEX CONCURRENTLY.
    Refuses to touch a valid index or one that is still being built. Not part
    of the regular runbook order; run it after an InvalidIndexError.
    """

    name: str = "rebuild-index"
    description: str = "Drop and concurrently rebuild an invalid unique index."
    autocommit: bool = True

    def plan(self, cur: Optional[psycopg.Cursor] = None) -> List[sql.Composable]:
        return [
            statements.drop_index_concurrently(self.target.schema_name, self.target.unique_index),
            statements.create_unique_index_concurrently(self.target),
        ]

    def execute(self) -> PhaseResult:
        executed: List[str] = []
        schema, index_name = self.target.schema_name, self.target.unique_index

        with self._connect() as conn:
            with conn.cursor() as cur:
                index = catalog.get_index(cur, schema, index_name)
                building = index is not None and not index.is_valid and catalog.index_build_in_progress(
                    cur, schema, index_name
                )
                state = unique_key_state(index, building)
                if state is UniqueKeyState.UNIQUE_KEY_VALID:
                    raise PreflightError(f"Index {index_name} is valid; nothing to rebuild")
                if state is UniqueKeyState.UNIQUE_KEY_BUILDING:
                    raise PreflightError(f"Index {index_name} is still being built by another session")

                for stmt in self.plan(cur):
                    self._run(cur, stmt, executed)

                index = catalog.get_index(cur, schema, index_name)
                if index is None or not index.is_valid:
                    raise InvalidIndexError(index_name)

        log.info(f"[REBUILD] unique index {index_name} is valid", extra={"index": index_name})
        return PhaseResult(
            phase=self.name,
            statements=executed,
            skipped=[],
            notes=f"Index {index_name} rebuilt and valid.",
            extra={"previous_state": state.value},
        )


__all__ = ["PreparePhase", "RebuildIndexPhase"]
