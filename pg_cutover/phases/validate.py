"""
Phase 2: validate the range check constraint.

VALIDATE CONSTRAINT takes SHARE UPDATE EXCLUSIVE: other DDL waits, ordinary
reads and writes continue. It scans the table once.
"""

from __future__ import annotations

from typing import List, Optional

import psycopg
from psycopg import sql

from pg_cutover import statements
from pg_cutover.exceptions import PreflightError
from pg_cutover.infrastructure import catalog
from pg_cutover.phases.abstract import AbstractPhase, PhaseResult


class ValidatePhase(AbstractPhase):
    name: str = "validate"
    description: str = "VALIDATE CONSTRAINT on the range check (SHARE UPDATE EXCLUSIVE, one scan)."
    autocommit: bool = True

    def plan(self, cur: Optional[psycopg.Cursor] = None) -> List[sql.Composable]:
        return [statements.validate_check(self.target)]

    def execute(self) -> PhaseResult:
        executed: List[str] = []
        skipped: List[str] = []
        schema, table = self.target.schema_name, self.target.table

        with self._connect() as conn:
            with conn.cursor() as cur:
                constraint = catalog.get_constraint(cur, schema, table, self.target.check_constraint)
                if constraint is None:
                    raise PreflightError(
                        f"Check constraint {self.target.check_constraint} not found on "
                        f"{schema}.{table}; run the prepare phase first"
                    )
                if constraint.validated:
                    skipped.append(f"check constraint {constraint.name} already validated")
                else:
                    self._run(cur, statements.validate_check(self.target), executed)

        return PhaseResult(
            phase=self.name,
            statements=executed,
            skipped=skipped,
            notes="Range check validated.",
            extra={},
        )


__all__ = ["ValidatePhase"]
