"""
Phase 5: post-migration verification.

Three checks, all read-only and run in one REPEATABLE READ transaction so the
row counts come from a single snapshot:

- partition pruning: EXPLAIN (ANALYZE, FORMAT JSON) of a query bounded to the
  last month of the legacy range must scan exactly one partition;
- index validity: no index on the parent or any partition has indisvalid false;
- row counts: the total through the parent equals the sum of per-partition
  counts and is not below the recorded baseline.

Live writes continue during the check, hence "not below" for the baseline.
"""

from __future__ import annotations

import json
from typing import Any, Dict, List, Optional, Tuple

import psycopg
from psycopg import sql

from pg_cutover import statements
from pg_cutover.config import Settings
from pg_cutover.domain.bounds import verification_window
from pg_cutover.domain.models import VerificationReport, format_bound
from pg_cutover.exceptions import PreflightError, VerificationError
from pg_cutover.infrastructure import catalog
from pg_cutover.phases.abstract import AbstractPhase, PhaseResult
from pg_cutover.utils.logging import get_logger

log = get_logger(__name__)


def collect_plan_relations(plan: Any) -> Tuple[List[str], List[str]]:
    """
    Walk an EXPLAIN (FORMAT JSON) document.

    Returns the distinct relation names and index names found in scan nodes,
    in the order they first appear. Accepts the raw JSON text as well as the
    decoded document.
    """
    if isinstance(plan, (str, bytes)):
        plan = json.loads(plan)

    relations: List[str] = []
    indexes: List[str] = []

    def _walk(node: Any) -> None:
        if isinstance(node, list):
            for item in node:
                _walk(item)
            return
        if not isinstance(node, dict):
            return
        relation = node.get("Relation Name")
        if relation and relation not in relations:
            relations.append(relation)
        index = node.get("Index Name")
        if index and index not in indexes:
            indexes.append(index)
        for key in ("Plan", "Plans"):
            if key in node:
                _walk(node[key])

    _walk(plan)
    return relations, indexes


def row_count_problems(
    total: int, per_partition: Dict[str, int], baseline: Optional[int]
) -> List[str]:
    problems: List[str] = []
    partition_sum = sum(per_partition.values())
    if partition_sum != total:
        problems.append(
            f"Row count through the parent ({total:,}) differs from the sum of "
            f"partition counts ({partition_sum:,})"
        )
    if baseline is not None and total < baseline:
        problems.append(f"Row count {total:,} is below the pre-migration baseline {baseline:,}")
    return problems


class VerifyPhase(AbstractPhase):
    name: str = "verify"
    description: str = "EXPLAIN ANALYZE pruning check, invalid-index check, row-count reconciliation."
    autocommit: bool = False

    def __init__(
        self,
        settings: Optional[Settings] = None,
        dsn_override: Optional[str] = None,
        baseline_rows: Optional[int] = None,
        expected_index: Optional[str] = None,
        count_rows: Optional[bool] = None,
    ) -> None:
        super().__init__(settings, dsn_override)
        self.baseline_rows = (
            baseline_rows if baseline_rows is not None else self.settings.verify_baseline_rows
        )
        self.expected_index = expected_index or self.settings.verify_expected_index
        self.count_rows = self.settings.verify_row_counts if count_rows is None else count_rows
        lower, upper = verification_window(self.target.legacy_range)
        self.window = (format_bound(lower), format_bound(upper))

    def plan(self, cur: Optional[psycopg.Cursor] = None) -> List[sql.Composable]:
        schema, table = self.target.schema_name, self.target.table
        stmts: List[sql.Composable] = [statements.pruning_probe(self.target, *self.window)]
        if self.count_rows:
            stmts.append(statements.count_rows(schema, table))
            stmts.append(statements.count_rows_per_partition(schema, table))
        return stmts

    def _check_pruning(self, cur: psycopg.Cursor, report: VerificationReport, executed: List[str]) -> None:
        probe = statements.pruning_probe(self.target, *self.window)
        self._run(cur, probe, executed)
        row = cur.fetchone()
        relations, indexes = collect_plan_relations(row[0])
        report.scanned_relations = relations
        report.index_names = indexes

        if not report.pruned:
            report.problems.append(
                f"Pruning failed: window {self.window[0]} .. {self.window[1]} scanned "
                f"{len(relations)} relations ({', '.join(relations) or 'none'})"
            )
        elif relations[0] != self.target.old_table:
            report.problems.append(
                f"Window inside the legacy range scanned {relations[0]}, "
                f"expected {self.target.old_table}"
            )
        if self.expected_index and self.expected_index not in indexes:
            report.problems.append(
                f"Expected index {self.expected_index} not used "
                f"(plan used: {', '.join(indexes) or 'no index'})"
            )

    def _check_counts(self, cur: psycopg.Cursor, report: VerificationReport, executed: List[str]) -> None:
        schema, table = self.target.schema_name, self.target.table
        self._run(cur, statements.count_rows(schema, table), executed)
        report.total_rows = int(cur.fetchone()[0])
        self._run(cur, statements.count_rows_per_partition(schema, table), executed)
        report.partition_rows = {name: int(count) for name, count in cur.fetchall()}
        report.problems.extend(
            row_count_problems(report.total_rows, report.partition_rows, self.baseline_rows)
        )

    def execute(self) -> PhaseResult:
        executed: List[str] = []
        schema, table = self.target.schema_name, self.target.table
        report = VerificationReport(
            table=f"{schema}.{table}",
            window=self.window,
            baseline_rows=self.baseline_rows,
        )

        with self._connect() as conn:
            conn.isolation_level = psycopg.IsolationLevel.REPEATABLE_READ
            conn.read_only = True
            with conn.transaction():
                with conn.cursor() as cur:
                    if catalog.relkind(cur, schema, table) != "p":
                        raise PreflightError(f"{schema}.{table} is not a partitioned table")
                    self._check_pruning(cur, report, executed)

                    report.invalid_indexes = catalog.invalid_indexes_in_tree(cur, schema, table)
                    if report.invalid_indexes:
                        report.problems.append(
                            "Invalid indexes: " + ", ".join(report.invalid_indexes)
                        )

                    if self.count_rows:
                        self._check_counts(cur, report, executed)

        log.info(
            "[VERIFY] report",
            extra={
                "table": report.table,
                "pruned": report.pruned,
                "scanned": report.scanned_relations,
                "invalid_indexes": len(report.invalid_indexes),
                "total_rows": report.total_rows,
            },
        )
        if report.problems:
            raise VerificationError(report.problems, report=report.model_dump())

        return PhaseResult(
            phase=self.name,
            statements=executed,
            skipped=[] if self.count_rows else ["row counts disabled"],
            notes=f"Pruned to {report.scanned_relations[0]}; no invalid indexes.",
            extra={"report": report.model_dump()},
        )


__all__ = ["collect_plan_relations", "row_count_problems", "VerifyPhase"]
