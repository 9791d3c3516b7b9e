"""
Phase 3: the atomic rename-and-attach transaction.

Everything runs in one transaction under SET LOCAL lock_timeout and
statement_timeout. The pre-flight gate is re-evaluated after the source table
is locked, so nothing can change between the check and the DDL. When the bound
literals match, the only work is catalog updates and the exclusive lock is held
for seconds; if they did not match, ATTACH would scan the whole table, and the
statement timeout turns that into a rollback instead of an outage.
"""

from __future__ import annotations

from typing import List, Optional, Tuple

import psycopg
from psycopg import sql

from pg_cutover import statements
from pg_cutover.config import Settings
from pg_cutover.domain.bounds import build_partition_plan
from pg_cutover.domain.models import IndexInfo, PartitionRange, TriggerInfo
from pg_cutover.infrastructure import catalog
from pg_cutover.infrastructure.db_factory import apply_timeouts
from pg_cutover.phases.abstract import AbstractPhase, PhaseResult
from pg_cutover.phases.preflight import inspect_preflight, require_ready
from pg_cutover.phases.rehome import rehome_statements
from pg_cutover.utils.logging import get_logger

log = get_logger(__name__)


class CutoverPhase(AbstractPhase):
    """
    Create the partitioned shell, swap names, promote the unique index and attach.
    """

    name: str = "cutover"
    description: str = "Rename-and-attach in one transaction (ACCESS EXCLUSIVE, metadata only)."
    autocommit: bool = False

    def __init__(
        self,
        settings: Optional[Settings] = None,
        dsn_override: Optional[str] = None,
        rehome: bool = True,
    ) -> None:
        super().__init__(settings, dsn_override)
        self.rehome = rehome
        self.partitions: List[PartitionRange] = build_partition_plan(
            self.target,
            interval_months=self.settings.cutover_interval_months,
            premake=self.settings.cutover_premake,
        )

    def mirrored_indexes(self, indexes: List[IndexInfo]) -> Tuple[List[IndexInfo], List[str]]:
        """
        Source indexes to recreate on the parent, and notes for the ones left out.

        The primary key and the pre-built unique index are handled separately.
        Partial and expression indexes, and unique indexes without the partition
        column among their key columns, stay local to the old partition, as does
        any index whose definition cannot be retargeted. A partition column that
        only appears in INCLUDE does not count as a key column.
        """
        mirrored: List[IndexInfo] = []
        notes: List[str] = []
        for index in indexes:
            if index.is_primary or index.name == self.target.unique_index:
                continue
            if not index.is_valid:
                notes.append(f"{index.name}: invalid, not mirrored")
            elif not index.is_plain:
                notes.append(f"{index.name}: partial/expression index stays on {self.target.old_table}")
            elif index.is_unique and self.target.partition_column not in index.columns:
                notes.append(
                    f"{index.name}: unique without {self.target.partition_column}, "
                    f"stays on {self.target.old_table}"
                )
            elif not statements.can_mirror_definition(index):
                notes.append(f"{index.name}: definition not understood, stays on {self.target.old_table}")
            else:
                mirrored.append(index)
        return mirrored, notes

    def build_statements(
        self,
        indexes: List[IndexInfo],
        old_pkey: Optional[str],
        triggers: List[TriggerInfo],
        sequence: Optional[str],
    ) -> List[sql.Composable]:
        """Ordered DDL of the cutover, given what the catalog says about the source."""
        t = self.target
        schema = t.schema_name
        stmts: List[sql.Composable] = [
            statements.create_partitioned_shell(t),
            statements.add_shell_primary_key(t),
        ]
        stmts.extend(statements.create_parent_index(t, index) for index in indexes)
        stmts.extend(
            [
                statements.rename_table(schema, t.table, t.old_table),
                statements.rename_table(schema, t.partitioned_table, t.table),
            ]
        )
        if old_pkey:
            stmts.append(statements.drop_constraint(schema, t.old_table, old_pkey))
        stmts.append(statements.promote_unique_index(t))
        stmts.append(statements.rename_constraint(schema, t.table, t.shell_pkey, t.parent_pkey))
        stmts.append(statements.attach_partition(t, t.legacy_range))
        if self.rehome:
            stmts.extend(
                rehome_statements(
                    t, triggers, sequence, self.settings.cutover_drop_check_after_attach
                )
            )
        stmts.extend(statements.create_partition(t, rng) for rng in self.partitions[1:])
        return stmts

    def _read_source(self, cur: psycopg.Cursor):
        schema, table = self.target.schema_name, self.target.table
        indexes, notes = self.mirrored_indexes(catalog.list_indexes(cur, schema, table))
        pkey = catalog.primary_key(cur, schema, table)
        triggers = catalog.list_triggers(cur, schema, table)
        sequence = catalog.serial_sequence(cur, schema, table, self.target.id_column)
        return indexes, notes, pkey.name if pkey else None, triggers, sequence

    def plan(self, cur: Optional[psycopg.Cursor] = None) -> List[sql.Composable]:
        if cur is None:
            return [statements.lock_source(self.target)] + self.build_statements(
                [], self.target.parent_pkey, [], None
            )
        indexes, _, pkey, triggers, sequence = self._read_source(cur)
        return [statements.lock_source(self.target)] + self.build_statements(
            indexes, pkey, triggers, sequence
        )

    def execute(self) -> PhaseResult:
        executed: List[str] = []
        settings = self.settings

        with self._connect() as conn:
            with conn.transaction():
                with conn.cursor() as cur:
                    apply_timeouts(
                        cur,
                        lock_timeout_ms=settings.cutover_lock_timeout_ms,
                        statement_timeout_ms=settings.cutover_statement_timeout_ms,
                    )
                    self._run(cur, statements.lock_source(self.target), executed)

                    report = inspect_preflight(cur, self.target)
                    require_ready(report)

                    indexes, notes, pkey, triggers, sequence = self._read_source(cur)
                    for note in notes:
                        log.warning(f"[CUTOVER] {note}", extra={"phase": self.name})

                    for stmt in self.build_statements(indexes, pkey, triggers, sequence):
                        self._run(cur, stmt, executed)

        log.info(
            f"[CUTOVER] {self.target.schema_name}.{self.target.table} is now partitioned",
            extra={"partitions": [r.name for r in self.partitions]},
        )
        return PhaseResult(
            phase=self.name,
            statements=executed,
            skipped=notes,
            notes=(
                f"Attached {self.target.old_table} FOR VALUES FROM "
                f"('{self.target.legacy_range.lower_literal}') TO "
                f"('{self.target.legacy_range.upper_literal}')."
            ),
            extra={
                "mirrored_indexes": [i.name for i in indexes],
                "rehomed_triggers": [t.name for t in triggers] if self.rehome else [],
                "future_partitions": [r.name for r in self.partitions[1:]],
            },
        )


__all__ = ["CutoverPhase"]
