"""
Phase 4: re-home triggers, sequence ownership and the redundant range check.

Normally executed inside the cutover transaction (see CutoverPhase). The
standalone phase finishes the job when the cutover ran with rehoming disabled
or was interrupted between steps; against an already re-homed table it does
nothing.
"""

from __future__ import annotations

from typing import List, Optional, Sequence

import psycopg
from psycopg import sql

from pg_cutover import statements
from pg_cutover.domain.models import CutoverTarget, TriggerInfo
from pg_cutover.exceptions import PreflightError
from pg_cutover.infrastructure import catalog
from pg_cutover.phases.abstract import AbstractPhase, PhaseResult
from pg_cutover.utils.logging import get_logger

log = get_logger(__name__)


def rehome_statements(
    target: CutoverTarget,
    triggers: Sequence[TriggerInfo],
    sequence: Optional[str],
    drop_check: bool,
) -> List[sql.Composable]:
    """
    Statements moving objects from `<table>_old` to the partitioned `<table>`.

    Triggers are dropped from the partition before being created on the parent,
    because a parent row trigger is cloned onto every partition under the same
    name.
    """
    schema = target.schema_name
    stmts: List[sql.Composable] = []
    for trigger in triggers:
        stmts.append(statements.drop_trigger(schema, target.old_table, trigger))
        stmts.append(statements.retarget_trigger(trigger, schema, target.table))
        if trigger.enabled == "D":
            stmts.append(statements.disable_trigger(schema, target.table, trigger))
    if sequence:
        stmts.append(
            statements.set_sequence_owner(sequence, schema, target.table, target.id_column)
        )
    if drop_check:
        stmts.append(statements.drop_constraint(schema, target.old_table, target.check_constraint))
    return stmts


class RehomePhase(AbstractPhase):
    name: str = "rehome"
    description: str = "Move triggers and sequence ownership from the old table to the partitioned parent."
    autocommit: bool = False

    def _catalog_state(self, cur: psycopg.Cursor):
        schema = self.target.schema_name
        triggers = catalog.list_triggers(cur, schema, self.target.old_table)
        sequence = catalog.serial_sequence(cur, schema, self.target.old_table, self.target.id_column)
        drop_check = bool(
            self.settings.cutover_drop_check_after_attach
            and catalog.get_constraint(
                cur, schema, self.target.old_table, self.target.check_constraint
            )
        )
        return triggers, sequence, drop_check

    def plan(self, cur: Optional[psycopg.Cursor] = None) -> List[sql.Composable]:
        if cur is None:
            return []
        return rehome_statements(self.target, *self._catalog_state(cur))

    def execute(self) -> PhaseResult:
        executed: List[str] = []
        schema = self.target.schema_name

        with self._connect() as conn:
            with conn.transaction():
                with conn.cursor() as cur:
                    if catalog.relkind(cur, schema, self.target.table) != "p":
                        raise PreflightError(
                            f"{schema}.{self.target.table} is not partitioned yet; "
                            "run the cutover phase first"
                        )
                    if catalog.relkind(cur, schema, self.target.old_table) is None:
                        raise PreflightError(f"{schema}.{self.target.old_table} does not exist")
                    for stmt in self.plan(cur):
                        self._run(cur, stmt, executed)

        if not executed:
            log.info("[REHOME] nothing left to re-home", extra={"table": self.target.table})
        return PhaseResult(
            phase=self.name,
            statements=executed,
            skipped=[] if executed else ["nothing left on the old table"],
            notes="Triggers and sequence ownership now live on the partitioned table.",
            extra={},
        )


__all__ = ["rehome_statements", "RehomePhase"]
