"""
SQL builders for every DDL statement of the runbook.

All identifiers go through psycopg.sql.Identifier and all bound literals
through PartitionRange.lower_literal / upper_literal, so the check constraint
and the ATTACH PARTITION clause always carry the same text.
"""

from __future__ import annotations

import hashlib
import re
from typing import Sequence

from psycopg import sql

from pg_cutover.domain.models import (
    MAX_IDENTIFIER_BYTES,
    CutoverTarget,
    IndexInfo,
    PartitionRange,
    TriggerInfo,
)

# CREATE [CONSTRAINT] TRIGGER name {BEFORE|AFTER|INSTEAD OF} events ON <relation> ...
_TRIGGER_ON = re.compile(
    r"^(CREATE (?:CONSTRAINT )?TRIGGER .+? (?:BEFORE|AFTER|INSTEAD OF) .+? ON )(\S+)( .*)$",
    flags=re.DOTALL,
)

# A possibly quoted, possibly schema-qualified name as pg_get_indexdef() prints it.
_NAME = r'(?:"(?:[^"]|"")*"|[^\s"])+'

# CREATE [UNIQUE] INDEX name ON [ONLY] relation USING method (...) [INCLUDE ...] [WITH ...]
_INDEX_DEF = re.compile(
    r"^CREATE (UNIQUE )?INDEX " + _NAME + r" ON (?:ONLY )?" + _NAME + r" (USING .*)$",
    flags=re.DOTALL,
)


def _qualified(schema: str, name: str) -> sql.Identifier:
    return sql.Identifier(schema, name)


def create_unique_index_concurrently(target: CutoverTarget) -> sql.Composed:
    return sql.SQL("CREATE UNIQUE INDEX CONCURRENTLY IF NOT EXISTS {} ON {} ({}, {})").format(
        sql.Identifier(target.unique_index),
        _qualified(target.schema_name, target.table),
        sql.Identifier(target.id_column),
        sql.Identifier(target.partition_column),
    )


def drop_index_concurrently(schema: str, index_name: str) -> sql.Composed:
    return sql.SQL("DROP INDEX CONCURRENTLY IF EXISTS {}").format(_qualified(schema, index_name))


def range_check_expression(target: CutoverTarget, rng: PartitionRange) -> sql.Composed:
    """
    The predicate PostgreSQL needs to prove the partition constraint.

    The implicit partition constraint of a range partition includes
    `<column> IS NOT NULL`, so the check repeats it.
    """
    column = sql.Identifier(target.partition_column)
    return sql.SQL("{col} IS NOT NULL AND {col} >= {lo} AND {col} < {hi}").format(
        col=column,
        lo=sql.Literal(rng.lower_literal),
        hi=sql.Literal(rng.upper_literal),
    )


def add_check_not_valid(target: CutoverTarget) -> sql.Composed:
    return sql.SQL("ALTER TABLE {} ADD CONSTRAINT {} CHECK ({}) NOT VALID").format(
        _qualified(target.schema_name, target.table),
        sql.Identifier(target.check_constraint),
        range_check_expression(target, target.legacy_range),
    )


def validate_check(target: CutoverTarget, table: str | None = None) -> sql.Composed:
    return sql.SQL("ALTER TABLE {} VALIDATE CONSTRAINT {}").format(
        _qualified(target.schema_name, table or target.table),
        sql.Identifier(target.check_constraint),
    )


def lock_source(target: CutoverTarget) -> sql.Composed:
    """Take ACCESS EXCLUSIVE up front so no later step has to upgrade its lock."""
    return sql.SQL("LOCK TABLE {} IN ACCESS EXCLUSIVE MODE").format(
        _qualified(target.schema_name, target.table)
    )


def create_partitioned_shell(target: CutoverTarget) -> sql.Composed:
    return sql.SQL(
        "CREATE TABLE {} (LIKE {} INCLUDING DEFAULTS INCLUDING GENERATED "
        "INCLUDING STORAGE INCLUDING COMMENTS) PARTITION BY RANGE ({})"
    ).format(
        _qualified(target.schema_name, target.partitioned_table),
        _qualified(target.schema_name, target.table),
        sql.Identifier(target.partition_column),
    )


def add_shell_primary_key(target: CutoverTarget) -> sql.Composed:
    return sql.SQL("ALTER TABLE {} ADD CONSTRAINT {} PRIMARY KEY ({}, {})").format(
        _qualified(target.schema_name, target.partitioned_table),
        sql.Identifier(target.shell_pkey),
        sql.Identifier(target.id_column),
        sql.Identifier(target.partition_column),
    )


def _truncate_bytes(value: str, limit: int) -> str:
    """Cut `value` to at most `limit` UTF-8 bytes without splitting a character."""
    return value.encode("utf-8")[:limit].decode("utf-8", errors="ignore")


def parent_index_name(index: IndexInfo) -> str:
    """
    Name of the parent index mirroring `index`, kept within 63 bytes.

    Derived from the source index name, which is unique in the schema, so two
    source indexes over the same columns get distinct parent names. Long names
    are cut on a character boundary and suffixed with a hash of the full name.
    """
    name = f"{index.name}_p"
    if len(name.encode("utf-8")) <= MAX_IDENTIFIER_BYTES:
        return name
    digest = hashlib.sha1(index.name.encode("utf-8")).hexdigest()[:8]
    suffix = f"_{digest}_p"
    return _truncate_bytes(index.name, MAX_IDENTIFIER_BYTES - len(suffix)) + suffix


def can_mirror_definition(index: IndexInfo) -> bool:
    """Whether the pg_get_indexdef() text of `index` can be retargeted to a parent."""
    return _INDEX_DEF.match(index.definition.strip()) is not None


def create_parent_index(target: CutoverTarget, index: IndexInfo) -> sql.Composed:
    """
    Index on the partitioned shell with the definition of an existing source index.

    The USING clause is taken verbatim from pg_get_indexdef(), so key columns,
    INCLUDE columns, operator classes, collations, sort order and storage
    parameters match the child index and ATTACH PARTITION adopts it instead of
    building a new one.

    Raises ValueError when the definition does not have the expected shape.
    """
    match = _INDEX_DEF.match(index.definition.strip())
    if not match:
        raise ValueError(f"Cannot parse index definition for {index.name!r}: {index.definition}")
    unique, using = match.groups()
    return sql.SQL("CREATE {}INDEX {} ON {} {}").format(
        sql.SQL(unique or ""),
        sql.Identifier(parent_index_name(index)),
        _qualified(target.schema_name, target.partitioned_table),
        sql.SQL(using),
    )


def rename_table(schema: str, current: str, new: str) -> sql.Composed:
    return sql.SQL("ALTER TABLE {} RENAME TO {}").format(
        _qualified(schema, current), sql.Identifier(new)
    )


def rename_constraint(schema: str, table: str, current: str, new: str) -> sql.Composed:
    return sql.SQL("ALTER TABLE {} RENAME CONSTRAINT {} TO {}").format(
        _qualified(schema, table), sql.Identifier(current), sql.Identifier(new)
    )


def drop_constraint(schema: str, table: str, name: str) -> sql.Composed:
    return sql.SQL("ALTER TABLE {} DROP CONSTRAINT {}").format(
        _qualified(schema, table), sql.Identifier(name)
    )


def promote_unique_index(target: CutoverTarget) -> sql.Composed:
    """Turn the pre-built unique index into the partition's primary key (no scan)."""
    return sql.SQL("ALTER TABLE {} ADD CONSTRAINT {} PRIMARY KEY USING INDEX {}").format(
        _qualified(target.schema_name, target.old_table),
        sql.Identifier(target.partition_pkey),
        sql.Identifier(target.unique_index),
    )


def attach_partition(target: CutoverTarget, rng: PartitionRange) -> sql.Composed:
    return sql.SQL("ALTER TABLE {} ATTACH PARTITION {} FOR VALUES FROM ({}) TO ({})").format(
        _qualified(target.schema_name, target.table),
        _qualified(target.schema_name, target.old_table),
        sql.Literal(rng.lower_literal),
        sql.Literal(rng.upper_literal),
    )


def create_partition(target: CutoverTarget, rng: PartitionRange) -> sql.Composed:
    return sql.SQL(
        "CREATE TABLE IF NOT EXISTS {} PARTITION OF {} FOR VALUES FROM ({}) TO ({})"
    ).format(
        _qualified(target.schema_name, rng.name),
        _qualified(target.schema_name, target.table),
        sql.Literal(rng.lower_literal),
        sql.Literal(rng.upper_literal),
    )


def drop_trigger(schema: str, table: str, trigger: TriggerInfo) -> sql.Composed:
    return sql.SQL("DROP TRIGGER {} ON {}").format(
        sql.Identifier(trigger.name), _qualified(schema, table)
    )


def retarget_trigger(trigger: TriggerInfo, schema: str, table: str) -> sql.Composed:
    """
    Rewrite a pg_get_triggerdef() statement so it creates the trigger on `table`.

    Raises ValueError when the definition does not have the expected shape.
    """
    match = _TRIGGER_ON.match(trigger.definition.strip())
    if not match:
        raise ValueError(f"Cannot parse trigger definition for {trigger.name!r}: {trigger.definition}")
    head, _, tail = match.groups()
    return sql.SQL("{}{}{}").format(sql.SQL(head), _qualified(schema, table), sql.SQL(tail))


def disable_trigger(schema: str, table: str, trigger: TriggerInfo) -> sql.Composed:
    return sql.SQL("ALTER TABLE {} DISABLE TRIGGER {}").format(
        _qualified(schema, table), sql.Identifier(trigger.name)
    )


def set_sequence_owner(sequence: str, schema: str, table: str, column: str) -> sql.Composed:
    # `sequence` comes from pg_get_serial_sequence() and is already quoted.
    return sql.SQL("ALTER SEQUENCE {} OWNED BY {}").format(
        sql.SQL(sequence), sql.Identifier(schema, table, column)
    )


def pruning_probe(
    target: CutoverTarget, lower: str, upper: str, analyze: bool = True
) -> sql.Composed:
    options = sql.SQL("ANALYZE, FORMAT JSON" if analyze else "FORMAT JSON")
    return sql.SQL("EXPLAIN ({}) SELECT * FROM {} WHERE {col} >= {lo} AND {col} < {hi}").format(
        options,
        _qualified(target.schema_name, target.table),
        col=sql.Identifier(target.partition_column),
        lo=sql.Literal(lower),
        hi=sql.Literal(upper),
    )


def count_rows(schema: str, table: str) -> sql.Composed:
    return sql.SQL("SELECT count(*) FROM {}").format(_qualified(schema, table))


def count_rows_per_partition(schema: str, table: str) -> sql.Composed:
    return sql.SQL(
        "SELECT tableoid::regclass::text, count(*) FROM {} GROUP BY 1 ORDER BY 1"
    ).format(_qualified(schema, table))


def render(statements: Sequence[sql.Composable], context=None) -> list[str]:
    """Render composed statements to text, one per element."""
    return [s.as_string(context) for s in statements]


__all__ = [
    "create_unique_index_concurrently",
    "drop_index_concurrently",
    "range_check_expression",
    "add_check_not_valid",
    "validate_check",
    "lock_source",
    "create_partitioned_shell",
    "add_shell_primary_key",
    "parent_index_name",
    "can_mirror_definition",
    "create_parent_index",
    "rename_table",
    "rename_constraint",
    "drop_constraint",
    "promote_unique_index",
    "attach_partition",
    "create_partition",
    "drop_trigger",
    "retarget_trigger",
    "disable_trigger",
    "set_sequence_owner",
    "pruning_probe",
    "count_rows",
    "count_rows_per_partition",
    "render",
]
