"""
Catalog introspection queries.

Read-only helpers over pg_class, pg_index, pg_constraint, pg_trigger and
friends. Each function takes an open cursor so callers decide the transaction
the read happens in (the cutover gate re-reads inside the cutover transaction).
"""

from __future__ import annotations

from typing import List, Optional, Tuple

import psycopg
from psycopg import sql

from pg_cutover.domain.models import ConstraintInfo, IndexInfo, TriggerInfo

_QUALIFIED = "format('%%I.%%I', %(schema)s::text, %(table)s::text)"

_INDEX_SQL = """
SELECT i.relname,
       ARRAY(
           SELECT a.attname::text
             FROM unnest(x.indkey::int2[]) WITH ORDINALITY AS k(attnum, ord)
             JOIN pg_attribute a
               ON a.attrelid = x.indrelid
              AND a.attnum = k.attnum
            WHERE k.ord <= x.indnkeyatts
            ORDER BY k.ord
       ) AS columns,
       ARRAY(
           SELECT a.attname::text
             FROM unnest(x.indkey::int2[]) WITH ORDINALITY AS k(attnum, ord)
             JOIN pg_attribute a
               ON a.attrelid = x.indrelid
              AND a.attnum = k.attnum
            WHERE k.ord > x.indnkeyatts
            ORDER BY k.ord
       ) AS include_columns,
       am.amname::text,
       x.indisunique,
       x.indisprimary,
       x.indisvalid,
       x.indisready,
       x.indpred IS NOT NULL AS is_partial,
       x.indexprs IS NOT NULL AS has_expressions,
       pg_get_indexdef(x.indexrelid)
  FROM pg_index x
  JOIN pg_class i
    ON i.oid = x.indexrelid
  JOIN pg_class t
    ON t.oid = x.indrelid
  JOIN pg_namespace n
    ON n.oid = t.relnamespace
  JOIN pg_am am
    ON am.oid = i.relam
 WHERE n.nspname = %(schema)s
"""

_CONSTRAINT_SQL = """
SELECT c.conname::text,
       c.contype::text,
       c.convalidated,
       pg_get_constraintdef(c.oid, true)
  FROM pg_constraint c
  JOIN pg_class t
    ON t.oid = c.conrelid
  JOIN pg_namespace n
    ON n.oid = t.relnamespace
 WHERE n.nspname = %(schema)s
   AND t.relname = %(table)s
"""


def _index_from_row(row: tuple) -> IndexInfo:
    (
        name,
        columns,
        include_columns,
        method,
        is_unique,
        is_primary,
        is_valid,
        is_ready,
        is_partial,
        has_expressions,
        definition,
    ) = row
    return IndexInfo(
        name=name,
        columns=tuple(columns or ()),
        include_columns=tuple(include_columns or ()),
        method=method,
        is_unique=is_unique,
        is_primary=is_primary,
        is_valid=is_valid,
        is_ready=is_ready,
        is_partial=is_partial,
        has_expressions=has_expressions,
        definition=definition,
    )


def relkind(cur: psycopg.Cursor, schema: str, table: str) -> Optional[str]:
    """'r' for a plain table, 'p' for a partitioned one, None when missing."""
    cur.execute(
        """
        SELECT c.relkind::text
          FROM pg_class c
          JOIN pg_namespace n
            ON n.oid = c.relnamespace
         WHERE n.nspname = %(schema)s
           AND c.relname = %(table)s
        """,
        {"schema": schema, "table": table},
    )
    row = cur.fetchone()
    return row[0] if row else None


def column_info(
    cur: psycopg.Cursor, schema: str, table: str, column: str
) -> Optional[Tuple[str, bool, bool]]:
    """(formatted type, not null, is identity) of a column, or None if absent."""
    cur.execute(
        """
        SELECT format_type(a.atttypid, a.atttypmod),
               a.attnotnull,
               a.attidentity::text <> ''
          FROM pg_attribute a
          JOIN pg_class c
            ON c.oid = a.attrelid
          JOIN pg_namespace n
            ON n.oid = c.relnamespace
         WHERE n.nspname = %(schema)s
           AND c.relname = %(table)s
           AND a.attname = %(column)s
           AND a.attnum > 0
           AND NOT a.attisdropped
        """,
        {"schema": schema, "table": table, "column": column},
    )
    row = cur.fetchone()
    return (row[0], row[1], row[2]) if row else None


def list_indexes(cur: psycopg.Cursor, schema: str, table: str) -> List[IndexInfo]:
    cur.execute(
        _INDEX_SQL + "   AND t.relname = %(table)s\n ORDER BY i.relname",
        {"schema": schema, "table": table},
    )
    return [_index_from_row(row) for row in cur.fetchall()]


def get_index(cur: psycopg.Cursor, schema: str, index_name: str) -> Optional[IndexInfo]:
    cur.execute(
        _INDEX_SQL + "   AND i.relname = %(index)s",
        {"schema": schema, "index": index_name},
    )
    row = cur.fetchone()
    return _index_from_row(row) if row else None


def index_build_in_progress(cur: psycopg.Cursor, schema: str, index_name: str) -> bool:
    """Whether a CREATE INDEX [CONCURRENTLY] for this index is still running."""
    cur.execute(
        """
        SELECT EXISTS (
            SELECT 1
              FROM pg_stat_progress_create_index p
              JOIN pg_class i
                ON i.oid = p.index_relid
              JOIN pg_namespace n
                ON n.oid = i.relnamespace
             WHERE n.nspname = %(schema)s
               AND i.relname = %(index)s
        )
        """,
        {"schema": schema, "index": index_name},
    )
    return bool(cur.fetchone()[0])


def get_constraint(
    cur: psycopg.Cursor, schema: str, table: str, name: str
) -> Optional[ConstraintInfo]:
    cur.execute(
        _CONSTRAINT_SQL + "   AND c.conname = %(name)s",
        {"schema": schema, "table": table, "name": name},
    )
    row = cur.fetchone()
    if not row:
        return None
    return ConstraintInfo(name=row[0], contype=row[1], validated=row[2], definition=row[3])


def primary_key(cur: psycopg.Cursor, schema: str, table: str) -> Optional[ConstraintInfo]:
    cur.execute(
        _CONSTRAINT_SQL + "   AND c.contype = 'p'",
        {"schema": schema, "table": table},
    )
    row = cur.fetchone()
    if not row:
        return None
    return ConstraintInfo(name=row[0], contype=row[1], validated=row[2], definition=row[3])


def referencing_foreign_keys(cur: psycopg.Cursor, schema: str, table: str) -> List[str]:
    """Foreign keys in other tables that point at this table, as 'name on table'."""
    cur.execute(
        """
        SELECT c.conname || ' on ' || c.conrelid::regclass::text
          FROM pg_constraint c
          JOIN pg_class t
            ON t.oid = c.confrelid
          JOIN pg_namespace n
            ON n.oid = t.relnamespace
         WHERE c.contype = 'f'
           AND n.nspname = %(schema)s
           AND t.relname = %(table)s
         ORDER BY 1
        """,
        {"schema": schema, "table": table},
    )
    return [row[0] for row in cur.fetchall()]


def list_triggers(cur: psycopg.Cursor, schema: str, table: str) -> List[TriggerInfo]:
    """
    User-defined triggers owned by the table itself.

    Internal triggers (FK enforcement) and clones inherited from a partitioned
    parent (tgparentid, PostgreSQL 13+) are excluded.
    """
    cur.execute(
        """
        SELECT tg.tgname::text,
               pg_get_triggerdef(tg.oid),
               tg.tgenabled::text
          FROM pg_trigger tg
          JOIN pg_class t
            ON t.oid = tg.tgrelid
          JOIN pg_namespace n
            ON n.oid = t.relnamespace
         WHERE NOT tg.tgisinternal
           AND tg.tgparentid = 0
           AND n.nspname = %(schema)s
           AND t.relname = %(table)s
         ORDER BY tg.tgname
        """,
        {"schema": schema, "table": table},
    )
    return [TriggerInfo(name=r[0], definition=r[1], enabled=r[2]) for r in cur.fetchall()]


def serial_sequence(cur: psycopg.Cursor, schema: str, table: str, column: str) -> Optional[str]:
    """Qualified, already-quoted name of the sequence owned by the column."""
    cur.execute(
        f"SELECT pg_get_serial_sequence({_QUALIFIED}, %(column)s)",
        {"schema": schema, "table": table, "column": column},
    )
    row = cur.fetchone()
    return row[0] if row else None


def list_partitions(cur: psycopg.Cursor, schema: str, table: str) -> List[Tuple[str, str]]:
    """(partition name, bound expression) for each direct partition."""
    cur.execute(
        """
        SELECT c.relname::text,
               pg_get_expr(c.relpartbound, c.oid)
          FROM pg_inherits inh
          JOIN pg_class c
            ON c.oid = inh.inhrelid
          JOIN pg_class p
            ON p.oid = inh.inhparent
          JOIN pg_namespace n
            ON n.oid = p.relnamespace
         WHERE n.nspname = %(schema)s
           AND p.relname = %(table)s
         ORDER BY 1
        """,
        {"schema": schema, "table": table},
    )
    return [(row[0], row[1]) for row in cur.fetchall()]


def invalid_indexes_in_tree(cur: psycopg.Cursor, schema: str, table: str) -> List[str]:
    """Invalid indexes on the table and, if partitioned, all of its partitions."""
    cur.execute(
        f"""
        SELECT i.relname::text
          FROM pg_index x
          JOIN pg_class i
            ON i.oid = x.indexrelid
         WHERE NOT x.indisvalid
           AND x.indrelid IN (
               SELECT relid FROM pg_partition_tree({_QUALIFIED}::regclass)
           )
         ORDER BY 1
        """,
        {"schema": schema, "table": table},
    )
    return [row[0] for row in cur.fetchall()]


def render_bounds(cur: psycopg.Cursor, type_name: str, literals: Tuple[str, str]) -> Tuple[str, str]:
    """
    Cast both literals to the column type and return their text form.

    The output goes through the same type output function, DateStyle and
    TimeZone as pg_get_constraintdef() in this session, so the two can be
    compared string for string.
    """
    cast = sql.SQL("SELECT CAST({lo} AS {t})::text, CAST({hi} AS {t})::text").format(
        lo=sql.Literal(literals[0]),
        hi=sql.Literal(literals[1]),
        t=sql.SQL(type_name),
    )
    cur.execute(cast)
    row = cur.fetchone()
    return row[0], row[1]


def bound_in_future(cur: psycopg.Cursor, type_name: str, literal: str) -> bool:
    cur.execute(
        sql.SQL("SELECT CAST({} AS {}) > now()").format(sql.Literal(literal), sql.SQL(type_name))
    )
    return bool(cur.fetchone()[0])


__all__ = [
    "relkind",
    "column_info",
    "list_indexes",
    "get_index",
    "index_build_in_progress",
    "get_constraint",
    "primary_key",
    "referencing_foreign_keys",
    "list_triggers",
    "serial_sequence",
    "list_partitions",
    "invalid_indexes_in_tree",
    "render_bounds",
    "bound_in_future",
]
