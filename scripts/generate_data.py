"""
Sample data generation and loading script for pg-cutover.

Creates an unpartitioned `transaction` table shaped like the production one
(BIGSERIAL id, JSONB payloads, a secondary index and a modified_at trigger),
generates deterministic pseudo-random rows spread across the legacy range,
and loads them with COPY.
"""

from __future__ import annotations

import csv
import json
import random
import sys
import tempfile
import time
from datetime import datetime, timedelta
from pathlib import Path

import psycopg
import typer
from psycopg import sql

from pg_cutover.config import get_settings
from pg_cutover.domain.models import TransactionRecord
from pg_cutover.infrastructure.db_factory import build_dsn

app = typer.Typer(help="Create and seed a sample transaction table (CSV + COPY).")

COLUMNS = [
    "id",
    "ref_id",
    "txn_ref_id",
    "msg_id",
    "biller_id",
    "api",
    "request_payload",
    "response_payload",
    "status",
    "created_at",
    "modified_at",
    "is_deleted",
]

_APIS = ["FETCH_BILL", "PAYMENT", "STATUS", "REVERSAL"]
_STATUSES = ["PENDING", "SUCCESS", "FAILED"]


def _build_dsn(dsn_override: str | None) -> str:
    if dsn_override:
        return dsn_override
    return build_dsn()


def create_schema(conn: psycopg.Connection, schema: str, table: str, drop_existing: bool = False) -> None:
    """Create the source table, its secondary index and the modified_at trigger."""
    ident = sql.Identifier(schema, table)
    touch_fn = sql.Identifier(schema, f"{table}_touch_modified_at")
    with conn.cursor() as cur:
        if drop_existing:
            # CASCADE also removes partitions left over from a previous cutover.
            cur.execute(sql.SQL("DROP TABLE IF EXISTS {} CASCADE").format(ident))
            cur.execute(
                sql.SQL("DROP TABLE IF EXISTS {} CASCADE").format(
                    sql.Identifier(schema, f"{table}_old")
                )
            )
        cur.execute(
            sql.SQL(
                """
                CREATE TABLE IF NOT EXISTS {} (
                    id BIGSERIAL PRIMARY KEY,
                    ref_id VARCHAR(64) NOT NULL,
                    txn_ref_id VARCHAR(64) NOT NULL,
                    msg_id VARCHAR(64) NOT NULL,
                    biller_id VARCHAR(32) NOT NULL,
                    api VARCHAR(32) NOT NULL,
                    request_payload JSONB NOT NULL,
                    response_payload JSONB,
                    status VARCHAR(16) NOT NULL DEFAULT 'PENDING',
                    created_at TIMESTAMP NOT NULL DEFAULT now(),
                    modified_at TIMESTAMP NOT NULL DEFAULT now(),
                    is_deleted BOOLEAN NOT NULL DEFAULT false
                )
                """
            ).format(ident)
        )
        cur.execute(
            sql.SQL("CREATE INDEX IF NOT EXISTS {} ON {} (biller_id, created_at)").format(
                sql.Identifier(f"{table}_biller_id_created_at_idx"), ident
            )
        )
        cur.execute(
            sql.SQL(
                """
                CREATE OR REPLACE FUNCTION {}() RETURNS trigger
                LANGUAGE plpgsql AS $$
                BEGIN
                    NEW.modified_at := now();
                    RETURN NEW;
                END;
                $$
                """
            ).format(touch_fn)
        )
        cur.execute(
            sql.SQL(
                "CREATE OR REPLACE TRIGGER {} BEFORE UPDATE ON {} "
                "FOR EACH ROW EXECUTE FUNCTION {}()"
            ).format(sql.Identifier(f"{table}_touch_modified_at"), ident, touch_fn)
        )
    conn.commit()


def _generate_records(rows: int, seed: int, start: datetime, end: datetime):
    rng = random.Random(seed)
    span = max(int((end - start).total_seconds()) - 1, 1)
    for i in range(rows):
        created = start + timedelta(seconds=rng.randint(0, span))
        ok = rng.random() < 0.9
        yield TransactionRecord(
            id=i + 1,
            ref_id=f"REF{rng.randint(1, 10**12):012d}",
            txn_ref_id=f"TXN{rng.randint(1, 10**12):012d}",
            msg_id=f"MSG{i:010d}",
            biller_id=f"BILLER{rng.randint(1, 200):04d}",
            api=rng.choice(_APIS),
            request_payload={"amount": round(rng.uniform(1, 10_000), 2), "currency": "INR"},
            response_payload={"code": "00" if ok else "91"} if rng.random() < 0.95 else None,
            status=rng.choice(_STATUSES),
            created_at=created,
            modified_at=created + timedelta(seconds=rng.randint(0, 3600)),
            is_deleted=rng.random() < 0.01,
        )


def _generate_rows_csv(
    csv_path: Path,
    rows: int,
    batch_size: int,
    seed: int,
    start: datetime,
    end: datetime,
) -> None:
    """Write `rows` records with created_at in [start, end) to a CSV file."""
    with csv_path.open("w", newline="", encoding="utf-8") as f:
        writer = csv.writer(f)
        writer.writerow(COLUMNS)

        buffer: list[list[str]] = []
        for record in _generate_records(rows, seed, start, end):
            buffer.append(
                [
                    str(record.id),
                    record.ref_id,
                    record.txn_ref_id,
                    record.msg_id,
                    record.biller_id,
                    record.api,
                    json.dumps(record.request_payload),
                    json.dumps(record.response_payload) if record.response_payload is not None else "",
                    record.status,
                    record.created_at.isoformat(sep=" "),
                    record.modified_at.isoformat(sep=" "),
                    "t" if record.is_deleted else "f",
                ]
            )
            if len(buffer) >= batch_size:
                writer.writerows(buffer)
                buffer.clear()
        if buffer:
            writer.writerows(buffer)


def _copy_into_db(dsn: str, csv_path: Path, schema: str, table: str) -> int:
    """COPY the CSV into the table and move the id sequence past the loaded ids."""
    ident = sql.Identifier(schema, table)
    with psycopg.connect(dsn) as conn:
        with conn.cursor() as cur:
            copy_sql = sql.SQL("COPY {} ({}) FROM STDIN WITH (FORMAT csv, HEADER TRUE)").format(
                ident, sql.SQL(", ").join(sql.Identifier(c) for c in COLUMNS)
            )
            loaded = -1  # header line
            with cur.copy(copy_sql) as copy:
                with csv_path.open("r", encoding="utf-8") as f:
                    for line in f:
                        copy.write(line)
                        loaded += 1
            cur.execute(
                sql.SQL(
                    "SELECT setval(pg_get_serial_sequence({}, 'id'), "
                    "COALESCE((SELECT max(id) FROM {}), 0) + 1, false)"
                ).format(sql.Literal(f'{schema}."{table}"'), ident)
            )
            conn.commit()
    return loaded


@app.command()
def main(
    rows: int = typer.Option(
        100_000,
        "--rows",
        "-r",
        help="Number of rows to generate.",
    ),
    batch_size: int = typer.Option(
        10_000,
        "--batch-size",
        "-b",
        help="Batch size for CSV buffering during generation.",
    ),
    seed: int = typer.Option(
        42,
        "--seed",
        help="Deterministic RNG seed.",
    ),
    start: datetime | None = typer.Option(
        None,
        "--start",
        help="Earliest created_at (defaults to CUTOVER_RANGE_START).",
    ),
    end: datetime | None = typer.Option(
        None,
        "--end",
        help="Latest created_at, exclusive (defaults to now).",
    ),
    drop_existing: bool = typer.Option(
        False,
        "--drop-existing",
        help="Drop the table (and any partitions) before creating it.",
    ),
    output: Path | None = typer.Option(
        None,
        "--output",
        "-o",
        help="Optional CSV output path (if omitted, a temp file will be used).",
    ),
    dsn: str | None = typer.Option(
        None,
        "--dsn",
        help="Optional DSN override for Postgres.",
    ),
    no_load: bool = typer.Option(
        False,
        "--no-load",
        help="Only generate CSV; skip creating and loading the table.",
    ),
) -> None:
    """
    Create the sample table and load synthetic rows into it using COPY.
    """
    settings = get_settings()
    start = start or settings.cutover_range_start
    end = end or min(datetime.now(), settings.cutover_range_end)
    began = time.perf_counter()
    if output:
        csv_path = output
        csv_path.parent.mkdir(parents=True, exist_ok=True)
    else:
        tmpdir = Path(tempfile.mkdtemp(prefix="pg_cutover_csv_"))
        csv_path = tmpdir / "transaction.csv"

    typer.echo(f"Generating {rows:,} rows -> {csv_path} (created_at {start} .. {end}, seed={seed})")
    _generate_rows_csv(csv_path, rows=rows, batch_size=batch_size, seed=seed, start=start, end=end)
    gen_duration = time.perf_counter() - began
    typer.echo(f"CSV generation completed in {gen_duration:.2f}s")

    if no_load:
        typer.echo("Skipping load (no-load flag set).")
        return

    conn_dsn = _build_dsn(dsn)
    with psycopg.connect(conn_dsn) as conn:
        create_schema(conn, settings.cutover_schema, settings.cutover_table, drop_existing)

    load_start = time.perf_counter()
    typer.echo("Loading CSV into Postgres via COPY...")
    loaded = _copy_into_db(conn_dsn, csv_path, settings.cutover_schema, settings.cutover_table)
    load_duration = time.perf_counter() - load_start
    typer.echo(f"Loaded {loaded:,} rows in {load_duration:.2f}s.")


if __name__ == "__main__":
    try:
        app()
    except KeyboardInterrupt:
        typer.echo("Cancelled by user.", err=True)
        sys.exit(130)
