"""
Pytest configuration for pg-cutover.

Provides fixtures for:
- Settings with a legacy range whose upper bound lies in the future
- Database connection management for integration tests
- Seeding a fresh, unpartitioned `transaction` table
"""

from __future__ import annotations

import os
import tempfile
from datetime import datetime
from pathlib import Path
from typing import Generator

import psycopg
import pytest
from psycopg.conninfo import make_conninfo

from pg_cutover.config import Settings
from pg_cutover.domain.bounds import add_months


def _first_of_month(value: datetime) -> datetime:
    return value.replace(day=1, hour=0, minute=0, second=0, microsecond=0)


@pytest.fixture(scope="session")
def range_end() -> datetime:
    """Upper bound of the legacy partition: two months from now, on a month boundary."""
    return add_months(_first_of_month(datetime.now()), 2)


@pytest.fixture(scope="session")
def test_settings(range_end: datetime) -> Settings:
    """
    Settings fixture with test-specific overrides.

    Can be overridden via environment variables in CI or local testing.
    """
    return Settings(
        db_host=os.getenv("DB_HOST", "localhost"),
        db_port=int(os.getenv("DB_PORT", "5432")),
        db_user=os.getenv("DB_USER", "postgres"),
        db_password=os.getenv("DB_PASSWORD", "postgres"),
        db_name=os.getenv("DB_NAME", "payments"),
        log_level="DEBUG",
        cutover_schema="public",
        cutover_table="transaction",
        cutover_range_start=datetime(2019, 1, 1),
        cutover_range_end=range_end,
        cutover_premake=3,
        verify_baseline_rows=None,
        verify_expected_index=None,
    )


@pytest.fixture(scope="session")
def test_dsn(test_settings: Settings) -> str:
    """
    Database connection string for tests.

    TEST_DATABASE_DSN wins when set; otherwise the DB_* settings are composed
    into a libpq conninfo, so DB_HOST may also be a Unix socket directory.
    """
    return os.getenv("TEST_DATABASE_DSN") or make_conninfo(
        host=test_settings.db_host,
        port=test_settings.db_port,
        user=test_settings.db_user,
        password=test_settings.db_password,
        dbname=test_settings.db_name,
    )


@pytest.fixture(scope="session")
def db_connection_available(test_dsn: str) -> bool:
    """
    Check if database is reachable.

    Used to conditionally skip integration tests when DB is not available.
    """
    try:
        with psycopg.connect(test_dsn, connect_timeout=5) as conn:
            with conn.cursor() as cur:
                cur.execute("SELECT 1;")
                cur.fetchone()
        return True
    except psycopg.OperationalError:
        return False


@pytest.fixture(scope="session")
def db_connection(
    test_dsn: str, db_connection_available: bool
) -> Generator[psycopg.Connection, None, None]:
    """
    Provide a session-scoped autocommit connection for integration tests.

    Skips tests if database is not available.
    """
    if not db_connection_available:
        pytest.skip("Database not available for integration tests")

    conn = psycopg.connect(test_dsn, autocommit=True)
    try:
        yield conn
    finally:
        conn.close()


@pytest.fixture(scope="function")
def seeded_transaction_table(
    db_connection: psycopg.Connection,
    test_dsn: str,
    test_settings: Settings,
) -> int:
    """
    Recreate and seed a small `transaction` table (500 rows).

    Rows are spread from the legacy range start up to now. Returns the number
    of rows seeded.
    """
    from scripts.generate_data import _copy_into_db, _generate_rows_csv, create_schema

    rows_to_seed = 500
    create_schema(
        db_connection,
        test_settings.cutover_schema,
        test_settings.cutover_table,
        drop_existing=True,
    )

    with tempfile.TemporaryDirectory() as tmpdir:
        csv_path = Path(tmpdir) / "transaction.csv"
        _generate_rows_csv(
            csv_path,
            rows=rows_to_seed,
            batch_size=100,
            seed=42,
            start=test_settings.cutover_range_start,
            end=datetime.now(),
        )
        _copy_into_db(
            test_dsn, csv_path, test_settings.cutover_schema, test_settings.cutover_table
        )

    with db_connection.cursor() as cur:
        cur.execute('SELECT COUNT(*) FROM public."transaction";')
        count = cur.fetchone()[0]

    return count
