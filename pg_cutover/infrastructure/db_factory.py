"""
Database connection factory utilities for pg-cutover.

Every phase opens its own dedicated connection: the concurrent index build
and the constraint validation need autocommit, the cutover needs one explicit
transaction. Pooling buys nothing for a handful of long-lived sessions.

Connection acquisition is retried for transient failures using tenacity.
DDL itself is never retried.
"""

from __future__ import annotations

from typing import Optional

import psycopg
from psycopg import Connection, sql
from psycopg.conninfo import make_conninfo
from tenacity import retry, retry_if_exception_type, stop_after_attempt, wait_exponential

from pg_cutover.config import get_settings

APPLICATION_NAME = "pg-cutover"


def build_dsn() -> str:
    """
    Compose a libpq conninfo string from settings.

    DB_HOST may be a host name, an address or a Unix socket directory.
    """
    settings = get_settings()
    return make_conninfo(
        host=settings.db_host,
        port=settings.db_port,
        user=settings.db_user,
        password=settings.db_password,
        dbname=settings.db_name,
    )


@retry(
    stop=stop_after_attempt(3),
    wait=wait_exponential(multiplier=1, min=1, max=10),
    retry=retry_if_exception_type((psycopg.OperationalError, psycopg.InterfaceError)),
    reraise=True,
)
def get_sync_connection(
    dsn_override: Optional[str] = None, autocommit: bool = False
) -> Connection:
    """
    Acquire a dedicated synchronous connection with automatic retry.

    Retries up to 3 times with exponential backoff for transient connection errors.

    Parameters
    ----------
    dsn_override : str | None
        Connect to this DSN instead of the one composed from settings.
    autocommit : bool
        Required for CREATE/DROP INDEX CONCURRENTLY, which cannot run inside a
        transaction block.

    Returns
    -------
    Connection
        A new psycopg connection instance.

    Raises
    ------
    psycopg.OperationalError
        If connection fails after all retry attempts.
    """
    settings = get_settings()
    return psycopg.connect(
        dsn_override or build_dsn(),
        autocommit=autocommit,
        connect_timeout=settings.db_connect_timeout_s,
        application_name=APPLICATION_NAME,
    )


def apply_timeouts(
    cur: psycopg.Cursor,
    lock_timeout_ms: Optional[int] = None,
    statement_timeout_ms: Optional[int] = None,
    local: bool = True,
) -> None:
    """
    Set lock_timeout / statement_timeout on the cursor's session.

    With `local=True` the settings use SET LOCAL and end with the current
    transaction. A value of 0 disables the timeout, None leaves it untouched.
    """
    scope = sql.SQL("SET LOCAL" if local else "SET")
    for name, value in (
        ("lock_timeout", lock_timeout_ms),
        ("statement_timeout", statement_timeout_ms),
    ):
        if value is None:
            continue
        cur.execute(
            sql.SQL("{} {} = {}").format(scope, sql.SQL(name), sql.Literal(f"{int(value)}ms"))
        )


__all__ = [
    "APPLICATION_NAME",
    "build_dsn",
    "get_sync_connection",
    "apply_timeouts",
]
