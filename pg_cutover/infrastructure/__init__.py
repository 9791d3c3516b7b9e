"""
Infrastructure package for pg-cutover.

Centralizes database connectivity and catalog introspection. Keep this layer
focused on I/O, decoupled from phase/orchestrator logic.
"""

from pg_cutover.infrastructure.db_factory import (
    apply_timeouts,
    build_dsn,
    get_sync_connection,
)

__all__ = [
    "apply_timeouts",
    "build_dsn",
    "get_sync_connection",
]
