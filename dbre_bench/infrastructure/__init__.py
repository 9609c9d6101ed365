"""
Infrastructure package for the betting query toolkit.

Centralizes database connectivity concerns (dedicated connections, autocommit
connections for maintenance DDL, pools) and the schema fixture. Keep this
layer focused on I/O and resource management, decoupled from query/orchestrator
logic.
"""

from dbre_bench.infrastructure.db_factory import (
    apply_statement_timeout,
    build_dsn,
    get_autocommit_connection,
    get_sync_connection,
    open_pool,
)
from dbre_bench.infrastructure.schema import init_schema, load_schema_sql, schema_exists

__all__ = [
    "apply_statement_timeout",
    "build_dsn",
    "get_autocommit_connection",
    "get_sync_connection",
    "init_schema",
    "load_schema_sql",
    "open_pool",
    "schema_exists",
]
