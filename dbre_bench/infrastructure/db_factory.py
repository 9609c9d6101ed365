"""
Database connection factory utilities for the betting query toolkit.

Provides DSN composition, dedicated sync connections with retry logic for
transient failures (tenacity), autocommit connections for statements that
cannot run inside a transaction block (CREATE INDEX CONCURRENTLY, VACUUM,
REFRESH ... CONCURRENTLY), and connection pools whose connections can be
configured on checkout-creation (used to apply planner session tuning).
"""

from __future__ import annotations

from typing import Callable, Optional

import psycopg
from psycopg import Connection
from psycopg_pool import ConnectionPool
from tenacity import retry, retry_if_exception_type, stop_after_attempt, wait_exponential

from dbre_bench.config import get_settings
from dbre_bench.utils.logging import get_logger

log = get_logger(__name__)


def build_dsn() -> str:
    """Compose a DSN string from settings."""
    settings = get_settings()
    return (
        f"postgresql://{settings.db_user}:{settings.db_password}"
        f"@{settings.db_host}:{settings.db_port}/{settings.db_name}"
    )


def apply_statement_timeout(cur: psycopg.Cursor, timeout_ms: int) -> None:
    """
    Set a per-session statement timeout on the cursor's connection.

    A non-positive value leaves the server default in place.
    """
    if timeout_ms and timeout_ms > 0:
        cur.execute("SELECT set_config('statement_timeout', %s, false)", (str(timeout_ms),))


@retry(
    stop=stop_after_attempt(3),
    wait=wait_exponential(multiplier=1, min=1, max=10),
    retry=retry_if_exception_type((psycopg.OperationalError, psycopg.InterfaceError)),
    reraise=True,
)
def get_sync_connection(dsn: Optional[str] = None, autocommit: bool = False) -> Connection:
    """
    Acquire a dedicated synchronous connection with automatic retry.

    Retries up to 3 times with exponential backoff for transient connection errors.

    Parameters
    ----------
    dsn : str, optional
        Connection string override. Defaults to the DSN built from settings.
    autocommit : bool
        Open the connection in autocommit mode. Required for DDL that refuses
        to run inside a transaction block.

    Returns
    -------
    Connection
        A new psycopg connection instance.

    Raises
    ------
    psycopg.OperationalError
        If connection fails after all retry attempts.
    """
    return psycopg.connect(dsn or build_dsn(), autocommit=autocommit)


def get_autocommit_connection(dsn: Optional[str] = None) -> Connection:
    """Shortcut for a retried connection in autocommit mode."""
    return get_sync_connection(dsn, autocommit=True)


def open_pool(
    dsn: Optional[str] = None,
    min_size: int = 1,
    max_size: int = 4,
    configure: Optional[Callable[[Connection], None]] = None,
) -> ConnectionPool:
    """
    Create and open a synchronous connection pool.

    Parameters
    ----------
    dsn : str, optional
        Connection string override.
    min_size : int
        Minimum number of idle connections to keep.
    max_size : int
        Maximum total connections in the pool.
    configure : callable, optional
        Called with every new connection before it is handed out.

    Returns
    -------
    ConnectionPool
        An opened pool. The caller owns it and must close it.
    """
    pool = ConnectionPool(
        conninfo=dsn or build_dsn(),
        min_size=min_size,
        max_size=max_size,
        configure=configure,
        open=False,
    )
    pool.open(wait=True)
    log.debug("Connection pool opened", extra={"min_size": min_size, "max_size": max_size})
    return pool


__all__ = [
    "apply_statement_timeout",
    "build_dsn",
    "get_autocommit_connection",
    "get_sync_connection",
    "open_pool",
]
