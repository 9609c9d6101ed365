"""
Schema bootstrap for the betting dataset.

The DDL lives next to this module in `schema.sql` so it can also be piped
straight into psql.
"""

from __future__ import annotations

from pathlib import Path

from psycopg import Connection

from dbre_bench.utils.logging import get_logger

log = get_logger(__name__)

SCHEMA_PATH = Path(__file__).with_name("schema.sql")
TABLES = ("users", "events", "bets")


def load_schema_sql() -> str:
    return SCHEMA_PATH.read_text(encoding="utf-8")


def init_schema(conn: Connection) -> None:
    """Create the users/events/bets tables if they are missing."""
    with conn.cursor() as cur:
        cur.execute(load_schema_sql())
    conn.commit()
    log.info("Schema initialized", extra={"tables": list(TABLES)})


def schema_exists(conn: Connection) -> bool:
    with conn.cursor() as cur:
        cur.execute(
            """
            SELECT COUNT(*) FROM information_schema.tables
            WHERE table_schema = 'public' AND table_name = ANY(%s)
            """,
            (list(TABLES),),
        )
        row = cur.fetchone()
    return bool(row) and row[0] == len(TABLES)


__all__ = ["SCHEMA_PATH", "TABLES", "init_schema", "load_schema_sql", "schema_exists"]
