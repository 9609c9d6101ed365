"""
Planner session tuning applied to optimized-phase connections.

These are session-level settings (set_config with is_local=false). They favor
index access on SSD/cached data and give sorts and hashes more memory; they
are not persisted in postgresql.conf.
"""

from __future__ import annotations

from typing import Dict, List, Mapping

from psycopg import Connection, sql

SESSION_TUNING: Dict[str, str] = {
    "work_mem": "256MB",
    "effective_cache_size": "4GB",
    "random_page_cost": "0.1",
    "seq_page_cost": "0.1",
    "cpu_tuple_cost": "0.0001",
    "cpu_index_tuple_cost": "0.00001",
    "cpu_operator_cost": "0.000001",
    "effective_io_concurrency": "200",
}


def apply_session_tuning(conn: Connection, tuning: Mapping[str, str] = SESSION_TUNING) -> None:
    with conn.cursor() as cur:
        for name, value in tuning.items():
            cur.execute("SELECT set_config(%s, %s, false)", (name, value))
    # Session settings made inside a rolled-back transaction are discarded.
    if not conn.autocommit:
        conn.commit()


def reset_session_tuning(conn: Connection, tuning: Mapping[str, str] = SESSION_TUNING) -> None:
    with conn.cursor() as cur:
        for name in tuning:
            cur.execute(sql.SQL("RESET {}").format(sql.Identifier(name)))
    if not conn.autocommit:
        conn.commit()


def current_settings(conn: Connection, names: List[str]) -> Dict[str, str]:
    """Effective values, in display units, of the given settings for this session."""
    with conn.cursor() as cur:
        cur.execute(
            "SELECT name, current_setting(name) FROM pg_settings WHERE name = ANY(%s)",
            (names,),
        )
        return dict(cur.fetchall())


def session_tuning_statements(tuning: Mapping[str, str] = SESSION_TUNING) -> List[str]:
    return [f"SET {name} = '{value}'" for name, value in tuning.items()]


__all__ = [
    "SESSION_TUNING",
    "apply_session_tuning",
    "current_settings",
    "reset_session_tuning",
    "session_tuning_statements",
]
