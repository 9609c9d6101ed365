"""
Table maintenance run after the indexes and views are in place.

VACUUM ANALYZE refreshes planner statistics so the new indexes get picked;
CLUSTER rewrites `users` in primary-key order for better locality. Both take
locks (CLUSTER an ACCESS EXCLUSIVE one) and belong in a maintenance window.
"""

from __future__ import annotations

from typing import List, Tuple

from psycopg import Connection

from dbre_bench.optimizations.base import StepRecord, execute_step, require_autocommit

MAINTENANCE_STATEMENTS: Tuple[Tuple[str, str], ...] = (
    ("vacuum_bets", "VACUUM ANALYZE bets"),
    ("vacuum_events", "VACUUM ANALYZE events"),
    ("vacuum_users", "VACUUM ANALYZE users"),
    ("cluster_users", "CLUSTER users USING users_pkey"),
    ("analyze_users", "ANALYZE users"),
)


def run_maintenance(conn: Connection) -> List[StepRecord]:
    require_autocommit(conn, "VACUUM")
    return [execute_step(conn, name, "maintenance", stmt) for name, stmt in MAINTENANCE_STATEMENTS]


__all__ = ["MAINTENANCE_STATEMENTS", "run_maintenance"]
