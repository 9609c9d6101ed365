"""
Ordered optimization plan: drop legacy indexes, build indexes, build the
materialized views, then run table maintenance.

`apply_optimizations` executes the plan against a live database;
`render_script` emits the same plan as a psql-ready SQL script.
"""

from __future__ import annotations

from typing import List

from psycopg import Connection

from dbre_bench.optimizations.base import StepRecord, require_autocommit
from dbre_bench.optimizations.indexes import (
    INDEXES,
    LEGACY_INDEXES,
    create_indexes,
    drop_index_sql,
    drop_indexes,
    drop_legacy_indexes,
)
from dbre_bench.optimizations.maintenance import MAINTENANCE_STATEMENTS, run_maintenance
from dbre_bench.optimizations.materialized_views import VIEWS, create_views, drop_views
from dbre_bench.optimizations.session import session_tuning_statements
from dbre_bench.utils.logging import get_logger

log = get_logger(__name__)


def apply_optimizations(conn: Connection, include_maintenance: bool = True) -> List[StepRecord]:
    """
    Apply every optimization phase in order.

    Parameters
    ----------
    conn : Connection
        An autocommit connection (concurrent index builds and VACUUM refuse to
        run inside a transaction block).
    include_maintenance : bool
        Whether to run VACUUM ANALYZE / CLUSTER after the DDL.

    Returns
    -------
    List[StepRecord]
        One record per executed statement, in execution order.
    """
    require_autocommit(conn, "apply_optimizations")
    steps: List[StepRecord] = []
    steps.extend(drop_legacy_indexes(conn))
    steps.extend(create_indexes(conn))
    steps.extend(create_views(conn))
    if include_maintenance:
        steps.extend(run_maintenance(conn))
    total = sum(step.seconds for step in steps)
    log.info(
        f"[OPTIMIZE COMPLETE] {len(steps)} statements in {total:.2f}s",
        extra={"statements": len(steps), "seconds": round(total, 3)},
    )
    return steps


def rollback_optimizations(conn: Connection) -> List[StepRecord]:
    """Drop the views and indexes created by `apply_optimizations`."""
    require_autocommit(conn, "rollback_optimizations")
    steps: List[StepRecord] = []
    steps.extend(drop_views(conn))
    steps.extend(drop_indexes(conn))
    log.info("[ROLLBACK COMPLETE]", extra={"statements": len(steps)})
    return steps


def _banner(title: str) -> List[str]:
    rule = "-- " + "=" * 76
    return [rule, f"-- {title}", rule, ""]


def render_script(include_maintenance: bool = True, include_session: bool = True) -> str:
    """
    Render the optimization plan as a SQL script for `psql -f`.

    psql runs each statement in its own implicit transaction unless told
    otherwise, which keeps the CONCURRENTLY statements legal.
    """
    lines: List[str] = []

    lines += _banner("Drop legacy indexes")
    lines += [f"{drop_index_sql(name)};" for name in LEGACY_INDEXES]
    lines.append("")

    lines += _banner("Indexes")
    for index in INDEXES:
        if index.purpose:
            lines.append(f"-- {index.purpose}")
        lines.append(f"{index.create_sql()};")
        lines.append("")

    lines += _banner("Materialized views")
    for view in VIEWS:
        lines.append(f"-- {view.purpose} (refresh {view.refresh_cadence})")
        lines.append(f"{view.create_sql()};")
        lines.append(f"{view.unique_index_sql()};")
        lines.append("")

    if include_maintenance:
        lines += _banner("Table maintenance")
        lines += [f"{stmt};" for _, stmt in MAINTENANCE_STATEMENTS]
        lines.append("")

    if include_session:
        lines += _banner("Session tuning (per connection, not persisted)")
        lines += [f"{stmt};" for stmt in session_tuning_statements()]
        lines.append("")

    return "\n".join(lines)


__all__ = ["apply_optimizations", "render_script", "rollback_optimizations"]
