"""
PostgreSQL health checks for the betting database.

Each check is a small function taking an open connection and the settings and
returning a HealthCheckResult. `run_health_checks` runs them all; a check that
errors is recorded as critical and the remaining checks still run.

Thresholds come from settings:
- HEALTH_CONNECTION_WARN_PCT: active connections vs max_connections
- HEALTH_REPLICATION_LAG_WARN_MB: WAL receive/replay gap on a replica
- HEALTH_LATENCY_SLO_MS: execution time of the optimized active-bets query
- HEALTH_LONG_QUERY_SECONDS: age of a running statement before it counts as long
- HEALTH_DATA_DIR, HEALTH_DISK_WARN_PCT: data-directory disk usage (skipped when unset)
"""

from __future__ import annotations

from dataclasses import asdict, dataclass
from enum import Enum
from pathlib import Path
from typing import Any, Callable, Dict, List, Optional, Tuple

import psycopg
import psutil
from psycopg import Connection

from dbre_bench.config import Settings, get_settings
from dbre_bench.explain import explain_query
from dbre_bench.infrastructure.db_factory import get_sync_connection
from dbre_bench.optimizations.materialized_views import view_status
from dbre_bench.optimizations.session import apply_session_tuning, reset_session_tuning
from dbre_bench.queries.abstract import OPTIMIZED
from dbre_bench.queries.active_bets import ActiveBetsQuery
from dbre_bench.utils.logging import get_logger

log = get_logger(__name__)


class HealthStatus(str, Enum):
    OK = "ok"
    WARNING = "warning"
    CRITICAL = "critical"


@dataclass(frozen=True)
class HealthCheckResult:
    name: str
    status: HealthStatus
    message: str
    value: Optional[Any] = None

    def as_dict(self) -> Dict[str, Any]:
        payload = asdict(self)
        payload["status"] = self.status.value
        return payload


def _scalar(conn: Connection, sql: str, params: Tuple[Any, ...] = ()) -> Any:
    with conn.cursor() as cur:
        cur.execute(sql, params)
        row = cur.fetchone()
    return row[0] if row else None


def check_connection_usage(conn: Connection, settings: Settings) -> HealthCheckResult:
    with conn.cursor() as cur:
        cur.execute(
            """
            SELECT COUNT(*) FILTER (WHERE state = 'active'),
                   current_setting('max_connections')::int
            FROM pg_stat_activity
            """
        )
        active, max_connections = cur.fetchone()
    pct = int(active * 100 / max_connections) if max_connections else 0
    message = f"{pct}% ({active}/{max_connections})"
    if pct > settings.health_connection_warn_pct:
        return HealthCheckResult("connection_usage", HealthStatus.WARNING, message, pct)
    return HealthCheckResult("connection_usage", HealthStatus.OK, message, pct)


def check_replication_lag(conn: Connection, settings: Settings) -> HealthCheckResult:
    if not _scalar(conn, "SELECT pg_is_in_recovery()"):
        return HealthCheckResult("replication_lag", HealthStatus.OK, "primary (not in recovery)")
    lag_bytes = _scalar(
        conn, "SELECT pg_wal_lsn_diff(pg_last_wal_receive_lsn(), pg_last_wal_replay_lsn())"
    )
    if lag_bytes is None:
        return HealthCheckResult(
            "replication_lag", HealthStatus.WARNING, "replica is not receiving WAL"
        )
    lag_mb = int(lag_bytes) // (1024 * 1024)
    status = (
        HealthStatus.WARNING
        if lag_mb > settings.health_replication_lag_warn_mb
        else HealthStatus.OK
    )
    return HealthCheckResult("replication_lag", status, f"{lag_mb}MB", lag_mb)


def check_query_latency(conn: Connection, settings: Settings) -> HealthCheckResult:
    query = ActiveBetsQuery()
    apply_session_tuning(conn)
    try:
        capture = explain_query(conn, query.sql(OPTIMIZED), buffers=False, verbose=False)
    finally:
        reset_session_tuning(conn)
    latency = capture.execution_ms
    slo = settings.health_latency_slo_ms
    if latency is None:
        return HealthCheckResult(
            "query_latency", HealthStatus.WARNING, "no execution time reported"
        )
    message = f"{query.name} {latency:.2f}ms (SLO < {slo}ms)"
    status = HealthStatus.WARNING if latency > slo else HealthStatus.OK
    return HealthCheckResult("query_latency", status, message, latency)


def check_database_size(conn: Connection, settings: Settings) -> HealthCheckResult:
    with conn.cursor() as cur:
        cur.execute(
            "SELECT pg_database_size(current_database()), "
            "pg_size_pretty(pg_database_size(current_database()))"
        )
        size_bytes, pretty = cur.fetchone()
    return HealthCheckResult("database_size", HealthStatus.OK, pretty, size_bytes)


def check_data_disk_usage(conn: Connection, settings: Settings) -> HealthCheckResult:
    """Disk usage of the PostgreSQL data directory, when it is visible from this host."""
    path = settings.health_data_dir
    if not path or not Path(path).exists():
        return HealthCheckResult(
            "data_disk_usage", HealthStatus.OK, "skipped (HEALTH_DATA_DIR not available)"
        )
    pct = psutil.disk_usage(path).percent
    message = f"{pct:.0f}% used on {path}"
    if pct > settings.health_disk_warn_pct:
        return HealthCheckResult("data_disk_usage", HealthStatus.WARNING, message, pct)
    return HealthCheckResult("data_disk_usage", HealthStatus.OK, message, pct)


def check_long_running_queries(conn: Connection, settings: Settings) -> HealthCheckResult:
    count = _scalar(
        conn,
        """
        SELECT COUNT(*) FROM pg_stat_activity
        WHERE state = 'active'
          AND pid <> pg_backend_pid()
          AND now() - query_start > make_interval(secs => %s)
        """,
        (settings.health_long_query_seconds,),
    )
    if count:
        return HealthCheckResult(
            "long_running_queries",
            HealthStatus.WARNING,
            f"{count} running longer than {settings.health_long_query_seconds}s",
            count,
        )
    return HealthCheckResult("long_running_queries", HealthStatus.OK, "none", 0)


def check_materialized_views(conn: Connection, settings: Settings) -> HealthCheckResult:
    status = view_status(conn)
    missing = [name for name, populated in status.items() if populated is None]
    unpopulated = [name for name, populated in status.items() if populated is False]
    if missing or unpopulated:
        parts = []
        if missing:
            parts.append(f"missing: {', '.join(missing)}")
        if unpopulated:
            parts.append(f"unpopulated: {', '.join(unpopulated)}")
        return HealthCheckResult("materialized_views", HealthStatus.WARNING, "; ".join(parts))
    return HealthCheckResult(
        "materialized_views", HealthStatus.OK, f"{len(status)} views populated"
    )


CHECKS: Tuple[Tuple[str, Callable[[Connection, Settings], HealthCheckResult]], ...] = (
    ("connection_usage", check_connection_usage),
    ("replication_lag", check_replication_lag),
    ("query_latency", check_query_latency),
    ("database_size", check_database_size),
    ("data_disk_usage", check_data_disk_usage),
    ("long_running_queries", check_long_running_queries),
    ("materialized_views", check_materialized_views),
)


def run_health_checks(
    dsn: Optional[str] = None, settings: Optional[Settings] = None
) -> List[HealthCheckResult]:
    """
    Run every check against the database.

    An unreachable server yields a single critical `postgres_up` result.
    """
    settings = settings or get_settings()
    try:
        conn = get_sync_connection(dsn, autocommit=True)
    except psycopg.OperationalError as exc:
        log.error("[HEALTH] PostgreSQL is DOWN", extra={"error": str(exc)})
        return [HealthCheckResult("postgres_up", HealthStatus.CRITICAL, f"unreachable: {exc}")]

    results = [HealthCheckResult("postgres_up", HealthStatus.OK, "reachable")]
    try:
        for name, check in CHECKS:
            try:
                result = check(conn, settings)
            except (psycopg.Error, OSError) as exc:
                log.exception(f"[HEALTH] {name} errored", extra={"check": name})
                result = HealthCheckResult(name, HealthStatus.CRITICAL, f"check errored: {exc}")
            level = "info" if result.status is HealthStatus.OK else "warning"
            getattr(log, level)(
                f"[HEALTH] {name}: {result.status.value} {result.message}",
                extra={"check": name, "status": result.status.value},
            )
            results.append(result)
    finally:
        conn.close()
    return results


def exit_code(results: List[HealthCheckResult]) -> int:
    return 1 if any(r.status is HealthStatus.CRITICAL for r in results) else 0


__all__ = [
    "CHECKS",
    "HealthCheckResult",
    "HealthStatus",
    "exit_code",
    "run_health_checks",
]
