from __future__ import annotations

from types import SimpleNamespace
from typing import Any

import psycopg
import pytest

from dbre_bench import health
from dbre_bench.config import Settings
from dbre_bench.health import (
    HealthCheckResult,
    HealthStatus,
    check_connection_usage,
    check_data_disk_usage,
    check_long_running_queries,
    check_materialized_views,
    check_query_latency,
    check_replication_lag,
    exit_code,
    run_health_checks,
)

MB = 1024 * 1024


class _ScriptedCursor:
    def __init__(self, conn: _ScriptedConnection) -> None:
        self._conn = conn

    def __enter__(self) -> _ScriptedCursor:
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        del exc_type, exc, tb

    def execute(self, sql: str, params: Any = None) -> None:
        self._conn.executed.append((sql, params))

    def fetchone(self) -> Any:
        return self._conn.rows.pop(0)

    def fetchall(self) -> Any:
        return self._conn.rows.pop(0)


class _ScriptedConnection:
    """Answers each fetch with the next scripted row."""

    def __init__(self, rows: list[Any]) -> None:
        self.rows = list(rows)
        self.executed: list[tuple[str, Any]] = []
        self.autocommit = True
        self.closed = False

    def cursor(self) -> _ScriptedCursor:
        return _ScriptedCursor(self)

    def close(self) -> None:
        self.closed = True


@pytest.fixture
def settings() -> Settings:
    return Settings(_env_file=None)


def test_connection_usage_warns_above_threshold(settings: Settings) -> None:
    ok = check_connection_usage(_ScriptedConnection([(10, 100)]), settings)
    busy = check_connection_usage(_ScriptedConnection([(90, 100)]), settings)

    assert ok.status is HealthStatus.OK
    assert busy.status is HealthStatus.WARNING
    assert busy.value == 90
    assert busy.message == "90% (90/100)"


def test_replication_lag_on_primary_is_ok(settings: Settings) -> None:
    result = check_replication_lag(_ScriptedConnection([(False,)]), settings)
    assert result.status is HealthStatus.OK


def test_replication_lag_on_replica(settings: Settings) -> None:
    lagging = check_replication_lag(_ScriptedConnection([(True,), (50 * MB,)]), settings)
    healthy = check_replication_lag(_ScriptedConnection([(True,), (1 * MB,)]), settings)

    assert lagging.status is HealthStatus.WARNING
    assert lagging.value == 50
    assert healthy.status is HealthStatus.OK


def test_long_running_queries_uses_threshold(settings: Settings) -> None:
    conn = _ScriptedConnection([(2,)])

    result = check_long_running_queries(conn, settings)

    assert result.status is HealthStatus.WARNING
    assert conn.executed[0][1] == (settings.health_long_query_seconds,)


def test_materialized_views_reports_missing_and_unpopulated(settings: Settings) -> None:
    conn = _ScriptedConnection([[("mv_daily_settlement", True), ("mv_recent_bet_counts", False)]])

    result = check_materialized_views(conn, settings)

    assert result.status is HealthStatus.WARNING
    assert "missing: mv_user_daily_activity" in result.message
    assert "unpopulated: mv_recent_bet_counts" in result.message


def test_exit_code_is_nonzero_only_for_critical() -> None:
    ok = HealthCheckResult("a", HealthStatus.OK, "")
    warn = HealthCheckResult("b", HealthStatus.WARNING, "")
    critical = HealthCheckResult("c", HealthStatus.CRITICAL, "")

    assert exit_code([ok, warn]) == 0
    assert exit_code([ok, critical]) == 1
    assert critical.as_dict()["status"] == "critical"


def test_run_health_checks_reports_unreachable_server(monkeypatch, settings: Settings) -> None:
    def refuse(dsn=None, autocommit=False):
        raise psycopg.OperationalError("connection refused")

    monkeypatch.setattr(health, "get_sync_connection", refuse)

    results = run_health_checks(settings=settings)

    assert len(results) == 1
    assert results[0].name == "postgres_up"
    assert results[0].status is HealthStatus.CRITICAL


def test_run_health_checks_isolates_failing_checks(monkeypatch, settings: Settings) -> None:
    conn = _ScriptedConnection([])
    monkeypatch.setattr(health, "get_sync_connection", lambda dsn=None, autocommit=False: conn)

    def broken(conn, settings):
        raise psycopg.errors.InsufficientPrivilege("permission denied")

    def fine(conn, settings):
        return HealthCheckResult("database_size", HealthStatus.OK, "12 GB")

    monkeypatch.setattr(health, "CHECKS", (("replication_lag", broken), ("database_size", fine)))

    results = run_health_checks(settings=settings)

    assert [r.name for r in results] == ["postgres_up", "replication_lag", "database_size"]
    assert results[1].status is HealthStatus.CRITICAL
    assert results[2].status is HealthStatus.OK
    assert exit_code(results) == 1
    assert conn.closed is True


def test_query_latency_warns_above_slo(monkeypatch, settings: Settings) -> None:
    calls = []
    monkeypatch.setattr(health, "apply_session_tuning", lambda conn: calls.append("apply"))
    monkeypatch.setattr(health, "reset_session_tuning", lambda conn: calls.append("reset"))
    monkeypatch.setattr(
        health, "explain_query", lambda conn, sql, **kwargs: SimpleNamespace(execution_ms=12.5)
    )

    result = check_query_latency(_ScriptedConnection([]), settings)

    assert result.status is HealthStatus.WARNING
    assert result.value == 12.5
    assert "active_bets 12.50ms" in result.message
    assert calls == ["apply", "reset"]


def test_query_latency_resets_session_when_explain_fails(monkeypatch, settings: Settings) -> None:
    calls = []
    monkeypatch.setattr(health, "apply_session_tuning", lambda conn: calls.append("apply"))
    monkeypatch.setattr(health, "reset_session_tuning", lambda conn: calls.append("reset"))

    def failing_explain(conn, sql, **kwargs):
        raise psycopg.errors.QueryCanceled("canceling statement due to statement timeout")

    monkeypatch.setattr(health, "explain_query", failing_explain)

    with pytest.raises(psycopg.errors.QueryCanceled):
        check_query_latency(_ScriptedConnection([]), settings)

    assert calls == ["apply", "reset"]


def test_data_disk_usage_is_skipped_without_a_data_dir(settings: Settings, tmp_path) -> None:
    unset = check_data_disk_usage(_ScriptedConnection([]), settings)
    absent = check_data_disk_usage(
        _ScriptedConnection([]),
        settings.model_copy(update={"health_data_dir": str(tmp_path / "missing")}),
    )

    assert unset.status is HealthStatus.OK
    assert absent.status is HealthStatus.OK
    assert "skipped" in absent.message


@pytest.mark.parametrize(("percent", "expected"), [(91.0, "warning"), (40.0, "ok")])
def test_data_disk_usage_threshold(
    monkeypatch, settings: Settings, tmp_path, percent: float, expected: str
) -> None:
    monkeypatch.setattr(
        health.psutil, "disk_usage", lambda path: SimpleNamespace(percent=percent)
    )
    configured = settings.model_copy(update={"health_data_dir": str(tmp_path)})

    result = check_data_disk_usage(_ScriptedConnection([]), configured)

    assert result.status.value == expected
    assert result.value == percent
    assert str(tmp_path) in result.message
