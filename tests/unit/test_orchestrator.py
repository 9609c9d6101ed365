from __future__ import annotations

import json
from contextlib import AbstractContextManager
from pathlib import Path
from typing import Any, ClassVar

import pytest

from dbre_bench import orchestrator
from dbre_bench.explain import PlanCapture
from dbre_bench.optimizations.materialized_views import VIEWS
from dbre_bench.optimizations.session import SESSION_TUNING
from dbre_bench.orchestrator import (
    RunConfig,
    _aggregate_runs,
    _connection_configurer,
    _merge_result,
    compare_phases,
    load_results,
    run_benchmarks,
)
from dbre_bench.utils.profiler import ProfileStats

MEASUREMENT_RUN_COUNT = 3
FAILING_MEASUREMENT_RUN_COUNT = 2
TARGET_MS = 5.0
EXECUTION_TIMES = [1.0, 2.0, 3.0]
EXPECTED_MEAN = 2.0
EXPECTED_ROWS = 100
EXPECTED_WALL_MS = 2000.0
EXPECTED_PEAK_RSS = 123
EXPECTED_CPU = 12.3


class _FakeCursor:
    def __init__(self, conn: _FakeConnection) -> None:
        self._conn = conn

    def __enter__(self) -> _FakeCursor:
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        del exc_type, exc, tb

    def execute(self, sql: Any, params: Any = None) -> None:
        self._conn.executed.append((sql, params))


class _FakeConnection:
    def __init__(self) -> None:
        self.autocommit = False
        self.executed: list[tuple[Any, Any]] = []
        self.commits = 0
        self.rollbacks = 0

    def cursor(self) -> _FakeCursor:
        return _FakeCursor(self)

    def commit(self) -> None:
        self.commits += 1

    def rollback(self) -> None:
        self.rollbacks += 1


class _FakePoolConnectionContext(AbstractContextManager[_FakeConnection]):
    def __init__(self, pool: _FakePool) -> None:
        self._pool = pool

    def __enter__(self) -> _FakeConnection:
        if self._pool.closed:
            raise RuntimeError("pool is already closed")
        return self._pool.conn

    def __exit__(self, exc_type, exc, tb) -> None:
        del exc_type, exc, tb


class _FakePool:
    instances: ClassVar[list[_FakePool]] = []

    def __init__(self, **kwargs: Any) -> None:
        self.kwargs = kwargs
        self.conn = _FakeConnection()
        self.closed = False
        _FakePool.instances.append(self)

    def connection(self) -> _FakePoolConnectionContext:
        return _FakePoolConnectionContext(self)

    def close(self) -> None:
        self.closed = True


class _ExplainStub:
    """Returns canned captures in order; raises when the queue holds an exception."""

    def __init__(self, outcomes: list[Any]) -> None:
        self.outcomes = list(outcomes)
        self.calls: list[str] = []

    def __call__(self, conn: Any, sql: str, **kwargs: Any) -> PlanCapture:
        del conn, kwargs
        self.calls.append(sql)
        outcome = self.outcomes.pop(0) if len(self.outcomes) > 1 else self.outcomes[0]
        if isinstance(outcome, Exception):
            raise outcome
        return outcome


def _capture(execution_ms: float, node_types: list[str] | None = None) -> PlanCapture:
    return PlanCapture(
        sql="SELECT 1",
        text="Result",
        planning_ms=0.1,
        execution_ms=execution_ms,
        rows=EXPECTED_ROWS,
        node_types=node_types or ["Limit", "Index Only Scan"],
    )


@pytest.fixture
def fake_db(monkeypatch) -> list[_FakePool]:
    _FakePool.instances.clear()
    monkeypatch.setattr(orchestrator, "open_pool", lambda **kwargs: _FakePool(**kwargs))
    monkeypatch.setattr(
        orchestrator, "current_settings", lambda conn, names: {n: "default" for n in names}
    )
    monkeypatch.setattr(
        orchestrator, "view_status", lambda conn: {view.name: True for view in VIEWS}
    )
    monkeypatch.setattr(
        orchestrator, "index_validity", lambda conn, names: {name: True for name in names}
    )
    return _FakePool.instances


def test_run_benchmarks_aggregates_execution_times(monkeypatch, fake_db) -> None:
    stub = _ExplainStub([_capture(ms) for ms in EXECUTION_TIMES])
    monkeypatch.setattr(orchestrator, "explain_query", stub)

    results = run_benchmarks(
        RunConfig(
            query_names=["active_bets"],
            runs=MEASUREMENT_RUN_COUNT,
            warmup=False,
            target_ms=TARGET_MS,
            persist=False,
        )
    )

    assert len(results) == 1
    result = results[0]
    assert result["query"] == "active_bets"
    assert result["phase"] == "optimized"
    assert result["runs"] == MEASUREMENT_RUN_COUNT
    assert result["failed_runs"] == 0
    assert result["execution_ms"]["mean"] == EXPECTED_MEAN
    assert result["execution_ms"]["median"] == EXPECTED_MEAN
    assert result["execution_ms"]["min"] == EXECUTION_TIMES[0]
    assert result["execution_ms"]["max"] == EXECUTION_TIMES[-1]
    assert result["rows"] == EXPECTED_ROWS
    assert result["seq_scan"] is False
    assert result["meets_target"] is True
    assert [r["run"] for r in result["individual_runs"]] == [1, 2, 3]
    assert len(stub.calls) == MEASUREMENT_RUN_COUNT
    assert fake_db[0].closed is True


def test_run_benchmarks_warmup_is_not_measured(monkeypatch, fake_db) -> None:
    stub = _ExplainStub([_capture(50.0), _capture(1.0)])
    monkeypatch.setattr(orchestrator, "explain_query", stub)

    results = run_benchmarks(
        RunConfig(query_names=["active_bets"], runs=1, warmup=True, persist=False)
    )

    assert len(stub.calls) == 2
    assert results[0]["execution_ms"]["mean"] == 1.0
    assert results[0]["execution_ms"]["stddev"] == 0.0


def test_run_benchmarks_marks_missed_target(monkeypatch, fake_db) -> None:
    stub = _ExplainStub([_capture(812.3, ["HashAggregate", "Seq Scan"])])
    monkeypatch.setattr(orchestrator, "explain_query", stub)

    results = run_benchmarks(
        RunConfig(
            query_names=["recent_bet_counts"],
            phase="baseline",
            runs=1,
            warmup=False,
            persist=False,
        )
    )

    assert results[0]["meets_target"] is False
    assert results[0]["seq_scan"] is True
    assert "FROM bets" in stub.calls[0]


def test_run_benchmarks_tolerant_failures_are_recorded(monkeypatch, fake_db) -> None:
    stub = _ExplainStub([RuntimeError("intentional failure")])
    monkeypatch.setattr(orchestrator, "explain_query", stub)

    results = run_benchmarks(
        RunConfig(
            query_names=["daily_settlement"],
            runs=FAILING_MEASUREMENT_RUN_COUNT,
            warmup=False,
            persist=False,
        )
    )

    result = results[0]
    assert result["failed_runs"] == FAILING_MEASUREMENT_RUN_COUNT
    assert result["meets_target"] is False
    assert "execution_ms" not in result
    individual_runs = result["individual_runs"]
    assert len(individual_runs) == FAILING_MEASUREMENT_RUN_COUNT
    assert all(run["error"] == "intentional failure" for run in individual_runs)
    assert all(
        run["notes"] == "Execution failed in tolerant mode; run continued."
        for run in individual_runs
    )
    assert all(
        run["extra"]
        == {"failed": True, "error_type": "RuntimeError", "failure_policy": "tolerant"}
        for run in individual_runs
    )


def test_run_benchmarks_strict_policy_reraises_and_closes_pool(monkeypatch, fake_db) -> None:
    stub = _ExplainStub([RuntimeError("intentional failure")])
    monkeypatch.setattr(orchestrator, "explain_query", stub)

    with pytest.raises(RuntimeError, match="intentional failure"):
        run_benchmarks(
            RunConfig(
                query_names=["user_activity"],
                runs=MEASUREMENT_RUN_COUNT,
                warmup=False,
                persist=False,
                failure_policy="strict",
            )
        )

    assert len(stub.calls) == 1
    assert fake_db[0].closed is True


@pytest.mark.parametrize(
    ("populated", "expected"),
    [(None, "does not exist"), (False, "not populated")],
)
def test_run_benchmarks_optimized_fails_fast_without_views(
    monkeypatch, fake_db, populated, expected
) -> None:
    stub = _ExplainStub([_capture(1.0)])
    monkeypatch.setattr(orchestrator, "explain_query", stub)
    status = {view.name: True for view in VIEWS}
    status["mv_user_daily_activity"] = populated
    monkeypatch.setattr(orchestrator, "view_status", lambda conn: status)

    with pytest.raises(ValueError, match=f"mv_user_daily_activity.*{expected}"):
        run_benchmarks(RunConfig(query_names=["all"], runs=1, warmup=False, persist=False))

    assert stub.calls == []
    assert fake_db[0].closed is True


def test_run_benchmarks_baseline_ignores_missing_views(monkeypatch, fake_db) -> None:
    monkeypatch.setattr(orchestrator, "explain_query", _ExplainStub([_capture(40.0)]))
    monkeypatch.setattr(
        orchestrator, "view_status", lambda conn: {view.name: None for view in VIEWS}
    )

    results = run_benchmarks(
        RunConfig(
            query_names=["user_activity"], phase="baseline", runs=1, warmup=False, persist=False
        )
    )

    assert results[0]["failed_runs"] == 0


def test_run_benchmarks_only_warns_about_invalid_indexes(monkeypatch, fake_db, caplog) -> None:
    monkeypatch.setattr(orchestrator, "explain_query", _ExplainStub([_capture(1.0)]))
    monkeypatch.setattr(
        orchestrator,
        "index_validity",
        lambda conn, names: {name: name != "idx_bets_open_optimized" for name in names},
    )

    with caplog.at_level("WARNING", logger="dbre_bench.orchestrator"):
        results = run_benchmarks(
            RunConfig(query_names=["active_bets"], runs=1, warmup=False, persist=False)
        )

    assert results[0]["failed_runs"] == 0
    assert "idx_bets_open_optimized, which is invalid" in caplog.text


@pytest.mark.parametrize(
    "config",
    [
        RunConfig(phase="tuned"),
        RunConfig(failure_policy="lenient"),
        RunConfig(runs=0),
        RunConfig(query_names=["no_such_query"]),
    ],
)
def test_run_benchmarks_rejects_invalid_config(fake_db, config: RunConfig) -> None:
    with pytest.raises(ValueError):
        run_benchmarks(config)
    assert fake_db == []


def test_run_benchmarks_persists_phase_files(monkeypatch, fake_db, tmp_path: Path) -> None:
    monkeypatch.setattr(orchestrator, "explain_query", _ExplainStub([_capture(1.0)]))

    run_benchmarks(
        RunConfig(
            query_names=["all"],
            runs=1,
            warmup=False,
            results_dir=tmp_path,
        )
    )

    payload = json.loads((tmp_path / "optimized.json").read_text(encoding="utf-8"))
    assert payload["phase"] == "optimized"
    assert sorted(payload["planner_settings"]) == sorted(SESSION_TUNING)
    assert (tmp_path / "latest.json").exists()
    assert len(list(tmp_path.glob("run-optimized-*.json"))) == 1

    loaded = load_results(tmp_path, "optimized")
    assert sorted(r["query"] for r in loaded) == orchestrator.available_queries()


def test_run_benchmarks_captures_plans(monkeypatch, fake_db, tmp_path: Path) -> None:
    monkeypatch.setattr(orchestrator, "explain_query", _ExplainStub([_capture(1.0)]))

    results = run_benchmarks(
        RunConfig(
            query_names=["active_bets"],
            runs=1,
            warmup=False,
            persist=False,
            capture_plans=True,
            plans_dir=tmp_path,
        )
    )

    assert results[0]["plan_path"] == str(tmp_path / "active_bets_optimized.txt")
    assert (tmp_path / "active_bets_optimized.txt").exists()


def test_load_results_requires_a_previous_run(tmp_path: Path) -> None:
    with pytest.raises(FileNotFoundError):
        load_results(tmp_path, "baseline")


def test_connection_configurer_applies_tuning_only_when_optimized() -> None:
    baseline_conn = _FakeConnection()
    _connection_configurer("baseline", True, 30_000)(baseline_conn)
    assert len(baseline_conn.executed) == 1
    assert "statement_timeout" in baseline_conn.executed[0][0]

    optimized_conn = _FakeConnection()
    _connection_configurer("optimized", True, 30_000)(optimized_conn)
    tuned = [params[0] for _, params in optimized_conn.executed[1:]]
    assert tuned == list(SESSION_TUNING)
    assert optimized_conn.commits == 2

    untuned_conn = _FakeConnection()
    _connection_configurer("optimized", False, 0)(untuned_conn)
    assert untuned_conn.executed == []


def test_aggregate_runs_excludes_failed_runs() -> None:
    runs = [
        {"execution_ms": 4.0, "planning_ms": 0.2, "wall_ms": 6.0, "rows": 4},
        {"error": "boom", "rows": 0},
        {"execution_ms": 6.0, "planning_ms": 0.4, "wall_ms": 8.0, "rows": 4},
    ]

    aggregated = _aggregate_runs(runs, TARGET_MS)

    assert aggregated["runs"] == 3
    assert aggregated["failed_runs"] == 1
    assert aggregated["execution_ms"]["mean"] == 5.0
    assert aggregated["wall_ms"]["min"] == 6.0
    # mean == target is not below it
    assert aggregated["meets_target"] is False


def test_merge_result_rounds_profiler_and_plan_values() -> None:
    capture = PlanCapture(
        sql="SELECT 1",
        text="",
        planning_ms=0.12345,
        execution_ms=1.23456,
        rows=EXPECTED_ROWS,
        node_types=["Seq Scan"],
    )
    stats = ProfileStats(
        label="test",
        start_ts=1.0,
        end_ts=3.0,
        duration_seconds=2.0,
        peak_rss_bytes=123,
        cpu_percent=12.34,
    )

    merged = _merge_result(capture, stats)

    assert merged["planning_ms"] == 0.123
    assert merged["execution_ms"] == 1.235
    assert merged["wall_ms"] == EXPECTED_WALL_MS
    assert merged["peak_rss_bytes"] == EXPECTED_PEAK_RSS
    assert merged["cpu_percent"] == EXPECTED_CPU
    assert merged["seq_scan"] is True


def test_compare_phases_computes_improvement_and_speedup() -> None:
    baseline = [
        {"query": "recent_bet_counts", "execution_ms": {"mean": 100.0}},
        {"query": "user_activity", "execution_ms": {"mean": 40.0}},
    ]
    optimized = [{"query": "recent_bet_counts", "execution_ms": {"mean": 2.0}}]

    rows = compare_phases(baseline, optimized, TARGET_MS)

    by_query = {row["query"]: row for row in rows}
    recent = by_query["recent_bet_counts"]
    assert recent["improvement_pct"] == 98.0
    assert recent["speedup"] == 50.0
    assert recent["meets_target"] is True

    missing = by_query["user_activity"]
    assert missing["optimized_ms"] is None
    assert missing["improvement_pct"] is None
    assert missing["meets_target"] is False
