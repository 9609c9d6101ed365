"""
Orchestrator for benchmarking the betting queries, profiling execution, and
persisting results.

Each query is measured through EXPLAIN ANALYZE so the figure recorded is the
server-side execution time; the wall-clock time of each run (round trip
included) is profiled alongside it.

Usage (example from CLI):
    from dbre_bench.orchestrator import RunConfig, run_benchmarks

    results = run_benchmarks(RunConfig(query_names=["active_bets"], phase="optimized"))
    print(results)

Outputs are saved to `results/` by default:
- `results/<phase>.json` (last run of that phase, read by `compare_phases`)
- `results/latest.json` (last run)
- `results/run-<phase>-<timestamp>.json` (timestamped archive)
"""

from __future__ import annotations

import json
import statistics
from dataclasses import dataclass
from datetime import datetime, timezone
from pathlib import Path
from typing import Callable, Dict, Iterable, List, Optional

from psycopg import Connection

from dbre_bench.config import get_settings
from dbre_bench.explain import PlanCapture, explain_query, save_plan
from dbre_bench.infrastructure.db_factory import apply_statement_timeout, open_pool
from dbre_bench.optimizations.indexes import index_validity
from dbre_bench.optimizations.materialized_views import view_status
from dbre_bench.optimizations.session import SESSION_TUNING, apply_session_tuning, current_settings
from dbre_bench.queries.abstract import (
    OPTIMIZED,
    AbstractQueryCase,
    QueryRunResult,
    validate_phase,
)
from dbre_bench.queries.active_bets import ActiveBetsQuery
from dbre_bench.queries.daily_settlement import DailySettlementQuery
from dbre_bench.queries.recent_bet_counts import RecentBetCountsQuery
from dbre_bench.queries.user_activity import UserActivityQuery
from dbre_bench.utils.logging import get_logger
from dbre_bench.utils.profiler import ProfileStats, profile_block

log = get_logger(__name__)

FAILURE_POLICIES = ("tolerant", "strict")


@dataclass
class RunConfig:
    """
    Parameters for one benchmark session.

    Unset numeric/bool fields fall back to settings at run time.
    """

    query_names: Optional[Iterable[str]] = None
    phase: str = OPTIMIZED
    runs: Optional[int] = None
    warmup: Optional[bool] = None
    target_ms: Optional[float] = None
    session_tuning: Optional[bool] = None
    persist: bool = True
    results_dir: Optional[Path | str] = None
    capture_plans: bool = False
    plans_dir: Optional[Path | str] = None
    failure_policy: str = "tolerant"
    dsn: Optional[str] = None


def _round_float(value: float, decimals: int = 3) -> float:
    """Round a float to specified decimal places for human-readable output."""
    return round(value, decimals)


def _round_stats(stats: dict, decimals: int = 3) -> dict:
    """Round all float values in a stats dictionary."""
    return {k: _round_float(v, decimals) if isinstance(v, float) else v for k, v in stats.items()}


def _percentile_95(values: List[float]) -> float:
    if len(values) < 2:
        return values[0]
    return statistics.quantiles(values, n=20, method="inclusive")[18]


def _describe(values: List[float]) -> dict:
    return _round_stats(
        {
            "mean": float(statistics.mean(values)),
            "median": float(statistics.median(values)),
            "stddev": float(statistics.stdev(values)) if len(values) > 1 else 0.0,
            "min": float(min(values)),
            "max": float(max(values)),
            "p95": float(_percentile_95(values)),
        }
    )


def _aggregate_runs(run_results: List[QueryRunResult], target_ms: float) -> dict:
    """
    Aggregate measured runs into a statistical summary.

    Failed runs are counted but excluded from the statistics. A query meets
    the target when the mean server execution time is below `target_ms`.
    """
    ok = [r for r in run_results if not r.get("error")]
    aggregated: dict = {
        "runs": len(run_results),
        "failed_runs": len(run_results) - len(ok),
        "target_ms": target_ms,
    }
    if not ok:
        aggregated["meets_target"] = False
        aggregated["rows"] = 0
        return aggregated

    execution = [r["execution_ms"] for r in ok if r.get("execution_ms") is not None]
    planning = [r["planning_ms"] for r in ok if r.get("planning_ms") is not None]
    wall = [r["wall_ms"] for r in ok if r.get("wall_ms") is not None]

    if execution:
        aggregated["execution_ms"] = _describe(execution)
    if planning:
        aggregated["planning_ms"] = _describe(planning)
    if wall:
        aggregated["wall_ms"] = _describe(wall)

    aggregated["rows"] = ok[-1].get("rows", 0)
    aggregated["node_types"] = ok[-1].get("node_types", [])
    aggregated["seq_scan"] = ok[-1].get("seq_scan", False)
    aggregated["meets_target"] = bool(execution) and statistics.mean(execution) < target_ms
    return aggregated


def _query_factories() -> Dict[str, Callable[[], AbstractQueryCase]]:
    """Registry of available query cases."""
    return {
        ActiveBetsQuery.name: ActiveBetsQuery,
        DailySettlementQuery.name: DailySettlementQuery,
        UserActivityQuery.name: UserActivityQuery,
        RecentBetCountsQuery.name: RecentBetCountsQuery,
    }


def available_queries() -> List[str]:
    """List available query names."""
    return sorted(_query_factories().keys())


def resolve_query(name: str) -> AbstractQueryCase:
    factories = _query_factories()
    if name not in factories:
        raise ValueError(f"Unknown query '{name}'. Available: {', '.join(sorted(factories))}")
    return factories[name]()


def _resolve_names(query_names: Optional[Iterable[str]]) -> List[str]:
    names = list(query_names) if query_names is not None else ["all"]
    if names == ["all"] or not names:
        return available_queries()
    return names


def _persist_results(payload: dict, results_dir: Path, phase: str) -> None:
    results_dir.mkdir(parents=True, exist_ok=True)
    timestamp = datetime.now(timezone.utc).strftime("%Y%m%dT%H%M%SZ")
    paths = [
        results_dir / f"{phase}.json",
        results_dir / "latest.json",
        results_dir / f"run-{phase}-{timestamp}.json",
    ]
    for path in paths:
        with path.open("w", encoding="utf-8") as f:
            json.dump(payload, f, indent=2, sort_keys=True, default=str)

    log.info("Results persisted", extra={"paths": [str(p) for p in paths]})


def _merge_result(capture: PlanCapture, stats: ProfileStats) -> QueryRunResult:
    """Merge a parsed plan with profiler stats, rounding floats for readability."""
    return QueryRunResult(
        rows=capture.rows or 0,
        planning_ms=_round_float(capture.planning_ms) if capture.planning_ms is not None else None,
        execution_ms=(
            _round_float(capture.execution_ms) if capture.execution_ms is not None else None
        ),
        wall_ms=_round_float(stats.duration_ms),
        peak_rss_bytes=stats.peak_rss_bytes,
        cpu_percent=_round_float(stats.cpu_percent, 1) if stats.cpu_percent else None,
        node_types=capture.node_types,
        seq_scan=capture.seq_scan,
    )


def _failed_result(exc: Exception, policy: str) -> QueryRunResult:
    return QueryRunResult(
        rows=0,
        error=str(exc),
        notes="Execution failed in tolerant mode; run continued.",
        extra={"failed": True, "error_type": type(exc).__name__, "failure_policy": policy},
    )


def _connection_configurer(
    phase: str, tuning: bool, timeout_ms: int
) -> Callable[[Connection], None]:
    """Build the pool `configure` hook for a phase."""

    def configure(conn: Connection) -> None:
        with conn.cursor() as cur:
            apply_statement_timeout(cur, timeout_ms)
        conn.commit()
        if phase == OPTIMIZED and tuning:
            apply_session_tuning(conn)

    return configure


def _measure(pool, case: AbstractQueryCase, phase: str) -> QueryRunResult:
    with profile_block(f"{case.name}-{phase}") as stats:
        with pool.connection() as conn:
            capture = explain_query(conn, case.sql(phase), buffers=False, verbose=False)
    return _merge_result(capture, stats)


def _check_requirements(conn: Connection, cases: List[AbstractQueryCase]) -> None:
    """
    Fail fast when an optimized text reads a view that is missing or unpopulated.

    A missing or invalid index only slows the query down, so it is logged.
    """
    views = view_status(conn)
    required = {obj for case in cases for obj in case.requires}
    indexes = index_validity(conn, sorted(required - set(views)))
    conn.rollback()
    for case in cases:
        for obj in case.requires:
            if obj in views:
                if views[obj] is None:
                    raise ValueError(
                        f"Query '{case.name}' reads materialized view '{obj}', which does "
                        "not exist; run optimize first"
                    )
                if not views[obj]:
                    raise ValueError(
                        f"Query '{case.name}' reads materialized view '{obj}', which is not "
                        "populated; run refresh first"
                    )
            elif not indexes.get(obj):
                state = "missing" if indexes.get(obj) is None else "invalid"
                log.warning(
                    f"[BENCHMARK] {case.name} expects index {obj}, which is {state}",
                    extra={"query": case.name, "index": obj, "state": state},
                )


def _benchmark_query(
    pool,
    case: AbstractQueryCase,
    config: RunConfig,
    runs: int,
    warmup: bool,
    target_ms: float,
    plans_dir: Path,
) -> dict:
    phase = config.phase

    if warmup:
        log.info(f"[WARMUP] {case.name}", extra={"query": case.name, "phase": phase})
        try:
            _measure(pool, case, phase)
        except Exception as exc:  # noqa: BLE001 - warmup failures are reported by the measured runs
            log.warning(
                f"[WARMUP] Failed for {case.name}",
                extra={"query": case.name, "error": str(exc)},
            )

    run_results: List[QueryRunResult] = []
    for run_num in range(1, runs + 1):
        try:
            result = _measure(pool, case, phase)
        except Exception as exc:
            if config.failure_policy == "strict":
                log.error(
                    f"[RUN {run_num}/{runs}] {case.name} failed (strict)",
                    extra={"query": case.name},
                )
                raise
            log.exception(f"[RUN {run_num}/{runs}] {case.name} failed", extra={"query": case.name})
            result = _failed_result(exc, config.failure_policy)
        result["query"] = case.name
        result["phase"] = phase
        result["run"] = run_num
        run_results.append(result)
        log.debug(
            f"[RUN {run_num}/{runs}] {case.name}",
            extra={"query": case.name, "execution_ms": result.get("execution_ms")},
        )

    aggregated = _aggregate_runs(run_results, target_ms)
    aggregated["query"] = case.name
    aggregated["phase"] = phase
    aggregated["description"] = case.description
    aggregated["individual_runs"] = run_results

    if config.capture_plans:
        try:
            with pool.connection() as conn:
                capture = explain_query(conn, case.sql(phase))
            aggregated["plan_path"] = str(save_plan(capture, plans_dir, case.name, phase))
        except Exception as exc:
            if config.failure_policy == "strict":
                raise
            log.warning(f"[PLAN] Capture failed for {case.name}", extra={"error": str(exc)})

    mean_ms = aggregated.get("execution_ms", {}).get("mean")
    log.info(
        f"[QUERY COMPLETE] {case.name} mean={mean_ms} ms target<{target_ms} ms "
        f"{'PASS' if aggregated['meets_target'] else 'MISS'}",
        extra={"query": case.name, "phase": phase, "mean_ms": mean_ms},
    )
    return aggregated


def run_benchmarks(config: Optional[RunConfig] = None) -> List[dict]:
    """
    Benchmark one or more query cases for a phase and optionally persist results.

    Parameters
    ----------
    config : RunConfig | None
        Benchmark parameters; defaults come from settings.

    Returns
    -------
    List[dict]
        One aggregated result per query, including per-run details.

    Raises
    ------
    ValueError
        For an unknown phase, query name or failure policy, or when an optimized
        run would read a missing or unpopulated materialized view.
    """
    config = config or RunConfig()
    settings = get_settings()
    phase = validate_phase(config.phase)
    if config.failure_policy not in FAILURE_POLICIES:
        raise ValueError(
            f"Unknown failure policy '{config.failure_policy}'. "
            f"Available: {', '.join(FAILURE_POLICIES)}"
        )

    runs = config.runs if config.runs is not None else settings.benchmark_runs
    if runs < 1:
        raise ValueError("runs must be >= 1")
    warmup = config.warmup if config.warmup is not None else settings.benchmark_warmup
    target_ms = config.target_ms if config.target_ms is not None else settings.benchmark_target_ms
    tuning = config.session_tuning if config.session_tuning is not None else settings.session_tuning
    results_dir = Path(config.results_dir or settings.results_dir)
    plans_dir = Path(config.plans_dir or settings.plans_dir)

    names = _resolve_names(config.query_names)
    cases = [resolve_query(name) for name in names]

    log.info(
        f"[BENCHMARK START] phase={phase} queries={len(cases)} runs={runs} warmup={warmup}",
        extra={"phase": phase, "queries": names, "runs": runs},
    )

    pool = open_pool(
        dsn=config.dsn,
        min_size=1,
        max_size=1,
        configure=_connection_configurer(phase, tuning, settings.db_statement_timeout_ms),
    )
    results: List[dict] = []
    try:
        with pool.connection() as conn:
            if phase == OPTIMIZED:
                _check_requirements(conn, cases)
            planner_settings = current_settings(conn, list(SESSION_TUNING))
            conn.rollback()
        for case in cases:
            log.info(f"{'=' * 60}")
            log.info(f"[QUERY] {case.name.upper()} ({phase})", extra={"query": case.name})
            results.append(_benchmark_query(pool, case, config, runs, warmup, target_ms, plans_dir))
    finally:
        pool.close()

    payload = {
        "timestamp": datetime.now(timezone.utc).isoformat(),
        "phase": phase,
        "runs": runs,
        "warmup": warmup,
        "target_ms": target_ms,
        "session_tuning": tuning and phase == OPTIMIZED,
        "planner_settings": planner_settings,
        "queries": names,
        "results": results,
    }
    if config.persist:
        _persist_results(payload, results_dir, phase)

    met = sum(1 for r in results if r.get("meets_target"))
    log.info(
        f"[BENCHMARK COMPLETE] {met}/{len(results)} queries under {target_ms} ms",
        extra={"phase": phase, "met": met, "total": len(results)},
    )
    return results


def load_results(results_dir: Path | str, phase: str) -> List[dict]:
    """Load the last persisted results of a phase."""
    path = Path(results_dir) / f"{validate_phase(phase)}.json"
    if not path.exists():
        raise FileNotFoundError(f"No {phase} results at {path}; run the {phase} benchmark first")
    with path.open("r", encoding="utf-8") as f:
        return json.load(f)["results"]


def _mean_ms(result: Optional[dict]) -> Optional[float]:
    if not result:
        return None
    return result.get("execution_ms", {}).get("mean")


def compare_phases(baseline: List[dict], optimized: List[dict], target_ms: float) -> List[dict]:
    """
    Join baseline and optimized results per query.

    Improvement is the relative drop of mean execution time; speed-up is the
    ratio baseline/optimized. Either is None when a side is missing.
    """
    by_query_base = {r["query"]: r for r in baseline}
    by_query_opt = {r["query"]: r for r in optimized}
    rows: List[dict] = []
    for name in sorted(set(by_query_base) | set(by_query_opt)):
        base_ms = _mean_ms(by_query_base.get(name))
        opt_ms = _mean_ms(by_query_opt.get(name))
        improvement = speedup = None
        if base_ms and opt_ms is not None:
            improvement = _round_float((base_ms - opt_ms) / base_ms * 100.0, 2)
            speedup = _round_float(base_ms / opt_ms, 1) if opt_ms > 0 else None
        rows.append(
            {
                "query": name,
                "baseline_ms": base_ms,
                "optimized_ms": opt_ms,
                "improvement_pct": improvement,
                "speedup": speedup,
                "target_ms": target_ms,
                "meets_target": opt_ms is not None and opt_ms < target_ms,
            }
        )
    return rows


__all__ = [
    "FAILURE_POLICIES",
    "RunConfig",
    "available_queries",
    "compare_phases",
    "load_results",
    "resolve_query",
    "run_benchmarks",
]
