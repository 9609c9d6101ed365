from __future__ import annotations

import json
import sys
from pathlib import Path
from typing import List, Optional

import typer

from dbre_bench.config import get_settings
from dbre_bench.explain import explain_query, save_plan
from dbre_bench.health import exit_code, run_health_checks
from dbre_bench.infrastructure.db_factory import get_autocommit_connection, get_sync_connection
from dbre_bench.infrastructure.schema import init_schema
from dbre_bench.optimizations.materialized_views import refresh_views
from dbre_bench.optimizations.plan import (
    apply_optimizations,
    render_script,
    rollback_optimizations,
)
from dbre_bench.optimizations.session import apply_session_tuning
from dbre_bench.orchestrator import (
    RunConfig,
    available_queries,
    compare_phases,
    load_results,
    resolve_query,
    run_benchmarks,
)
from dbre_bench.queries.abstract import OPTIMIZED, validate_phase
from dbre_bench.reporter import print_comparison, print_health, print_results, print_steps
from dbre_bench.utils.logging import configure_logging

app = typer.Typer(help="Betting query optimization toolkit for PostgreSQL.")


def _setup_logging() -> None:
    settings = get_settings()
    configure_logging(level=settings.log_level, json_logs=settings.log_json)


def _split_queries(query: str) -> List[str]:
    if query == "all":
        return ["all"]
    return [name.strip() for name in query.split(",") if name.strip()]


@app.command()
def info() -> None:
    """
    Show effective configuration values.
    """
    settings = get_settings()
    typer.echo(
        f"DB={settings.db_user}@{settings.db_host}:{settings.db_port}/{settings.db_name} | "
        f"runs={settings.benchmark_runs} warmup={settings.benchmark_warmup} "
        f"target<{settings.benchmark_target_ms}ms session_tuning={settings.session_tuning}"
    )


@app.command("list")
def list_queries() -> None:
    """
    List the query cases and what they answer.
    """
    for name in available_queries():
        typer.echo(f"{name:<20} {resolve_query(name).description}")


@app.command("init-schema")
def init_schema_cmd() -> None:
    """
    Create the users/events/bets tables.
    """
    _setup_logging()
    conn = get_sync_connection()
    try:
        init_schema(conn)
    finally:
        conn.close()
    typer.echo("Schema ready.")


@app.command()
def optimize(
    skip_maintenance: bool = typer.Option(
        False,
        "--skip-maintenance",
        help="Skip VACUUM ANALYZE / CLUSTER after creating indexes and views.",
    ),
) -> None:
    """
    Create the indexes and materialized views, then run table maintenance.
    """
    _setup_logging()
    conn = get_autocommit_connection()
    try:
        steps = apply_optimizations(conn, include_maintenance=not skip_maintenance)
    finally:
        conn.close()
    print_steps(steps)


@app.command()
def rollback() -> None:
    """
    Drop the materialized views and indexes created by `optimize`.
    """
    _setup_logging()
    conn = get_autocommit_connection()
    try:
        steps = rollback_optimizations(conn)
    finally:
        conn.close()
    print_steps(steps)


@app.command()
def refresh(
    view: Optional[List[str]] = typer.Option(
        None,
        "--view",
        "-v",
        help="View to refresh (repeatable). Defaults to all views.",
    ),
    concurrently: bool = typer.Option(
        True,
        "--concurrently/--no-concurrently",
        help="Use REFRESH MATERIALIZED VIEW CONCURRENTLY (readers are not blocked).",
    ),
) -> None:
    """
    Refresh the materialized views.
    """
    _setup_logging()
    conn = get_autocommit_connection()
    try:
        steps = refresh_views(conn, names=view or None, concurrently=concurrently)
    finally:
        conn.close()
    print_steps(steps)


@app.command()
def script(
    output: Optional[Path] = typer.Option(
        None,
        "--output",
        "-o",
        help="Write the script to this file instead of stdout.",
    ),
    maintenance: bool = typer.Option(True, "--maintenance/--no-maintenance"),
    session: bool = typer.Option(True, "--session/--no-session"),
) -> None:
    """
    Print the optimization plan as a psql-ready SQL script.
    """
    text = render_script(include_maintenance=maintenance, include_session=session)
    if output:
        output.parent.mkdir(parents=True, exist_ok=True)
        output.write_text(text, encoding="utf-8")
        typer.echo(f"Wrote {output}")
    else:
        typer.echo(text)


@app.command()
def explain(
    query: str = typer.Option(..., "--query", "-q", help="Query case name."),
    phase: str = typer.Option(OPTIMIZED, "--phase", "-p", help="baseline or optimized."),
    save: bool = typer.Option(True, "--save/--no-save", help="Write the plan to the plans dir."),
) -> None:
    """
    Capture EXPLAIN (ANALYZE, BUFFERS, VERBOSE) for one query.
    """
    _setup_logging()
    settings = get_settings()
    case = resolve_query(query)
    validate_phase(phase)
    conn = get_sync_connection()
    try:
        if phase == OPTIMIZED and settings.session_tuning:
            apply_session_tuning(conn)
        capture = explain_query(conn, case.sql(phase))
    finally:
        conn.close()
    typer.echo(capture.text)
    if save:
        path = save_plan(capture, settings.plans_dir, case.name, phase)
        typer.echo(f"Plan saved to {path}")


@app.command()
def benchmark(
    query: str = typer.Option(
        "all",
        "--query",
        "--queries",
        "-q",
        help="Query case(s), comma separated, or 'all'.",
    ),
    phase: str = typer.Option(OPTIMIZED, "--phase", "-p", help="baseline or optimized."),
    runs: Optional[int] = typer.Option(
        None,
        "--runs",
        "-r",
        help="Measured runs per query (default from settings).",
    ),
    warmup: Optional[bool] = typer.Option(
        None,
        "--warmup/--no-warmup",
        help="Run each query once before measuring (default from settings).",
    ),
    target_ms: Optional[float] = typer.Option(None, "--target-ms", help="Latency target in ms."),
    plans: bool = typer.Option(
        False, "--capture-plans", help="Also capture and save full plans."
    ),
    strict: bool = typer.Option(False, "--strict", help="Abort on the first failed run."),
    as_json: bool = typer.Option(False, "--json", help="Print raw JSON instead of a table."),
) -> None:
    """
    Benchmark query cases for a phase and persist the results.
    """
    _setup_logging()
    try:
        results = run_benchmarks(
            RunConfig(
                query_names=_split_queries(query),
                phase=phase,
                runs=runs,
                warmup=warmup,
                target_ms=target_ms,
                capture_plans=plans,
                failure_policy="strict" if strict else "tolerant",
            )
        )
    except ValueError as exc:
        typer.echo(str(exc), err=True)
        raise typer.Exit(code=1)
    if as_json:
        typer.echo(json.dumps(results, indent=2, default=str))
    else:
        print_results(results)


@app.command()
def compare(
    results_dir: Optional[Path] = typer.Option(None, "--results-dir", help="Results directory."),
    target_ms: Optional[float] = typer.Option(None, "--target-ms", help="Latency target in ms."),
) -> None:
    """
    Compare the last baseline and optimized benchmark runs.
    """
    settings = get_settings()
    directory = results_dir or Path(settings.results_dir)
    try:
        baseline = load_results(directory, "baseline")
        optimized = load_results(directory, "optimized")
    except FileNotFoundError as exc:
        typer.echo(str(exc), err=True)
        raise typer.Exit(code=1)
    target = target_ms if target_ms is not None else settings.benchmark_target_ms
    print_comparison(compare_phases(baseline, optimized, target))


@app.command()
def show(
    query: str = typer.Option(..., "--query", "-q", help="Query case name."),
    phase: str = typer.Option(OPTIMIZED, "--phase", "-p", help="baseline or optimized."),
) -> None:
    """
    Run a query and print its rows as JSON.
    """
    _setup_logging()
    case = resolve_query(query)
    conn = get_sync_connection()
    try:
        rows = case.fetch(conn, phase)
    finally:
        conn.close()
    typer.echo(json.dumps([row.model_dump(mode="json") for row in rows], indent=2))


@app.command()
def health() -> None:
    """
    Run PostgreSQL health checks; exits non-zero on a critical finding.
    """
    _setup_logging()
    results = run_health_checks()
    print_health(results)
    code = exit_code(results)
    if code:
        raise typer.Exit(code=code)


def main() -> None:
    try:
        app()
    except KeyboardInterrupt:
        typer.echo("Cancelled by user.", err=True)
        sys.exit(130)


if __name__ == "__main__":
    main()
