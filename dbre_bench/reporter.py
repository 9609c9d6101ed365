from __future__ import annotations

import os
from typing import Any, Dict, Iterable, List, Optional

from rich import box
from rich.console import Console
from rich.table import Table

from dbre_bench.health import HealthCheckResult, HealthStatus
from dbre_bench.optimizations.base import StepRecord

_STATUS_STYLE = {
    HealthStatus.OK: "green",
    HealthStatus.WARNING: "yellow",
    HealthStatus.CRITICAL: "bold red",
}


def get_container_resources() -> Dict[str, Optional[str]]:
    """
    Get container resource constraints of the benchmarking client.

    Reads BENCHMARK_CPU_LIMIT / BENCHMARK_MEMORY_LIMIT first, then cgroup v2.
    """
    resources: Dict[str, Optional[str]] = {
        "cpus": os.environ.get("BENCHMARK_CPU_LIMIT"),
        "memory": os.environ.get("BENCHMARK_MEMORY_LIMIT"),
    }

    if resources["cpus"] is None:
        try:
            with open("/sys/fs/cgroup/cpu.max", "r") as f:
                parts = f.read().split()
            if len(parts) == 2 and parts[0] != "max":
                resources["cpus"] = f"{int(parts[0]) / int(parts[1]):.1f}"
        except (FileNotFoundError, PermissionError, ValueError):
            pass

    if resources["memory"] is None:
        try:
            with open("/sys/fs/cgroup/memory.max", "r") as f:
                content = f.read().strip()
            if content != "max":
                resources["memory"] = f"{int(content) / (1024**3):.1f}GB"
        except (FileNotFoundError, PermissionError, ValueError):
            pass

    return resources


def _ms(value: Optional[float], precision: int = 2) -> str:
    return "N/A" if value is None else f"{value:,.{precision}f}"


def _verdict(met: bool, target_ms: Optional[float]) -> str:
    if met:
        return f"[green]✓ < {target_ms}[/green]"
    return f"[red]✗ < {target_ms}[/red]"


def print_results(results: List[Dict[str, Any]], console: Optional[Console] = None) -> None:
    """
    Render benchmark results as a rich table, fastest query first.
    """
    console = console or Console()

    if not results:
        console.print("[yellow]No results to display.[/yellow]")
        return

    resources = get_container_resources()
    resource_parts = []
    if resources["cpus"]:
        resource_parts.append(f"CPU: {resources['cpus']} cores")
    if resources["memory"]:
        resource_parts.append(f"Memory: {resources['memory']}")

    phase = results[0].get("phase", "?")
    title = f"Query Benchmark ({phase})"
    if resource_parts:
        title = f"{title}\n[dim]Client Resources: {' │ '.join(resource_parts)}[/dim]"

    table = Table(
        title=title, box=box.ROUNDED, caption="Server execution time from EXPLAIN ANALYZE"
    )
    table.add_column("Query", style="cyan", no_wrap=True)
    table.add_column("Rows", justify="right", style="magenta")
    table.add_column("Runs", justify="right", style="blue")
    table.add_column("Exec (ms)\n[dim]Mean ± StdDev[/dim]", justify="right", style="green")
    table.add_column("p95 (ms)", justify="right", style="green")
    table.add_column("Planning (ms)", justify="right")
    table.add_column("Wall (ms)", justify="right", style="yellow")
    table.add_column("Seq Scan", justify="center")
    table.add_column("Target", justify="center")

    def sort_key(r: Dict[str, Any]) -> float:
        return r.get("execution_ms", {}).get("mean", float("inf"))

    for res in sorted(results, key=sort_key):
        execution = res.get("execution_ms", {})
        runs = str(res.get("runs", 0))
        if res.get("failed_runs"):
            runs = f"{runs} [red]({res['failed_runs']} failed)[/red]"
        exec_str = (
            f"{execution['mean']:.2f} ± {execution['stddev']:.2f}" if execution else "N/A"
        )
        table.add_row(
            res.get("query", "Unknown"),
            f"{res.get('rows', 0):,}",
            runs,
            exec_str,
            _ms(execution.get("p95")),
            _ms(res.get("planning_ms", {}).get("mean")),
            _ms(res.get("wall_ms", {}).get("mean")),
            "[red]yes[/red]" if res.get("seq_scan") else "no",
            _verdict(res.get("meets_target", False), res.get("target_ms")),
        )

    console.print(table)


def print_comparison(rows: List[Dict[str, Any]], console: Optional[Console] = None) -> None:
    """Render the baseline vs optimized comparison."""
    console = console or Console()
    if not rows:
        console.print("[yellow]Nothing to compare.[/yellow]")
        return

    table = Table(title="Baseline vs Optimized", box=box.ROUNDED)
    table.add_column("Query", style="cyan", no_wrap=True)
    table.add_column("Baseline (ms)", justify="right", style="red")
    table.add_column("Optimized (ms)", justify="right", style="green")
    table.add_column("Improvement", justify="right", style="bold green")
    table.add_column("Speed-up", justify="right")
    table.add_column("Target", justify="center")

    for row in rows:
        improvement = row.get("improvement_pct")
        speedup = row.get("speedup")
        table.add_row(
            row["query"],
            _ms(row.get("baseline_ms"), 3),
            _ms(row.get("optimized_ms"), 3),
            "N/A" if improvement is None else f"{improvement:.2f}%",
            "N/A" if speedup is None else f"{speedup:,.1f}x",
            _verdict(row.get("meets_target", False), row.get("target_ms")),
        )
    console.print(table)


def print_steps(steps: Iterable[StepRecord], console: Optional[Console] = None) -> None:
    console = console or Console()
    table = Table(title="Optimization Steps", box=box.SIMPLE)
    table.add_column("Kind", style="blue")
    table.add_column("Object", style="cyan")
    table.add_column("Seconds", justify="right")
    for step in steps:
        table.add_row(step.kind, step.name, f"{step.seconds:.3f}")
    console.print(table)


def print_health(results: Iterable[HealthCheckResult], console: Optional[Console] = None) -> None:
    console = console or Console()
    table = Table(title="PostgreSQL Health", box=box.ROUNDED)
    table.add_column("Check", style="cyan")
    table.add_column("Status", justify="center")
    table.add_column("Detail")
    for result in results:
        style = _STATUS_STYLE[result.status]
        table.add_row(result.name, f"[{style}]{result.status.value}[/{style}]", result.message)
    console.print(table)


__all__ = [
    "get_container_resources",
    "print_comparison",
    "print_health",
    "print_results",
    "print_steps",
]
