"""
dbre-bench - Query optimization toolkit for a PostgreSQL betting database.

This package turns a one-off query tuning exercise into a repeatable workflow:

- Schema fixture and synthetic data loading (users, events, bets)
- Baseline and optimized texts of the four reporting queries
- Index, materialized view and planner session tuning DDL
- EXPLAIN ANALYZE capture and baseline vs optimized benchmarks
- PostgreSQL health checks against latency and capacity thresholds
"""

from __future__ import annotations

__version__ = "0.1.0"
__license__ = "MIT"

# Public API exports
from dbre_bench.config import Settings, get_settings
from dbre_bench.explain import PlanCapture, explain_query, parse_plan_text
from dbre_bench.health import HealthCheckResult, HealthStatus, run_health_checks
from dbre_bench.optimizations.plan import (
    apply_optimizations,
    render_script,
    rollback_optimizations,
)
from dbre_bench.orchestrator import (
    RunConfig,
    available_queries,
    compare_phases,
    resolve_query,
    run_benchmarks,
)
from dbre_bench.queries.abstract import (
    BASELINE,
    OPTIMIZED,
    AbstractQueryCase,
    QueryCase,
    QueryRunResult,
)
from dbre_bench.utils.logging import configure_logging, get_logger
from dbre_bench.utils.profiler import ProfileStats, profile_block

__all__ = [
    # Version info
    "__version__",
    "__license__",
    # Configuration
    "Settings",
    "get_settings",
    # Query cases
    "BASELINE",
    "OPTIMIZED",
    "AbstractQueryCase",
    "QueryCase",
    "QueryRunResult",
    # Optimizations
    "apply_optimizations",
    "render_script",
    "rollback_optimizations",
    # Plans
    "PlanCapture",
    "explain_query",
    "parse_plan_text",
    # Orchestration
    "RunConfig",
    "available_queries",
    "compare_phases",
    "resolve_query",
    "run_benchmarks",
    # Health
    "HealthCheckResult",
    "HealthStatus",
    "run_health_checks",
    # Logging
    "configure_logging",
    "get_logger",
    # Profiling
    "ProfileStats",
    "profile_block",
]
