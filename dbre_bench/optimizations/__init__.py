"""
Optimization package: indexes, materialized views, maintenance and planner
session tuning for the betting queries.
"""

from dbre_bench.optimizations.base import StepRecord
from dbre_bench.optimizations.indexes import INDEXES, LEGACY_INDEXES, IndexDefinition, get_index
from dbre_bench.optimizations.materialized_views import (
    VIEWS,
    MaterializedViewDefinition,
    get_view,
    refresh_views,
    view_status,
)
from dbre_bench.optimizations.plan import (
    apply_optimizations,
    render_script,
    rollback_optimizations,
)
from dbre_bench.optimizations.session import (
    SESSION_TUNING,
    apply_session_tuning,
    reset_session_tuning,
)

__all__ = [
    "INDEXES",
    "LEGACY_INDEXES",
    "SESSION_TUNING",
    "VIEWS",
    "IndexDefinition",
    "MaterializedViewDefinition",
    "StepRecord",
    "apply_optimizations",
    "apply_session_tuning",
    "get_index",
    "get_view",
    "refresh_views",
    "render_script",
    "reset_session_tuning",
    "rollback_optimizations",
    "view_status",
]
