"""
Query package for the betting query toolkit.

This module re-exports the abstract interfaces and the four concrete query
cases so downstream code can import from `dbre_bench.queries` directly.
"""

from dbre_bench.queries.abstract import (
    BASELINE,
    OPTIMIZED,
    PHASES,
    AbstractQueryCase,
    QueryCase,
    QueryRunResult,
    validate_phase,
)
from dbre_bench.queries.active_bets import ActiveBetsQuery
from dbre_bench.queries.daily_settlement import DailySettlementQuery
from dbre_bench.queries.recent_bet_counts import RecentBetCountsQuery
from dbre_bench.queries.user_activity import UserActivityQuery

__all__ = [
    # Abstracts
    "AbstractQueryCase",
    "QueryCase",
    "QueryRunResult",
    "BASELINE",
    "OPTIMIZED",
    "PHASES",
    "validate_phase",
    # Concrete queries
    "ActiveBetsQuery",
    "DailySettlementQuery",
    "RecentBetCountsQuery",
    "UserActivityQuery",
]
