"""
Query 4: recent bet count by status.

Baseline counts the last hour straight from `bets` (a sequential scan over
the fact table without a placed_at index). The optimized text reads the
four-row `mv_recent_bet_counts` rollup, whose freshness is bounded by its
refresh cadence (every 5-10 minutes).
"""

from __future__ import annotations

from dbre_bench.domain.models import RecentBetCountRow
from dbre_bench.queries.abstract import AbstractQueryCase


class RecentBetCountsQuery(AbstractQueryCase):
    name = "recent_bet_counts"
    description = "Bets placed per status over the last hour."
    row_model = RecentBetCountRow
    requires = ("mv_recent_bet_counts",)

    baseline_sql = """
SELECT
    status,
    COUNT(*) AS count,
    MAX(placed_at) AS last_update
FROM bets
WHERE placed_at >= NOW() - INTERVAL '1 hour'
GROUP BY status
""".strip()

    optimized_sql = """
SELECT
    status,
    count,
    last_update
FROM mv_recent_bet_counts
""".strip()


__all__ = ["RecentBetCountsQuery"]
