"""
Query 2: daily settlement report for yesterday.

Baseline aggregates every bet placed yesterday on each call. The optimized
text reads the pre-aggregated `mv_daily_settlement` rollup instead.
"""

from __future__ import annotations

from dbre_bench.domain.models import DailySettlementRow
from dbre_bench.queries.abstract import AbstractQueryCase


class DailySettlementQuery(AbstractQueryCase):
    name = "daily_settlement"
    description = "Yesterday's bet count, volume and average stake per status."
    row_model = DailySettlementRow
    requires = ("mv_daily_settlement",)

    baseline_sql = """
SELECT
    DATE(placed_at) AS bet_date,
    status,
    COUNT(*) AS bet_count,
    SUM(amount) AS total_amount,
    AVG(amount) AS avg_bet_size
FROM bets
WHERE placed_at >= CURRENT_DATE - INTERVAL '1 day'
  AND placed_at < CURRENT_DATE
GROUP BY DATE(placed_at), status
ORDER BY status
""".strip()

    optimized_sql = """
SELECT
    bet_date,
    status,
    bet_count,
    total_amount,
    avg_bet_size
FROM mv_daily_settlement
WHERE bet_date >= CURRENT_DATE - INTERVAL '1 day'
  AND bet_date < CURRENT_DATE
ORDER BY status
""".strip()


__all__ = ["DailySettlementQuery"]
