"""
Query 3: user betting activity for a specific day.
"""

from __future__ import annotations

from dbre_bench.domain.models import UserActivityRow
from dbre_bench.queries.abstract import AbstractQueryCase

# Users below this many bets in a day are not reported.
MIN_DAILY_BETS = 5
TOP_USERS = 20


class UserActivityQuery(AbstractQueryCase):
    """
    Top bettors of yesterday by total wagered.

    Baseline joins bets to users, groups by user and sorts the aggregate,
    which spills to an external sort on the full dataset. The optimized text
    reads `mv_user_daily_activity`, where the join, grouping and HAVING
    filter were applied at refresh time.
    """

    name = "user_activity"
    description = f"Yesterday's top {TOP_USERS} users by total wagered (>= {MIN_DAILY_BETS} bets)."
    row_model = UserActivityRow
    requires = ("mv_user_daily_activity",)

    baseline_sql = f"""
SELECT
    u.id AS user_id,
    u.name AS user_name,
    COUNT(*) AS bet_count,
    SUM(b.amount) AS total_wagered,
    AVG(b.amount) AS avg_bet
FROM bets b
JOIN users u ON u.id = b.user_id
WHERE b.placed_at >= CURRENT_DATE - INTERVAL '1 day'
  AND b.placed_at < CURRENT_DATE
GROUP BY u.id, u.name
HAVING COUNT(*) >= {MIN_DAILY_BETS}
ORDER BY total_wagered DESC
LIMIT {TOP_USERS}
""".strip()

    optimized_sql = f"""
SELECT
    user_id,
    user_name,
    bet_count,
    total_wagered,
    avg_bet
FROM mv_user_daily_activity
WHERE bet_date >= CURRENT_DATE - INTERVAL '1 day'
  AND bet_date < CURRENT_DATE
ORDER BY total_wagered DESC
LIMIT {TOP_USERS}
""".strip()


__all__ = ["MIN_DAILY_BETS", "TOP_USERS", "UserActivityQuery"]
