"""
Query 1: active bets for upcoming events.

The optimized text is identical to the baseline. It gets fast through the
partial covering index on open bets, the (start_time, id, name) index on
events, the HASH index on users.id and the planner cost settings applied in
the optimized session.
"""

from __future__ import annotations

from dbre_bench.domain.models import ActiveBetRow
from dbre_bench.queries.abstract import AbstractQueryCase

_SQL = """
SELECT
  u.id AS user_id,
  u.name,
  b.id AS bet_id,
  b.status,
  b.amount,
  e.name AS event_name
FROM bets b
JOIN users u ON u.id = b.user_id
JOIN events e ON e.id = b.event_id
WHERE b.status = 'OPEN'
  AND e.start_time > NOW()
ORDER BY e.start_time ASC
LIMIT 100
""".strip()


class ActiveBetsQuery(AbstractQueryCase):
    name = "active_bets"
    description = "Open bets on upcoming events, soonest first (top 100)."
    row_model = ActiveBetRow
    requires = ("idx_bets_open_optimized", "idx_events_start_id_name", "idx_users_id_hash")

    baseline_sql = _SQL
    optimized_sql = _SQL


__all__ = ["ActiveBetsQuery"]
