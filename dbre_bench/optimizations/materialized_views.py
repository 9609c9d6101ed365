"""
Materialized-view rollups backing the optimized report queries.

Each view is keyed by its GROUP BY columns and carries a UNIQUE index on that
key, which is what PostgreSQL requires before it accepts
REFRESH MATERIALIZED VIEW CONCURRENTLY. A concurrent refresh also needs the
view to be populated already; `refresh_views` falls back to a plain refresh
for views that are not.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Dict, Iterable, List, Optional, Tuple

from psycopg import Connection

from dbre_bench.optimizations.base import StepRecord, execute_step
from dbre_bench.queries.user_activity import MIN_DAILY_BETS
from dbre_bench.utils.logging import get_logger

log = get_logger(__name__)


@dataclass(frozen=True)
class MaterializedViewDefinition:
    name: str
    query: str
    unique_key: Tuple[str, ...]
    refresh_cadence: str
    purpose: str = ""

    @property
    def unique_index_name(self) -> str:
        return f"{self.name}_key_idx"

    def create_sql(self) -> str:
        return f"CREATE MATERIALIZED VIEW IF NOT EXISTS {self.name} AS\n{self.query}\nWITH DATA"

    def unique_index_sql(self) -> str:
        return (
            f"CREATE UNIQUE INDEX IF NOT EXISTS {self.unique_index_name} "
            f"ON {self.name} ({', '.join(self.unique_key)})"
        )

    def refresh_sql(self, concurrently: bool = True) -> str:
        mode = " CONCURRENTLY" if concurrently else ""
        return f"REFRESH MATERIALIZED VIEW{mode} {self.name}"

    def drop_sql(self) -> str:
        return f"DROP MATERIALIZED VIEW IF EXISTS {self.name}"


VIEWS: Tuple[MaterializedViewDefinition, ...] = (
    MaterializedViewDefinition(
        name="mv_daily_settlement",
        query="""SELECT
    DATE(placed_at) AS bet_date,
    status,
    COUNT(*) AS bet_count,
    SUM(amount) AS total_amount,
    AVG(amount) AS avg_bet_size
FROM bets
WHERE placed_at >= CURRENT_DATE - INTERVAL '30 days'
GROUP BY DATE(placed_at), status""",
        unique_key=("bet_date", "status"),
        refresh_cadence="daily",
        purpose="daily_settlement: 30-day rollup by day and status",
    ),
    MaterializedViewDefinition(
        name="mv_user_daily_activity",
        query=f"""SELECT
    DATE(b.placed_at) AS bet_date,
    u.id AS user_id,
    u.name AS user_name,
    COUNT(*) AS bet_count,
    SUM(b.amount) AS total_wagered,
    AVG(b.amount) AS avg_bet
FROM bets b
JOIN users u ON u.id = b.user_id
WHERE b.placed_at >= CURRENT_DATE - INTERVAL '30 days'
GROUP BY DATE(b.placed_at), u.id, u.name
HAVING COUNT(*) >= {MIN_DAILY_BETS}""",
        unique_key=("bet_date", "user_id"),
        refresh_cadence="daily",
        purpose="user_activity: 30-day rollup by day and user, heavy bettors only",
    ),
    MaterializedViewDefinition(
        name="mv_recent_bet_counts",
        query="""SELECT
    status,
    COUNT(*) AS count,
    MAX(placed_at) AS last_update
FROM bets
WHERE placed_at >= NOW() - INTERVAL '2 hours'
GROUP BY status""",
        unique_key=("status",),
        refresh_cadence="every 5-10 minutes",
        purpose="recent_bet_counts: per-status counts over a 2-hour window",
    ),
)


def get_view(name: str) -> MaterializedViewDefinition:
    for view in VIEWS:
        if view.name == name:
            return view
    raise ValueError(f"Unknown view '{name}'. Available: {', '.join(v.name for v in VIEWS)}")


def create_views(
    conn: Connection, views: Iterable[MaterializedViewDefinition] = VIEWS
) -> List[StepRecord]:
    steps: List[StepRecord] = []
    for view in views:
        steps.append(execute_step(conn, view.name, "create_view", view.create_sql()))
        steps.append(
            execute_step(conn, view.unique_index_name, "create_index", view.unique_index_sql())
        )
    return steps


def drop_views(
    conn: Connection, views: Iterable[MaterializedViewDefinition] = VIEWS
) -> List[StepRecord]:
    return [execute_step(conn, view.name, "drop_view", view.drop_sql()) for view in views]


def view_status(conn: Connection) -> Dict[str, Optional[bool]]:
    """
    Map each known view to whether it is populated.

    None means the view does not exist.
    """
    with conn.cursor() as cur:
        cur.execute(
            "SELECT matviewname, ispopulated FROM pg_matviews WHERE matviewname = ANY(%s)",
            ([view.name for view in VIEWS],),
        )
        found = {name: populated for name, populated in cur.fetchall()}
    return {view.name: found.get(view.name) for view in VIEWS}


def refresh_views(
    conn: Connection,
    names: Optional[Iterable[str]] = None,
    concurrently: bool = True,
) -> List[StepRecord]:
    """
    Refresh the given views (all by default).

    Works on autocommit and transactional connections alike; on the latter
    each refresh is committed as its own step.

    Raises
    ------
    ValueError
        For unknown view names or for views that do not exist yet.
    """
    selected = [get_view(name) for name in names] if names else list(VIEWS)
    status = view_status(conn)

    steps: List[StepRecord] = []
    for view in selected:
        populated = status.get(view.name)
        if populated is None:
            raise ValueError(f"Materialized view '{view.name}' does not exist; run optimize first")
        use_concurrent = concurrently and populated
        if concurrently and not populated:
            log.warning(
                f"[REFRESH] {view.name} is not populated; falling back to a blocking refresh",
                extra={"view": view.name},
            )
        steps.append(
            execute_step(conn, view.name, "refresh_view", view.refresh_sql(use_concurrent))
        )
    return steps


__all__ = [
    "MaterializedViewDefinition",
    "VIEWS",
    "create_views",
    "drop_views",
    "get_view",
    "refresh_views",
    "view_status",
]
