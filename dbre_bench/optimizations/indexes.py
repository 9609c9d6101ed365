"""
Index definitions for the betting queries.

All indexes are built with CREATE INDEX CONCURRENTLY so writes to `bets`
are not blocked while they build. That form cannot run inside a transaction
block, hence the autocommit requirement on the connection.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Dict, Iterable, List, Optional, Tuple

from psycopg import Connection

from dbre_bench.optimizations.base import StepRecord, execute_step, require_autocommit
from dbre_bench.utils.logging import get_logger

log = get_logger(__name__)

INDEX_METHODS = ("btree", "hash", "brin")


@dataclass(frozen=True)
class IndexDefinition:
    name: str
    table: str
    columns: Tuple[str, ...]
    method: str = "btree"
    where: Optional[str] = None
    purpose: str = ""

    def __post_init__(self) -> None:
        if self.method not in INDEX_METHODS:
            raise ValueError(f"Unsupported index method '{self.method}' for {self.name}")
        if not self.columns:
            raise ValueError(f"Index {self.name} needs at least one column")
        if self.method == "hash" and len(self.columns) != 1:
            raise ValueError("HASH indexes support a single column")

    def create_sql(self, concurrently: bool = True) -> str:
        mode = " CONCURRENTLY" if concurrently else ""
        using = "" if self.method == "btree" else f" USING {self.method.upper()}"
        sql = (
            f"CREATE INDEX{mode} IF NOT EXISTS {self.name} "
            f"ON {self.table}{using} ({', '.join(self.columns)})"
        )
        if self.where:
            sql += f" WHERE {self.where}"
        return sql

    def drop_sql(self, concurrently: bool = True) -> str:
        return drop_index_sql(self.name, concurrently)


def drop_index_sql(name: str, concurrently: bool = True) -> str:
    mode = " CONCURRENTLY" if concurrently else ""
    return f"DROP INDEX{mode} IF EXISTS {name}"


# Leftovers from earlier tuning attempts that overlap the definitions below.
LEGACY_INDEXES: Tuple[str, ...] = (
    "idx_bets_status",
    "idx_bets_open_covering",
    "idx_events_future_covering",
)

INDEXES: Tuple[IndexDefinition, ...] = (
    IndexDefinition(
        name="idx_bets_open_optimized",
        table="bets",
        columns=("event_id", "user_id", "status", "amount", "id"),
        where="status = 'OPEN'",
        purpose="active_bets: partial covering index over open bets, ordered for the event join",
    ),
    IndexDefinition(
        name="idx_events_start_id_name",
        table="events",
        columns=("start_time", "id", "name"),
        purpose="active_bets: index-only range scan on upcoming events in start order",
    ),
    IndexDefinition(
        name="idx_users_id_hash",
        table="users",
        columns=("id",),
        method="hash",
        purpose="active_bets: equality lookups of users by id",
    ),
    IndexDefinition(
        name="idx_bets_placed_at_status",
        table="bets",
        columns=("placed_at", "status", "user_id", "amount"),
        purpose="time-range scans behind the baseline reports and view refreshes",
    ),
    IndexDefinition(
        name="idx_bets_placed_at_brin",
        table="bets",
        columns=("placed_at",),
        method="brin",
        purpose="compact block-range index on the append-ordered placed_at column",
    ),
)


def get_index(name: str) -> IndexDefinition:
    for index in INDEXES:
        if index.name == name:
            return index
    raise ValueError(f"Unknown index '{name}'. Available: {', '.join(i.name for i in INDEXES)}")


def drop_legacy_indexes(conn: Connection, concurrently: bool = True) -> List[StepRecord]:
    if concurrently:
        require_autocommit(conn, "DROP INDEX CONCURRENTLY")
    return [
        execute_step(conn, name, "drop_index", drop_index_sql(name, concurrently))
        for name in LEGACY_INDEXES
    ]


def index_validity(conn: Connection, names: Iterable[str]) -> Dict[str, Optional[bool]]:
    """
    Map each index name to `pg_index.indisvalid`.

    None means the index does not exist. False marks the leftover of an
    interrupted CREATE INDEX CONCURRENTLY: it still occupies the name but the
    planner never uses it.
    """
    names = list(names)
    if not names:
        return {}
    with conn.cursor() as cur:
        cur.execute(
            "SELECT c.relname, i.indisvalid FROM pg_index i "
            "JOIN pg_class c ON c.oid = i.indexrelid WHERE c.relname = ANY(%s)",
            (names,),
        )
        found = {name: valid for name, valid in cur.fetchall()}
    return {name: found.get(name) for name in names}


def create_indexes(
    conn: Connection,
    indexes: Iterable[IndexDefinition] = INDEXES,
    concurrently: bool = True,
) -> List[StepRecord]:
    """
    Build the indexes, first dropping any invalid leftover under the same name.

    IF NOT EXISTS alone would skip such a leftover and keep it unusable.
    """
    indexes = list(indexes)
    if concurrently:
        require_autocommit(conn, "CREATE INDEX CONCURRENTLY")
    validity = index_validity(conn, [index.name for index in indexes])

    steps: List[StepRecord] = []
    for index in indexes:
        if validity.get(index.name) is False:
            log.warning(
                f"[CREATE_INDEX] {index.name} exists but is INVALID; dropping before rebuild",
                extra={"index": index.name},
            )
            steps.append(
                execute_step(conn, index.name, "drop_index", index.drop_sql(concurrently))
            )
        steps.append(
            execute_step(conn, index.name, "create_index", index.create_sql(concurrently))
        )
    return steps


def drop_indexes(
    conn: Connection,
    indexes: Iterable[IndexDefinition] = INDEXES,
    concurrently: bool = True,
) -> List[StepRecord]:
    if concurrently:
        require_autocommit(conn, "DROP INDEX CONCURRENTLY")
    return [
        execute_step(conn, index.name, "drop_index", index.drop_sql(concurrently))
        for index in indexes
    ]


__all__ = [
    "INDEXES",
    "INDEX_METHODS",
    "IndexDefinition",
    "LEGACY_INDEXES",
    "create_indexes",
    "drop_index_sql",
    "drop_indexes",
    "drop_legacy_indexes",
    "get_index",
    "index_validity",
]
