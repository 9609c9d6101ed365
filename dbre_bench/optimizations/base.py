"""
Shared step execution for optimization DDL.

Every statement issued by the optimizer goes through `execute_step` so it is
timed, logged and reported back as a StepRecord.
"""

from __future__ import annotations

import time
from dataclasses import asdict, dataclass
from typing import Any, Dict

from psycopg import Connection

from dbre_bench.utils.logging import get_logger

log = get_logger(__name__)


@dataclass(frozen=True)
class StepRecord:
    """Outcome of one optimization statement."""

    name: str
    kind: str
    sql: str
    seconds: float

    def as_dict(self) -> Dict[str, Any]:
        return asdict(self)


def require_autocommit(conn: Connection, what: str) -> None:
    """Fail early for statements PostgreSQL refuses inside a transaction block."""
    if not conn.autocommit:
        raise ValueError(f"{what} must run on an autocommit connection")


def execute_step(conn: Connection, name: str, kind: str, sql: str) -> StepRecord:
    log.info(f"[{kind.upper()}] {name}", extra={"step": name, "kind": kind})
    start = time.perf_counter()
    with conn.cursor() as cur:
        cur.execute(sql)
    if not conn.autocommit:
        conn.commit()
    seconds = time.perf_counter() - start
    log.debug(
        f"[{kind.upper()} DONE] {name}",
        extra={"step": name, "kind": kind, "seconds": round(seconds, 3)},
    )
    return StepRecord(name=name, kind=kind, sql=sql, seconds=seconds)


__all__ = ["StepRecord", "execute_step", "require_autocommit"]
