"""
EXPLAIN ANALYZE capture and parsing.

Runs queries under `EXPLAIN (ANALYZE, BUFFERS, VERBOSE)` in text format, keeps
the raw plan as before/after evidence and extracts the figures the benchmark
needs: planning time, execution time, rows returned by the root node and the
plan node types (to spot sequential scans that survived an optimization).

Usage:
    from dbre_bench.explain import explain_query, save_plan

    capture = explain_query(conn, "SELECT ...")
    print(capture.execution_ms, capture.node_types)
    save_plan(capture, Path("plans"), query="active_bets", phase="optimized")
"""

from __future__ import annotations

import re
from dataclasses import dataclass, field
from datetime import datetime, timezone
from pathlib import Path
from typing import List, Optional

from psycopg import Connection

_TIME_RE = re.compile(r"^\s*(Planning|Execution) Time:\s*([0-9.]+)\s*ms\s*$", re.MULTILINE)
_ACTUAL_ROWS_RE = re.compile(r"\(actual (?:time=[0-9.]+\.\.[0-9.]+ )?rows=([0-9.]+) loops=")


@dataclass
class PlanCapture:
    """
    Parsed EXPLAIN output for a single statement.
    """

    sql: str
    text: str
    planning_ms: Optional[float] = None
    execution_ms: Optional[float] = None
    rows: Optional[int] = None
    node_types: List[str] = field(default_factory=list)

    @property
    def seq_scan(self) -> bool:
        return any(node.endswith("Seq Scan") for node in self.node_types)

    @property
    def index_only(self) -> bool:
        return any(node.startswith("Index Only Scan") for node in self.node_types)


def _node_name(line: str) -> Optional[str]:
    if "(cost=" not in line and "(actual" not in line:
        return None
    head = re.split(r"\s\s\(cost=|\s\(cost=|\s\s\(actual|\s\(actual", line, maxsplit=1)[0].strip()
    if head.startswith("->"):
        head = head[2:].strip()
    for sep in (" using ", " on "):
        idx = head.find(sep)
        if idx != -1:
            head = head[:idx]
    return head.strip() or None


def parse_plan_text(text: str, sql: str = "") -> PlanCapture:
    """
    Parse textual EXPLAIN [ANALYZE] output.

    Timing fields stay None when the plan was produced without ANALYZE.
    """
    capture = PlanCapture(sql=sql, text=text)
    for label, value in _TIME_RE.findall(text):
        if label == "Planning":
            capture.planning_ms = float(value)
        else:
            capture.execution_ms = float(value)

    for line in text.splitlines():
        node = _node_name(line)
        if node:
            capture.node_types.append(node)

    # The first actual-rows figure belongs to the root node.
    match = _ACTUAL_ROWS_RE.search(text)
    if match:
        capture.rows = int(float(match.group(1)))
    return capture


def explain_options(analyze: bool = True, buffers: bool = True, verbose: bool = True) -> str:
    options = [
        name
        for name, enabled in (("ANALYZE", analyze), ("BUFFERS", buffers), ("VERBOSE", verbose))
        if enabled
    ]
    return f"EXPLAIN ({', '.join(options)})" if options else "EXPLAIN"


def explain_query(
    conn: Connection,
    sql: str,
    analyze: bool = True,
    buffers: bool = True,
    verbose: bool = True,
) -> PlanCapture:
    """
    Run the statement under EXPLAIN and parse the result.

    With `analyze=True` the statement really executes; only use it on
    read-only queries.
    """
    with conn.cursor() as cur:
        cur.execute(f"{explain_options(analyze, buffers, verbose)} {sql}")
        lines = [row[0] for row in cur.fetchall()]
    if not conn.autocommit:
        conn.rollback()
    return parse_plan_text("\n".join(lines), sql=sql)


def save_plan(capture: PlanCapture, directory: Path | str, query: str, phase: str) -> Path:
    """
    Write the plan to `<directory>/<query>_<phase>.txt` with a short header.
    """
    out_dir = Path(directory)
    out_dir.mkdir(parents=True, exist_ok=True)
    path = out_dir / f"{query}_{phase}.txt"
    captured_at = datetime.now(timezone.utc).isoformat()
    header = [
        f"-- query: {query}",
        f"-- phase: {phase}",
        f"-- captured_at: {captured_at}",
    ]
    if capture.execution_ms is not None:
        header.append(f"-- execution_ms: {capture.execution_ms:.3f}")
    body = "\n".join(header) + "\n\n" + capture.sql.strip() + ";\n\n" + capture.text.rstrip() + "\n"
    path.write_text(body, encoding="utf-8")
    return path


__all__ = ["PlanCapture", "explain_options", "explain_query", "parse_plan_text", "save_plan"]
