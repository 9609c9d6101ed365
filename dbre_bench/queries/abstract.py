"""
Abstract query-case interfaces and result contracts.

A query case pairs the slow SQL as first written (`baseline`) with its rewrite
(`optimized`) and the pydantic model its rows validate against. Concrete cases
subclass AbstractQueryCase; the orchestrator measures them and returns
QueryRunResult dictionaries to standardize downstream aggregation and
reporting.
"""

from __future__ import annotations

import abc
from typing import (
    Any,
    ClassVar,
    Dict,
    List,
    Optional,
    Protocol,
    Tuple,
    Type,
    TypedDict,
    runtime_checkable,
)

from psycopg import Connection
from psycopg.rows import dict_row
from pydantic import BaseModel

BASELINE = "baseline"
OPTIMIZED = "optimized"
PHASES: Tuple[str, ...] = (BASELINE, OPTIMIZED)


def validate_phase(phase: str) -> str:
    if phase not in PHASES:
        raise ValueError(f"Unknown phase '{phase}'. Available: {', '.join(PHASES)}")
    return phase


class QueryRunResult(TypedDict, total=False):
    """
    Metrics for one measured execution of a query case.

    Fields are optional so failed runs can still be recorded; aggregation and
    reporting tolerate missing values.
    """

    query: str
    phase: str
    run: int
    rows: int
    planning_ms: float
    execution_ms: float
    wall_ms: float
    peak_rss_bytes: Optional[int]
    cpu_percent: Optional[float]
    node_types: List[str]
    seq_scan: bool
    error: Optional[str]
    notes: Optional[str]
    extra: Dict[str, Any]


@runtime_checkable
class QueryCase(Protocol):
    """
    Common interface all query cases implement.

    Attributes
    ----------
    name : str
        A short machine-friendly identifier.
    description : str
        A human-friendly summary of what the query answers.
    """

    name: str
    description: str

    def sql(self, phase: str) -> str:
        """Return the SQL text to execute for the given phase."""
        ...


class AbstractQueryCase(abc.ABC):
    """
    Base class for the four betting queries.

    Subclasses set `name`, `description`, `row_model` and both SQL texts.
    `requires` names the optimization objects (indexes or materialized views)
    the optimized text depends on.
    """

    name: ClassVar[str]
    description: ClassVar[str]
    row_model: ClassVar[Type[BaseModel]]
    requires: ClassVar[Tuple[str, ...]] = ()

    @property
    @abc.abstractmethod
    def baseline_sql(self) -> str:  # pragma: no cover - interface only
        raise NotImplementedError

    @property
    @abc.abstractmethod
    def optimized_sql(self) -> str:  # pragma: no cover - interface only
        raise NotImplementedError

    def sql(self, phase: str) -> str:
        validate_phase(phase)
        return self.baseline_sql if phase == BASELINE else self.optimized_sql

    def fetch(self, conn: Connection, phase: str = OPTIMIZED) -> List[BaseModel]:
        """Execute the phase's SQL and validate every row into `row_model`."""
        with conn.cursor(row_factory=dict_row) as cur:
            cur.execute(self.sql(phase))
            rows = cur.fetchall()
        return [self.row_model.model_validate(row) for row in rows]

    def __repr__(self) -> str:
        return f"<{type(self).__name__} name={self.name!r}>"


__all__ = [
    "AbstractQueryCase",
    "BASELINE",
    "OPTIMIZED",
    "PHASES",
    "QueryCase",
    "QueryRunResult",
    "validate_phase",
]
