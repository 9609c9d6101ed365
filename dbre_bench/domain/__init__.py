"""
Domain package for the betting query toolkit.

Exports the table and result-row models used across queries, the data
generator and the orchestrator. Keep this package focused on data
definitions and validation concerns.
"""

from dbre_bench.domain.models import (
    ActiveBetRow,
    Bet,
    BetStatus,
    DailySettlementRow,
    Event,
    EventStatus,
    RecentBetCountRow,
    User,
    UserActivityRow,
)

__all__ = [
    "ActiveBetRow",
    "Bet",
    "BetStatus",
    "DailySettlementRow",
    "Event",
    "EventStatus",
    "RecentBetCountRow",
    "User",
    "UserActivityRow",
]
