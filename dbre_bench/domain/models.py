"""
Domain models for the betting dataset.

Defines the row schemas aligned with `db/schema.sql` and the result rows of
the four optimized queries. These models are used for validation of fetched
rows and by the synthetic data generator for status vocabularies.
"""
from __future__ import annotations

from datetime import date, datetime
from decimal import Decimal
from enum import Enum
from typing import Optional

from pydantic import BaseModel, Field


class BetStatus(str, Enum):
    OPEN = "OPEN"
    SETTLED = "SETTLED"
    CASHED_OUT = "CASHED_OUT"
    CANCELLED = "CANCELLED"


class EventStatus(str, Enum):
    SCHEDULED = "SCHEDULED"
    LIVE = "LIVE"
    FINISHED = "FINISHED"


class User(BaseModel):
    """A row of the `users` table."""

    id: int = Field(..., description="Primary key (BIGSERIAL).")
    name: str
    created_at: datetime

    model_config = {"frozen": True, "populate_by_name": True}


class Event(BaseModel):
    """A row of the `events` table."""

    id: int = Field(..., description="Primary key (BIGSERIAL).")
    name: str
    start_time: datetime
    status: EventStatus

    model_config = {"frozen": True, "populate_by_name": True}


class Bet(BaseModel):
    """
    A row of the `bets` fact table.
    """

    id: int = Field(..., description="Primary key (BIGSERIAL).")
    user_id: int
    event_id: int
    status: BetStatus
    amount: Decimal = Field(..., ge=0)
    placed_at: datetime

    model_config = {"frozen": True, "populate_by_name": True}


class ActiveBetRow(BaseModel):
    """Query 1: an open bet on an upcoming event."""

    user_id: int
    name: str
    bet_id: int
    status: BetStatus
    amount: Decimal
    event_name: str

    model_config = {"frozen": True, "populate_by_name": True}


class DailySettlementRow(BaseModel):
    """Query 2: one status bucket of the daily settlement report."""

    bet_date: date
    status: BetStatus
    bet_count: int
    total_amount: Decimal
    avg_bet_size: Decimal

    model_config = {"frozen": True, "populate_by_name": True}


class UserActivityRow(BaseModel):
    """Query 3: a heavy bettor for the reporting day."""

    user_id: int
    user_name: str
    bet_count: int
    total_wagered: Decimal
    avg_bet: Decimal

    model_config = {"frozen": True, "populate_by_name": True}


class RecentBetCountRow(BaseModel):
    """Query 4: bets per status over the recent window."""

    status: BetStatus
    count: int
    last_update: Optional[datetime] = None

    model_config = {"frozen": True, "populate_by_name": True}


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
