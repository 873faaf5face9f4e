"""
Pydantic request/response schemas for the game-night wagering API.

Using explicit schemas instead of raw dicts keeps ORM rows out of the
response bodies and generates accurate OpenAPI docs.
"""

from __future__ import annotations

from datetime import date, datetime
from typing import Dict, List, Optional

from pydantic import BaseModel, Field, field_validator, model_validator


# ---------------------------------------------------------------------------
# Odds
# ---------------------------------------------------------------------------

class OddsQuoteResponse(BaseModel):
    member_id: int
    member_name: Optional[str] = None
    team_name: Optional[str] = None
    odds_times100: int
    decimal: str = Field(..., description='Total return per unit, e.g. "2.75"')
    fraction: str = Field(..., description='Profit fraction, e.g. "7/4"')


class OddsBoardResponse(BaseModel):
    game_id: int
    game_name: str
    scheduled_date: date
    state: str
    overround: float = Field(..., description="Σ 100/odds over branches; 1.25 = 125 %")
    quotes: List[OddsQuoteResponse]


class ManualOddsUpdate(BaseModel):
    """Payload for PUT /api/admin/games/{game_id}/odds."""

    member_id: int
    odds_times100: int = Field(..., description="Decimal odds ×100, 101..10000")

    model_config = {
        "json_schema_extra": {
            "example": {"member_id": 3, "odds_times100": 275}
        }
    }


class OddsUpdateResponse(BaseModel):
    game_id: int
    odds: Dict[int, int]


# ---------------------------------------------------------------------------
# Wagers
# ---------------------------------------------------------------------------

class WagerCreate(BaseModel):
    """
    Payload for POST /api/games/{game_id}/wagers.

    Back either a member (``member_id``) or a team (``team_name``), not
    both.  Backing a member who plays on a team backs the whole team.
    """

    member_id: Optional[int] = Field(None, description="Contestant being backed")
    team_name: Optional[str] = Field(None, max_length=80, description="Team being backed")
    amount: int = Field(..., description="Coins staked")

    @field_validator("team_name")
    @classmethod
    def strip_team_name(cls, v: Optional[str]) -> Optional[str]:
        if v is None:
            return v
        v = v.strip()
        return v or None

    @model_validator(mode="after")
    def exactly_one_pick(self) -> "WagerCreate":
        if (self.member_id is None) == (self.team_name is None):
            raise ValueError("Provide exactly one of member_id or team_name")
        return self

    @property
    def predicted_winner(self):
        return self.team_name if self.team_name is not None else self.member_id

    model_config = {
        "json_schema_extra": {
            "example": {"member_id": 3, "amount": 50}
        }
    }


class WagerResponse(BaseModel):
    id: int
    game_id: int
    bettor_id: str
    predicted_member_id: int
    predicted_team_name: Optional[str] = None
    amount: int
    odds_times100: int
    is_resolved: bool
    payout: int
    created_at: Optional[datetime] = None
    resolved_at: Optional[datetime] = None


class PlaceWagerResponse(BaseModel):
    message: str
    wager: WagerResponse
    odds: Dict[int, int]


# ---------------------------------------------------------------------------
# Admin: results and settlement
# ---------------------------------------------------------------------------

class ResultUpdate(BaseModel):
    """Payload for POST /api/admin/games/{game_id}/result."""

    winner_member_id: Optional[int] = None
    winner_team_name: Optional[str] = None
    no_winner: bool = Field(False, description="Played, nobody won (e.g. lost co-op)")

    @model_validator(mode="after")
    def one_outcome(self) -> "ResultUpdate":
        chosen = sum([
            self.winner_member_id is not None,
            bool(self.winner_team_name),
            self.no_winner,
        ])
        if chosen != 1:
            raise ValueError("Set exactly one of winner_member_id, winner_team_name, no_winner")
        return self


class ResolveResponse(BaseModel):
    game_id: int
    status: str
    settled: int
    payouts: Dict[str, int]


class CancelResponse(BaseModel):
    game_id: int
    status: str
    refunded: Dict[str, int]


# ---------------------------------------------------------------------------
# Ratings and nightly results
# ---------------------------------------------------------------------------

class LeaderboardEntry(BaseModel):
    rank: int
    member_id: int
    name: str
    rating: int
    last_updated: Optional[datetime] = None


class NightResultEntry(BaseModel):
    bettor_id: str
    display_name: Optional[str] = None
    staked: int
    returned: int
    net: int


class NightResultsResponse(BaseModel):
    scheduled_date: date
    results: List[NightResultEntry]
