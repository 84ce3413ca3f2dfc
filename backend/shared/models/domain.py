"""
Pydantic v2 domain models shared across all matchsync services.
These are the canonical provider-agnostic representations, NOT ORM models.
"""
from __future__ import annotations

from datetime import date, datetime, timezone
from typing import Optional, Union

from pydantic import BaseModel, ConfigDict, Field, field_validator

from shared.models.enums import MatchStatus, ProviderTag


# ── Base ────────────────────────────────────────────────────────────────
class DomainModel(BaseModel):
    model_config = ConfigDict(from_attributes=True, populate_by_name=True)


# ── Reference entities ──────────────────────────────────────────────────
class TeamRef(DomainModel):
    id: int
    name: str
    crest: Optional[str] = None


class CompetitionRef(DomainModel):
    id: Optional[int] = None
    name: str = ""
    emblem: Optional[str] = None


class FullTimeScore(DomainModel):
    home: Optional[int] = None
    away: Optional[int] = None


# ── Events / statistics ─────────────────────────────────────────────────
class MatchEvent(DomainModel):
    """Goal, card, substitution or any other provider event. `type` is an EventType value or
    the provider's own upper-cased label."""
    type: str
    minute: int = 0
    team_name: Optional[str] = None
    player_name: Optional[str] = None


StatValue = Union[int, float, str, None]


class MatchStatistic(DomainModel):
    type: str
    home: StatValue = None
    away: StatValue = None


# ── Match ───────────────────────────────────────────────────────────────
class Match(DomainModel):
    """Canonical fixture record. One per fixture id, owned by the provider in `provider`."""
    id: int
    utc_date: datetime
    status: MatchStatus = MatchStatus.SCHEDULED
    minute: Optional[int] = None
    home_team: TeamRef
    away_team: TeamRef
    score: FullTimeScore = Field(default_factory=FullTimeScore)
    competition: CompetitionRef = Field(default_factory=CompetitionRef)
    stage: str = ""
    group: Optional[str] = None
    provider: ProviderTag = ProviderTag.FOOTBALL_DATA
    venue: Optional[str] = None
    statistics: list[MatchStatistic] = Field(default_factory=list)
    events: list[MatchEvent] = Field(default_factory=list)

    @field_validator("utc_date")
    @classmethod
    def _ensure_utc(cls, value: datetime) -> datetime:
        if value.tzinfo is None:
            return value.replace(tzinfo=timezone.utc)
        return value.astimezone(timezone.utc)

    @property
    def match_date(self) -> date:
        return self.utc_date.date()


class MatchDetail(Match):
    """Match fetched through a provider's single-fixture endpoint."""


# ── Allow-list ──────────────────────────────────────────────────────────
class AllowedLeague(DomainModel):
    id: int
    name: str
    football_data_id: Optional[int] = None
    api_football_id: Optional[int] = None
    is_active: bool = True

    def external_id(self, provider: ProviderTag) -> Optional[int]:
        if provider == ProviderTag.FOOTBALL_DATA:
            return self.football_data_id
        return self.api_football_id
