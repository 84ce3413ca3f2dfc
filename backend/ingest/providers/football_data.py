"""
Football-Data.org (football-data.org) provider adapter. Primary source of schedule truth.
Uses v4 API with X-Auth-Token. Free tier: 10 requests/min.
"""
from __future__ import annotations

import re
from datetime import date, datetime
from typing import Any, Optional

from shared.config import Settings, get_settings
from shared.errors import MalformedPayload, MatchNotFound, UpstreamRejected
from shared.models.domain import (
    CompetitionRef,
    FullTimeScore,
    Match,
    MatchDetail,
    MatchEvent,
    MatchStatistic,
    TeamRef,
)
from shared.models.enums import EventType, MatchStatus, ProviderTag
from shared.utils.clock import Clock
from shared.utils.http_client import ProviderHTTPClient
from shared.utils.logging import get_logger

from ingest.providers.base import FootballProvider, parse_optional_int

logger = get_logger(__name__)

_FC_PREFIX = re.compile(r"^FC\s+")
_FC_SUFFIX = re.compile(r"\s+FC$")

# homeTeam.statistics keys -> display label
_STAT_LABELS = {
    "ball_possession": "Ball Possession",
    "shots": "Total Shots",
    "shots_on_goal": "Shots on Goal",
    "shots_off_goal": "Shots off Goal",
    "corner_kicks": "Corner Kicks",
    "fouls": "Fouls",
    "offsides": "Offsides",
    "saves": "Goalkeeper Saves",
    "yellow_cards": "Yellow Cards",
    "red_cards": "Red Cards",
}


def _map_status(status: str) -> MatchStatus:
    """Map football-data.org status to MatchStatus."""
    s = (status or "").strip().upper()
    if s in ("SCHEDULED", "TIMED"):
        return MatchStatus.SCHEDULED
    if s in ("LIVE", "IN_PLAY"):
        return MatchStatus.IN_PLAY
    if s == "PAUSED":
        return MatchStatus.PAUSED
    if s in ("FINISHED", "AWARDED"):
        return MatchStatus.FINISHED
    if s == "POSTPONED":
        return MatchStatus.POSTPONED
    if s == "SUSPENDED":
        return MatchStatus.SUSPENDED
    if s in ("CANCELED", "CANCELLED"):
        return MatchStatus.CANCELED
    return MatchStatus.SCHEDULED


def display_name(name: str, short_name: Optional[str]) -> str:
    """Prefer a usable shortName, otherwise strip a leading/trailing "FC"."""
    name = name or ""
    if short_name and short_name != name and len(short_name) > 3:
        return short_name
    return _FC_SUFFIX.sub("", _FC_PREFIX.sub("", name))


def _parse_utc(raw: str) -> datetime:
    return datetime.fromisoformat(raw.replace("Z", "+00:00"))


def _competition_id(raw: dict[str, Any]) -> Optional[int]:
    return parse_optional_int((raw.get("competition") or {}).get("id"))


class FootballDataProvider(FootballProvider):
    """Football-Data.org v4 API."""

    def __init__(
        self,
        api_key: str,
        settings: Settings | None = None,
        clock: Clock | None = None,
        http_client: ProviderHTTPClient | None = None,
    ) -> None:
        settings = settings or get_settings()
        headers: dict[str, str] = {}
        if api_key:
            headers["X-Auth-Token"] = api_key
        http_client = http_client or ProviderHTTPClient(
            provider_name=ProviderTag.FOOTBALL_DATA.value,
            base_url=settings.football_data_base_url,
            headers=headers,
            timeout_s=settings.provider_request_timeout_s,
            max_retries=settings.provider_max_retries,
            max_retry_after_s=settings.provider_max_retry_after_s,
        )
        super().__init__(ProviderTag.FOOTBALL_DATA, http_client, clock)

    async def get_matches(self, day: date) -> list[Match]:
        if self._blocked("get_matches"):
            return []
        return await self._fetch_range(day, day)

    async def get_matches_range(self, date_from: date, date_to: date) -> list[Match]:
        if self._blocked("get_matches_range"):
            return []
        return await self._fetch_range(date_from, date_to)

    async def get_match_details(self, match_id: int) -> MatchDetail:
        """GET /matches/{id} and parse to MatchDetail with goals, bookings and substitutions."""
        if self._blocked("get_match_details"):
            raise MatchNotFound(match_id, reason="no allowed leagues configured")
        try:
            data = await self._http.get_json(f"/matches/{match_id}")
        except UpstreamRejected as exc:
            if exc.status == 404:
                raise MatchNotFound(match_id) from exc
            raise
        if _competition_id(data) not in self._allowed:
            raise MatchNotFound(match_id, reason="competition not allowed for football-data")
        try:
            detail = self._parse_detail(data)
        except (KeyError, TypeError, ValueError) as exc:
            logger.warning("football_data_parse_detail_error", error=str(exc), match_id=match_id)
            raise MalformedPayload(
                self._tag.value, f"match {match_id}: unreadable payload: {exc}"
            ) from exc
        return self._check_detail_allowed(match_id, detail)

    async def get_live_matches(self) -> list[Match]:
        """Today's matches whose status is live-like (the list endpoint has no live filter)."""
        matches = await self.get_matches(self._today())
        return [m for m in matches if m.status.is_live]

    async def _fetch_range(self, date_from: date, date_to: date) -> list[Match]:
        params = {
            "dateFrom": date_from.isoformat(),
            "dateTo": date_to.isoformat(),
            "competitions": ",".join(str(i) for i in sorted(self._allowed)),
        }
        data = await self._http.get_json("/matches", params=params)
        # Filter again in case the API ignored the competitions filter
        matches = self._parse_allowed(data.get("matches") or [], _competition_id, self._parse_match)
        logger.debug(
            "football_data_matches_fetched",
            date_from=params["dateFrom"],
            date_to=params["dateTo"],
            raw=len(data.get("matches") or []),
            allowed=len(matches),
        )
        return matches

    def _parse_match(self, data: dict[str, Any]) -> Match:
        """Build Match from football-data match JSON."""
        home = data.get("homeTeam") or {}
        away = data.get("awayTeam") or {}
        comp = data.get("competition") or {}
        ft = (data.get("score") or {}).get("fullTime") or {}
        return Match(
            id=int(data["id"]),
            utc_date=_parse_utc(data["utcDate"]),
            status=_map_status(data.get("status", "")),
            minute=None,
            home_team=TeamRef(
                id=int(home.get("id") or 0),
                name=display_name(home.get("name", ""), home.get("shortName")),
                crest=home.get("crest"),
            ),
            away_team=TeamRef(
                id=int(away.get("id") or 0),
                name=display_name(away.get("name", ""), away.get("shortName")),
                crest=away.get("crest"),
            ),
            score=FullTimeScore(home=ft.get("home"), away=ft.get("away")),
            competition=CompetitionRef(
                id=parse_optional_int(comp.get("id")),
                name=comp.get("name", ""),
                emblem=comp.get("emblem"),
            ),
            stage=data.get("stage") or "",
            group=data.get("group"),
            provider=ProviderTag.FOOTBALL_DATA,
            venue=data.get("venue") or None,
        )

    def _parse_detail(self, data: dict[str, Any]) -> MatchDetail:
        match = self._parse_match(data)
        minute = parse_optional_int(data.get("minute"))
        if minute is not None:
            minute += parse_optional_int(data.get("injuryTime")) or 0
        return MatchDetail(
            **match.model_dump(exclude={"minute", "events", "statistics"}),
            minute=minute,
            events=self._parse_events(data),
            statistics=self._parse_statistics(data),
        )

    def _parse_events(self, data: dict[str, Any]) -> list[MatchEvent]:
        """Build MatchEvents from goals, bookings and substitutions arrays."""
        events: list[MatchEvent] = []
        for g in data.get("goals") or []:
            events.append(MatchEvent(
                type=EventType.GOAL.value,
                minute=_event_minute(g),
                team_name=(g.get("team") or {}).get("name"),
                player_name=(g.get("scorer") or {}).get("name"),
            ))
        for b in data.get("bookings") or []:
            card = (b.get("card") or "").upper()
            events.append(MatchEvent(
                type=EventType.RED_CARD.value if "RED" in card else EventType.YELLOW_CARD.value,
                minute=_event_minute(b),
                team_name=(b.get("team") or {}).get("name"),
                player_name=(b.get("player") or {}).get("name"),
            ))
        for s in data.get("substitutions") or []:
            events.append(MatchEvent(
                type=EventType.SUBSTITUTION.value,
                minute=_event_minute(s),
                team_name=(s.get("team") or {}).get("name"),
                player_name=(s.get("playerIn") or {}).get("name"),
            ))
        events.sort(key=lambda e: e.minute)
        return events

    def _parse_statistics(self, data: dict[str, Any]) -> list[MatchStatistic]:
        """Pair homeTeam.statistics and awayTeam.statistics by key."""
        home_stat = (data.get("homeTeam") or {}).get("statistics") or {}
        away_stat = (data.get("awayTeam") or {}).get("statistics") or {}
        stats: list[MatchStatistic] = []
        for key in home_stat:
            stats.append(MatchStatistic(
                type=_STAT_LABELS.get(key, key),
                home=home_stat.get(key),
                away=away_stat.get(key),
            ))
        return stats


def _event_minute(raw: dict[str, Any]) -> int:
    return (parse_optional_int(raw.get("minute")) or 0) + (parse_optional_int(raw.get("injuryTime")) or 0)
