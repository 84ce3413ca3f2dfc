"""
API-Football (api-sports.io) v3 provider adapter. Secondary, metered source of live data:
elapsed minute, events and per-team statistics.
Credential header x-apisports-key; daily quota reported in x-ratelimit-requests-remaining.
"""
from __future__ import annotations

from datetime import date, datetime
from typing import Any, Optional

import httpx

from shared.config import Settings, get_settings
from shared.errors import MalformedPayload, MatchNotFound, UpstreamUnavailable
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
from shared.utils.metrics import SECONDARY_QUOTA_REMAINING

from ingest.providers.base import FootballProvider, parse_optional_int

logger = get_logger(__name__)

QUOTA_HEADER = "x-ratelimit-requests-remaining"
QUOTA_WARN_BELOW = 10

STATUS_MAP: dict[str, MatchStatus] = {
    "NS": MatchStatus.SCHEDULED,
    "TBD": MatchStatus.SCHEDULED,
    "1H": MatchStatus.IN_PLAY,
    "2H": MatchStatus.IN_PLAY,
    "ET": MatchStatus.IN_PLAY,
    "P": MatchStatus.IN_PLAY,
    "LIVE": MatchStatus.IN_PLAY,
    "HT": MatchStatus.PAUSED,
    "BT": MatchStatus.PAUSED,
    "SUSP": MatchStatus.SUSPENDED,
    "INT": MatchStatus.SUSPENDED,
    "FT": MatchStatus.FINISHED,
    "AET": MatchStatus.FINISHED,
    "PEN": MatchStatus.FINISHED,
    "AWD": MatchStatus.FINISHED,
    "PST": MatchStatus.POSTPONED,
    "CAN": MatchStatus.CANCELED,
    "ABD": MatchStatus.CANCELED,
    "WO": MatchStatus.CANCELED,
}


def _map_status(short: str) -> MatchStatus:
    """Map API-Football fixture.status.short to MatchStatus."""
    return STATUS_MAP.get((short or "").strip().upper(), MatchStatus.SCHEDULED)


def _map_event_type(kind: str, detail: Optional[str]) -> str:
    if kind == "Goal":
        return EventType.GOAL.value
    if kind == "Card":
        if detail and "Yellow" in detail:
            return EventType.YELLOW_CARD.value
        if detail and "Red" in detail:
            return EventType.RED_CARD.value
        return "CARD"
    if kind == "subst":
        return EventType.SUBSTITUTION.value
    return (kind or "").upper()


def _league_id(raw: dict[str, Any]) -> Optional[int]:
    return parse_optional_int((raw.get("league") or {}).get("id"))


class ApiFootballProvider(FootballProvider):
    """API-Football v3 (fixtures endpoint only)."""

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
            headers["x-apisports-key"] = api_key
        http_client = http_client or ProviderHTTPClient(
            provider_name=ProviderTag.API_FOOTBALL.value,
            base_url=settings.api_football_base_url,
            headers=headers,
            timeout_s=settings.provider_request_timeout_s,
            max_retries=settings.provider_max_retries,
            max_retry_after_s=settings.provider_max_retry_after_s,
        )
        http_client.add_response_hook(self._record_quota)
        super().__init__(ProviderTag.API_FOOTBALL, http_client, clock)
        self._quota_remaining: Optional[int] = None

    @property
    def quota_remaining(self) -> Optional[int]:
        """Requests left today, as last reported by the provider (None until first call)."""
        return self._quota_remaining

    def _record_quota(self, resp: httpx.Response) -> None:
        remaining = parse_optional_int(resp.headers.get(QUOTA_HEADER))
        if remaining is None:
            return
        self._quota_remaining = remaining
        SECONDARY_QUOTA_REMAINING.set(remaining)
        if remaining < QUOTA_WARN_BELOW:
            logger.warning("api_football_quota_low", remaining=remaining)

    async def _fixtures(self, params: dict[str, Any]) -> list[dict[str, Any]]:
        data = await self._http.get_json("/fixtures", params=params)
        errors = data.get("errors")
        # API-Football reports auth/plan/quota problems in the body with HTTP 200
        if errors:
            raise UpstreamUnavailable(ProviderTag.API_FOOTBALL.value, f"body errors: {errors}")
        response = data.get("response") or []
        return [f for f in response if isinstance(f, dict)]

    async def get_matches(self, day: date) -> list[Match]:
        if self._blocked("get_matches"):
            return []
        fixtures = await self._fixtures({"date": day.isoformat()})
        return self._parse_allowed(fixtures, _league_id, self._parse_fixture)

    async def get_matches_range(self, date_from: date, date_to: date) -> list[Match]:
        if self._blocked("get_matches_range"):
            return []
        fixtures = await self._fixtures({"from": date_from.isoformat(), "to": date_to.isoformat()})
        return self._parse_allowed(fixtures, _league_id, self._parse_fixture)

    async def get_match_details(self, match_id: int) -> MatchDetail:
        if self._blocked("get_match_details"):
            raise MatchNotFound(match_id, reason="no allowed leagues configured")
        fixtures = await self._fixtures({"id": match_id})
        if not fixtures:
            raise MatchNotFound(match_id)
        fixture = fixtures[0]
        if _league_id(fixture) not in self._allowed:
            raise MatchNotFound(match_id, reason="competition not allowed for api-football")
        try:
            match = self._parse_fixture(fixture)
        except (KeyError, TypeError, ValueError) as exc:
            logger.warning("api_football_parse_detail_error", error=str(exc), match_id=match_id)
            raise MalformedPayload(
                self._tag.value, f"match {match_id}: unreadable payload: {exc}"
            ) from exc
        return self._check_detail_allowed(match_id, MatchDetail(**match.model_dump()))

    async def get_live_matches(self) -> list[Match]:
        if self._blocked("get_live_matches"):
            return []
        fixtures = await self._fixtures({"live": "all"})
        return self._parse_allowed(fixtures, _league_id, self._parse_fixture)

    def _parse_fixture(self, raw: dict[str, Any]) -> Match:
        """Build Match from an API-Football fixture object."""
        fixture = raw["fixture"]
        status = fixture.get("status") or {}
        league = raw.get("league") or {}
        teams = raw.get("teams") or {}
        home = teams.get("home") or {}
        away = teams.get("away") or {}
        goals = raw.get("goals") or {}
        return Match(
            id=int(fixture["id"]),
            utc_date=datetime.fromisoformat(str(fixture["date"]).replace("Z", "+00:00")),
            status=_map_status(status.get("short", "")),
            minute=parse_optional_int(status.get("elapsed")),
            home_team=TeamRef(id=int(home.get("id") or 0), name=home.get("name") or "", crest=home.get("logo")),
            away_team=TeamRef(id=int(away.get("id") or 0), name=away.get("name") or "", crest=away.get("logo")),
            score=FullTimeScore(home=goals.get("home"), away=goals.get("away")),
            competition=CompetitionRef(
                id=parse_optional_int(league.get("id")),
                name=league.get("name") or "",
                emblem=league.get("logo"),
            ),
            stage=league.get("round") or "",
            group=None,
            provider=ProviderTag.API_FOOTBALL,
            venue=(fixture.get("venue") or {}).get("name") or None,
            statistics=self._parse_statistics(raw, home.get("id"), away.get("id")),
            events=self._parse_events(raw),
        )

    def _parse_events(self, raw: dict[str, Any]) -> list[MatchEvent]:
        events: list[MatchEvent] = []
        for e in raw.get("events") or []:
            time = e.get("time") or {}
            events.append(MatchEvent(
                type=_map_event_type(e.get("type") or "", e.get("detail")),
                minute=(parse_optional_int(time.get("elapsed")) or 0) + (parse_optional_int(time.get("extra")) or 0),
                team_name=(e.get("team") or {}).get("name"),
                player_name=(e.get("player") or {}).get("name"),
            ))
        return events

    def _parse_statistics(
        self, raw: dict[str, Any], home_id: Any, away_id: Any
    ) -> list[MatchStatistic]:
        """Pair the home and away statistics blocks by stat type."""
        blocks = raw.get("statistics") or []
        by_team = {(b.get("team") or {}).get("id"): b.get("statistics") or [] for b in blocks}
        home_stats = by_team.get(home_id, [])
        away_values = {s.get("type"): s.get("value") for s in by_team.get(away_id, [])}
        return [
            MatchStatistic(
                type=s.get("type") or "",
                home=s.get("value") if s.get("value") is not None else 0,
                away=away_values.get(s.get("type")) if away_values.get(s.get("type")) is not None else 0,
            )
            for s in home_stats
        ]
