"""
Match store: persistence of canonical matches and their events.

Every write is gated on the league allow-list, and no write may move a stored
match backwards: a FINISHED match stays finished and a live one never returns
to SCHEDULED. Events are owned by their match and are only ever replaced as a
whole.
"""
from __future__ import annotations

from datetime import date
from typing import Optional, Protocol, Sequence

from sqlalchemy import delete, select
from sqlalchemy.orm import selectinload

from shared.models.domain import (
    CompetitionRef,
    FullTimeScore,
    Match,
    MatchEvent,
    MatchStatistic,
    TeamRef,
)
from shared.models.enums import LEGACY_STATUS_CODES, MatchStatus, ProviderTag
from shared.models.orm import MatchEventORM, MatchORM
from shared.utils.database import DatabaseManager
from shared.utils.logging import get_logger
from shared.utils.metrics import MATCHES_UPSERTED

from reconciler.leagues import LeagueRegistry

logger = get_logger(__name__)

_NEEDS_UPDATE = (MatchStatus.SCHEDULED, MatchStatus.IN_PLAY, MatchStatus.PAUSED)
# Stored status values (canonical and legacy) that may still change today
NEEDS_UPDATE_CODES: tuple[str, ...] = tuple(s.value for s in _NEEDS_UPDATE) + tuple(
    code for code, status in LEGACY_STATUS_CODES.items() if status in _NEEDS_UPDATE
)


class MatchStore(Protocol):
    async def matches_by_date(self, day: date) -> list[Match]: ...

    async def matches_in_range(self, date_from: date, date_to: date) -> list[Match]: ...

    async def match_by_id(self, match_id: int) -> Optional[Match]: ...

    async def upsert(self, match: Match) -> bool: ...

    async def update_status(
        self,
        match_id: int,
        status: MatchStatus,
        minute: Optional[int],
        home_score: Optional[int],
        away_score: Optional[int],
        events: Optional[Sequence[MatchEvent]] = None,
        venue: Optional[str] = None,
        statistics: Optional[Sequence[MatchStatistic]] = None,
    ) -> bool: ...

    async def delete(self, match_id: int) -> bool: ...

    async def matches_needing_update(self, day: date) -> list[Match]: ...


def status_regression(stored: MatchStatus, incoming: MatchStatus) -> bool:
    """
    True when writing `incoming` over `stored` would move a match backwards:
    reopening a finished match, or sending a live one back to SCHEDULED.
    """
    if stored.is_finished:
        return not incoming.is_finished
    return stored.is_live and incoming == MatchStatus.SCHEDULED


def _event_rows(events: Sequence[MatchEvent]) -> list[MatchEventORM]:
    return [
        MatchEventORM(type=e.type, minute=e.minute, player=e.player_name, team=e.team_name)
        for e in events
    ]


def to_domain(row: MatchORM) -> Match:
    """Map an ORM row (events eagerly loaded) to the domain model."""
    return Match(
        id=row.id,
        utc_date=row.kickoff,
        status=MatchStatus.coerce(row.status),
        minute=row.minute,
        home_team=TeamRef(id=row.home_team_id, name=row.home_team, crest=row.home_team_crest),
        away_team=TeamRef(id=row.away_team_id, name=row.away_team, crest=row.away_team_crest),
        score=FullTimeScore(home=row.home_score, away=row.away_score),
        competition=CompetitionRef(
            id=row.competition_id, name=row.competition or "", emblem=row.competition_emblem
        ),
        stage=row.stage or "",
        group=row.group_name,
        provider=ProviderTag(row.provider),
        venue=row.venue,
        statistics=[MatchStatistic.model_validate(s) for s in (row.statistics or [])],
        events=[
            MatchEvent(type=e.type, minute=e.minute, team_name=e.team, player_name=e.player)
            for e in row.events
        ],
    )


class SqlMatchStore:
    """MatchStore over the `matches` / `match_events` tables."""

    def __init__(self, db: DatabaseManager, registry: LeagueRegistry) -> None:
        self._db = db
        self._registry = registry

    async def _select(self, *criteria) -> list[Match]:
        stmt = (
            select(MatchORM)
            .options(selectinload(MatchORM.events))
            .where(*criteria)
            .order_by(MatchORM.kickoff, MatchORM.id)
        )
        async with self._db.read_session() as session:
            result = await session.execute(stmt)
            return [to_domain(row) for row in result.scalars().all()]

    async def matches_by_date(self, day: date) -> list[Match]:
        return await self._select(MatchORM.match_date == day)

    async def matches_in_range(self, date_from: date, date_to: date) -> list[Match]:
        return await self._select(MatchORM.match_date >= date_from, MatchORM.match_date <= date_to)

    async def matches_needing_update(self, day: date) -> list[Match]:
        """Matches on `day` whose status is live-like or SCHEDULED (legacy codes included)."""
        return await self._select(MatchORM.match_date == day, MatchORM.status.in_(NEEDS_UPDATE_CODES))

    async def match_by_id(self, match_id: int) -> Optional[Match]:
        matches = await self._select(MatchORM.id == match_id)
        return matches[0] if matches else None

    async def upsert(self, match: Match) -> bool:
        """
        Insert or update a match. Silently skipped (returns False) when its competition
        is not allow-listed for its provider or when it would move a stored match backwards.

        Events and statistics are replaced only when the incoming lists are non-empty;
        a missing venue keeps the stored one.
        """
        if not await self._registry.is_allowed(match.competition.id, match.provider):
            logger.debug(
                "match_upsert_blocked",
                match_id=match.id,
                competition_id=match.competition.id,
                provider=match.provider.value,
            )
            return False

        async with self._db.write_session() as session:
            row = await session.get(MatchORM, match.id, options=[selectinload(MatchORM.events)])
            if row is None:
                row = MatchORM(id=match.id, events=[], statistics=[])
                session.add(row)
            elif status_regression(MatchStatus.coerce(row.status), match.status):
                logger.warning(
                    "match_upsert_status_regression",
                    match_id=match.id,
                    incoming_status=match.status.value,
                )
                return False

            row.kickoff = match.utc_date
            row.match_date = match.match_date
            row.status = match.status.value
            row.minute = match.minute
            row.home_team_id = match.home_team.id
            row.home_team = match.home_team.name
            row.home_team_crest = match.home_team.crest
            row.home_score = match.score.home
            row.away_team_id = match.away_team.id
            row.away_team = match.away_team.name
            row.away_team_crest = match.away_team.crest
            row.away_score = match.score.away
            row.competition_id = match.competition.id
            row.competition = match.competition.name
            row.competition_emblem = match.competition.emblem
            row.stage = match.stage
            row.group_name = match.group
            row.provider = match.provider.value
            if match.venue:
                row.venue = match.venue
            if match.statistics:
                row.statistics = [s.model_dump() for s in match.statistics]
            if match.events:
                row.events = _event_rows(match.events)

        MATCHES_UPSERTED.labels(source=match.provider.value).inc()
        return True

    async def update_status(
        self,
        match_id: int,
        status: MatchStatus,
        minute: Optional[int],
        home_score: Optional[int],
        away_score: Optional[int],
        events: Optional[Sequence[MatchEvent]] = None,
        venue: Optional[str] = None,
        statistics: Optional[Sequence[MatchStatistic]] = None,
    ) -> bool:
        """
        Partial live-state update. `events=None` leaves events untouched; any list
        (even empty) replaces them. Returns False when the match is missing or the
        write would move the match backwards (see status_regression).
        """
        async with self._db.write_session() as session:
            row = await session.get(MatchORM, match_id, options=[selectinload(MatchORM.events)])
            if row is None:
                logger.warning("match_update_missing", match_id=match_id)
                return False
            if status_regression(MatchStatus.coerce(row.status), status):
                logger.warning(
                    "match_update_status_regression", match_id=match_id, incoming_status=status.value
                )
                return False

            row.status = status.value
            row.minute = minute
            row.home_score = home_score
            row.away_score = away_score
            if venue:
                row.venue = venue
            if statistics:
                row.statistics = [s.model_dump() for s in statistics]
            if events is not None:
                row.events = _event_rows(events)
        return True

    async def delete(self, match_id: int) -> bool:
        async with self._db.write_session() as session:
            await session.execute(delete(MatchEventORM).where(MatchEventORM.match_id == match_id))
            result = await session.execute(delete(MatchORM).where(MatchORM.id == match_id))
        return bool(result.rowcount)
