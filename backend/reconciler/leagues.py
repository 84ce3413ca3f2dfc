"""
League allow-list registry.

Holds the mapping from each canonical competition to every provider's external
competition id. Read-mostly: loaded lazily from its source and cached for a TTL.
Concurrent readers may see a stale but consistent snapshot until the next reload.
"""
from __future__ import annotations

from datetime import datetime
from typing import Optional, Protocol, Sequence

from sqlalchemy import select

from shared.errors import DataIntegrityViolation
from shared.models.domain import AllowedLeague, Match
from shared.models.enums import ProviderTag
from shared.models.orm import AllowedLeagueORM
from shared.utils.clock import Clock, SystemClock
from shared.utils.database import DatabaseManager
from shared.utils.logging import get_logger

logger = get_logger(__name__)


class AllowedLeagueSource(Protocol):
    async def load(self) -> Sequence[AllowedLeague]:
        """Return every configured league, active or not."""
        ...


class SqlAllowedLeagueSource:
    """Reads the `allowed_leagues` table."""

    def __init__(self, db: DatabaseManager) -> None:
        self._db = db

    async def load(self) -> list[AllowedLeague]:
        async with self._db.read_session() as session:
            result = await session.execute(select(AllowedLeagueORM).order_by(AllowedLeagueORM.id))
            return [AllowedLeague.model_validate(row) for row in result.scalars().all()]


class LeagueRegistry:
    """TTL-cached view of the active allow-list."""

    def __init__(
        self,
        source: AllowedLeagueSource,
        ttl_s: float = 3600,
        clock: Clock | None = None,
    ) -> None:
        self._source = source
        self._ttl_s = ttl_s
        self._clock = clock or SystemClock()
        self._leagues: Optional[tuple[AllowedLeague, ...]] = None
        self._loaded_at: Optional[datetime] = None

    def _fresh(self) -> bool:
        if self._leagues is None or self._loaded_at is None:
            return False
        return (self._clock.now() - self._loaded_at).total_seconds() < self._ttl_s

    async def refresh(self) -> list[AllowedLeague]:
        """Reload from the source now. On failure the previous snapshot stays in place."""
        try:
            rows = await self._source.load()
        except Exception as exc:
            logger.error(
                "league_registry_refresh_failed",
                error=str(exc),
                serving_stale=self._leagues is not None,
            )
            return list(self._leagues or ())
        self._leagues = tuple(league for league in rows if league.is_active)
        self._loaded_at = self._clock.now()
        logger.info("league_registry_refreshed", active=len(self._leagues), total=len(rows))
        return list(self._leagues)

    async def active_leagues(self) -> list[AllowedLeague]:
        if self._fresh():
            return list(self._leagues or ())
        return await self.refresh()

    async def provider_ids(self, provider: ProviderTag) -> list[int]:
        """External competition ids allowed for `provider`."""
        ids: list[int] = []
        for league in await self.active_leagues():
            external = league.external_id(provider)
            if external is not None and external not in ids:
                ids.append(external)
        return ids

    async def is_allowed(self, competition_id: Optional[int], provider: ProviderTag) -> bool:
        if competition_id is None:
            return False
        return any(
            league.external_id(provider) == competition_id for league in await self.active_leagues()
        )

    async def ensure_allowed(self, match: Match) -> None:
        """Raise DataIntegrityViolation when `match` is outside its provider's allow-list."""
        if not await self.is_allowed(match.competition.id, match.provider):
            raise DataIntegrityViolation(match.id, match.competition.id, match.provider.value)

    async def secondary_id_for(self, primary_competition_id: Optional[int]) -> Optional[int]:
        """Secondary-provider id of the league whose Primary id is given, if mapped."""
        if primary_competition_id is None:
            return None
        for league in await self.active_leagues():
            if league.football_data_id == primary_competition_id:
                return league.api_football_id
        return None
