"""
Reconciliation engine.

Answers "matches for date X" from the store (bootstrapping the schedule from the
Primary provider on a miss), keeps today's matches current by polling the Secondary
provider only while a match is live or about to start, and resolves single-match
details through a Secondary -> Primary fallback chain.

Every operation reads the clock once, reconfigures both adapters from the league
registry, and processes matches sequentially with per-match error isolation.
"""
from __future__ import annotations

import asyncio
from dataclasses import dataclass, field
from datetime import date, datetime, timedelta
from enum import Enum
from typing import Iterable, Optional

from shared.config import Settings, get_settings
from shared.errors import DataIntegrityViolation, MatchSyncError, UpstreamError
from shared.models.domain import Match, MatchDetail
from shared.models.enums import PRIMARY, SECONDARY, MatchStatus
from shared.utils.clock import Clock, SystemClock
from shared.utils.database import DatabaseManager
from shared.utils.logging import bind_operation, get_logger
from shared.utils.metrics import (
    ACTIVE_MATCHES,
    ENGINE_OPERATION,
    LINK_OUTCOMES,
    MATCHES_PURGED,
    SYNC_RUNS,
    atrack_latency,
)

from ingest.providers.base import FootballProvider
from ingest.providers.registry import build_providers, provider_for_date
from reconciler import audit as actions
from reconciler.audit import AuditService
from reconciler.leagues import LeagueRegistry, SqlAllowedLeagueSource
from reconciler.linking import LinkOutcome, LinkResult, find_by_teams, link_match
from reconciler.store import MatchStore, SqlMatchStore, status_regression
from reconciler.team_matcher import same_team

logger = get_logger(__name__)


class SyncMode(str, Enum):
    SECONDARY = "secondary"
    PRIMARY_FALLBACK = "primary_fallback"
    SKIPPED = "skipped"


@dataclass
class SyncReport:
    """Outcome of one live-sync cycle."""
    mode: SyncMode
    started_at: datetime
    active: int = 0
    updated: int = 0
    finished: int = 0
    upserted: int = 0
    links: list[LinkResult] = field(default_factory=list)
    error: Optional[str] = None

    def summary(self) -> dict:
        return {
            "mode": self.mode.value,
            "started_at": self.started_at.isoformat(),
            "active": self.active,
            "linked": sum(1 for r in self.links if r.linked),
            "updated": self.updated,
            "finished": self.finished,
            "upserted": self.upserted,
            "error": self.error,
        }


def is_active(match: Match, now: datetime, imminent_window: timedelta) -> bool:
    """Live now, or SCHEDULED with kickoff no later than `now + imminent_window`."""
    if match.status.is_live:
        return True
    return match.status == MatchStatus.SCHEDULED and match.utc_date <= now + imminent_window


def _differs(stored: Match, fresh: Match) -> bool:
    return (
        stored.status != fresh.status
        or stored.minute != fresh.minute
        or stored.score != fresh.score
        or bool(fresh.events and fresh.events != stored.events)
        or bool(fresh.statistics and fresh.statistics != stored.statistics)
    )


class ReconciliationEngine:
    """Orchestrates providers, league registry and store."""

    def __init__(
        self,
        primary: FootballProvider,
        secondary: FootballProvider,
        store: MatchStore,
        registry: LeagueRegistry,
        audit: Optional[AuditService] = None,
        clock: Optional[Clock] = None,
        settings: Optional[Settings] = None,
    ) -> None:
        self._primary = primary
        self._secondary = secondary
        self._store = store
        self._registry = registry
        self._audit = audit
        self._clock = clock or SystemClock()
        settings = settings or get_settings()
        self._range_days = settings.bootstrap_range_days
        self._imminent = timedelta(seconds=settings.imminent_kickoff_window_s)
        self._tolerance = timedelta(seconds=settings.link_kickoff_tolerance_s)
        self._sync_lock = asyncio.Lock()

    @property
    def sync_in_progress(self) -> bool:
        return self._sync_lock.locked()

    def today(self) -> date:
        return self._clock.now().date()

    @property
    def audit(self) -> Optional[AuditService]:
        return self._audit

    async def start(self) -> None:
        await self._primary.start()
        await self._secondary.start()

    async def close(self) -> None:
        await self._primary.close()
        await self._secondary.close()

    # ── Shared steps ────────────────────────────────────────────────────
    async def _configure_adapters(self) -> None:
        self._primary.set_allowed_leagues(await self._registry.provider_ids(PRIMARY))
        self._secondary.set_allowed_leagues(await self._registry.provider_ids(SECONDARY))

    async def _audit_log(self, action: str, details: dict) -> None:
        if self._audit is not None:
            await self._audit.log(action, details)

    async def _purge_invalid(self, matches: Iterable[Match]) -> list[Match]:
        """Drop (and delete from the store) matches whose competition left the allow-list."""
        valid: list[Match] = []
        for match in matches:
            try:
                await self._registry.ensure_allowed(match)
            except DataIntegrityViolation as violation:
                await self._purge(violation)
                continue
            valid.append(match)
        return valid

    async def _purge(self, violation: DataIntegrityViolation) -> None:
        logger.warning(
            "match_purged",
            match_id=violation.match_id,
            competition_id=violation.competition_id,
            provider=violation.provider,
        )
        try:
            await self._store.delete(violation.match_id)
        except Exception as exc:
            logger.error("match_purge_failed", match_id=violation.match_id, error=str(exc))
            return
        MATCHES_PURGED.labels(provider=violation.provider).inc()
        await self._audit_log(
            actions.MATCH_PURGED,
            {
                "match_id": violation.match_id,
                "competition_id": violation.competition_id,
                "provider": violation.provider,
            },
        )

    async def _secondary_league_for(self, match: Match) -> Optional[int]:
        if match.provider == SECONDARY:
            return match.competition.id
        return await self._registry.secondary_id_for(match.competition.id)

    # ── Matches for a date ──────────────────────────────────────────────
    @bind_operation("matches_for_date")
    async def matches_for_date(self, day: date) -> list[Match]:
        """
        Stored matches for `day`, self-healed against the allow-list. When nothing is
        stored, bootstrap `[day, day + bootstrap_range_days]` from the Primary provider.
        Never calls the Secondary provider; never raises for upstream failures.
        """
        async with atrack_latency(ENGINE_OPERATION, operation="matches_for_date"):
            await self._configure_adapters()
            try:
                stored = await self._store.matches_by_date(day)
            except Exception as exc:
                logger.error("store_read_failed", date=day.isoformat(), error=str(exc))
                return []
            matches = await self._purge_invalid(stored)
            if matches:
                return matches
            return await self._bootstrap(day)

    async def _bootstrap(self, day: date) -> list[Match]:
        date_to = day + timedelta(days=self._range_days)
        logger.info("schedule_bootstrap", date_from=day.isoformat(), date_to=date_to.isoformat())
        try:
            fetched = await self._primary.get_matches_range(day, date_to)
        except UpstreamError as exc:
            logger.error("schedule_bootstrap_failed", date=day.isoformat(), error=str(exc))
            return []

        written, kept = await self._upsert_all(fetched, day, date_to)
        result = [
            kept.get(m.id, m)
            for m in fetched
            if m.match_date == day and await self._registry.is_allowed(m.competition.id, m.provider)
        ]
        result.sort(key=lambda m: (m.utc_date, m.id))
        await self._audit_log(
            actions.MATCHES_FOR_DATE,
            {"date": day.isoformat(), "fetched": len(fetched), "upserted": written, "returned": len(result)},
        )
        return result

    async def _upsert_all(
        self, fetched: list[Match], date_from: date, date_to: date
    ) -> tuple[int, dict[int, Match]]:
        """
        Upsert every fetched match, never moving a stored one backwards.
        Returns (written, stored matches that were kept in place).
        """
        try:
            existing = {m.id: m for m in await self._store.matches_in_range(date_from, date_to)}
        except Exception as exc:
            logger.warning("store_range_read_failed", error=str(exc))
            existing = {}
        written = 0
        kept: dict[int, Match] = {}
        for match in fetched:
            stored = existing.get(match.id)
            if stored is not None and status_regression(stored.status, match.status):
                kept[match.id] = stored
                continue
            try:
                if await self._store.upsert(match):
                    written += 1
            except Exception as exc:
                logger.error("match_upsert_failed", match_id=match.id, error=str(exc))
        return written, kept

    @bind_operation("sync_upcoming_schedule")
    async def sync_upcoming_schedule(self) -> int:
        """Refresh `[today, today + bootstrap_range_days]` from the Primary provider."""
        async with atrack_latency(ENGINE_OPERATION, operation="sync_upcoming_schedule"):
            today = self._clock.now().date()
            await self._configure_adapters()
            date_to = today + timedelta(days=self._range_days)
            try:
                fetched = await self._primary.get_matches_range(today, date_to)
            except UpstreamError as exc:
                logger.error("schedule_sync_failed", error=str(exc))
                return 0
            written, _ = await self._upsert_all(fetched, today, date_to)
            logger.info("schedule_synced", fetched=len(fetched), upserted=written)
            await self._audit_log(
                actions.MATCHES_FOR_DATE,
                {"date": today.isoformat(), "range_days": self._range_days, "upserted": written},
            )
            return written

    # ── Live sync ───────────────────────────────────────────────────────
    @bind_operation("sync_live_matches")
    async def sync_live_matches(self) -> SyncReport:
        """
        One live-sync cycle for today. Polls the Secondary provider (once) only when a
        stored match is live or kicks off within the imminent window; otherwise refreshes
        today from the Primary provider. An overlapping call is a no-op.
        """
        now = self._clock.now()
        if self._sync_lock.locked():
            logger.info("live_sync_already_running")
            return SyncReport(mode=SyncMode.SKIPPED, started_at=now)
        async with self._sync_lock:
            async with atrack_latency(ENGINE_OPERATION, operation="sync_live_matches"):
                report = await self._sync_live(now)
        SYNC_RUNS.labels(mode=report.mode.value).inc()
        logger.info("live_sync_completed", **report.summary())
        await self._audit_log(actions.SYNC_LIVE_MATCHES, report.summary())
        return report

    async def _sync_live(self, now: datetime) -> SyncReport:
        today = now.date()
        await self._configure_adapters()
        try:
            needing = await self._store.matches_needing_update(today)
        except Exception as exc:
            logger.error("store_read_failed", date=today.isoformat(), error=str(exc))
            return SyncReport(mode=SyncMode.SKIPPED, started_at=now, error=str(exc))

        active = [m for m in needing if is_active(m, now, self._imminent)]
        ACTIVE_MATCHES.set(len(active))
        if not active:
            return await self._primary_refresh(today, now)

        report = SyncReport(mode=SyncMode.SECONDARY, started_at=now, active=len(active))
        logger.info("live_sync_polling_secondary", active=[m.id for m in active])
        try:
            secondary_day = await self._secondary.get_matches(today)
        except UpstreamError as exc:
            logger.error("live_sync_secondary_failed", error=str(exc))
            report.error = str(exc)
            return report
        if not secondary_day:
            logger.info("live_sync_secondary_empty")
            return report

        try:
            base_all = await self._purge_invalid(await self._store.matches_by_date(today))
        except Exception as exc:
            logger.error("store_read_failed", date=today.isoformat(), error=str(exc))
            report.error = str(exc)
            return report

        for base in base_all:
            result = await self._link_and_update(base, secondary_day)
            LINK_OUTCOMES.labels(outcome=result.outcome.value).inc()
            report.links.append(result)
            if result.updated:
                report.updated += 1

        linked = {r.match_id for r in report.links if r.linked}
        for base in base_all:
            if base.status.is_live and base.id not in linked:
                if await self._settle_quiet_finish(base, secondary_day):
                    report.finished += 1
        return report

    async def _link_and_update(self, base: Match, secondary_day: list[Match]) -> LinkResult:
        try:
            league_id = await self._secondary_league_for(base)
            result = link_match(base, secondary_day, league_id, self._tolerance)
            if not result.linked or result.candidate is None:
                return result
            candidate = result.candidate
            if status_regression(base.status, candidate.status):
                logger.info(
                    "link_status_regression",
                    match_id=base.id,
                    candidate_id=candidate.id,
                    candidate_status=candidate.status.value,
                )
                return result
            if not _differs(base, candidate):
                return result
            result.updated = await self._store.update_status(
                base.id,
                candidate.status,
                candidate.minute,
                candidate.score.home,
                candidate.score.away,
                events=candidate.events or None,
                venue=candidate.venue,
                statistics=candidate.statistics or None,
            )
            logger.info(
                "match_linked_updated",
                match_id=base.id,
                candidate_id=candidate.id,
                status=candidate.status.value,
                minute=candidate.minute,
                score=f"{candidate.score.home}-{candidate.score.away}",
            )
            return result
        except Exception as exc:
            logger.error("link_failed", match_id=base.id, error=str(exc))
            return LinkResult(match_id=base.id, outcome=LinkOutcome.FAILED, error=str(exc))

    async def _settle_quiet_finish(self, base: Match, secondary_day: list[Match]) -> bool:
        """
        A stored live match the link pass did not reach may have finished without
        passing through the live feed. Confirm through the Secondary fixture details
        and write the final state. Any failure leaves the stored record as it was.
        """
        try:
            league_id = await self._secondary_league_for(base)
            if league_id is None:
                return False
            candidate = find_by_teams(base, secondary_day, league_id)
            if candidate is None or not candidate.status.is_finished:
                return False
            logger.info("quiet_finish_detected", match_id=base.id, candidate_id=candidate.id)
            detail = await self._secondary.get_match_details(candidate.id)
            if not detail.status.is_finished:
                logger.info(
                    "quiet_finish_unconfirmed", match_id=base.id, detail_status=detail.status.value
                )
                return False
            return await self._store.update_status(
                base.id,
                detail.status,
                detail.minute,
                detail.score.home,
                detail.score.away,
                events=detail.events or None,
                venue=detail.venue,
                statistics=detail.statistics or None,
            )
        except Exception as exc:
            logger.error("quiet_finish_failed", match_id=base.id, error=str(exc))
            return False

    async def _primary_refresh(self, today: date, now: datetime) -> SyncReport:
        report = SyncReport(mode=SyncMode.PRIMARY_FALLBACK, started_at=now)
        try:
            fetched = await self._primary.get_matches(today)
        except UpstreamError as exc:
            logger.error("primary_refresh_failed", error=str(exc))
            report.error = str(exc)
            return report
        allowed = [
            m for m in fetched if await self._registry.is_allowed(m.competition.id, m.provider)
        ]
        report.upserted, _ = await self._upsert_all(allowed, today, today)
        return report

    # ── Match details ───────────────────────────────────────────────────
    @bind_operation("match_details")
    async def match_details(self, match_id: int) -> MatchDetail:
        """
        Secondary first (events, statistics), Primary on any failure. A Secondary
        fixture is only accepted when its teams agree with the stored match of that id.
        Raises the Primary failure (MatchNotFound / UpstreamError) when both fail.
        """
        async with atrack_latency(ENGINE_OPERATION, operation="match_details"):
            await self._configure_adapters()
            await self._audit_log(actions.MATCH_DETAILS, {"match_id": match_id})
            try:
                stored = await self._store.match_by_id(match_id)
            except Exception as exc:
                logger.warning("store_read_failed", match_id=match_id, error=str(exc))
                stored = None

            try:
                detail = await self._secondary.get_match_details(match_id)
            except MatchSyncError as exc:
                logger.info("details_secondary_failed", match_id=match_id, error=str(exc))
            else:
                if stored is None or (
                    same_team(stored.home_team.name, detail.home_team.name)
                    and same_team(stored.away_team.name, detail.away_team.name)
                ):
                    return detail
                logger.warning(
                    "details_secondary_mismatch",
                    match_id=match_id,
                    stored=f"{stored.home_team.name} v {stored.away_team.name}",
                    secondary=f"{detail.home_team.name} v {detail.away_team.name}",
                )

            return await self._primary.get_match_details(match_id)

    # ── Diagnostics ─────────────────────────────────────────────────────
    @bind_operation("upstream_matches")
    async def upstream_matches(self, day: date) -> list[Match]:
        """Ask the provider that serves `day` directly, bypassing the store."""
        await self._configure_adapters()
        provider = provider_for_date(day, self._clock.now().date(), self._primary, self._secondary)
        logger.info("upstream_matches", date=day.isoformat(), provider=provider.tag.value)
        return await provider.get_matches(day)


def build_engine(
    db: DatabaseManager,
    settings: Optional[Settings] = None,
    clock: Optional[Clock] = None,
) -> ReconciliationEngine:
    """Wire providers, league registry, SQL store and audit log over one database."""
    settings = settings or get_settings()
    clock = clock or SystemClock()
    registry = LeagueRegistry(SqlAllowedLeagueSource(db), ttl_s=settings.league_cache_ttl_s, clock=clock)
    primary, secondary = build_providers(settings, clock)
    return ReconciliationEngine(
        primary=primary,
        secondary=secondary,
        store=SqlMatchStore(db, registry),
        registry=registry,
        audit=AuditService(db),
        clock=clock,
        settings=settings,
    )
