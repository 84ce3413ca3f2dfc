"""
Tests for the reconciliation engine: schedule bootstrap, live sync branching,
cross-provider updates and the match-details fallback chain.
"""
from __future__ import annotations

import asyncio
from datetime import date, datetime, timedelta, timezone
from unittest.mock import AsyncMock, MagicMock

import pytest

from shared.errors import MatchNotFound, UpstreamUnavailable
from shared.models.domain import MatchEvent
from shared.models.enums import PRIMARY, SECONDARY, MatchStatus

from reconciler import audit as actions
from reconciler.engine import ReconciliationEngine, SyncMode, is_active
from reconciler.leagues import LeagueRegistry
from reconciler.linking import LinkOutcome

from factories import (
    NOW,
    FakeProvider,
    InMemoryMatchStore,
    StaticLeagueSource,
    as_detail,
    make_match,
)

DAY = date(2025, 3, 1)


def at(day: int, hour: int, minute: int = 0) -> datetime:
    return datetime(2025, 3, day, hour, minute, tzinfo=timezone.utc)


def audited(audit: MagicMock, action: str) -> list[dict]:
    return [c.args[1] for c in audit.log.await_args_list if c.args[0] == action]


# ── Activity classification ────────────────────────────────────────────


def test_is_active() -> None:
    window = timedelta(minutes=5)
    assert is_active(make_match(1, NOW - timedelta(hours=1), "A", "B", status=MatchStatus.IN_PLAY), NOW, window)
    assert is_active(make_match(1, NOW, "A", "B", status=MatchStatus.PAUSED), NOW, window)
    assert is_active(make_match(1, NOW + timedelta(minutes=5), "A", "B"), NOW, window)
    assert not is_active(make_match(1, NOW + timedelta(minutes=6), "A", "B"), NOW, window)
    assert not is_active(make_match(1, NOW - timedelta(hours=3), "A", "B", status=MatchStatus.FINISHED), NOW, window)
    assert not is_active(make_match(1, NOW, "A", "B", status=MatchStatus.POSTPONED), NOW, window)


# ── matches_for_date ───────────────────────────────────────────────────


@pytest.mark.asyncio
async def test_bootstrap_fetches_range_and_returns_only_allowed_day_matches(
    engine: ReconciliationEngine, primary: FakeProvider, secondary: FakeProvider,
    store: InMemoryMatchStore, audit: MagicMock,
) -> None:
    primary.matches = [
        make_match(1, at(1, 20), "Arsenal", "Chelsea", competition_id=2021),
        make_match(2, at(1, 12, 30), "Sevilla", "Real Betis", competition_id=2014),
        make_match(3, at(1, 18), "Bayern", "Dortmund", competition_id=2002),
        make_match(4, at(5, 15), "Liverpool", "Everton", competition_id=2021),
        make_match(5, at(11, 20), "Girona", "Valencia", competition_id=2014),
        make_match(6, at(12, 20), "Fulham", "Brentford", competition_id=2021),
    ]

    result = await engine.matches_for_date(DAY)

    assert ("get_matches_range", date(2025, 3, 1), date(2025, 3, 11)) in primary.calls
    assert [m.id for m in result] == [2, 1]
    assert sorted(store.rows) == [1, 2, 4, 5]
    assert secondary.calls == []
    assert audited(audit, actions.MATCHES_FOR_DATE)[0]["upserted"] == 4


@pytest.mark.asyncio
async def test_matches_for_date_is_idempotent(
    engine: ReconciliationEngine, primary: FakeProvider,
) -> None:
    primary.matches = [
        make_match(1, at(1, 20), "Arsenal", "Chelsea"),
        make_match(2, at(1, 17, 30), "Everton", "Wolves"),
        make_match(3, at(2, 14), "Brighton", "Fulham"),
    ]
    first = await engine.matches_for_date(DAY)
    second = await engine.matches_for_date(DAY)

    assert [m.model_dump() for m in first] == [m.model_dump() for m in second]
    assert primary.called("get_matches_range") == 1


@pytest.mark.asyncio
async def test_stored_matches_are_served_without_upstream_calls(
    engine: ReconciliationEngine, primary: FakeProvider, secondary: FakeProvider, store: InMemoryMatchStore,
) -> None:
    store.put(make_match(1, at(1, 20), "Arsenal", "Chelsea"))
    result = await engine.matches_for_date(DAY)
    assert [m.id for m in result] == [1]
    assert primary.calls == [] and secondary.calls == []


@pytest.mark.asyncio
async def test_cleanup_removes_matches_no_longer_allowed(
    engine: ReconciliationEngine, store: InMemoryMatchStore, registry: LeagueRegistry,
    league_source: StaticLeagueSource, audit: MagicMock,
) -> None:
    store.put(
        make_match(1, at(1, 20), "Arsenal", "Chelsea", competition_id=2021),
        make_match(2, at(1, 16), "Sevilla", "Real Betis", competition_id=2014),
    )
    league_source.leagues = [lg for lg in league_source.leagues if lg.football_data_id != 2014]
    await registry.refresh()

    first = await engine.matches_for_date(DAY)
    assert [m.id for m in first] == [1]
    assert 2 not in store.rows
    assert audited(audit, actions.MATCH_PURGED) == [
        {"match_id": 2, "competition_id": 2014, "provider": PRIMARY.value}
    ]

    second = await engine.matches_for_date(DAY)
    assert [m.id for m in second] == [1]


@pytest.mark.asyncio
async def test_bootstrap_upstream_failure_returns_empty(
    engine: ReconciliationEngine, primary: FakeProvider, store: InMemoryMatchStore,
) -> None:
    primary.error = UpstreamUnavailable(PRIMARY.value, "HTTP 503")
    assert await engine.matches_for_date(DAY) == []
    assert store.rows == {}


@pytest.mark.asyncio
async def test_store_read_failure_returns_empty(
    engine: ReconciliationEngine, primary: FakeProvider, store: InMemoryMatchStore,
) -> None:
    store.matches_by_date = AsyncMock(side_effect=RuntimeError("db down"))
    assert await engine.matches_for_date(DAY) == []
    assert primary.calls == []


@pytest.mark.asyncio
async def test_schedule_sync_never_reopens_finished_match(
    engine: ReconciliationEngine, primary: FakeProvider, store: InMemoryMatchStore,
) -> None:
    store.put(make_match(1, at(1, 12), "Arsenal", "Chelsea", status=MatchStatus.FINISHED, score=(2, 0)))
    primary.matches = [
        make_match(1, at(1, 12), "Arsenal", "Chelsea", status=MatchStatus.IN_PLAY, score=(1, 0)),
        make_match(2, at(3, 12), "Everton", "Wolves"),
    ]
    written = await engine.sync_upcoming_schedule()
    assert written == 1
    assert store.rows[1].status == MatchStatus.FINISHED
    assert store.rows[1].score.home == 2


# ── sync_live_matches ──────────────────────────────────────────────────


@pytest.mark.asyncio
async def test_imminent_start_is_updated_from_secondary(
    engine: ReconciliationEngine, primary: FakeProvider, secondary: FakeProvider,
    store: InMemoryMatchStore, audit: MagicMock,
) -> None:
    kickoff = NOW + timedelta(minutes=2)
    store.put(make_match(10, kickoff, "Real Madrid", "Barcelona", competition_id=2014))
    secondary.matches = [
        make_match(5010, kickoff, "Real Madrid CF", "FC Barcelona", competition_id=140,
                   status=MatchStatus.IN_PLAY, provider=SECONDARY, minute=1, score=(0, 0)),
    ]

    report = await engine.sync_live_matches()

    assert report.mode == SyncMode.SECONDARY
    assert report.active == 1
    assert report.updated == 1
    assert store.rows[10].status == MatchStatus.IN_PLAY
    assert store.rows[10].minute == 1
    assert secondary.called("get_matches") == 1
    assert primary.calls == []
    assert audited(audit, actions.SYNC_LIVE_MATCHES)[0]["mode"] == "secondary"


@pytest.mark.asyncio
async def test_nothing_active_never_calls_secondary(
    engine: ReconciliationEngine, primary: FakeProvider, secondary: FakeProvider, store: InMemoryMatchStore,
) -> None:
    store.put(
        make_match(1, NOW + timedelta(minutes=6), "Arsenal", "Chelsea"),
        make_match(2, NOW - timedelta(hours=3), "Everton", "Wolves", status=MatchStatus.FINISHED),
    )
    primary.matches = [
        make_match(1, NOW + timedelta(minutes=6), "Arsenal", "Chelsea"),
        make_match(3, NOW + timedelta(hours=4), "Fulham", "Brentford"),
    ]

    report = await engine.sync_live_matches()

    assert report.mode == SyncMode.PRIMARY_FALLBACK
    assert secondary.calls == []
    assert primary.called("get_matches") == 1
    assert report.upserted == 2
    assert 3 in store.rows


@pytest.mark.asyncio
async def test_silent_completion_is_settled_through_details(
    engine: ReconciliationEngine, secondary: FakeProvider, store: InMemoryMatchStore,
) -> None:
    # Stored kickoff is far enough off that the linking window misses the fixture
    store.put(make_match(20, at(1, 8), "Liverpool FC", "Everton FC", status=MatchStatus.IN_PLAY,
                         minute=55, score=(1, 1)))
    finished = make_match(920, at(1, 13, 30), "Liverpool", "Everton", competition_id=39,
                          status=MatchStatus.FINISHED, provider=SECONDARY, score=(2, 1))
    secondary.matches = [finished]
    goal = MatchEvent(type="GOAL", minute=88, team_name="Liverpool", player_name="M. Salah")
    secondary.details[920] = as_detail(finished, minute=90, events=[goal])

    report = await engine.sync_live_matches()

    assert report.links[0].outcome == LinkOutcome.NO_CANDIDATE
    assert report.finished == 1
    assert secondary.called("get_match_details") == 1
    row = store.rows[20]
    assert row.status == MatchStatus.FINISHED
    assert (row.score.home, row.score.away) == (2, 1)
    assert row.events == [goal]


@pytest.mark.asyncio
async def test_unconfirmed_finish_leaves_match_live(
    engine: ReconciliationEngine, secondary: FakeProvider, store: InMemoryMatchStore,
) -> None:
    store.put(make_match(20, at(1, 8), "Liverpool", "Everton", status=MatchStatus.IN_PLAY))
    finished = make_match(920, at(1, 13, 30), "Liverpool", "Everton", competition_id=39,
                          status=MatchStatus.FINISHED, provider=SECONDARY)
    secondary.matches = [finished]
    secondary.details[920] = as_detail(finished, status=MatchStatus.IN_PLAY)

    report = await engine.sync_live_matches()

    assert report.finished == 0
    assert store.rows[20].status == MatchStatus.IN_PLAY


@pytest.mark.asyncio
async def test_league_without_secondary_mapping_is_never_linked(
    engine: ReconciliationEngine, secondary: FakeProvider, store: InMemoryMatchStore,
) -> None:
    store.put(make_match(30, NOW - timedelta(minutes=30), "Ajax", "PSV", competition_id=2003,
                         status=MatchStatus.IN_PLAY, minute=30))
    lookalike = make_match(930, NOW - timedelta(minutes=30), "Ajax", "PSV", competition_id=39,
                           status=MatchStatus.FINISHED, provider=SECONDARY, score=(3, 0))
    secondary.matches = [lookalike]
    secondary.details[930] = as_detail(lookalike)

    report = await engine.sync_live_matches()

    assert [r.outcome for r in report.links] == [LinkOutcome.NO_MAPPING]
    assert store.rows[30].status == MatchStatus.IN_PLAY
    assert store.updates == []
    assert secondary.called("get_match_details") == 0


@pytest.mark.asyncio
async def test_finished_match_is_not_reopened_by_live_feed(
    engine: ReconciliationEngine, secondary: FakeProvider, store: InMemoryMatchStore,
) -> None:
    store.put(
        make_match(40, NOW - timedelta(hours=2), "Arsenal", "Chelsea",
                   status=MatchStatus.FINISHED, score=(2, 0)),
        make_match(41, NOW + timedelta(minutes=1), "Everton", "Wolves"),
    )
    secondary.matches = [
        make_match(940, NOW - timedelta(hours=2), "Arsenal", "Chelsea", competition_id=39,
                   status=MatchStatus.IN_PLAY, provider=SECONDARY, minute=88, score=(1, 0)),
    ]

    await engine.sync_live_matches()

    assert store.rows[40].status == MatchStatus.FINISHED
    assert store.rows[40].score.home == 2
    assert 40 not in store.updates


@pytest.mark.asyncio
async def test_live_match_is_not_sent_back_to_scheduled(
    engine: ReconciliationEngine, secondary: FakeProvider, store: InMemoryMatchStore,
) -> None:
    """A linked fixture reporting SCHEDULED (or an unmapped code) keeps the live state."""
    store.put(
        make_match(10, NOW - timedelta(minutes=30), "Arsenal", "Chelsea",
                   status=MatchStatus.IN_PLAY, minute=30, score=(1, 0)),
    )
    secondary.matches = [
        make_match(910, NOW - timedelta(minutes=30), "Arsenal", "Chelsea", competition_id=39,
                   status=MatchStatus.SCHEDULED, provider=SECONDARY),
    ]

    await engine.sync_live_matches()

    stored = store.rows[10]
    assert (stored.status, stored.minute) == (MatchStatus.IN_PLAY, 30)
    assert (stored.score.home, stored.score.away) == (1, 0)
    assert 10 not in store.updates


@pytest.mark.asyncio
async def test_one_failing_match_does_not_abort_the_batch(
    engine: ReconciliationEngine, secondary: FakeProvider, store: InMemoryMatchStore,
) -> None:
    store.put(
        make_match(50, NOW - timedelta(minutes=20), "Arsenal", "Chelsea", status=MatchStatus.IN_PLAY),
        make_match(51, NOW - timedelta(minutes=10), "Everton", "Wolves", status=MatchStatus.IN_PLAY),
    )
    secondary.matches = [
        make_match(950, NOW - timedelta(minutes=20), "Arsenal", "Chelsea", competition_id=39,
                   status=MatchStatus.IN_PLAY, provider=SECONDARY, minute=20, score=(1, 0)),
        make_match(951, NOW - timedelta(minutes=10), "Everton", "Wolverhampton Wanderers", competition_id=39,
                   status=MatchStatus.IN_PLAY, provider=SECONDARY, minute=10, score=(0, 0)),
    ]
    original = store.update_status

    async def flaky(match_id, *args, **kwargs):
        if match_id == 50:
            raise RuntimeError("write conflict")
        return await original(match_id, *args, **kwargs)

    store.update_status = flaky

    report = await engine.sync_live_matches()

    outcomes = {r.match_id: r.outcome for r in report.links}
    assert outcomes == {50: LinkOutcome.FAILED, 51: LinkOutcome.LINKED}
    assert report.updated == 1
    assert store.rows[51].minute == 10


@pytest.mark.asyncio
async def test_secondary_failure_is_reported_not_raised(
    engine: ReconciliationEngine, secondary: FakeProvider, store: InMemoryMatchStore,
) -> None:
    store.put(make_match(60, NOW - timedelta(minutes=5), "Arsenal", "Chelsea", status=MatchStatus.IN_PLAY))
    secondary.error = UpstreamUnavailable(SECONDARY.value, "HTTP 429")

    report = await engine.sync_live_matches()

    assert report.mode == SyncMode.SECONDARY
    assert report.error is not None and "429" in report.error
    assert store.rows[60].status == MatchStatus.IN_PLAY


@pytest.mark.asyncio
async def test_overlapping_sync_is_skipped(
    engine: ReconciliationEngine, secondary: FakeProvider, store: InMemoryMatchStore,
) -> None:
    store.put(make_match(70, NOW + timedelta(minutes=1), "Arsenal", "Chelsea"))
    gate = asyncio.Event()
    original = store.matches_needing_update

    async def slow(day):
        await gate.wait()
        return await original(day)

    store.matches_needing_update = slow

    first = asyncio.create_task(engine.sync_live_matches())
    while not engine.sync_in_progress:
        await asyncio.sleep(0)
    second = await engine.sync_live_matches()
    gate.set()
    first_report = await first

    assert second.mode == SyncMode.SKIPPED
    assert first_report.mode == SyncMode.SECONDARY
    assert secondary.called("get_matches") == 1
    assert not engine.sync_in_progress


# ── match_details ──────────────────────────────────────────────────────


def _primary_detail(match_id: int = 7):
    return as_detail(make_match(match_id, at(1, 20), "Arsenal FC", "Chelsea FC", competition_id=2021,
                                status=MatchStatus.FINISHED, score=(1, 0)))


def _secondary_detail(match_id: int = 7, home: str = "Arsenal", away: str = "Chelsea"):
    goal = MatchEvent(type="GOAL", minute=12, team_name=home, player_name="B. Saka")
    return as_detail(make_match(match_id, at(1, 20), home, away, competition_id=39,
                                status=MatchStatus.FINISHED, provider=SECONDARY, score=(1, 0)),
                     events=[goal])


@pytest.mark.asyncio
async def test_details_prefer_secondary(
    engine: ReconciliationEngine, primary: FakeProvider, secondary: FakeProvider, store: InMemoryMatchStore,
) -> None:
    store.put(make_match(7, at(1, 20), "Arsenal FC", "Chelsea FC"))
    secondary.details[7] = _secondary_detail()
    primary.details[7] = _primary_detail()

    detail = await engine.match_details(7)

    assert detail.provider == SECONDARY
    assert len(detail.events) == 1
    assert primary.calls == []


@pytest.mark.asyncio
async def test_details_fall_back_to_primary_when_secondary_fails(
    engine: ReconciliationEngine, primary: FakeProvider, secondary: FakeProvider,
) -> None:
    secondary.error = UpstreamUnavailable(SECONDARY.value, "timeout")
    primary.details[7] = _primary_detail()

    detail = await engine.match_details(7)

    primary.set_allowed_leagues([2021])
    assert detail == await primary.get_match_details(7)


@pytest.mark.asyncio
async def test_details_fall_back_when_secondary_teams_disagree(
    engine: ReconciliationEngine, primary: FakeProvider, secondary: FakeProvider, store: InMemoryMatchStore,
) -> None:
    store.put(make_match(7, at(1, 20), "Arsenal FC", "Chelsea FC"))
    secondary.details[7] = _secondary_detail(home="Bologna", away="Torino")
    primary.details[7] = _primary_detail()

    detail = await engine.match_details(7)

    assert detail.provider == PRIMARY
    assert detail.home_team.name == "Arsenal FC"


@pytest.mark.asyncio
async def test_details_not_found_anywhere_raises(
    engine: ReconciliationEngine, primary: FakeProvider, secondary: FakeProvider,
) -> None:
    with pytest.raises(MatchNotFound):
        await engine.match_details(404)
    assert secondary.called("get_match_details") == 1
    assert primary.called("get_match_details") == 1


@pytest.mark.asyncio
async def test_details_outside_allow_list_are_not_found(
    engine: ReconciliationEngine, primary: FakeProvider,
) -> None:
    primary.details[8] = as_detail(make_match(8, at(1, 20), "Bayern", "Dortmund", competition_id=2002))
    with pytest.raises(MatchNotFound):
        await engine.match_details(8)


# ── Diagnostics ────────────────────────────────────────────────────────


@pytest.mark.asyncio
async def test_upstream_matches_selects_provider_by_date(
    engine: ReconciliationEngine, primary: FakeProvider, secondary: FakeProvider,
) -> None:
    await engine.upstream_matches(DAY)
    assert secondary.called("get_matches") == 1
    assert primary.calls == []

    await engine.upstream_matches(date(2025, 3, 2))
    assert primary.called("get_matches") == 1
