"""Scheduler tests: leader election and job cadence, with mocked Redis and engine."""
from __future__ import annotations

from datetime import datetime, timezone
from unittest.mock import AsyncMock, MagicMock

import pytest

from shared.config import Settings
from shared.utils.clock import FixedClock

from reconciler.engine import SyncMode, SyncReport
from scheduler.service import LEADER_ROLE, SchedulerService


def _settings() -> Settings:
    return Settings(
        _env_file=None,
        instance_id="sched-1",
        scheduler_live_interval_s=600,
        scheduler_daily_hour_utc=6,
        scheduler_leader_ttl_s=60,
        scheduler_leader_renew_s=20,
    )


@pytest.fixture
def mock_engine() -> MagicMock:
    engine = MagicMock()
    engine.sync_upcoming_schedule = AsyncMock(return_value=3)
    engine.sync_live_matches = AsyncMock(
        return_value=SyncReport(mode=SyncMode.PRIMARY_FALLBACK, started_at=datetime(2025, 3, 1, tzinfo=timezone.utc))
    )
    return engine


@pytest.fixture
def mock_redis() -> MagicMock:
    redis = MagicMock()
    redis.try_acquire_leader = AsyncMock(return_value=True)
    redis.renew_leader = AsyncMock(return_value=True)
    redis.release_leader = AsyncMock(return_value=True)
    return redis


# ── Job cadence ─────────────────────────────────────────────────────────


@pytest.mark.asyncio
async def test_live_job_runs_every_interval(mock_engine: MagicMock, mock_redis: MagicMock) -> None:
    """Live sync runs immediately, then not again until the interval has passed."""
    clock = FixedClock(datetime(2025, 3, 1, 5, 0, tzinfo=timezone.utc))
    service = SchedulerService(mock_engine, mock_redis, _settings(), clock)

    assert await service.run_due_jobs() == ["live"]
    clock.advance(seconds=599)
    assert await service.run_due_jobs() == []
    clock.advance(seconds=1)
    assert await service.run_due_jobs() == ["live"]
    assert mock_engine.sync_live_matches.await_count == 2


@pytest.mark.asyncio
async def test_daily_job_runs_once_per_day_after_hour(mock_engine: MagicMock, mock_redis: MagicMock) -> None:
    """Schedule refresh waits for the configured UTC hour and runs once per day."""
    clock = FixedClock(datetime(2025, 3, 1, 5, 59, tzinfo=timezone.utc))
    service = SchedulerService(mock_engine, mock_redis, _settings(), clock)

    assert "daily" not in await service.run_due_jobs()
    clock.advance(minutes=1)
    assert "daily" in await service.run_due_jobs()
    clock.advance(hours=12)
    assert "daily" not in await service.run_due_jobs()
    clock.advance(hours=12)
    assert "daily" in await service.run_due_jobs()
    assert mock_engine.sync_upcoming_schedule.await_count == 2


# ── Leader election ─────────────────────────────────────────────────────


@pytest.mark.asyncio
async def test_acquire_then_renew_leadership(mock_engine: MagicMock, mock_redis: MagicMock) -> None:
    service = SchedulerService(mock_engine, mock_redis, _settings(), FixedClock(datetime(2025, 3, 1, tzinfo=timezone.utc)))

    assert await service._acquire_leadership() is True
    assert service.is_leader
    mock_redis.try_acquire_leader.assert_awaited_once_with(LEADER_ROLE, "sched-1", 60)

    assert await service._acquire_leadership() is True
    mock_redis.renew_leader.assert_awaited_once_with(LEADER_ROLE, "sched-1", 60)


@pytest.mark.asyncio
async def test_lost_leadership_is_detected(mock_engine: MagicMock, mock_redis: MagicMock) -> None:
    service = SchedulerService(mock_engine, mock_redis, _settings(), FixedClock(datetime(2025, 3, 1, tzinfo=timezone.utc)))
    await service._acquire_leadership()
    mock_redis.renew_leader.return_value = False

    assert await service._acquire_leadership() is False
    assert not service.is_leader


@pytest.mark.asyncio
async def test_run_loop_runs_jobs_while_leader_and_stops(mock_engine: MagicMock, mock_redis: MagicMock) -> None:
    """One loop iteration as leader runs the due jobs; stop() releases leadership."""
    clock = FixedClock(datetime(2025, 3, 1, 9, 0, tzinfo=timezone.utc))
    service = SchedulerService(mock_engine, mock_redis, _settings(), clock)

    async def live_then_shutdown():
        service.request_shutdown()
        return SyncReport(mode=SyncMode.SECONDARY, started_at=clock.now())

    mock_engine.sync_live_matches.side_effect = live_then_shutdown

    await service.run()
    await service.stop()

    mock_engine.sync_upcoming_schedule.assert_awaited_once()
    mock_engine.sync_live_matches.assert_awaited_once()
    mock_redis.release_leader.assert_awaited_once_with(LEADER_ROLE, "sched-1")
    assert not service.is_leader


@pytest.mark.asyncio
async def test_follower_never_runs_jobs(mock_engine: MagicMock, mock_redis: MagicMock) -> None:
    service = SchedulerService(mock_engine, mock_redis, _settings(), FixedClock(datetime(2025, 3, 1, 9, tzinfo=timezone.utc)))
    calls = 0

    async def not_leader(*args):
        nonlocal calls
        calls += 1
        if calls == 2:
            service.request_shutdown()
        return False

    mock_redis.try_acquire_leader.side_effect = not_leader
    service._settings.scheduler_leader_renew_s = 0

    await service.run()

    mock_engine.sync_live_matches.assert_not_awaited()
    mock_engine.sync_upcoming_schedule.assert_not_awaited()
    await service.stop()
    mock_redis.release_leader.assert_not_awaited()
