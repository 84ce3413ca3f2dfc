"""
Scheduler service for matchsync.
Periodically triggers the live sync and, once per UTC day, the upcoming-schedule refresh.
Uses leader election so only one scheduler instance drives upstream calls.
"""
from __future__ import annotations

import asyncio
import signal
import uuid
from datetime import date, datetime
from typing import Optional

from shared.config import Settings, get_settings
from shared.utils.clock import Clock, SystemClock
from shared.utils.database import DatabaseManager
from shared.utils.logging import get_logger, setup_logging
from shared.utils.metrics import start_metrics_server
from shared.utils.redis_manager import RedisManager

from reconciler.engine import ReconciliationEngine, build_engine

logger = get_logger(__name__)

LEADER_ROLE = "scheduler"


class SchedulerService:
    """
    Main scheduler that:
    1. Acquires leadership via Redis-based leader election
    2. Runs `sync_live_matches` every `scheduler_live_interval_s`
    3. Runs `sync_upcoming_schedule` once per UTC day after `scheduler_daily_hour_utc`
    """

    def __init__(
        self,
        engine: ReconciliationEngine,
        redis: RedisManager,
        settings: Settings | None = None,
        clock: Clock | None = None,
    ) -> None:
        self._engine = engine
        self._redis = redis
        self._settings = settings or get_settings()
        self._clock = clock or SystemClock()
        self._instance_id = self._settings.instance_id or str(uuid.uuid4())[:8]
        self._is_leader = False
        self._last_live: Optional[datetime] = None
        self._last_daily: Optional[date] = None
        self._shutdown = asyncio.Event()

    @property
    def is_leader(self) -> bool:
        return self._is_leader

    # ── Leader election ─────────────────────────────────────────────────

    async def _acquire_leadership(self) -> bool:
        """Attempt to acquire or renew scheduler leadership."""
        if self._is_leader:
            renewed = await self._redis.renew_leader(
                LEADER_ROLE, self._instance_id, self._settings.scheduler_leader_ttl_s
            )
            if not renewed:
                logger.warning("leadership_lost", instance_id=self._instance_id)
                self._is_leader = False
            return renewed

        acquired = await self._redis.try_acquire_leader(
            LEADER_ROLE, self._instance_id, self._settings.scheduler_leader_ttl_s
        )
        if acquired:
            self._is_leader = True
            logger.info("leadership_acquired", instance_id=self._instance_id)
        return acquired

    # ── Jobs ────────────────────────────────────────────────────────────

    def _live_due(self, now: datetime) -> bool:
        if self._last_live is None:
            return True
        return (now - self._last_live).total_seconds() >= self._settings.scheduler_live_interval_s

    def _daily_due(self, now: datetime) -> bool:
        return now.hour >= self._settings.scheduler_daily_hour_utc and self._last_daily != now.date()

    async def run_due_jobs(self) -> list[str]:
        """Run whichever jobs are due at the current time. Returns the names of jobs run."""
        now = self._clock.now()
        ran: list[str] = []
        if self._daily_due(now):
            self._last_daily = now.date()
            written = await self._engine.sync_upcoming_schedule()
            logger.info("daily_schedule_sync_done", upserted=written)
            ran.append("daily")
        if self._live_due(now):
            self._last_live = now
            report = await self._engine.sync_live_matches()
            logger.debug("live_sync_tick", mode=report.mode.value)
            ran.append("live")
        return ran

    # ── Main loop ───────────────────────────────────────────────────────

    async def _wait(self, seconds: float) -> None:
        try:
            await asyncio.wait_for(self._shutdown.wait(), timeout=seconds)
        except asyncio.TimeoutError:
            pass

    async def run(self) -> None:
        """
        Main scheduler loop.
        Renews leadership every `scheduler_leader_renew_s` and runs due jobs while leader.
        """
        tick_s = min(self._settings.scheduler_leader_renew_s, self._settings.scheduler_live_interval_s)
        while not self._shutdown.is_set():
            try:
                if not await self._acquire_leadership():
                    await self._wait(self._settings.scheduler_leader_renew_s)
                    continue
                await self.run_due_jobs()
                await self._wait(tick_s)
            except asyncio.CancelledError:
                break
            except Exception as exc:
                logger.error("scheduler_loop_error", error=str(exc), exc_info=True)
                await self._wait(2.0)

    async def stop(self) -> None:
        """Release leadership so a standby instance can take over immediately."""
        if self._is_leader:
            await self._redis.release_leader(LEADER_ROLE, self._instance_id)
            self._is_leader = False

    def request_shutdown(self) -> None:
        self._shutdown.set()


async def main() -> None:
    """Scheduler service entrypoint."""
    settings = get_settings()
    setup_logging("scheduler")
    settings.require_provider_credentials()
    start_metrics_server(settings.metrics_port + 1)

    redis = RedisManager(settings)
    db = DatabaseManager(settings)

    await redis.connect()
    await db.connect()

    engine = build_engine(db, settings)
    await engine.start()
    service = SchedulerService(engine, redis, settings)

    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        loop.add_signal_handler(sig, service.request_shutdown)

    logger.info("scheduler_service_started", instance_id=settings.instance_id)

    try:
        await service.run()
    finally:
        await service.stop()
        await engine.close()
        await db.disconnect()
        await redis.disconnect()
        logger.info("scheduler_service_stopped")


if __name__ == "__main__":
    asyncio.run(main())
