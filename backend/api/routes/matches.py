"""
Match REST endpoints.

GET  /v1/matches?date=YYYY-MM-DD: Matches for a date (default: today, UTC).
GET  /v1/matches/upstream       : Same date, straight from the provider serving it.
GET  /v1/matches/{id}           : Match detail (Secondary, falling back to Primary).
POST /v1/matches/sync           : Run one live-sync cycle now.
"""
from __future__ import annotations

from datetime import date, datetime, timezone
from typing import Any, Optional

from fastapi import APIRouter, Depends, Query

from shared.utils.logging import get_logger

from api.dependencies import get_engine
from reconciler.engine import ReconciliationEngine, SyncMode

logger = get_logger(__name__)
router = APIRouter(prefix="/v1/matches", tags=["matches"])


def _envelope(data: Any, **extra: Any) -> dict[str, Any]:
    return {
        "success": True,
        "data": data,
        "timestamp": datetime.now(timezone.utc).isoformat(),
        **extra,
    }


@router.get("")
async def list_matches(
    day: Optional[date] = Query(None, alias="date", description="UTC date, YYYY-MM-DD"),
    engine: ReconciliationEngine = Depends(get_engine),
) -> dict[str, Any]:
    """Matches for a date; bootstraps the schedule from the Primary provider when none are stored."""
    day = day or engine.today()
    matches = await engine.matches_for_date(day)
    return _envelope([m.model_dump(mode="json") for m in matches], date=day.isoformat())


@router.get("/upstream")
async def list_upstream_matches(
    day: Optional[date] = Query(None, alias="date", description="UTC date, YYYY-MM-DD"),
    engine: ReconciliationEngine = Depends(get_engine),
) -> dict[str, Any]:
    """Diagnostic: what the provider serving this date reports right now (not stored)."""
    day = day or engine.today()
    matches = await engine.upstream_matches(day)
    return _envelope([m.model_dump(mode="json") for m in matches], date=day.isoformat())


@router.post("/sync")
async def trigger_sync(engine: ReconciliationEngine = Depends(get_engine)) -> dict[str, Any]:
    report = await engine.sync_live_matches()
    message = (
        "Live sync already running" if report.mode == SyncMode.SKIPPED else "Live match sync completed"
    )
    return {"success": report.error is None, "message": message, "report": report.summary()}


@router.get("/{match_id}")
async def get_match(
    match_id: int,
    engine: ReconciliationEngine = Depends(get_engine),
) -> dict[str, Any]:
    """Match detail with events and statistics. 404 when neither provider knows the fixture."""
    detail = await engine.match_details(match_id)
    return _envelope(detail.model_dump(mode="json"))
