"""
Cron trigger endpoints for hosted schedulers that call HTTP instead of running the
scheduler service.

GET /v1/cron/daily: Refresh the upcoming schedule and bootstrap today if empty.
GET /v1/cron/live : Run one live-sync cycle.
GET /v1/sync/status: Last recorded runs.

Cron endpoints require `Authorization: Bearer <MS_CRON_SECRET>` when a secret is set.
"""
from __future__ import annotations

import hmac
from typing import Any, Optional

from fastapi import APIRouter, Depends, Header, HTTPException

from shared.config import Settings, get_settings
from shared.utils.logging import get_logger

from api.dependencies import get_audit, get_engine
from reconciler import audit as actions
from reconciler.audit import AuditService
from reconciler.engine import ReconciliationEngine

logger = get_logger(__name__)
router = APIRouter(tags=["cron"])

CRON_DAILY = "cron_daily"
CRON_LIVE = "cron_live"


def verify_cron_secret(
    authorization: Optional[str] = Header(None),
    settings: Settings = Depends(get_settings),
) -> None:
    if not settings.cron_secret:
        logger.warning("cron_secret_not_configured")
        return
    expected = f"Bearer {settings.cron_secret}"
    if not authorization or not hmac.compare_digest(authorization, expected):
        raise HTTPException(status_code=401, detail="Unauthorized")


@router.get("/v1/cron/daily", dependencies=[Depends(verify_cron_secret)])
async def cron_daily(
    engine: ReconciliationEngine = Depends(get_engine),
    audit: Optional[AuditService] = Depends(get_audit),
) -> dict[str, Any]:
    upserted = await engine.sync_upcoming_schedule()
    matches = await engine.matches_for_date(engine.today())
    if audit is not None:
        await audit.log(CRON_DAILY, {"upserted": upserted, "today": len(matches)})
    return {"success": True, "message": "Daily sync completed", "upserted": upserted, "count": len(matches)}


@router.get("/v1/cron/live", dependencies=[Depends(verify_cron_secret)])
async def cron_live(
    engine: ReconciliationEngine = Depends(get_engine),
    audit: Optional[AuditService] = Depends(get_audit),
) -> dict[str, Any]:
    report = await engine.sync_live_matches()
    if audit is not None:
        await audit.log(CRON_LIVE, report.summary())
    return {
        "success": report.error is None,
        "message": f"Live sync: {report.mode.value}",
        "active_count": report.active,
        "report": report.summary(),
    }


@router.get("/v1/sync/status", tags=["system"])
async def sync_status(
    engine: ReconciliationEngine = Depends(get_engine),
    audit: Optional[AuditService] = Depends(get_audit),
) -> dict[str, Any]:
    last: dict[str, Optional[str]] = {}
    for action in (actions.SYNC_LIVE_MATCHES, actions.MATCHES_FOR_DATE, CRON_DAILY, CRON_LIVE):
        ts = await audit.last_run(action) if audit is not None else None
        last[action] = ts.isoformat() if ts else None
    return {"sync_in_progress": engine.sync_in_progress, "last_run": last}
