"""
Audit trail of engine operations and self-healing actions (`audit_logs` table).
"""
from __future__ import annotations

import json
from datetime import datetime, timezone
from typing import Any, Optional, Union

from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError

from shared.models.orm import AuditLogORM
from shared.utils.database import DatabaseManager
from shared.utils.logging import get_logger

logger = get_logger(__name__)

# Actions recorded by the reconciliation engine
MATCHES_FOR_DATE = "matches_for_date"
SYNC_LIVE_MATCHES = "sync_live_matches"
MATCH_DETAILS = "match_details"
MATCH_PURGED = "match_purged"


class AuditService:
    """Writes are best-effort: an audit failure never breaks the calling operation."""

    def __init__(self, db: DatabaseManager) -> None:
        self._db = db

    async def log(self, action: str, details: Union[str, dict[str, Any], None] = None) -> None:
        text = details if isinstance(details, str) or details is None else json.dumps(details, default=str)
        try:
            async with self._db.write_session() as session:
                session.add(AuditLogORM(action=action, details=text, timestamp=datetime.now(timezone.utc)))
        except SQLAlchemyError as exc:
            logger.error("audit_log_failed", action=action, error=str(exc))

    async def last_run(self, action: str) -> Optional[datetime]:
        """Timestamp of the latest `action` entry, or None."""
        stmt = (
            select(AuditLogORM.timestamp)
            .where(AuditLogORM.action == action)
            .order_by(AuditLogORM.timestamp.desc(), AuditLogORM.id.desc())
            .limit(1)
        )
        try:
            async with self._db.read_session() as session:
                ts = (await session.execute(stmt)).scalar_one_or_none()
        except SQLAlchemyError as exc:
            logger.error("audit_last_run_failed", action=action, error=str(exc))
            return None
        if ts is not None and ts.tzinfo is None:
            ts = ts.replace(tzinfo=timezone.utc)
        return ts
