"""
Seed script for matchsync.

Creates any missing tables and makes sure the default allow-list of leagues exists,
mapping each competition to its football-data.org and API-Football ids.

Usage:
    python -m seed   (or: matchsync-seed)
"""
from __future__ import annotations

import asyncio
from typing import Any, Optional

from sqlalchemy import select

from shared.config import get_settings
from shared.models.orm import AllowedLeagueORM
from shared.utils.database import DatabaseManager
from shared.utils.logging import get_logger, setup_logging

logger = get_logger(__name__)

DEFAULT_LEAGUES: list[dict[str, Any]] = [
    {"name": "Premier League", "football_data_id": 2021, "api_football_id": 39},
    {"name": "UEFA Champions League", "football_data_id": 2001, "api_football_id": 2},
    {"name": "Primera Division", "football_data_id": 2014, "api_football_id": 140},
    {"name": "Ligue 1", "football_data_id": 2015, "api_football_id": 61},
]


async def seed_leagues(db: DatabaseManager, leagues: Optional[list[dict[str, Any]]] = None) -> int:
    """Insert leagues missing from `allowed_leagues` (matched by football-data id). Returns inserted count."""
    inserted = 0
    async with db.write_session() as session:
        for cfg in leagues or DEFAULT_LEAGUES:
            stmt = select(AllowedLeagueORM).where(
                AllowedLeagueORM.football_data_id == cfg["football_data_id"]
            )
            existing = (await session.execute(stmt)).scalar_one_or_none()
            if existing is not None:
                continue
            session.add(AllowedLeagueORM(
                name=cfg["name"],
                football_data_id=cfg["football_data_id"],
                api_football_id=cfg.get("api_football_id"),
                is_active=cfg.get("is_active", True),
            ))
            inserted += 1
    return inserted


async def seed() -> None:
    """Main seed function."""
    setup_logging("seed")
    settings = get_settings()
    db = DatabaseManager(settings)
    await db.connect()
    try:
        await db.create_all()
        inserted = await seed_leagues(db)
        logger.info("seed_completed", leagues_inserted=inserted, leagues_total=len(DEFAULT_LEAGUES))
    finally:
        await db.disconnect()


def main() -> None:
    asyncio.run(seed())


if __name__ == "__main__":
    main()
