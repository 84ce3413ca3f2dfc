"""
FastAPI application factory for the matchsync API service.

Creates the app with:
- REST routes (matches, cron triggers, sync status)
- Middleware stack
- Health check endpoints
- Lifespan management (startup/shutdown)
"""
from __future__ import annotations

import asyncio
from contextlib import asynccontextmanager
from typing import AsyncGenerator, Dict, Union

from fastapi import FastAPI
from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError

from shared.config import get_settings
from shared.utils.database import DatabaseManager
from shared.utils.logging import get_logger, setup_logging
from shared.utils.metrics import start_metrics_server

from api.dependencies import get_db, init_dependencies
from api.middleware import setup_middleware
from api.routes.cron import router as cron_router
from api.routes.matches import router as matches_router
from reconciler.engine import build_engine

logger = get_logger(__name__)

# Retry connection on startup (e.g. DB not ready yet on Railway)
_CONNECT_RETRY_ATTEMPTS = 10
_CONNECT_RETRY_BASE_DELAY_S = 2.0


async def _connect_with_retry(connect_fn, name: str) -> None:
    """Call async connect_fn(); retry with exponential backoff on failure."""
    for attempt in range(1, _CONNECT_RETRY_ATTEMPTS + 1):
        try:
            await connect_fn()
            return
        except (OSError, SQLAlchemyError) as exc:
            if attempt == _CONNECT_RETRY_ATTEMPTS:
                raise
            delay = _CONNECT_RETRY_BASE_DELAY_S * (2 ** (attempt - 1))
            logger.warning(
                "connect_retry",
                name=name,
                attempt=attempt,
                max_attempts=_CONNECT_RETRY_ATTEMPTS,
                delay_s=delay,
                error=str(exc),
            )
            await asyncio.sleep(delay)


@asynccontextmanager
async def _noop_lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """No-op lifespan for testing without a database."""
    yield


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """
    Application lifespan manager.
    Verifies provider credentials, connects the database, wires the engine.
    """
    settings = get_settings()
    setup_logging("api")
    settings.require_provider_credentials()
    start_metrics_server(settings.metrics_port)

    db = DatabaseManager(settings)
    await _connect_with_retry(db.connect, "Database")

    engine = build_engine(db, settings)
    await engine.start()
    init_dependencies(db, engine)

    logger.info("api_service_started", host=settings.api_host, port=settings.api_port)

    yield

    await engine.close()
    await db.disconnect()
    logger.info("api_service_stopped")


def create_app(*, use_lifespan: bool = True) -> FastAPI:
    """Create and configure the FastAPI application. Set use_lifespan=False for testing without a DB."""
    app = FastAPI(
        title="matchsync API",
        description="Reconciled football fixtures from two upstream providers",
        version="1.0.0",
        lifespan=lifespan if use_lifespan else _noop_lifespan,
        docs_url="/docs",
        redoc_url="/redoc",
    )

    # Middleware
    setup_middleware(app)

    # REST routes
    app.include_router(matches_router)
    app.include_router(cron_router)

    # Health check
    @app.get("/health", tags=["system"])
    async def health() -> dict[str, str]:
        return {"status": "ok", "service": "api"}

    @app.get("/ready", tags=["system"])
    async def readiness() -> Dict[str, Union[str, bool]]:
        """Readiness probe: checks the database."""
        db_ok = False
        try:
            async with get_db().read_session() as session:
                await session.execute(text("SELECT 1"))
                db_ok = True
        except (RuntimeError, SQLAlchemyError, OSError) as exc:
            logger.warning("readiness_db_failed", error=str(exc))
        return {"status": "ok" if db_ok else "degraded", "database": db_ok}

    return app


# For running with uvicorn directly
app = create_app()
