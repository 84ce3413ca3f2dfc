"""
Dependency injection for the API service.
Provides the database, the reconciliation engine and its audit log to route handlers.
"""
from __future__ import annotations

from typing import Optional

from shared.utils.database import DatabaseManager

from reconciler.audit import AuditService
from reconciler.engine import ReconciliationEngine

# Module-level singletons, initialized at startup
_db: DatabaseManager | None = None
_engine: ReconciliationEngine | None = None


def init_dependencies(db: DatabaseManager, engine: ReconciliationEngine) -> None:
    """Initialize module-level singletons. Called once at startup."""
    global _db, _engine
    _db = db
    _engine = engine


def get_db() -> DatabaseManager:
    """FastAPI dependency: returns the shared DatabaseManager."""
    if _db is None:
        raise RuntimeError("DatabaseManager not initialized; call init_dependencies first")
    return _db


def get_engine() -> ReconciliationEngine:
    """FastAPI dependency: returns the shared ReconciliationEngine."""
    if _engine is None:
        raise RuntimeError("ReconciliationEngine not initialized; call init_dependencies first")
    return _engine


def get_audit() -> Optional[AuditService]:
    """FastAPI dependency: the engine's audit log (None when auditing is disabled)."""
    return get_engine().audit
