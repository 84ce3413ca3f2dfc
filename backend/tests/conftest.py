"""Fixtures wiring the engine to in-memory fakes and a fixed clock."""
from __future__ import annotations

from unittest.mock import AsyncMock, MagicMock

import pytest

from shared.config import Settings
from shared.models.enums import PRIMARY, SECONDARY
from shared.utils.clock import FixedClock

from reconciler.engine import ReconciliationEngine
from reconciler.leagues import LeagueRegistry

from factories import DEFAULT_LEAGUES, NOW, FakeProvider, InMemoryMatchStore, StaticLeagueSource


@pytest.fixture
def settings() -> Settings:
    return Settings(_env_file=None)


@pytest.fixture
def clock() -> FixedClock:
    return FixedClock(NOW)


@pytest.fixture
def league_source() -> StaticLeagueSource:
    return StaticLeagueSource(DEFAULT_LEAGUES)


@pytest.fixture
def registry(league_source: StaticLeagueSource, clock: FixedClock) -> LeagueRegistry:
    return LeagueRegistry(league_source, ttl_s=3600, clock=clock)


@pytest.fixture
def store(registry: LeagueRegistry) -> InMemoryMatchStore:
    return InMemoryMatchStore(registry)


@pytest.fixture
def primary() -> FakeProvider:
    return FakeProvider(PRIMARY)


@pytest.fixture
def secondary() -> FakeProvider:
    return FakeProvider(SECONDARY)


@pytest.fixture
def audit() -> MagicMock:
    a = MagicMock()
    a.log = AsyncMock()
    a.last_run = AsyncMock(return_value=None)
    return a


@pytest.fixture
def engine(
    primary: FakeProvider,
    secondary: FakeProvider,
    store: InMemoryMatchStore,
    registry: LeagueRegistry,
    audit: MagicMock,
    clock: FixedClock,
    settings: Settings,
) -> ReconciliationEngine:
    return ReconciliationEngine(
        primary=primary,
        secondary=secondary,
        store=store,
        registry=registry,
        audit=audit,
        clock=clock,
        settings=settings,
    )
