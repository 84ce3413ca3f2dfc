"""
Provider selection and construction.
"""
from __future__ import annotations

from datetime import date

from shared.config import Settings, get_settings
from shared.utils.clock import Clock

from ingest.providers.api_football import ApiFootballProvider
from ingest.providers.base import FootballProvider
from ingest.providers.football_data import FootballDataProvider


def provider_for_date(
    day: date,
    today: date,
    primary: FootballProvider,
    secondary: FootballProvider,
) -> FootballProvider:
    """Today is served by the live-capable Secondary; any other day by the Primary."""
    return secondary if day == today else primary


def build_providers(
    settings: Settings | None = None,
    clock: Clock | None = None,
) -> tuple[FootballDataProvider, ApiFootballProvider]:
    """Construct (primary, secondary) from settings."""
    settings = settings or get_settings()
    primary = FootballDataProvider(settings.football_data_api_key, settings=settings, clock=clock)
    secondary = ApiFootballProvider(settings.api_football_api_key, settings=settings, clock=clock)
    return primary, secondary
