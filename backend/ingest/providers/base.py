"""
Abstract base class for football data providers.
Defines the contract that every provider adapter must implement.
"""
from __future__ import annotations

import abc
from datetime import date
from typing import Any, Callable, Iterable, Optional

from shared.errors import MalformedPayload, MatchNotFound
from shared.models.domain import Match, MatchDetail
from shared.models.enums import ProviderTag
from shared.utils.clock import Clock, SystemClock
from shared.utils.http_client import ProviderHTTPClient
from shared.utils.logging import get_logger

logger = get_logger(__name__)


class FootballProvider(abc.ABC):
    """
    Abstract base class for football data providers.

    Every read is filtered to the currently configured allow-list of the provider's own
    competition ids. An empty allow-list means nothing is allowed: list calls return []
    and detail calls raise MatchNotFound. Upstream failures propagate as UpstreamError.
    """

    def __init__(
        self,
        tag: ProviderTag,
        http_client: ProviderHTTPClient,
        clock: Clock | None = None,
    ) -> None:
        self._tag = tag
        self._http = http_client
        self._clock = clock or SystemClock()
        self._allowed: frozenset[int] = frozenset()

    @property
    def tag(self) -> ProviderTag:
        return self._tag

    @property
    def allowed_leagues(self) -> frozenset[int]:
        return self._allowed

    def set_allowed_leagues(self, ids: Iterable[int]) -> None:
        """Replace the allow-list of this provider's external competition ids."""
        self._allowed = frozenset(int(i) for i in ids)

    async def start(self) -> None:
        """Initialize the provider HTTP client."""
        await self._http.start()

    async def close(self) -> None:
        """Shutdown the provider HTTP client."""
        await self._http.close()

    # ── Allow-list helpers ──────────────────────────────────────────────
    def _blocked(self, operation: str) -> bool:
        if self._allowed:
            return False
        logger.warning("provider_no_allowed_leagues", provider=self._tag.value, operation=operation)
        return True

    def _filter_allowed(self, matches: Iterable[Match]) -> list[Match]:
        return [m for m in matches if m.competition.id in self._allowed]

    def _check_detail_allowed(self, match_id: int, detail: MatchDetail) -> MatchDetail:
        if detail.competition.id not in self._allowed:
            raise MatchNotFound(match_id, reason=f"competition not allowed for {self._tag.value}")
        return detail

    def _parse_allowed(
        self,
        items: Iterable[dict[str, Any]],
        competition_of: Callable[[dict[str, Any]], Optional[int]],
        parse: Callable[[dict[str, Any]], Match],
    ) -> list[Match]:
        """Drop raw items outside the allow-list, then parse the rest."""
        parsed: list[Match] = []
        for raw in items:
            if not isinstance(raw, dict) or competition_of(raw) not in self._allowed:
                continue
            try:
                parsed.append(parse(raw))
            except (KeyError, TypeError, ValueError) as exc:
                raise MalformedPayload(self._tag.value, f"unreadable fixture: {exc}") from exc
        return self._filter_allowed(parsed)

    # ── Capability ──────────────────────────────────────────────────────
    @abc.abstractmethod
    async def get_matches(self, day: date) -> list[Match]:
        """All allowed fixtures kicking off on `day` (UTC)."""
        ...

    @abc.abstractmethod
    async def get_matches_range(self, date_from: date, date_to: date) -> list[Match]:
        """All allowed fixtures between two UTC dates, inclusive."""
        ...

    @abc.abstractmethod
    async def get_match_details(self, match_id: int) -> MatchDetail:
        """Single fixture with events and statistics where the provider offers them."""
        ...

    @abc.abstractmethod
    async def get_live_matches(self) -> list[Match]:
        """Allowed fixtures currently in progress."""
        ...

    def _today(self) -> date:
        return self._clock.now().date()

    def __repr__(self) -> str:
        return f"<{type(self).__name__} tag={self._tag.value} leagues={sorted(self._allowed)}>"


def parse_optional_int(value: Any) -> Optional[int]:
    if value is None or value == "":
        return None
    try:
        return int(value)
    except (TypeError, ValueError):
        return None
