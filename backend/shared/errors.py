"""
Error taxonomy shared by providers, the store and the reconciliation engine.
"""
from __future__ import annotations

from typing import Optional


class MatchSyncError(Exception):
    """Base class for all matchsync errors."""


class ConfigurationError(MatchSyncError):
    """Missing or invalid configuration. Fatal at process start."""


class UpstreamError(MatchSyncError):
    """A provider call failed."""

    def __init__(self, provider: str, message: str, status: Optional[int] = None) -> None:
        super().__init__(f"{provider}: {message}")
        self.provider = provider
        self.status = status


class UpstreamUnavailable(UpstreamError):
    """Network error, timeout, 5xx, or 429 after the retry budget is spent."""


class UpstreamRejected(UpstreamError):
    """Non-retryable 4xx response."""


class MalformedPayload(UpstreamError):
    """Response body could not be read as the expected shape."""


class MatchNotFound(MatchSyncError):
    """Fixture does not exist upstream or is outside the allow-list."""

    def __init__(self, match_id: int, reason: str = "not found") -> None:
        super().__init__(f"match {match_id}: {reason}")
        self.match_id = match_id


class LinkAmbiguous(MatchSyncError):
    """No unique cross-provider candidate for a stored match."""

    def __init__(self, match_id: int, candidates: int) -> None:
        super().__init__(f"match {match_id}: no unique candidate among {candidates}")
        self.match_id = match_id
        self.candidates = candidates


class DataIntegrityViolation(MatchSyncError):
    """Stored match whose competition is no longer allow-listed."""

    def __init__(self, match_id: int, competition_id: Optional[int], provider: str) -> None:
        super().__init__(
            f"match {match_id}: competition {competition_id} not allowed for {provider}"
        )
        self.match_id = match_id
        self.competition_id = competition_id
        self.provider = provider
