"""Domain enumerations for matchsync."""
from __future__ import annotations

from enum import Enum
from typing import Optional


class MatchStatus(str, Enum):
    SCHEDULED = "SCHEDULED"
    IN_PLAY = "IN_PLAY"
    PAUSED = "PAUSED"
    FINISHED = "FINISHED"
    POSTPONED = "POSTPONED"
    SUSPENDED = "SUSPENDED"
    CANCELED = "CANCELED"

    @property
    def is_live(self) -> bool:
        return self in (MatchStatus.IN_PLAY, MatchStatus.PAUSED)

    @property
    def is_finished(self) -> bool:
        return self == MatchStatus.FINISHED

    @classmethod
    def coerce(cls, raw: Optional[str]) -> "MatchStatus":
        """Map a stored value, including legacy provider codes, onto the canonical set."""
        value = (raw or "").strip().upper()
        try:
            return cls(value)
        except ValueError:
            return LEGACY_STATUS_CODES.get(value, cls.SCHEDULED)


# Provider-native codes that older rows may still carry.
LEGACY_STATUS_CODES: dict[str, MatchStatus] = {
    "LIVE": MatchStatus.IN_PLAY,
    "1H": MatchStatus.IN_PLAY,
    "2H": MatchStatus.IN_PLAY,
    "ET": MatchStatus.IN_PLAY,
    "P": MatchStatus.IN_PLAY,
    "HALFTIME": MatchStatus.PAUSED,
    "HT": MatchStatus.PAUSED,
    "BT": MatchStatus.PAUSED,
    "INT": MatchStatus.SUSPENDED,
    "TIMED": MatchStatus.SCHEDULED,
    "FT": MatchStatus.FINISHED,
    "AET": MatchStatus.FINISHED,
    "PEN": MatchStatus.FINISHED,
    "AWARDED": MatchStatus.FINISHED,
    "CANCELLED": MatchStatus.CANCELED,
}


class ProviderTag(str, Enum):
    FOOTBALL_DATA = "football-data"
    API_FOOTBALL = "api-football"


# Role aliases
PRIMARY = ProviderTag.FOOTBALL_DATA
SECONDARY = ProviderTag.API_FOOTBALL


class EventType(str, Enum):
    GOAL = "GOAL"
    YELLOW_CARD = "YELLOW_CARD"
    RED_CARD = "RED_CARD"
    SUBSTITUTION = "SUBSTITUTION"
