"""
Cross-provider linking of stored (Primary) matches to Secondary fixtures.

The two providers share no common fixture id, so a stored match is linked through
a fixed pipeline of stages:
    league map -> kickoff window -> team names -> tie-break
Each stage only narrows the candidate list. Linking never performs I/O; the caller
resolves the league mapping beforehand.
"""
from __future__ import annotations

from dataclasses import dataclass, field
from datetime import timedelta
from enum import Enum
from typing import Optional, Sequence

from shared.errors import LinkAmbiguous
from shared.models.domain import Match
from shared.utils.logging import get_logger

from reconciler.team_matcher import same_team

logger = get_logger(__name__)


class LinkOutcome(str, Enum):
    LINKED = "linked"
    NO_MAPPING = "no_mapping"
    NO_CANDIDATE = "no_candidate"
    FAILED = "failed"


@dataclass
class LinkResult:
    """Per-match linking result; one failed match never aborts the batch."""
    match_id: int
    outcome: LinkOutcome
    candidate: Optional[Match] = None
    considered: list[int] = field(default_factory=list)
    updated: bool = False
    error: Optional[str] = None

    @property
    def linked(self) -> bool:
        return self.outcome == LinkOutcome.LINKED


# ── Stages ──────────────────────────────────────────────────────────────
def in_league(candidates: Sequence[Match], league_id: int) -> list[Match]:
    return [c for c in candidates if c.competition.id == league_id]


def within_kickoff(base: Match, candidates: Sequence[Match], tolerance: timedelta) -> list[Match]:
    return [c for c in candidates if abs(c.utc_date - base.utc_date) <= tolerance]


def same_fixture_teams(base: Match, candidates: Sequence[Match]) -> list[Match]:
    return [
        c for c in candidates
        if same_team(base.home_team.name, c.home_team.name)
        and same_team(base.away_team.name, c.away_team.name)
    ]


def closest_kickoff(base: Match, candidates: Sequence[Match]) -> Optional[Match]:
    """Pick the closest kickoff, then the lowest id. Logs when more than one survived."""
    if not candidates:
        return None
    ranked = sorted(candidates, key=lambda c: (abs(c.utc_date - base.utc_date), c.id))
    if len(ranked) > 1:
        logger.warning(
            "link_ambiguous",
            match_id=base.id,
            candidates=[c.id for c in ranked],
            chosen=ranked[0].id,
        )
    return ranked[0]


# ── Pipeline ────────────────────────────────────────────────────────────
def link_match(
    base: Match,
    secondary_matches: Sequence[Match],
    secondary_league_id: Optional[int],
    tolerance: timedelta,
) -> LinkResult:
    """Find the Secondary fixture that is the same real-world match as `base`."""
    if secondary_league_id is None:
        return LinkResult(match_id=base.id, outcome=LinkOutcome.NO_MAPPING)

    pool = in_league(secondary_matches, secondary_league_id)
    pool = within_kickoff(base, pool, tolerance)
    considered = [c.id for c in pool]
    chosen = closest_kickoff(base, same_fixture_teams(base, pool))
    if chosen is None:
        logger.info(
            "link_no_candidate",
            match_id=base.id,
            home=base.home_team.name,
            away=base.away_team.name,
            candidates=[f"{c.id}:{c.home_team.name} v {c.away_team.name}" for c in pool],
        )
        return LinkResult(
            match_id=base.id,
            outcome=LinkOutcome.NO_CANDIDATE,
            considered=considered,
            error=str(LinkAmbiguous(base.id, len(considered))),
        )
    return LinkResult(
        match_id=base.id, outcome=LinkOutcome.LINKED, candidate=chosen, considered=considered
    )


def find_by_teams(
    base: Match,
    secondary_matches: Sequence[Match],
    secondary_league_id: int,
) -> Optional[Match]:
    """League and name match only, no kickoff window. Used for quietly finished matches."""
    return closest_kickoff(base, same_fixture_teams(base, in_league(secondary_matches, secondary_league_id)))
