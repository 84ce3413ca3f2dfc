"""
Team identity matching across providers that share no common team id.

Matching priority:
1. Exact match after normalization and alias resolution
2. Substring containment in either direction
3. Levenshtein distance <= 3, only when the longer name exceeds 5 characters

Short names therefore need an exact or alias match, which keeps unrelated
short names ("Bari" / "Bath") apart.
"""
from __future__ import annotations

import re
import unicodedata
from functools import lru_cache

from rapidfuzz.distance import Levenshtein

MAX_EDIT_DISTANCE = 3
MIN_FUZZY_LENGTH = 6

_CLUB_TOKENS = re.compile(r"\b(?:football club|fc|cf|sc|sv)\b")
_NON_ALNUM = re.compile(r"[^a-z0-9\s]")
_SPACES = re.compile(r"\s+")

# Normalized nickname -> normalized canonical name
ALIASES: dict[str, str] = {
    # England
    "man united": "manchester united",
    "man utd": "manchester united",
    "man city": "manchester city",
    "wolves": "wolverhampton wanderers",
    "spurs": "tottenham hotspur",
    "newcastle": "newcastle united",
    "leicester": "leicester city",
    "leeds": "leeds united",
    "norwich": "norwich city",
    "nottm forest": "nottingham forest",
    "sheffield utd": "sheffield united",
    "brighton": "brighton hove albion",
    "west ham": "west ham united",
    # Spain
    "atletico": "atletico madrid",
    "atleti": "atletico madrid",
    "betis": "real betis",
    "celta": "celta vigo",
    "athletic": "athletic club",
    "athletic bilbao": "athletic club",
    "barca": "barcelona",
    # Italy
    "inter": "inter milan",
    "internazionale": "inter milan",
    "internazionale milano": "inter milan",
    "milan": "ac milan",
    # Germany
    "bayern": "bayern munich",
    "bayern munchen": "bayern munich",
    "bayer": "bayer leverkusen",
    "leverkusen": "bayer leverkusen",
    "gladbach": "borussia monchengladbach",
    "monchengladbach": "borussia monchengladbach",
    "dortmund": "borussia dortmund",
    # France
    "psg": "paris saint germain",
    "saint etienne": "as saint etienne",
    # Portugal
    "sporting": "sporting cp",
    "sporting lisbon": "sporting cp",
}


def _fold_accents(value: str) -> str:
    decomposed = unicodedata.normalize("NFKD", value)
    return "".join(c for c in decomposed if not unicodedata.combining(c))


@lru_cache(maxsize=4096)
def normalize(name: str) -> str:
    """Lowercase, drop club tokens and punctuation, collapse whitespace, resolve aliases."""
    value = _fold_accents(name or "").lower()
    value = _NON_ALNUM.sub(" ", value.replace("&", " "))
    value = _CLUB_TOKENS.sub(" ", value)
    value = _SPACES.sub(" ", value).strip()
    return ALIASES.get(value, value)


def same_team(name_a: str, name_b: str) -> bool:
    """True when two free-text team names denote the same team. Symmetric and reflexive."""
    a = normalize(name_a)
    b = normalize(name_b)

    if a == b:
        return True
    # An empty name carries no identity; only another empty name equals it
    if not a or not b:
        return False
    if a in b or b in a:
        return True
    if max(len(a), len(b)) >= MIN_FUZZY_LENGTH:
        return Levenshtein.distance(a, b) <= MAX_EDIT_DISTANCE
    return False
