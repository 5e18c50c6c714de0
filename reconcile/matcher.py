"""Track matcher: pure business logic, no I/O.

Decides whether a canonical track and a remote track are the same song
without shared keys between platforms:

1. platform id equality (when the canonical track already carries one)
2. exact match on normalized (title, artist)
3. containment in either direction on title AND artist

Anything else is treated as a different song.  A missed match only costs a
duplicate add; a wrong match could remove a different song, so the rules
stay strict.
"""

from __future__ import annotations

import re
import unicodedata
from enum import IntEnum
from typing import Iterable, Optional, Sequence, Set

from reconcile.models import Track

_PUNCTUATION = re.compile(r"[^\w\s]", re.UNICODE)
_WHITESPACE = re.compile(r"\s+")


class MatchRule(IntEnum):
    """Rules in priority order (lower wins)."""

    ID = 1
    EXACT = 2
    FUZZY = 3


# ---------------------------------------------------------------------------
# Normalization
# ---------------------------------------------------------------------------

def normalize(text: str) -> str:
    """Lower-case, strip diacritics and punctuation, collapse whitespace."""
    if not text:
        return ""
    decomposed = unicodedata.normalize("NFKD", text)
    stripped = "".join(ch for ch in decomposed if not unicodedata.combining(ch))
    cleaned = _PUNCTUATION.sub("", stripped.lower())
    return _WHITESPACE.sub(" ", cleaned).strip()


def _key(text: str) -> str:
    # Titles made only of punctuation ("!!!") normalize to nothing.
    return normalize(text) or _WHITESPACE.sub(" ", text.lower()).strip()


def _contains_either_way(a: str, b: str) -> bool:
    if not a or not b:
        return False
    return a in b or b in a


# ---------------------------------------------------------------------------
# Pairwise rules
# ---------------------------------------------------------------------------

def match_rule(
    canonical: Track,
    remote: Track,
    platform: Optional[str] = None,
) -> Optional[MatchRule]:
    """Return the strongest rule under which *canonical* matches *remote*.

    ``MatchRule.ID`` is only considered when *platform* is given and both
    tracks carry a native id for it.
    """
    if platform is not None:
        wanted = canonical.ref(platform)
        if wanted is not None and remote.ref(platform) == wanted:
            return MatchRule.ID

    c_title, c_artist = _key(canonical.title), _key(canonical.artist)
    r_title, r_artist = _key(remote.title), _key(remote.artist)

    if c_title and c_artist and (c_title, c_artist) == (r_title, r_artist):
        return MatchRule.EXACT

    if _contains_either_way(c_title, r_title) and _contains_either_way(c_artist, r_artist):
        return MatchRule.FUZZY

    return None


def tracks_match(canonical: Track, remote: Track, platform: Optional[str] = None) -> bool:
    """True if the two tracks represent the same song."""
    return match_rule(canonical, remote, platform) is not None


# ---------------------------------------------------------------------------
# Pool lookup
# ---------------------------------------------------------------------------

def find_match(
    canonical: Track,
    pool: Sequence[Track],
    platform: Optional[str],
    consumed: Set[int],
    *,
    rules: Iterable[MatchRule] = tuple(MatchRule),
) -> Optional[int]:
    """Index of the first unconsumed track in *pool* matching *canonical*.

    Only the given *rules* are accepted.  When a canonical track holds a
    native id for *platform* that is present in the pool, that entry wins
    over any heuristic.  The caller adds the returned index to *consumed*.
    """
    accepted = set(rules)

    if MatchRule.ID in accepted and platform is not None and canonical.ref(platform):
        for idx, candidate in enumerate(pool):
            if idx in consumed:
                continue
            if match_rule(canonical, candidate, platform) == MatchRule.ID:
                return idx

    for idx, candidate in enumerate(pool):
        if idx in consumed:
            continue
        rule = match_rule(canonical, candidate)
        if rule is not None and rule in accepted:
            return idx
    return None


def best_candidate(
    wanted: Track,
    candidates: Sequence[Track],
) -> Optional[Track]:
    """First search candidate that matches *wanted*, preferring exact matches."""
    for rule in (MatchRule.EXACT, MatchRule.FUZZY):
        for candidate in candidates:
            if match_rule(wanted, candidate) == rule:
                return candidate
    return None
