"""Playlist diff engine: pure business logic, no I/O.

Given the canonical track list and one platform's current track list,
computes which canonical tracks must be added and which remote tracks must
be removed.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import List, Optional, Sequence, Set, Tuple

from reconcile.matcher import MatchRule, find_match
from reconcile.models import Track


@dataclass
class PlaylistDiff:
    """Operations needed to reconcile one remote playlist."""

    to_add: List[Track] = field(default_factory=list)  # canonical order
    to_remove: List[Track] = field(default_factory=list)  # remote order
    matched: List[Tuple[Track, Track]] = field(default_factory=list)  # (canonical, remote)

    @property
    def is_empty(self) -> bool:
        return not self.to_add and not self.to_remove


# ---------------------------------------------------------------------------
# Diff
# ---------------------------------------------------------------------------

def compute_diff(
    canonical: Sequence[Track],
    remote: Sequence[Track],
    platform: Optional[str] = None,
) -> PlaylistDiff:
    """Match every canonical track against the remote snapshot.

    Matching runs one pass per rule (id, exact, fuzzy) so that a lenient
    match never consumes a remote track another canonical track matches
    exactly.  Each remote track is consumed at most once.
    """
    consumed: Set[int] = set()
    pairs: dict[int, int] = {}  # canonical index -> remote index

    for rule in MatchRule:
        for c_idx, track in enumerate(canonical):
            if c_idx in pairs:
                continue
            r_idx = find_match(track, remote, platform, consumed, rules=(rule,))
            if r_idx is not None:
                consumed.add(r_idx)
                pairs[c_idx] = r_idx

    diff = PlaylistDiff()
    for c_idx, track in enumerate(canonical):
        if c_idx in pairs:
            diff.matched.append((track, remote[pairs[c_idx]]))
        else:
            diff.to_add.append(track)
    diff.to_remove = [t for r_idx, t in enumerate(remote) if r_idx not in consumed]
    return diff


# ---------------------------------------------------------------------------
# Applicable removals
# ---------------------------------------------------------------------------

def removable(
    diff: PlaylistDiff,
    platform: str,
    *,
    supports_removal: bool = True,
    entry_level_removal: bool = True,
) -> Tuple[List[Track], List[Track]]:
    """Split ``diff.to_remove`` into (applicable, skipped).

    Platforms without deletion skip everything.  Platforms that remove by
    native track id (every occurrence at once) skip duplicates of a track
    that is being kept, otherwise the kept copy would disappear too.
    """
    if not supports_removal:
        return [], list(diff.to_remove)
    if entry_level_removal:
        return list(diff.to_remove), []

    kept_ids = {remote.ref(platform) for _, remote in diff.matched if remote.ref(platform)}
    applicable: List[Track] = []
    skipped: List[Track] = []
    for track in diff.to_remove:
        if track.ref(platform) in kept_ids:
            skipped.append(track)
        else:
            applicable.append(track)
    return applicable, skipped
