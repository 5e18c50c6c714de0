"""Tests for the diff engine and removal filtering."""

from __future__ import annotations

from reconcile.diff import compute_diff, removable
from reconcile.models import Track


def _track(title: str, artist: str = "Artist", **refs: str) -> Track:
    return Track(title=title, artist=artist, platform_refs=refs)


def _remote(native: str, title: str, artist: str = "Artist") -> Track:
    return Track(id=f"spotify:{native}", title=title, artist=artist, platform_refs={"spotify": native})


class TestComputeDiff:
    def test_empty_remote_adds_everything_in_order(self):
        canonical = [_track("A"), _track("B"), _track("C")]
        diff = compute_diff(canonical, [], "spotify")
        assert [t.title for t in diff.to_add] == ["A", "B", "C"]
        assert diff.to_remove == []

    def test_in_sync_is_empty(self):
        canonical = [_track("A"), _track("B")]
        remote = [_remote("1", "B"), _remote("2", "A")]
        diff = compute_diff(canonical, remote, "spotify")
        assert diff.is_empty
        assert len(diff.matched) == 2

    def test_add_and_remove(self):
        canonical = [_track("A"), _track("B")]
        remote = [_remote("1", "A"), _remote("9", "Z")]
        diff = compute_diff(canonical, remote, "spotify")
        assert [t.title for t in diff.to_add] == ["B"]
        assert [t.title for t in diff.to_remove] == ["Z"]

    def test_remove_follows_remote_order(self):
        remote = [_remote("3", "Z"), _remote("1", "X"), _remote("2", "Y")]
        diff = compute_diff([], remote, "spotify")
        assert [t.title for t in diff.to_remove] == ["Z", "X", "Y"]

    def test_duplicate_canonical_needs_two_remote_copies(self):
        canonical = [_track("A"), _track("A")]
        remote = [_remote("1", "A")]
        diff = compute_diff(canonical, remote, "spotify")
        assert len(diff.matched) == 1
        assert len(diff.to_add) == 1

    def test_exact_not_stolen_by_earlier_fuzzy(self):
        # "Song" would fuzzily match "Song (Live)"; the exact "Song (Live)" must keep it.
        canonical = [_track("Song"), _track("Song (Live)")]
        remote = [_remote("1", "Song (Live)"), _remote("2", "Song")]
        diff = compute_diff(canonical, remote, "spotify")
        pairs = {c.title: r.title for c, r in diff.matched}
        assert pairs == {"Song": "Song", "Song (Live)": "Song (Live)"}
        assert diff.is_empty

    def test_id_match_beats_title(self):
        canonical = [_track("Renamed locally", spotify="1")]
        remote = [_remote("1", "Original title")]
        diff = compute_diff(canonical, remote, "spotify")
        assert diff.is_empty

    def test_idempotent_after_apply(self):
        canonical = [_track("A"), _track("B")]
        remote = [_remote("1", "A"), _remote("9", "Z")]
        diff = compute_diff(canonical, remote, "spotify")
        applied = [r for c, r in diff.matched] + [
            _remote(f"n{i}", t.title, t.artist) for i, t in enumerate(diff.to_add)
        ]
        assert compute_diff(canonical, applied, "spotify").is_empty


class TestRemovable:
    def test_unsupported_skips_everything(self):
        diff = compute_diff([], [_remote("1", "Z")], "spotify")
        applicable, skipped = removable(diff, "spotify", supports_removal=False)
        assert applicable == []
        assert [t.title for t in skipped] == ["Z"]
        assert len(diff.to_remove) == 1

    def test_entry_level_removes_duplicates(self):
        canonical = [_track("A")]
        remote = [_remote("1", "A"), _remote("1", "A")]
        diff = compute_diff(canonical, remote, "spotify")
        applicable, skipped = removable(diff, "spotify", entry_level_removal=True)
        assert len(applicable) == 1
        assert skipped == []

    def test_id_level_keeps_duplicate_of_kept_track(self):
        canonical = [_track("A")]
        remote = [_remote("1", "A"), _remote("1", "A"), _remote("2", "Z")]
        diff = compute_diff(canonical, remote, "spotify")
        applicable, skipped = removable(diff, "spotify", entry_level_removal=False)
        assert [t.title for t in applicable] == ["Z"]
        assert [t.title for t in skipped] == ["A"]
