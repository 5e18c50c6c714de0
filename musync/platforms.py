"""Platform adapter contract and registry.

An adapter translates between the canonical model and one platform's API.
It is built per sync with the caller's bearer token and never exposes that
token to callers.
"""

from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Dict, List, Tuple, Type

import httpx

from musync.config import get_settings
from reconcile.errors import NotFound, QuotaExceeded, RateLimited, Transient, ValidationError
from reconcile.matcher import best_candidate
from reconcile.models import AddOutcome, RemoveOutcome, Track, Visibility

logger = logging.getLogger(__name__)

# Per-item failures that only fail the item; anything else aborts the call.
# QuotaExceeded subclasses RateLimited and must be re-raised before these.
ITEM_ERRORS = (NotFound, ValidationError, Transient, RateLimited)


@dataclass(frozen=True)
class PlatformCapabilities:
    supports_removal: bool = True
    entry_level_removal: bool = True  # False: removal by track id drops every copy
    max_batch_size: int = 1


@dataclass
class RemotePlaylistInfo:
    name: str
    description: str = ""
    visibility: Visibility = Visibility.PRIVATE
    id: str = ""
    track_count: int | None = None


class PlatformAdapter(ABC):
    """Operations the orchestrator needs from a platform."""

    name: str = ""
    capabilities = PlatformCapabilities()

    @abstractmethod
    async def list_playlists(self) -> List[RemotePlaylistInfo]:
        """Playlists owned by the token's account, across all pages."""

    @abstractmethod
    async def fetch_playlist_tracks(self, remote_playlist_id: str) -> List[Track]:
        """Every track of the remote playlist, in remote order, across all pages."""

    @abstractmethod
    async def fetch_playlist_info(self, remote_playlist_id: str) -> RemotePlaylistInfo:
        ...

    @abstractmethod
    async def create_playlist(
        self,
        name: str,
        description: str = "",
        visibility: Visibility = Visibility.PRIVATE,
    ) -> str:
        """Create an empty remote playlist and return its id."""

    @abstractmethod
    async def add_tracks(self, remote_playlist_id: str, tracks: List[Track]) -> AddOutcome:
        ...

    @abstractmethod
    async def remove_tracks(self, remote_playlist_id: str, tracks: List[Track]) -> RemoveOutcome:
        ...

    @abstractmethod
    async def search_track(self, title: str, artist: str) -> List[Track]:
        """Candidate remote tracks for a title/artist pair, best first."""

    # ------------------------------------------------------------------
    # Shared helpers
    # ------------------------------------------------------------------

    def remote_track(self, native_id: str, **fields) -> Track:
        """Build a Track for a remote item; ids are namespaced by platform."""
        return Track(
            id=f"{self.name}:{native_id}",
            platform_refs={self.name: native_id},
            **fields,
        )

    async def resolve(self, tracks: List[Track]) -> Tuple[List[Tuple[Track, str]], List[Track]]:
        """Find a native id for every track.

        Returns ``([(track, native_id), ...], unresolved)``.  Tracks without a
        stored ref are searched and accepted only when a candidate matches.
        """
        resolved: List[Tuple[Track, str]] = []
        unresolved: List[Track] = []
        for track in tracks:
            native = track.ref(self.name)
            if native:
                resolved.append((track, native))
                continue
            try:
                candidates = await self.search_track(track.title, track.artist)
            except QuotaExceeded:
                raise
            except ITEM_ERRORS as exc:
                logger.warning("%s search failed for %s: %s", self.name, track.label(), exc.detail)
                unresolved.append(track)
                continue
            match = best_candidate(track, candidates)
            if match is None:
                logger.info("%s has no match for %s", self.name, track.label())
                unresolved.append(track)
                continue
            resolved.append((track, match.ref(self.name)))
        return resolved, unresolved

    def with_ref(self, track: Track, native_id: str) -> Track:
        refs = dict(track.platform_refs)
        refs[self.name] = native_id
        return track.model_copy(update={"platform_refs": refs})


# ---------------------------------------------------------------------------
# Registry
# ---------------------------------------------------------------------------

def registry() -> Dict[str, Type[PlatformAdapter]]:
    from musync.spotify import SpotifyAdapter
    from musync.youtube import YouTubeAdapter

    return {SpotifyAdapter.name: SpotifyAdapter, YouTubeAdapter.name: YouTubeAdapter}


def known_platforms() -> List[str]:
    """Platforms that are both implemented and enabled in settings."""
    enabled = get_settings().enabled_platforms
    return [name for name in registry() if name in enabled]


def build_adapter(
    platform: str,
    token: str,
    transport: httpx.AsyncBaseTransport | None = None,
) -> PlatformAdapter:
    """Instantiate the adapter for *platform* with a bearer token."""
    if platform not in known_platforms():
        raise ValidationError(f"Unsupported platform: {platform}", platform=platform)
    return registry()[platform](token, transport=transport)
