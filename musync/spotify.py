"""Spotify Web API adapter.

Functions map onto the adapter contract:
- list_playlists        → paged ``GET /me/playlists``
- fetch_playlist_tracks → paged ``GET /playlists/{id}/tracks``
- create_playlist       → ``GET /me`` then ``POST /users/{uid}/playlists``
- add_tracks            → resolve, then add URIs in ≤100-item chunks
- remove_tracks         → remove URIs in ≤100-item chunks (every occurrence)
- search_track          → ``GET /search?type=track``
"""

from __future__ import annotations

import logging
from typing import List

import httpx

from musync.config import get_settings
from musync.http_client import PlatformClient
from musync.platforms import ITEM_ERRORS, PlatformAdapter, PlatformCapabilities, RemotePlaylistInfo
from reconcile.errors import QuotaExceeded
from reconcile.models import AddOutcome, RemoveOutcome, Track, Visibility

logger = logging.getLogger(__name__)

_BATCH_SIZE = 100
_SEARCH_LIMIT = 5


def _uri(native_id: str) -> str:
    return f"spotify:track:{native_id}"


class SpotifyAdapter(PlatformAdapter):
    name = "spotify"
    capabilities = PlatformCapabilities(
        supports_removal=True,
        entry_level_removal=False,
        max_batch_size=_BATCH_SIZE,
    )

    def __init__(self, token: str, *, transport: httpx.AsyncBaseTransport | None = None):
        self._client = PlatformClient(
            self.name, get_settings().spotify_api_base, token, transport=transport
        )

    def _to_track(self, item: dict) -> Track:
        artists = ", ".join(a.get("name", "") for a in item.get("artists", []) if a.get("name"))
        duration_ms = item.get("duration_ms")
        return self.remote_track(
            item["id"],
            title=item.get("name") or "(untitled)",
            artist=artists or "Unknown Artist",
            album=(item.get("album") or {}).get("name", ""),
            duration_seconds=duration_ms // 1000 if duration_ms is not None else None,
        )

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    async def list_playlists(self) -> List[RemotePlaylistInfo]:
        playlists: List[RemotePlaylistInfo] = []
        url: str | None = "/me/playlists"
        params: dict | None = {"limit": get_settings().page_size}

        while url:
            data = await self._client.get_json(url, params=params)
            for item in data.get("items", []):
                if not item or not item.get("id"):
                    continue
                playlists.append(
                    RemotePlaylistInfo(
                        id=item["id"],
                        name=item.get("name") or "(untitled)",
                        description=item.get("description") or "",
                        visibility=Visibility.PUBLIC if item.get("public") else Visibility.PRIVATE,
                        track_count=(item.get("tracks") or {}).get("total"),
                    )
                )
            url = data.get("next")
            params = None
        return playlists

    async def fetch_playlist_tracks(self, remote_playlist_id: str) -> List[Track]:
        """Every playable track; local files, episodes and unavailable items are skipped."""
        tracks: List[Track] = []
        url: str | None = f"/playlists/{remote_playlist_id}/tracks"
        params: dict | None = {"limit": get_settings().page_size}

        while url:
            data = await self._client.get_json(url, params=params)
            for item in data.get("items", []):
                track = item.get("track")
                if track is None:
                    continue
                if item.get("is_local") or track.get("is_local"):
                    continue
                if track.get("type", "track") != "track" or not track.get("id"):
                    continue
                tracks.append(self._to_track(track))
            url = data.get("next")  # absolute URL, None on the last page
            params = None

        logger.debug("Fetched %d tracks from spotify playlist %s", len(tracks), remote_playlist_id)
        return tracks

    async def fetch_playlist_info(self, remote_playlist_id: str) -> RemotePlaylistInfo:
        data = await self._client.get_json(
            f"/playlists/{remote_playlist_id}",
            params={"fields": "name,description,public"},
        )
        return RemotePlaylistInfo(
            name=data.get("name") or "(untitled)",
            description=data.get("description") or "",
            visibility=Visibility.PUBLIC if data.get("public") else Visibility.PRIVATE,
        )

    async def search_track(self, title: str, artist: str) -> List[Track]:
        data = await self._client.get_json(
            "/search",
            params={
                "q": f'track:"{title}" artist:"{artist}"',
                "type": "track",
                "limit": _SEARCH_LIMIT,
            },
        )
        items = (data.get("tracks") or {}).get("items", [])
        return [self._to_track(item) for item in items if item and item.get("id")]

    # ------------------------------------------------------------------
    # Writes
    # ------------------------------------------------------------------

    async def create_playlist(
        self,
        name: str,
        description: str = "",
        visibility: Visibility = Visibility.PRIVATE,
    ) -> str:
        me = await self._client.get_json("/me")
        resp = await self._client.request(
            "POST",
            f"/users/{me['id']}/playlists",
            json={
                "name": name,
                "description": description,
                "public": visibility == Visibility.PUBLIC,
            },
        )
        playlist_id = resp.json()["id"]
        logger.info("Created spotify playlist %s (%s)", playlist_id, name)
        return playlist_id

    async def add_tracks(self, remote_playlist_id: str, tracks: List[Track]) -> AddOutcome:
        resolved, unresolved = await self.resolve(tracks)
        outcome = AddOutcome(failed=list(unresolved))

        size = self.capabilities.max_batch_size
        for start in range(0, len(resolved), size):
            chunk = resolved[start : start + size]
            try:
                await self._client.request(
                    "POST",
                    f"/playlists/{remote_playlist_id}/tracks",
                    json={"uris": [_uri(native) for _, native in chunk]},
                )
            except QuotaExceeded:
                raise
            except ITEM_ERRORS as exc:
                logger.warning(
                    "Spotify add batch of %d failed for %s: %s",
                    len(chunk), remote_playlist_id, exc.detail,
                )
                outcome.failed.extend(track for track, _ in chunk)
                continue
            outcome.added.extend(self.with_ref(track, native) for track, native in chunk)
        return outcome

    async def remove_tracks(self, remote_playlist_id: str, tracks: List[Track]) -> RemoveOutcome:
        outcome = RemoveOutcome()
        removable = [t for t in tracks if t.ref(self.name)]
        outcome.failed.extend(t for t in tracks if not t.ref(self.name))

        size = self.capabilities.max_batch_size
        for start in range(0, len(removable), size):
            chunk = removable[start : start + size]
            try:
                await self._client.request(
                    "DELETE",
                    f"/playlists/{remote_playlist_id}/tracks",
                    json={"tracks": [{"uri": _uri(t.ref(self.name))} for t in chunk]},
                )
            except QuotaExceeded:
                raise
            except ITEM_ERRORS as exc:
                logger.warning(
                    "Spotify remove batch of %d failed for %s: %s",
                    len(chunk), remote_playlist_id, exc.detail,
                )
                outcome.failed.extend(chunk)
                continue
            outcome.removed.extend(chunk)
        return outcome
