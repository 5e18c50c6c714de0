"""YouTube Data API v3 adapter.

YouTube has no notion of artist: videos titled ``"Artist - Title"`` are
split, anything else takes the owning channel as artist.  Every attempt,
retries included, is charged against the quota tracker before it is sent.
"""

from __future__ import annotations

import html
import logging
import re
from typing import Dict, List, Tuple

import httpx

from musync.config import get_settings
from musync.http_client import PlatformClient
from musync.platforms import ITEM_ERRORS, PlatformAdapter, PlatformCapabilities, RemotePlaylistInfo
from musync.quota import QuotaOperation, QuotaTracker, get_quota_tracker
from reconcile.errors import NotFound, QuotaExceeded
from reconcile.models import AddOutcome, RemoveOutcome, Track, Visibility

logger = logging.getLogger(__name__)

_VIDEO_CHUNK = 50
_SEARCH_LIMIT = 10
_MUSIC_CATEGORY = "10"
_UNKNOWN_ARTIST = "Unknown Artist"
_TOPIC_SUFFIX = " - Topic"

_ISO_DURATION = re.compile(r"^P(?:(\d+)D)?T?(?:(\d+)H)?(?:(\d+)M)?(?:(\d+)S)?$")


# ---------------------------------------------------------------------------
# Parsing helpers
# ---------------------------------------------------------------------------

def parse_duration(value: str | None) -> int | None:
    """``PT#H#M#S`` to seconds; ``None`` when absent or malformed."""
    if not value:
        return None
    m = _ISO_DURATION.match(value)
    if not m:
        return None
    days, hours, minutes, seconds = (int(g or 0) for g in m.groups())
    return days * 86400 + hours * 3600 + minutes * 60 + seconds


def clean_channel(channel: str | None) -> str:
    channel = (channel or "").strip()
    if channel.endswith(_TOPIC_SUFFIX):
        channel = channel[: -len(_TOPIC_SUFFIX)].strip()
    return channel or _UNKNOWN_ARTIST


def split_title(video_title: str, channel: str | None) -> Tuple[str, str]:
    """Return ``(title, artist)`` for a video."""
    artist, sep, title = video_title.partition(" - ")
    if sep and artist.strip() and title.strip():
        return title.strip(), artist.strip()
    return video_title.strip() or "(untitled)", clean_channel(channel)


class YouTubeAdapter(PlatformAdapter):
    name = "youtube"
    capabilities = PlatformCapabilities(
        supports_removal=True,
        entry_level_removal=True,
        max_batch_size=1,
    )

    def __init__(
        self,
        token: str,
        *,
        transport: httpx.AsyncBaseTransport | None = None,
        quota: QuotaTracker | None = None,
    ):
        self._client = PlatformClient(
            self.name, get_settings().youtube_api_base, token, transport=transport
        )
        self._quota = quota or get_quota_tracker()

    async def _call(self, operation: QuotaOperation, method: str, path: str, **kwargs) -> httpx.Response:
        return await self._client.request(
            method, path, on_attempt=lambda: self._quota.charge(operation), **kwargs
        )

    def _to_track(
        self,
        video_id: str,
        snippet: dict,
        duration: str | None = None,
        entry_id: str | None = None,
    ) -> Track:
        channel = snippet.get("videoOwnerChannelTitle") or snippet.get("channelTitle")
        title, artist = split_title(html.unescape(snippet.get("title", "")), channel)
        return self.remote_track(
            video_id,
            title=title,
            artist=artist,
            duration_seconds=parse_duration(duration),
            entry_id=entry_id,
        )

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    async def _video_details(self, video_ids: List[str]) -> Dict[str, dict]:
        details: Dict[str, dict] = {}
        for start in range(0, len(video_ids), _VIDEO_CHUNK):
            chunk = video_ids[start : start + _VIDEO_CHUNK]
            resp = await self._call(
                QuotaOperation.READ_LIGHT,
                "GET",
                "/videos",
                params={"part": "snippet,contentDetails", "id": ",".join(chunk)},
            )
            for item in resp.json().get("items", []):
                details[item["id"]] = item
        return details

    async def fetch_playlist_tracks(self, remote_playlist_id: str) -> List[Track]:
        """Playlist items in order; deleted or private videos are skipped."""
        entries: List[Tuple[str, str, dict]] = []  # (entry id, video id, snippet)
        page_token: str | None = None

        while True:
            params = {
                "part": "snippet,contentDetails",
                "playlistId": remote_playlist_id,
                "maxResults": get_settings().page_size,
            }
            if page_token:
                params["pageToken"] = page_token
            resp = await self._call(QuotaOperation.READ_LIGHT, "GET", "/playlistItems", params=params)
            data = resp.json()
            for item in data.get("items", []):
                video_id = (item.get("contentDetails") or {}).get("videoId") or (
                    (item.get("snippet") or {}).get("resourceId") or {}
                ).get("videoId")
                if video_id:
                    entries.append((item["id"], video_id, item.get("snippet") or {}))
            page_token = data.get("nextPageToken")
            if not page_token:
                break

        details = await self._video_details(list(dict.fromkeys(v for _, v, _ in entries)))
        tracks: List[Track] = []
        for entry_id, video_id, snippet in entries:
            video = details.get(video_id)
            if video is None:
                logger.debug("Skipping unavailable video %s in %s", video_id, remote_playlist_id)
                continue
            tracks.append(
                self._to_track(
                    video_id,
                    video.get("snippet") or snippet,
                    (video.get("contentDetails") or {}).get("duration"),
                    entry_id=entry_id,
                )
            )
        return tracks

    async def list_playlists(self) -> List[RemotePlaylistInfo]:
        playlists: List[RemotePlaylistInfo] = []
        page_token: str | None = None

        while True:
            params = {
                "part": "snippet,status,contentDetails",
                "mine": "true",
                "maxResults": get_settings().page_size,
            }
            if page_token:
                params["pageToken"] = page_token
            resp = await self._call(QuotaOperation.READ_LIGHT, "GET", "/playlists", params=params)
            data = resp.json()
            for item in data.get("items", []):
                snippet = item.get("snippet") or {}
                playlists.append(
                    RemotePlaylistInfo(
                        id=item["id"],
                        name=snippet.get("title") or "(untitled)",
                        description=snippet.get("description") or "",
                        visibility=Visibility.PUBLIC
                        if (item.get("status") or {}).get("privacyStatus") == "public"
                        else Visibility.PRIVATE,
                        track_count=(item.get("contentDetails") or {}).get("itemCount"),
                    )
                )
            page_token = data.get("nextPageToken")
            if not page_token:
                break
        return playlists

    async def fetch_playlist_info(self, remote_playlist_id: str) -> RemotePlaylistInfo:
        resp = await self._call(
            QuotaOperation.READ_LIGHT,
            "GET",
            "/playlists",
            params={"part": "snippet,status", "id": remote_playlist_id},
        )
        items = resp.json().get("items", [])
        if not items:
            raise NotFound(f"Playlist {remote_playlist_id} not found", platform=self.name)
        snippet = items[0].get("snippet") or {}
        status = items[0].get("status") or {}
        return RemotePlaylistInfo(
            name=snippet.get("title") or "(untitled)",
            description=snippet.get("description") or "",
            visibility=Visibility.PUBLIC
            if status.get("privacyStatus") == "public"
            else Visibility.PRIVATE,
        )

    async def search_track(self, title: str, artist: str) -> List[Track]:
        resp = await self._call(
            QuotaOperation.SEARCH,
            "GET",
            "/search",
            params={
                "part": "snippet",
                "q": f"{artist} {title}",
                "type": "video",
                "videoCategoryId": _MUSIC_CATEGORY,
                "maxResults": _SEARCH_LIMIT,
            },
        )
        candidates: List[Track] = []
        for item in resp.json().get("items", []):
            video_id = (item.get("id") or {}).get("videoId")
            if video_id:
                candidates.append(self._to_track(video_id, item.get("snippet") or {}))
        return candidates

    # ------------------------------------------------------------------
    # Writes
    # ------------------------------------------------------------------

    async def create_playlist(
        self,
        name: str,
        description: str = "",
        visibility: Visibility = Visibility.PRIVATE,
    ) -> str:
        resp = await self._call(
            QuotaOperation.WRITE,
            "POST",
            "/playlists",
            params={"part": "snippet,status"},
            json={
                "snippet": {"title": name, "description": description},
                "status": {"privacyStatus": visibility.value},
            },
        )
        playlist_id = resp.json()["id"]
        logger.info("Created youtube playlist %s (%s)", playlist_id, name)
        return playlist_id

    async def add_tracks(self, remote_playlist_id: str, tracks: List[Track]) -> AddOutcome:
        resolved, unresolved = await self.resolve(tracks)
        outcome = AddOutcome(failed=list(unresolved))

        for track, video_id in resolved:
            try:
                await self._call(
                    QuotaOperation.WRITE,
                    "POST",
                    "/playlistItems",
                    params={"part": "snippet"},
                    json={
                        "snippet": {
                            "playlistId": remote_playlist_id,
                            "resourceId": {"kind": "youtube#video", "videoId": video_id},
                        }
                    },
                )
            except QuotaExceeded:
                raise
            except ITEM_ERRORS as exc:
                logger.warning("YouTube insert of %s failed: %s", track.label(), exc.detail)
                outcome.failed.append(track)
                continue
            outcome.added.append(self.with_ref(track, video_id))
        return outcome

    async def remove_tracks(self, remote_playlist_id: str, tracks: List[Track]) -> RemoveOutcome:
        outcome = RemoveOutcome()
        for track in tracks:
            if not track.entry_id:
                outcome.failed.append(track)
                continue
            try:
                await self._call(
                    QuotaOperation.DELETE, "DELETE", "/playlistItems", params={"id": track.entry_id}
                )
            except QuotaExceeded:
                raise
            except ITEM_ERRORS as exc:
                logger.warning("YouTube delete of %s failed: %s", track.label(), exc.detail)
                outcome.failed.append(track)
                continue
            outcome.removed.append(track)
        return outcome
