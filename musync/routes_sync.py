"""Synchronization, import and platform account routes."""

from __future__ import annotations

import time
from functools import lru_cache
from typing import Dict, List

from fastapi import APIRouter, HTTPException, Query, Request
from fastapi.responses import JSONResponse
from pydantic import BaseModel, Field

from musync import store
from musync.credentials import get_credential, store_credential
from musync.http_errors import http_error
from musync.platforms import PlatformAdapter, build_adapter, known_platforms
from musync.quota import get_quota_tracker
from musync.routes_playlists import playlist_dict
from musync.sync import ALL_PLATFORMS, SyncOrchestrator
from reconcile.errors import AuthExpired, MusyncError
from reconcile.models import Credential

router = APIRouter(tags=["sync"])


@lru_cache
def get_orchestrator() -> SyncOrchestrator:
    return SyncOrchestrator()


def _get_user_id(request: Request) -> str:
    """Extract user_id from session or raise 401."""
    uid = request.session.get("user_id")
    if not uid:
        raise HTTPException(status_code=401, detail="Not logged in")
    return uid


def _check_platform(platform: str) -> None:
    if platform not in known_platforms():
        raise HTTPException(status_code=400, detail=f"Unsupported platform: {platform}")


class SyncRequest(BaseModel):
    platform: str = ALL_PLATFORMS
    credentials: Dict[str, str] = Field(default_factory=dict)  # platform -> bearer token


class ImportRequest(BaseModel):
    remote_playlist_id: str = Field(min_length=1)
    playlist_id: str | None = None
    token: str | None = None


class ConnectRequest(BaseModel):
    access_token: str = Field(min_length=1)
    expires_in: int | None = Field(default=None, gt=0)  # seconds


# ---------------------------------------------------------------------------
# /playlists/{id}/sync
# ---------------------------------------------------------------------------

@router.post("/playlists/{playlist_id}/sync")
async def sync_playlist(request: Request, playlist_id: str, body: SyncRequest | None = None):
    """Sync one platform or ``all``; 207 when any platform failed."""
    uid = _get_user_id(request)
    body = body or SyncRequest()
    try:
        playlist = await store.load_playlist(playlist_id)
    except MusyncError as exc:
        raise http_error(exc)
    if playlist.owner_id != uid:
        raise HTTPException(status_code=404, detail=f"Playlist {playlist_id} not found")

    targets: List[str] = playlist.platforms if body.platform == ALL_PLATFORMS else [body.platform]
    credentials: Dict[str, Credential] = {
        p: await get_credential(uid, p, body.credentials.get(p)) for p in targets
    }

    try:
        report = await get_orchestrator().synchronize(playlist_id, body.platform, credentials)
    except MusyncError as exc:
        raise http_error(exc)
    return JSONResponse(report.model_dump(mode="json"), status_code=report.http_status)


@router.get("/playlists/{playlist_id}/sync")
async def sync_status(request: Request, playlist_id: str):
    """Per-platform link state of the playlist."""
    uid = _get_user_id(request)
    try:
        playlist = await store.load_playlist(playlist_id)
    except MusyncError as exc:
        raise http_error(exc)
    if playlist.owner_id != uid:
        raise HTTPException(status_code=404, detail=f"Playlist {playlist_id} not found")

    platforms = {}
    for p in playlist.platforms:
        link = playlist.platform_links.get(p)
        platforms[p] = {
            "state": playlist.link_state(p),
            "remote_playlist_id": link.remote_playlist_id if link else None,
            "last_synced_at": link.last_synced_at.isoformat() if link and link.last_synced_at else None,
            "last_error": link.last_error if link else None,
        }
    return JSONResponse({"playlist_id": playlist_id, "platforms": platforms})


# ---------------------------------------------------------------------------
# /import/{platform}
# ---------------------------------------------------------------------------

@router.post("/import/{platform}")
async def import_playlist(request: Request, platform: str, body: ImportRequest):
    """Import a remote playlist as a new canonical playlist, or merge it into one."""
    uid = _get_user_id(request)
    _check_platform(platform)
    credential = await get_credential(uid, platform, body.token)
    try:
        playlist = await get_orchestrator().import_playlist(
            uid, platform, body.remote_playlist_id, credential, into=body.playlist_id
        )
    except MusyncError as exc:
        raise http_error(exc)
    return JSONResponse(playlist_dict(playlist), status_code=201 if body.playlist_id is None else 200)


# ---------------------------------------------------------------------------
# /connect/{platform}
# ---------------------------------------------------------------------------

@router.put("/connect/{platform}")
async def connect_account(request: Request, platform: str, body: ConnectRequest):
    """Store the bearer token handed over by the login front."""
    uid = _get_user_id(request)
    _check_platform(platform)
    expires_at = int(time.time()) + body.expires_in if body.expires_in else None
    try:
        await store_credential(uid, platform, body.access_token, expires_at)
    except MusyncError as exc:
        raise http_error(exc)
    return JSONResponse({"platform": platform, "connected": True, "expires_at": expires_at})


# ---------------------------------------------------------------------------
# /search/{platform}
# ---------------------------------------------------------------------------

async def _connected_adapter(uid: str, platform: str) -> PlatformAdapter:
    """Adapter built from the user's stored credential."""
    credential = await get_credential(uid, platform)
    if not credential.usable:
        raise AuthExpired(credential.reason or "no usable credential", platform=platform)
    return build_adapter(platform, credential.token)


@router.get("/search/{platform}")
async def search(
    request: Request,
    platform: str,
    title: str = Query(min_length=1),
    artist: str = Query(min_length=1),
):
    uid = _get_user_id(request)
    _check_platform(platform)
    try:
        adapter = await _connected_adapter(uid, platform)
        candidates = await adapter.search_track(title, artist)
    except MusyncError as exc:
        raise http_error(exc)
    return JSONResponse(
        {"results": [c.model_dump(mode="json", exclude={"entry_id"}) for c in candidates]}
    )


# ---------------------------------------------------------------------------
# /platforms/{platform}/playlists
# ---------------------------------------------------------------------------

@router.get("/platforms/{platform}/playlists")
async def remote_playlists(request: Request, platform: str):
    """The user's playlists on *platform*, as candidates for import."""
    uid = _get_user_id(request)
    _check_platform(platform)
    try:
        adapter = await _connected_adapter(uid, platform)
        playlists = await adapter.list_playlists()
    except MusyncError as exc:
        raise http_error(exc)
    return JSONResponse(
        {
            "playlists": [
                {
                    "id": p.id,
                    "name": p.name,
                    "description": p.description,
                    "visibility": p.visibility.value,
                    "track_count": p.track_count,
                }
                for p in playlists
            ]
        }
    )


# ---------------------------------------------------------------------------
# /platforms/youtube/quota
# ---------------------------------------------------------------------------

@router.get("/platforms/youtube/quota")
async def youtube_quota():
    """Rolling 24h YouTube Data API usage."""
    return JSONResponse(get_quota_tracker().stats())
