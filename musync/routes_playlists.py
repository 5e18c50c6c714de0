"""Canonical playlist REST API routes.

Playlists, their tracks and the set of platforms each one is connected to.
Every endpoint is scoped to the session user; other users' playlists are
reported as not found.
"""

from __future__ import annotations

from typing import List

import pydantic
from fastapi import APIRouter, HTTPException, Request
from fastapi.responses import JSONResponse
from pydantic import BaseModel, Field

from musync import store
from musync.http_errors import http_error
from musync.platforms import known_platforms
from reconcile.errors import MusyncError
from reconcile.models import Playlist, Track, Visibility

router = APIRouter(prefix="/playlists", tags=["playlists"])


def _get_user_id(request: Request) -> str:
    """Extract user_id from session or raise 401."""
    uid = request.session.get("user_id")
    if not uid:
        raise HTTPException(status_code=401, detail="Not logged in")
    return uid


async def _owned_playlist(user_id: str, playlist_id: str) -> Playlist:
    try:
        playlist = await store.load_playlist(playlist_id)
    except MusyncError as exc:
        raise http_error(exc)
    if playlist.owner_id != user_id:
        raise HTTPException(status_code=404, detail=f"Playlist {playlist_id} not found")
    return playlist


def playlist_dict(playlist: Playlist) -> dict:
    """Serialize for the API, including the per-platform link state."""
    data = playlist.model_dump(mode="json", exclude={"tracks": {"__all__": {"entry_id"}}})
    data["link_states"] = {p: playlist.link_state(p) for p in playlist.platforms}
    return data


def _check_platforms(platforms: List[str]) -> None:
    unknown = sorted(set(platforms) - set(known_platforms()))
    if unknown:
        raise HTTPException(status_code=400, detail=f"Unsupported platform(s): {', '.join(unknown)}")


class TrackIn(BaseModel):
    title: str
    artist: str
    album: str = ""
    duration_seconds: int | None = Field(default=None, ge=0)


class CreatePlaylistRequest(BaseModel):
    name: str = Field(min_length=1)
    description: str = ""
    visibility: Visibility = Visibility.PRIVATE
    platforms: List[str] = Field(default_factory=list)
    tracks: List[TrackIn] = Field(default_factory=list)


class ConnectPlatformRequest(BaseModel):
    remote_playlist_id: str | None = None


def _to_track(body: TrackIn) -> Track:
    try:
        return Track(**body.model_dump())
    except pydantic.ValidationError as exc:
        raise HTTPException(status_code=422, detail=str(exc))


# ---------------------------------------------------------------------------
# Playlists
# ---------------------------------------------------------------------------

@router.get("")
async def list_playlists(request: Request):
    """All playlists owned by the session user."""
    uid = _get_user_id(request)
    try:
        playlists = await store.list_playlists(uid)
    except MusyncError as exc:
        raise http_error(exc)
    return JSONResponse({"playlists": [playlist_dict(p) for p in playlists]})


@router.get("/stats")
async def playlist_stats(request: Request):
    """Totals across the session user's playlists."""
    uid = _get_user_id(request)
    try:
        stats = await store.playlist_stats(uid)
    except MusyncError as exc:
        raise http_error(exc)
    last = stats["last_synced_at"]
    return JSONResponse({**stats, "last_synced_at": last.isoformat() if last else None})


@router.post("")
async def create_playlist(request: Request, body: CreatePlaylistRequest):
    uid = _get_user_id(request)
    _check_platforms(body.platforms)
    playlist = Playlist(
        owner_id=uid,
        name=body.name,
        description=body.description,
        visibility=body.visibility,
        platforms=list(dict.fromkeys(body.platforms)),
        tracks=[_to_track(t) for t in body.tracks],
    )
    try:
        await store.create_playlist(playlist)
    except MusyncError as exc:
        raise http_error(exc)
    return JSONResponse(playlist_dict(playlist), status_code=201)


@router.get("/{playlist_id}")
async def get_playlist(request: Request, playlist_id: str):
    uid = _get_user_id(request)
    playlist = await _owned_playlist(uid, playlist_id)
    return JSONResponse(playlist_dict(playlist))


@router.delete("/{playlist_id}")
async def delete_playlist(request: Request, playlist_id: str):
    """Delete the canonical playlist; remote copies are left alone."""
    uid = _get_user_id(request)
    await _owned_playlist(uid, playlist_id)
    try:
        await store.delete_playlist(playlist_id)
    except MusyncError as exc:
        raise http_error(exc)
    return JSONResponse({"status": "deleted", "id": playlist_id})


# ---------------------------------------------------------------------------
# Tracks
# ---------------------------------------------------------------------------

@router.post("/{playlist_id}/tracks")
async def add_track(request: Request, playlist_id: str, body: TrackIn):
    """Append a track; it reaches the platforms on the next sync."""
    uid = _get_user_id(request)
    await _owned_playlist(uid, playlist_id)
    track = _to_track(body)
    try:
        await store.add_track(playlist_id, track)
    except MusyncError as exc:
        raise http_error(exc)
    return JSONResponse(track.model_dump(mode="json", exclude={"entry_id"}), status_code=201)


@router.delete("/{playlist_id}/tracks/{track_id}")
async def remove_track(request: Request, playlist_id: str, track_id: str):
    uid = _get_user_id(request)
    await _owned_playlist(uid, playlist_id)
    try:
        await store.remove_track(playlist_id, track_id)
    except MusyncError as exc:
        raise http_error(exc)
    return JSONResponse({"status": "removed", "id": track_id})


# ---------------------------------------------------------------------------
# Platforms
# ---------------------------------------------------------------------------

@router.put("/{playlist_id}/platforms/{platform}")
async def connect_platform(
    request: Request,
    playlist_id: str,
    platform: str,
    body: ConnectPlatformRequest | None = None,
):
    """Allow *platform* as a sync target, optionally adopting an existing remote playlist."""
    uid = _get_user_id(request)
    _check_platforms([platform])
    await _owned_playlist(uid, playlist_id)
    remote_id = body.remote_playlist_id if body else None
    try:
        await store.connect_platform(playlist_id, platform, remote_id)
        playlist = await store.load_playlist(playlist_id)
    except MusyncError as exc:
        raise http_error(exc)
    return JSONResponse(playlist_dict(playlist))


@router.delete("/{playlist_id}/platforms/{platform}")
async def disconnect_platform(request: Request, playlist_id: str, platform: str):
    """Forget the platform; the remote playlist itself is not deleted."""
    uid = _get_user_id(request)
    await _owned_playlist(uid, playlist_id)
    try:
        await store.disconnect_platform(playlist_id, platform)
        playlist = await store.load_playlist(playlist_id)
    except MusyncError as exc:
        raise http_error(exc)
    return JSONResponse(playlist_dict(playlist))
