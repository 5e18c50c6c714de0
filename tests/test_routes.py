"""Route tests for the playlist and sync APIs (via TestClient).

The session user is injected by patching ``_get_user_id``; the orchestrator
and platform adapters are mocked so no network call is made.
"""

from __future__ import annotations

from unittest.mock import AsyncMock, MagicMock

import pytest
from fastapi.testclient import TestClient

from musync.main import app
from musync.platforms import RemotePlaylistInfo
from reconcile.errors import RateLimited, ValidationError
from reconcile.models import CredentialState, Playlist, SyncResult, SyncStatus, Track, Visibility
from reconcile.report import aggregate


@pytest.fixture(autouse=True)
def _env_setup(monkeypatch, tmp_path):
    """Use temp DB and clear settings cache for every test."""
    monkeypatch.setenv("DB_PATH", str(tmp_path / "test.db"))
    monkeypatch.setenv("SECRET_KEY", "test_secret")
    from musync.config import get_settings
    get_settings.cache_clear()


@pytest.fixture
def user(monkeypatch):
    """Log in as ``u1``; assign ``user["id"]`` to switch users mid-test."""
    current = {"id": "u1"}
    monkeypatch.setattr("musync.routes_playlists._get_user_id", lambda request: current["id"])
    monkeypatch.setattr("musync.routes_sync._get_user_id", lambda request: current["id"])
    return current


@pytest.fixture
def client(user):
    with TestClient(app) as c:
        yield c


@pytest.fixture
def orchestrator(monkeypatch):
    mock = MagicMock()
    mock.synchronize = AsyncMock()
    mock.import_playlist = AsyncMock()
    monkeypatch.setattr("musync.routes_sync.get_orchestrator", lambda: mock)
    return mock


def _create(client, **body) -> dict:
    payload = {"name": "Road trip", "platforms": ["spotify", "youtube"], "tracks": []}
    payload.update(body)
    resp = client.post("/playlists", json=payload)
    assert resp.status_code == 201, resp.text
    return resp.json()


# ---------------------------------------------------------------------------
# Authentication
# ---------------------------------------------------------------------------

anonymous = TestClient(app)


@pytest.mark.parametrize(
    "method,path",
    [
        ("get", "/playlists"),
        ("get", "/playlists/p1"),
        ("post", "/playlists/p1/sync"),
        ("get", "/playlists/p1/sync"),
        ("put", "/connect/spotify"),
    ],
)
def test_requires_login(method, path):
    resp = anonymous.request(method.upper(), path, json={"access_token": "x"})
    assert resp.status_code == 401


# ---------------------------------------------------------------------------
# Playlists
# ---------------------------------------------------------------------------

def test_create_and_get_playlist(client):
    created = _create(client, tracks=[{"title": "A", "artist": "X"}])
    assert created["owner_id"] == "u1"
    assert created["link_states"] == {"spotify": "unlinked", "youtube": "unlinked"}
    assert "entry_id" not in created["tracks"][0]

    resp = client.get(f"/playlists/{created['id']}")
    assert resp.status_code == 200
    assert resp.json()["tracks"][0]["title"] == "A"

    listed = client.get("/playlists").json()["playlists"]
    assert [p["id"] for p in listed] == [created["id"]]


def test_create_rejects_unknown_platform(client):
    resp = client.post("/playlists", json={"name": "x", "platforms": ["deezer"]})
    assert resp.status_code == 400


def test_create_rejects_blank_track_title(client):
    resp = client.post("/playlists", json={"name": "x", "tracks": [{"title": "  ", "artist": "A"}]})
    assert resp.status_code == 422


def test_other_users_playlist_is_not_found(client, user):
    created = _create(client)
    user["id"] = "u2"
    assert client.get(f"/playlists/{created['id']}").status_code == 404
    assert client.delete(f"/playlists/{created['id']}").status_code == 404
    assert client.get("/playlists").json() == {"playlists": []}


def test_add_and_remove_track(client):
    created = _create(client)
    resp = client.post(f"/playlists/{created['id']}/tracks", json={"title": "B", "artist": "Y"})
    assert resp.status_code == 201
    track_id = resp.json()["id"]

    resp = client.delete(f"/playlists/{created['id']}/tracks/{track_id}")
    assert resp.json() == {"status": "removed", "id": track_id}
    assert client.get(f"/playlists/{created['id']}").json()["tracks"] == []

    resp = client.delete(f"/playlists/{created['id']}/tracks/{track_id}")
    assert resp.status_code == 404


def test_connect_and_disconnect_platform(client):
    created = _create(client, platforms=["spotify"])

    resp = client.put(f"/playlists/{created['id']}/platforms/youtube", json={"remote_playlist_id": "PL1"})
    assert resp.status_code == 200
    data = resp.json()
    assert data["link_states"]["youtube"] == "never_synced"
    assert data["platform_links"]["youtube"]["remote_playlist_id"] == "PL1"

    resp = client.delete(f"/playlists/{created['id']}/platforms/spotify")
    assert resp.json()["platforms"] == ["youtube"]

    resp = client.delete(f"/playlists/{created['id']}/platforms/spotify")
    assert resp.status_code == 404


def test_delete_playlist(client):
    created = _create(client)
    resp = client.delete(f"/playlists/{created['id']}")
    assert resp.json() == {"status": "deleted", "id": created["id"]}
    assert client.get(f"/playlists/{created['id']}").status_code == 404


# ---------------------------------------------------------------------------
# Sync
# ---------------------------------------------------------------------------

def test_sync_all_success_is_200(client, orchestrator):
    created = _create(client)
    orchestrator.synchronize.return_value = aggregate(
        [
            SyncResult(platform="spotify", success=True, status=SyncStatus.SYNCED, tracks_added=2),
            SyncResult(platform="youtube", success=True, status=SyncStatus.SYNCED),
        ]
    )

    resp = client.post(
        f"/playlists/{created['id']}/sync",
        json={"platform": "all", "credentials": {"spotify": "s-tok", "youtube": "y-tok"}},
    )

    assert resp.status_code == 200
    assert resp.json()["results"]["spotify"]["tracks_added"] == 2
    playlist_id, selector, credentials = orchestrator.synchronize.call_args.args
    assert (playlist_id, selector) == (created["id"], "all")
    assert credentials["spotify"].token == "s-tok"
    assert credentials["youtube"].state == CredentialState.AVAILABLE


def test_sync_partial_failure_is_207(client, orchestrator):
    created = _create(client)
    orchestrator.synchronize.return_value = aggregate(
        [
            SyncResult(platform="spotify", success=True, status=SyncStatus.SYNCED),
            SyncResult.failure("youtube", "youtube: daily API quota exhausted (x)", kind="quota_exceeded"),
        ]
    )

    resp = client.post(f"/playlists/{created['id']}/sync", json={})

    assert resp.status_code == 207
    body = resp.json()
    assert body["success"] is False
    assert body["partial_success"] is True
    assert body["failed_platforms"] == ["youtube"]


def test_sync_without_credentials_passes_unavailable(client, orchestrator):
    created = _create(client, platforms=["spotify"])
    orchestrator.synchronize.return_value = aggregate(
        [SyncResult.failure("spotify", "no credential", kind="auth_expired")]
    )

    client.post(f"/playlists/{created['id']}/sync", json={"platform": "spotify"})

    credentials = orchestrator.synchronize.call_args.args[2]
    assert credentials["spotify"].state == CredentialState.UNAVAILABLE


def test_connected_account_token_is_used(client, orchestrator):
    created = _create(client, platforms=["spotify"])
    resp = client.put("/connect/spotify", json={"access_token": "stored", "expires_in": 3600})
    assert resp.status_code == 200
    assert resp.json()["connected"] is True

    orchestrator.synchronize.return_value = aggregate(
        [SyncResult(platform="spotify", success=True, status=SyncStatus.SYNCED)]
    )
    client.post(f"/playlists/{created['id']}/sync", json={"platform": "spotify"})

    assert orchestrator.synchronize.call_args.args[2]["spotify"].token == "stored"


def test_sync_validation_error_is_400(client, orchestrator):
    created = _create(client, platforms=["spotify"])
    orchestrator.synchronize.side_effect = ValidationError("not connected", platform="youtube")
    resp = client.post(f"/playlists/{created['id']}/sync", json={"platform": "youtube"})
    assert resp.status_code == 400


def test_sync_unknown_playlist_is_404(client, orchestrator):
    resp = client.post("/playlists/missing/sync", json={})
    assert resp.status_code == 404
    orchestrator.synchronize.assert_not_called()


def test_sync_status(client):
    created = _create(client, platforms=["spotify", "youtube"])
    client.put(f"/playlists/{created['id']}/platforms/youtube", json={"remote_playlist_id": "PL1"})

    resp = client.get(f"/playlists/{created['id']}/sync")

    assert resp.status_code == 200
    platforms = resp.json()["platforms"]
    assert platforms["spotify"]["state"] == "unlinked"
    assert platforms["youtube"] == {
        "state": "never_synced",
        "remote_playlist_id": "PL1",
        "last_synced_at": None,
        "last_error": None,
    }


# ---------------------------------------------------------------------------
# Import, search, quota
# ---------------------------------------------------------------------------

def test_import_new_playlist_is_201(client, orchestrator):
    imported = Playlist(owner_id="u1", name="Remote", platforms=["youtube"], tracks=[Track(title="A", artist="B")])
    orchestrator.import_playlist.return_value = imported

    resp = client.post("/import/youtube", json={"remote_playlist_id": "PL1", "token": "y-tok"})

    assert resp.status_code == 201
    assert resp.json()["id"] == imported.id
    args = orchestrator.import_playlist.call_args
    assert args.args[:3] == ("u1", "youtube", "PL1")
    assert args.args[3].token == "y-tok"
    assert args.kwargs == {"into": None}


def test_import_into_existing_is_200(client, orchestrator):
    orchestrator.import_playlist.return_value = Playlist(owner_id="u1", name="Mine")
    resp = client.post("/import/spotify", json={"remote_playlist_id": "R", "playlist_id": "p1", "token": "t"})
    assert resp.status_code == 200


def test_import_unknown_platform_is_400(client, orchestrator):
    resp = client.post("/import/deezer", json={"remote_playlist_id": "R"})
    assert resp.status_code == 400


def test_search_uses_adapter(client, monkeypatch):
    client.put("/connect/spotify", json={"access_token": "tok"})
    adapter = MagicMock()
    adapter.search_track = AsyncMock(
        return_value=[Track(id="spotify:1", title="Song", artist="Band", platform_refs={"spotify": "1"})]
    )
    build = MagicMock(return_value=adapter)
    monkeypatch.setattr("musync.routes_sync.build_adapter", build)

    resp = client.get("/search/spotify", params={"title": "Song", "artist": "Band"})

    assert resp.status_code == 200
    assert resp.json()["results"][0]["platform_refs"] == {"spotify": "1"}
    build.assert_called_once_with("spotify", "tok")


def test_search_without_account_is_401(client):
    resp = client.get("/search/youtube", params={"title": "Song", "artist": "Band"})
    assert resp.status_code == 401


def test_search_rate_limited_is_429(client, monkeypatch):
    client.put("/connect/youtube", json={"access_token": "tok"})
    adapter = MagicMock()
    adapter.search_track = AsyncMock(side_effect=RateLimited("slow down", platform="youtube"))
    monkeypatch.setattr("musync.routes_sync.build_adapter", MagicMock(return_value=adapter))

    resp = client.get("/search/youtube", params={"title": "Song", "artist": "Band"})
    assert resp.status_code == 429


def test_youtube_quota(client, monkeypatch):
    monkeypatch.setenv("YOUTUBE_DAILY_QUOTA", "2000")
    from musync.config import get_settings
    from musync.quota import get_quota_tracker
    get_settings.cache_clear()
    get_quota_tracker.cache_clear()
    try:
        resp = client.get("/platforms/youtube/quota")
    finally:
        get_quota_tracker.cache_clear()
    assert resp.status_code == 200
    assert resp.json()["total"] == 2000
    assert resp.json()["used"] == 0


def test_remote_playlists(client, monkeypatch):
    client.put("/connect/youtube", json={"access_token": "tok"})
    adapter = MagicMock()
    adapter.list_playlists = AsyncMock(
        return_value=[RemotePlaylistInfo(name="Mix", id="PL1", visibility=Visibility.PUBLIC, track_count=4)]
    )
    monkeypatch.setattr("musync.routes_sync.build_adapter", MagicMock(return_value=adapter))

    resp = client.get("/platforms/youtube/playlists")

    assert resp.status_code == 200
    assert resp.json() == {
        "playlists": [
            {"id": "PL1", "name": "Mix", "description": "", "visibility": "public", "track_count": 4}
        ]
    }


def test_remote_playlists_without_account_is_401(client):
    assert client.get("/platforms/spotify/playlists").status_code == 401


def test_playlist_stats(client, user):
    _create(client, tracks=[{"title": "A", "artist": "X"}, {"title": "B", "artist": "Y"}])
    _create(client, tracks=[{"title": "C", "artist": "Z"}])

    resp = client.get("/playlists/stats")

    assert resp.status_code == 200
    assert resp.json() == {"total_playlists": 2, "total_tracks": 3, "last_synced_at": None}

    user["id"] = "u2"
    assert client.get("/playlists/stats").json()["total_playlists"] == 0


def test_playlist_stats_requires_login():
    assert anonymous.get("/playlists/stats").status_code == 401
