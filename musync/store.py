"""Canonical playlist store on top of the SQLite layer.

Every public function raises ``StoreUnavailable`` when the database cannot be
reached or a statement fails, and ``NotFound`` for unknown playlists.
Link and ref updates are partial writes that never touch track content.
"""

from __future__ import annotations

import functools
import logging
from datetime import datetime
from typing import Awaitable, Callable, Dict, Iterable, List, TypeVar

import aiosqlite

from musync.db import get_db
from reconcile.errors import NotFound, StoreUnavailable
from reconcile.models import PlatformLink, Playlist, Track

logger = logging.getLogger(__name__)

T = TypeVar("T")


def _guarded(func: Callable[..., Awaitable[T]]) -> Callable[..., Awaitable[T]]:
    """Translate database failures into ``StoreUnavailable``."""

    @functools.wraps(func)
    async def wrapper(*args, **kwargs) -> T:
        try:
            db = get_db()
        except RuntimeError as exc:
            raise StoreUnavailable(str(exc)) from exc
        try:
            return await func(db, *args, **kwargs)
        except aiosqlite.Error as exc:
            logger.error("Store operation %s failed: %s", func.__name__, exc)
            try:
                await db.rollback()
            except aiosqlite.Error:
                logger.debug("Rollback after failed %s also failed", func.__name__)
            raise StoreUnavailable(f"{func.__name__}: {exc}") from exc

    return wrapper


# ---------------------------------------------------------------------------
# Row helpers
# ---------------------------------------------------------------------------

async def _insert_tracks(
    db: aiosqlite.Connection,
    playlist_id: str,
    tracks: Iterable[Track],
    start: int = 0,
) -> None:
    for offset, track in enumerate(tracks):
        await db.execute(
            """
            INSERT INTO tracks (id, playlist_id, position, title, artist, album, duration_s)
            VALUES (?, ?, ?, ?, ?, ?, ?)
            ON CONFLICT(id)
            DO UPDATE SET position   = excluded.position,
                          title      = excluded.title,
                          artist     = excluded.artist,
                          album      = excluded.album,
                          duration_s = excluded.duration_s
            """,
            (
                track.id,
                playlist_id,
                start + offset,
                track.title,
                track.artist,
                track.album,
                track.duration_seconds,
            ),
        )
        await db.execute("DELETE FROM track_refs WHERE track_id = ?", (track.id,))
        await db.executemany(
            """
            INSERT INTO track_refs (track_id, platform, native_id)
            SELECT ?, ?, ?
            WHERE EXISTS (SELECT 1 FROM playlist_platforms WHERE playlist_id = ? AND platform = ?)
            """,
            [
                (track.id, platform, native, playlist_id, platform)
                for platform, native in track.platform_refs.items()
            ],
        )


async def _write_link(
    db: aiosqlite.Connection,
    playlist_id: str,
    platform: str,
    link: PlatformLink,
) -> bool:
    """Upsert the link; nothing is written unless *platform* is connected."""
    cur = await db.execute(
        """
        INSERT INTO platform_links
            (playlist_id, platform, remote_playlist_id, last_synced_at, sync_status, last_error)
        SELECT ?, ?, ?, ?, ?, ?
        WHERE EXISTS (SELECT 1 FROM playlist_platforms WHERE playlist_id = ? AND platform = ?)
        ON CONFLICT(playlist_id, platform)
        DO UPDATE SET remote_playlist_id = excluded.remote_playlist_id,
                      last_synced_at     = excluded.last_synced_at,
                      sync_status        = excluded.sync_status,
                      last_error         = excluded.last_error
        """,
        (
            playlist_id,
            platform,
            link.remote_playlist_id,
            link.last_synced_at.isoformat() if link.last_synced_at else None,
            link.sync_status.value,
            link.last_error,
            playlist_id,
            platform,
        ),
    )
    return cur.rowcount > 0


async def _read_playlist(db: aiosqlite.Connection, playlist_id: str) -> Playlist:
    cur = await db.execute(
        "SELECT id, owner_id, name, description, visibility FROM playlists WHERE id = ?",
        (playlist_id,),
    )
    row = await cur.fetchone()
    if not row:
        raise NotFound(f"Playlist {playlist_id} not found")

    cur = await db.execute(
        "SELECT platform FROM playlist_platforms WHERE playlist_id = ? ORDER BY platform",
        (playlist_id,),
    )
    platforms = [r[0] for r in await cur.fetchall()]

    cur = await db.execute(
        """SELECT id, title, artist, album, duration_s
           FROM tracks WHERE playlist_id = ? ORDER BY position""",
        (playlist_id,),
    )
    track_rows = await cur.fetchall()

    cur = await db.execute(
        """SELECT r.track_id, r.platform, r.native_id
           FROM track_refs r JOIN tracks t ON t.id = r.track_id
           WHERE t.playlist_id = ?""",
        (playlist_id,),
    )
    refs: Dict[str, Dict[str, str]] = {}
    for track_id, platform, native_id in await cur.fetchall():
        refs.setdefault(track_id, {})[platform] = native_id

    cur = await db.execute(
        """SELECT platform, remote_playlist_id, last_synced_at, sync_status, last_error
           FROM platform_links WHERE playlist_id = ?""",
        (playlist_id,),
    )
    links = {
        r[0]: PlatformLink(
            remote_playlist_id=r[1],
            last_synced_at=r[2],
            sync_status=r[3],
            last_error=r[4],
        )
        for r in await cur.fetchall()
    }

    return Playlist(
        id=row[0],
        owner_id=row[1],
        name=row[2],
        description=row[3],
        visibility=row[4],
        platforms=platforms,
        tracks=[
            Track(
                id=t[0],
                title=t[1],
                artist=t[2],
                album=t[3],
                duration_seconds=t[4],
                platform_refs=refs.get(t[0], {}),
            )
            for t in track_rows
        ],
        platform_links=links,
    )


# ---------------------------------------------------------------------------
# Playlists
# ---------------------------------------------------------------------------

@_guarded
async def create_playlist(db: aiosqlite.Connection, playlist: Playlist) -> Playlist:
    """Insert a new playlist with its tracks, platforms and links."""
    await db.execute(
        """INSERT INTO playlists (id, owner_id, name, description, visibility)
           VALUES (?, ?, ?, ?, ?)""",
        (
            playlist.id,
            playlist.owner_id,
            playlist.name,
            playlist.description,
            playlist.visibility.value,
        ),
    )
    await db.executemany(
        "INSERT INTO playlist_platforms (playlist_id, platform) VALUES (?, ?)",
        [(playlist.id, p) for p in playlist.platforms],
    )
    await _insert_tracks(db, playlist.id, playlist.tracks)
    for platform, link in playlist.platform_links.items():
        await _write_link(db, playlist.id, platform, link)
    await db.commit()
    logger.info("Created playlist %s (%d tracks)", playlist.id, len(playlist.tracks))
    return playlist


@_guarded
async def load_playlist(db: aiosqlite.Connection, playlist_id: str) -> Playlist:
    """Load a playlist with tracks (in canonical order), refs and links."""
    return await _read_playlist(db, playlist_id)


@_guarded
async def list_playlists(db: aiosqlite.Connection, owner_id: str) -> List[Playlist]:
    cur = await db.execute(
        "SELECT id FROM playlists WHERE owner_id = ? ORDER BY created_at, id",
        (owner_id,),
    )
    ids = [r[0] for r in await cur.fetchall()]
    return [await _read_playlist(db, pid) for pid in ids]


@_guarded
async def save_playlist(db: aiosqlite.Connection, playlist: Playlist) -> None:
    """Replace the stored state of *playlist* in a single commit."""
    cur = await db.execute(
        """UPDATE playlists
           SET name = ?, description = ?, visibility = ?, updated_at = datetime('now')
           WHERE id = ?""",
        (playlist.name, playlist.description, playlist.visibility.value, playlist.id),
    )
    if cur.rowcount == 0:
        raise NotFound(f"Playlist {playlist.id} not found")

    await db.execute("DELETE FROM playlist_platforms WHERE playlist_id = ?", (playlist.id,))
    await db.executemany(
        "INSERT INTO playlist_platforms (playlist_id, platform) VALUES (?, ?)",
        [(playlist.id, p) for p in playlist.platforms],
    )

    keep = [t.id for t in playlist.tracks]
    placeholders = ",".join("?" for _ in keep)
    if keep:
        await db.execute(
            f"DELETE FROM tracks WHERE playlist_id = ? AND id NOT IN ({placeholders})",
            (playlist.id, *keep),
        )
    else:
        await db.execute("DELETE FROM tracks WHERE playlist_id = ?", (playlist.id,))
    await _insert_tracks(db, playlist.id, playlist.tracks)

    await db.execute("DELETE FROM platform_links WHERE playlist_id = ?", (playlist.id,))
    for platform, link in playlist.platform_links.items():
        await _write_link(db, playlist.id, platform, link)
    await db.commit()


@_guarded
async def playlist_stats(db: aiosqlite.Connection, owner_id: str) -> dict:
    """Playlist and track counts of *owner_id*, plus the latest successful sync."""
    cur = await db.execute(
        """
        SELECT
            (SELECT COUNT(*) FROM playlists WHERE owner_id = ?),
            (SELECT COUNT(*) FROM tracks t
               JOIN playlists p ON p.id = t.playlist_id
              WHERE p.owner_id = ?),
            (SELECT MAX(l.last_synced_at) FROM platform_links l
               JOIN playlists p ON p.id = l.playlist_id
              WHERE p.owner_id = ?)
        """,
        (owner_id, owner_id, owner_id),
    )
    total_playlists, total_tracks, last_synced = await cur.fetchone()
    return {
        "total_playlists": total_playlists,
        "total_tracks": total_tracks,
        "last_synced_at": datetime.fromisoformat(last_synced) if last_synced else None,
    }


@_guarded
async def delete_playlist(db: aiosqlite.Connection, playlist_id: str) -> None:
    cur = await db.execute("DELETE FROM playlists WHERE id = ?", (playlist_id,))
    await db.commit()
    if cur.rowcount == 0:
        raise NotFound(f"Playlist {playlist_id} not found")


# ---------------------------------------------------------------------------
# Tracks
# ---------------------------------------------------------------------------

async def _next_position(db: aiosqlite.Connection, playlist_id: str) -> int:
    cur = await db.execute(
        "SELECT COALESCE(MAX(position), -1) + 1 FROM tracks WHERE playlist_id = ?",
        (playlist_id,),
    )
    row = await cur.fetchone()
    return row[0]


@_guarded
async def append_tracks(
    db: aiosqlite.Connection,
    playlist_id: str,
    tracks: List[Track],
) -> List[Track]:
    """Append *tracks* after the current last track."""
    await _read_playlist(db, playlist_id)  # existence check
    start = await _next_position(db, playlist_id)
    await _insert_tracks(db, playlist_id, tracks, start=start)
    await db.commit()
    return tracks


async def add_track(playlist_id: str, track: Track) -> Track:
    added = await append_tracks(playlist_id, [track])
    return added[0]


@_guarded
async def remove_track(db: aiosqlite.Connection, playlist_id: str, track_id: str) -> None:
    cur = await db.execute(
        "DELETE FROM tracks WHERE playlist_id = ? AND id = ?",
        (playlist_id, track_id),
    )
    await db.commit()
    if cur.rowcount == 0:
        raise NotFound(f"Track {track_id} not found in playlist {playlist_id}")


# ---------------------------------------------------------------------------
# Platforms, links and refs
# ---------------------------------------------------------------------------

@_guarded
async def connect_platform(
    db: aiosqlite.Connection,
    playlist_id: str,
    platform: str,
    remote_playlist_id: str | None = None,
) -> None:
    """Allow *platform* for the playlist, optionally linking an existing remote playlist."""
    await _read_playlist(db, playlist_id)
    await db.execute(
        "INSERT OR IGNORE INTO playlist_platforms (playlist_id, platform) VALUES (?, ?)",
        (playlist_id, platform),
    )
    if remote_playlist_id:
        await _write_link(db, playlist_id, platform, PlatformLink(remote_playlist_id=remote_playlist_id))
    await db.commit()


@_guarded
async def disconnect_platform(db: aiosqlite.Connection, playlist_id: str, platform: str) -> None:
    """Forget the platform: its link and every track ref pointing at it."""
    await db.execute(
        "DELETE FROM platform_links WHERE playlist_id = ? AND platform = ?",
        (playlist_id, platform),
    )
    await db.execute(
        """DELETE FROM track_refs
           WHERE platform = ?
             AND track_id IN (SELECT id FROM tracks WHERE playlist_id = ?)""",
        (platform, playlist_id),
    )
    cur = await db.execute(
        "DELETE FROM playlist_platforms WHERE playlist_id = ? AND platform = ?",
        (playlist_id, platform),
    )
    await db.commit()
    if cur.rowcount == 0:
        raise NotFound(f"Playlist {playlist_id} is not connected to {platform}")


@_guarded
async def save_platform_link(
    db: aiosqlite.Connection,
    playlist_id: str,
    platform: str,
    link: PlatformLink,
) -> None:
    """Record the link of a connected platform.

    Raises ``NotFound`` when the platform was disconnected in the meantime.
    """
    written = await _write_link(db, playlist_id, platform, link)
    await db.commit()
    if not written:
        raise NotFound(f"Playlist {playlist_id} is not connected to {platform}", platform=platform)


@_guarded
async def save_track_refs(
    db: aiosqlite.Connection,
    playlist_id: str,
    platform: str,
    refs: Dict[str, str],
) -> None:
    """Upsert ``track_id -> native_id`` for *platform*.

    Refs for tracks removed from the playlist, or for a platform disconnected
    in the meantime, are dropped.
    """
    for track_id, native_id in refs.items():
        await db.execute(
            """
            INSERT INTO track_refs (track_id, platform, native_id)
            SELECT ?, ?, ?
            WHERE EXISTS (SELECT 1 FROM tracks WHERE id = ? AND playlist_id = ?)
              AND EXISTS (SELECT 1 FROM playlist_platforms WHERE playlist_id = ? AND platform = ?)
            ON CONFLICT(track_id, platform) DO UPDATE SET native_id = excluded.native_id
            """,
            (track_id, platform, native_id, track_id, playlist_id, playlist_id, platform),
        )
    await db.commit()
