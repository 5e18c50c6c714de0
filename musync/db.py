"""Async SQLite database layer.

Uses aiosqlite for non-blocking access.  Tables are created on first
startup via ``init_db()``.
"""

from __future__ import annotations

import aiosqlite

from musync.config import get_settings

# Module-level connection (set during lifespan startup).
_db: aiosqlite.Connection | None = None

# ---------------------------------------------------------------------------
# Schema
# ---------------------------------------------------------------------------

_SCHEMA_SQL = """
CREATE TABLE IF NOT EXISTS credentials (
    user_id         TEXT    NOT NULL,
    platform        TEXT    NOT NULL,
    access_token    TEXT    NOT NULL,
    expires_at      INTEGER,                        -- unix seconds, NULL = unknown
    updated_at      TEXT    NOT NULL DEFAULT (datetime('now')),
    PRIMARY KEY (user_id, platform)
);

CREATE TABLE IF NOT EXISTS playlists (
    id              TEXT    PRIMARY KEY,
    owner_id        TEXT    NOT NULL,
    name            TEXT    NOT NULL,
    description     TEXT    NOT NULL DEFAULT '',
    visibility      TEXT    NOT NULL DEFAULT 'private'
                        CHECK(visibility IN ('public', 'private')),
    created_at      TEXT    NOT NULL DEFAULT (datetime('now')),
    updated_at      TEXT    NOT NULL DEFAULT (datetime('now'))
);

CREATE TABLE IF NOT EXISTS playlist_platforms (
    playlist_id     TEXT    NOT NULL REFERENCES playlists(id) ON DELETE CASCADE,
    platform        TEXT    NOT NULL,
    PRIMARY KEY (playlist_id, platform)
);

CREATE TABLE IF NOT EXISTS tracks (
    id              TEXT    PRIMARY KEY,
    playlist_id     TEXT    NOT NULL REFERENCES playlists(id) ON DELETE CASCADE,
    position        INTEGER NOT NULL,
    title           TEXT    NOT NULL,
    artist          TEXT    NOT NULL,
    album           TEXT    NOT NULL DEFAULT '',
    duration_s      INTEGER CHECK(duration_s IS NULL OR duration_s >= 0)
);

CREATE TABLE IF NOT EXISTS track_refs (
    track_id        TEXT    NOT NULL REFERENCES tracks(id) ON DELETE CASCADE,
    platform        TEXT    NOT NULL,
    native_id       TEXT    NOT NULL,
    PRIMARY KEY (track_id, platform)
);

CREATE TABLE IF NOT EXISTS platform_links (
    playlist_id         TEXT    NOT NULL REFERENCES playlists(id) ON DELETE CASCADE,
    platform            TEXT    NOT NULL,
    remote_playlist_id  TEXT    NOT NULL,
    last_synced_at      TEXT,
    sync_status         TEXT    NOT NULL DEFAULT 'never_synced'
                            CHECK(sync_status IN
                                  ('never_synced', 'synced', 'partial_failure', 'sync_failed')),
    last_error          TEXT,
    PRIMARY KEY (playlist_id, platform)
);

CREATE INDEX IF NOT EXISTS idx_playlists_owner ON playlists(owner_id);
CREATE INDEX IF NOT EXISTS idx_tracks_playlist ON tracks(playlist_id, position);
"""


# ---------------------------------------------------------------------------
# Lifecycle helpers
# ---------------------------------------------------------------------------

async def init_db() -> aiosqlite.Connection:
    """Open (or create) the SQLite database and ensure schema exists."""
    global _db  # noqa: PLW0603
    settings = get_settings()
    db_path = settings.db_abs_path

    _db = await aiosqlite.connect(str(db_path))
    _db.row_factory = aiosqlite.Row  # type: ignore[assignment]
    await _db.execute("PRAGMA foreign_keys = ON")
    await _db.executescript(_SCHEMA_SQL)
    await _db.commit()
    return _db


async def close_db() -> None:
    """Close the database connection."""
    global _db  # noqa: PLW0603
    if _db is not None:
        await _db.close()
        _db = None


def get_db() -> aiosqlite.Connection:
    """Return the current database connection (call after init)."""
    if _db is None:
        raise RuntimeError("Database not initialised, call init_db() first.")
    return _db
