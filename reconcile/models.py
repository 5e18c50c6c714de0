"""Pydantic models shared across the application."""

from __future__ import annotations

import uuid
from datetime import datetime
from enum import Enum
from typing import Dict, List

from pydantic import BaseModel, Field, field_validator, model_validator


class Visibility(str, Enum):
    PUBLIC = "public"
    PRIVATE = "private"


class SyncStatus(str, Enum):
    NEVER_SYNCED = "never_synced"
    SYNCED = "synced"
    PARTIAL_FAILURE = "partial_failure"
    SYNC_FAILED = "sync_failed"


class CredentialState(str, Enum):
    AVAILABLE = "available"
    DEGRADED = "degraded"
    UNAVAILABLE = "unavailable"


UNLINKED = "unlinked"


def _new_id() -> str:
    return uuid.uuid4().hex


class Track(BaseModel):
    """One song, independent of any platform."""

    id: str = Field(default_factory=_new_id)
    title: str
    artist: str
    album: str = ""
    duration_seconds: int | None = Field(default=None, ge=0)
    platform_refs: Dict[str, str] = Field(default_factory=dict)  # platform -> native id
    entry_id: str | None = None  # remote playlist entry (e.g. YouTube playlistItem id)

    @field_validator("title", "artist")
    @classmethod
    def _not_blank(cls, value: str) -> str:
        value = value.strip()
        if not value:
            raise ValueError("must not be empty")
        return value

    def ref(self, platform: str) -> str | None:
        return self.platform_refs.get(platform)

    def label(self) -> str:
        return f"{self.artist} - {self.title}"


class PlatformLink(BaseModel):
    """Where a canonical playlist lives on one platform, and how the last sync went."""

    remote_playlist_id: str
    last_synced_at: datetime | None = None
    sync_status: SyncStatus = SyncStatus.NEVER_SYNCED
    last_error: str | None = None


class Playlist(BaseModel):
    """The canonical playlist owned by one user."""

    id: str = Field(default_factory=_new_id)
    owner_id: str
    name: str
    description: str = ""
    visibility: Visibility = Visibility.PRIVATE
    tracks: List[Track] = Field(default_factory=list)
    platforms: List[str] = Field(default_factory=list)
    platform_links: Dict[str, PlatformLink] = Field(default_factory=dict)

    @model_validator(mode="after")
    def _refs_within_platforms(self) -> "Playlist":
        allowed = set(self.platforms)
        for platform in self.platform_links:
            if platform not in allowed:
                raise ValueError(f"link to unconnected platform {platform!r}")
        for track in self.tracks:
            stray = set(track.platform_refs) - allowed
            if stray:
                raise ValueError(
                    f"track {track.id} references unconnected platform(s) {sorted(stray)}"
                )
        return self

    def link_state(self, platform: str) -> str:
        """``unlinked`` or the :class:`SyncStatus` value of the link."""
        link = self.platform_links.get(platform)
        if link is None:
            return UNLINKED
        return link.sync_status.value


class AddOutcome(BaseModel):
    added: List[Track] = Field(default_factory=list)
    failed: List[Track] = Field(default_factory=list)


class RemoveOutcome(BaseModel):
    removed: List[Track] = Field(default_factory=list)
    failed: List[Track] = Field(default_factory=list)


class Credential(BaseModel):
    """Capability result of asking for a bearer token for one platform."""

    platform: str
    state: CredentialState
    token: str | None = None
    reason: str | None = None

    @property
    def usable(self) -> bool:
        return self.state != CredentialState.UNAVAILABLE and bool(self.token)


class SyncResult(BaseModel):
    """Outcome of syncing one playlist with one platform (never persisted)."""

    platform: str
    success: bool
    status: SyncStatus | None = None
    tracks_added: int = 0
    tracks_removed: int = 0
    unmatched_tracks: List[Track] = Field(default_factory=list)
    skipped_removals: List[Track] = Field(default_factory=list)
    error: str | None = None
    error_kind: str | None = None
    degraded: str | None = None

    @classmethod
    def failure(
        cls,
        platform: str,
        error: str,
        *,
        kind: str | None = None,
        status: SyncStatus | None = None,
    ) -> "SyncResult":
        """Create a failed result with a single human-readable reason."""
        return cls(platform=platform, success=False, status=status, error=error, error_kind=kind)


class SyncReport(BaseModel):
    """Aggregated outcome of a synchronize call across platforms."""

    success: bool
    partial_success: bool
    results: Dict[str, SyncResult] = Field(default_factory=dict)
    failed_platforms: List[str] = Field(default_factory=list)

    @property
    def http_status(self) -> int:
        return 200 if self.success else 207
