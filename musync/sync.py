"""Synchronization orchestrator.

Drives one (playlist, platform) pair through its link states:

    unlinked ──create──▶ never_synced ──fetch/diff/apply──▶ synced
                                                      ├──▶ partial_failure
                                                      └──▶ sync_failed

Every state can be synced again; a sync never removes the link.  Remote
mutations are not rolled back, re-running the diff is what repairs a
half-applied sync.
"""

from __future__ import annotations

import asyncio
import logging
from datetime import datetime, timezone
from typing import Callable, Dict, List, Mapping

from musync import store
from musync.platforms import PlatformAdapter, build_adapter
from reconcile.diff import compute_diff, removable
from reconcile.errors import (
    AuthExpired,
    MusyncError,
    NotFound,
    StoreUnavailable,
    SyncInProgress,
    ValidationError,
)
from reconcile.models import (
    AddOutcome,
    Credential,
    CredentialState,
    PlatformLink,
    Playlist,
    RemoveOutcome,
    SyncReport,
    SyncResult,
    SyncStatus,
    Track,
)
from reconcile.report import aggregate

logger = logging.getLogger(__name__)

AdapterFactory = Callable[[str, str], PlatformAdapter]

ALL_PLATFORMS = "all"

# (playlist_id, platform) pairs with a sync in flight; check-and-add never awaits.
_leases: set[tuple[str, str]] = set()


def _now() -> datetime:
    return datetime.now(timezone.utc)


def _missing_credential(platform: str) -> Credential:
    return Credential(
        platform=platform,
        state=CredentialState.UNAVAILABLE,
        reason=f"no {platform} credential supplied",
    )


class SyncOrchestrator:
    """Reconciles canonical playlists with their remote copies."""

    def __init__(self, adapter_factory: AdapterFactory = build_adapter):
        self._adapter_factory = adapter_factory

    # ------------------------------------------------------------------
    # One platform
    # ------------------------------------------------------------------

    async def synchronize_with_platform(
        self,
        playlist_id: str,
        platform: str,
        credential: Credential,
    ) -> SyncResult:
        """Sync one pair; every taxonomy error becomes a failed result."""
        key = (playlist_id, platform)
        if key in _leases:
            exc = SyncInProgress(f"playlist {playlist_id}", platform=platform)
            logger.warning("Rejected overlapping sync of %s on %s", playlist_id, platform)
            return SyncResult.failure(platform, exc.describe(), kind=exc.kind)

        _leases.add(key)
        try:
            return await self._sync(playlist_id, platform, credential)
        except MusyncError as exc:
            logger.warning("Sync of %s on %s failed: %s", playlist_id, platform, exc.describe())
            return SyncResult.failure(platform, exc.describe(), kind=exc.kind)
        finally:
            _leases.discard(key)

    async def _sync(self, playlist_id: str, platform: str, credential: Credential) -> SyncResult:
        playlist = await store.load_playlist(playlist_id)
        if platform not in playlist.platforms:
            raise ValidationError(f"playlist {playlist_id} is not connected", platform=platform)
        if not credential.usable:
            raise AuthExpired(credential.reason or "no usable credential", platform=platform)

        adapter = self._adapter_factory(platform, credential.token)
        link = playlist.platform_links.get(platform)

        # ── Create (when unlinked) and fetch ───────────────────────
        try:
            if link is None:
                remote_id = await adapter.create_playlist(
                    playlist.name, playlist.description, playlist.visibility
                )
                link = PlatformLink(remote_playlist_id=remote_id)
                await store.save_platform_link(playlist_id, platform, link)
                logger.info("Linked %s to %s playlist %s", playlist_id, platform, remote_id)
            remote = await adapter.fetch_playlist_tracks(link.remote_playlist_id)
        except StoreUnavailable:
            raise
        except MusyncError as exc:
            await self._mark_failed(playlist_id, platform, link, exc)
            return SyncResult.failure(
                platform, exc.describe(), kind=exc.kind, status=SyncStatus.SYNC_FAILED
            )

        # ── Diff ───────────────────────────────────────────────────
        diff = compute_diff(playlist.tracks, remote, platform)
        matched_refs = {
            canonical.id: remote_track.ref(platform)
            for canonical, remote_track in diff.matched
            if remote_track.ref(platform) and canonical.ref(platform) != remote_track.ref(platform)
        }
        if matched_refs:
            await store.save_track_refs(playlist_id, platform, matched_refs)

        to_remove, skipped = removable(
            diff,
            platform,
            supports_removal=adapter.capabilities.supports_removal,
            entry_level_removal=adapter.capabilities.entry_level_removal,
        )
        if skipped:
            logger.info("Skipping %d removal(s) on %s for %s", len(skipped), platform, playlist_id)

        # ── Apply ──────────────────────────────────────────────────
        try:
            added = (
                await adapter.add_tracks(link.remote_playlist_id, diff.to_add)
                if diff.to_add
                else AddOutcome()
            )
            removed = (
                await adapter.remove_tracks(link.remote_playlist_id, to_remove)
                if to_remove
                else RemoveOutcome()
            )
        except MusyncError as exc:
            await self._mark_failed(playlist_id, platform, link, exc)
            return SyncResult.failure(
                platform, exc.describe(), kind=exc.kind, status=SyncStatus.SYNC_FAILED
            )

        unmatched: List[Track] = added.failed + removed.failed
        status = SyncStatus.PARTIAL_FAILURE if unmatched else SyncStatus.SYNCED
        result = SyncResult(
            platform=platform,
            success=True,
            status=status,
            tracks_added=len(added.added),
            tracks_removed=len(removed.removed),
            unmatched_tracks=unmatched,
            skipped_removals=skipped,
            degraded=credential.reason if credential.state == CredentialState.DEGRADED else None,
        )
        if unmatched:
            logger.warning(
                "Sync of %s on %s left %d track(s) unmatched", playlist_id, platform, len(unmatched)
            )

        # ── Record ─────────────────────────────────────────────────
        try:
            added_refs = {t.id: t.ref(platform) for t in added.added if t.ref(platform)}
            if added_refs:
                await store.save_track_refs(playlist_id, platform, added_refs)
            await store.save_platform_link(
                playlist_id,
                platform,
                link.model_copy(
                    update={"last_synced_at": _now(), "sync_status": status, "last_error": None}
                ),
            )
        except (StoreUnavailable, NotFound) as exc:
            logger.error(
                "Remote %s updated but sync state of %s not recorded: %s",
                platform, playlist_id, exc.detail,
            )
            result.success = False
            result.error = exc.describe()
            result.error_kind = exc.kind
            return result

        logger.info(
            "Synced %s on %s: +%d -%d (%s)",
            playlist_id, platform, result.tracks_added, result.tracks_removed, status.value,
        )
        return result

    async def _mark_failed(
        self,
        playlist_id: str,
        platform: str,
        link: PlatformLink | None,
        exc: MusyncError,
    ) -> None:
        if link is None:
            return
        failed = link.model_copy(
            update={"sync_status": SyncStatus.SYNC_FAILED, "last_error": exc.describe()}
        )
        try:
            await store.save_platform_link(playlist_id, platform, failed)
        except (StoreUnavailable, NotFound) as store_exc:
            logger.error(
                "Could not record failure of %s on %s: %s", playlist_id, platform, store_exc.detail
            )

    async def _isolated(self, playlist_id: str, platform: str, credential: Credential) -> SyncResult:
        try:
            return await self.synchronize_with_platform(playlist_id, platform, credential)
        except Exception as exc:  # noqa: BLE001
            logger.exception("Unexpected error syncing %s on %s", playlist_id, platform)
            return SyncResult.failure(platform, f"{platform}: unexpected error ({exc})", kind="internal")

    # ------------------------------------------------------------------
    # Several platforms
    # ------------------------------------------------------------------

    async def synchronize_with_all_platforms(
        self,
        playlist_id: str,
        credentials: Mapping[str, Credential],
    ) -> List[SyncResult]:
        """One concurrent task per connected platform, each with its own snapshot."""
        playlist = await store.load_playlist(playlist_id)
        if not playlist.platforms:
            raise ValidationError(f"playlist {playlist_id} has no connected platforms")
        return list(
            await asyncio.gather(
                *(
                    self._isolated(playlist_id, p, credentials.get(p) or _missing_credential(p))
                    for p in playlist.platforms
                )
            )
        )

    async def synchronize(
        self,
        playlist_id: str,
        selector: str,
        credentials: Mapping[str, Credential],
    ) -> SyncReport:
        """Sync ``all`` connected platforms or a single named one."""
        if selector == ALL_PLATFORMS:
            results = await self.synchronize_with_all_platforms(playlist_id, credentials)
        else:
            playlist = await store.load_playlist(playlist_id)
            if selector not in playlist.platforms:
                raise ValidationError(
                    f"playlist {playlist_id} is not connected to {selector}", platform=selector
                )
            credential = credentials.get(selector) or _missing_credential(selector)
            results = [await self._isolated(playlist_id, selector, credential)]
        report = aggregate(results)
        if not report.success:
            logger.warning(
                "Sync of %s finished with failures on %s", playlist_id, ", ".join(report.failed_platforms)
            )
        return report

    # ------------------------------------------------------------------
    # Import
    # ------------------------------------------------------------------

    async def import_playlist(
        self,
        owner_id: str,
        platform: str,
        remote_playlist_id: str,
        credential: Credential,
        into: str | None = None,
    ) -> Playlist:
        """Pull a remote playlist into the canonical store.

        With ``into=None`` a new canonical playlist is created, linked and
        marked synced.  Otherwise remote tracks that match nothing in the
        target playlist are appended; nothing is ever removed.
        """
        if not credential.usable:
            raise AuthExpired(credential.reason or "no usable credential", platform=platform)
        adapter = self._adapter_factory(platform, credential.token)
        remote = await adapter.fetch_playlist_tracks(remote_playlist_id)

        if into is None:
            info = await adapter.fetch_playlist_info(remote_playlist_id)
            playlist = Playlist(
                owner_id=owner_id,
                name=info.name,
                description=info.description,
                visibility=info.visibility,
                platforms=[platform],
                tracks=[_canonical_copy(t) for t in remote],
                platform_links={
                    platform: PlatformLink(
                        remote_playlist_id=remote_playlist_id,
                        last_synced_at=_now(),
                        sync_status=SyncStatus.SYNCED,
                    )
                },
            )
            await store.create_playlist(playlist)
            logger.info(
                "Imported %s playlist %s as %s (%d tracks)",
                platform, remote_playlist_id, playlist.id, len(playlist.tracks),
            )
            return playlist

        playlist = await store.load_playlist(into)
        if playlist.owner_id != owner_id:
            raise NotFound(f"Playlist {into} not found")
        link_remote = None if platform in playlist.platform_links else remote_playlist_id
        await store.connect_platform(into, platform, link_remote)

        diff = compute_diff(playlist.tracks, remote, platform)
        refs: Dict[str, str] = {
            canonical.id: remote_track.ref(platform)
            for canonical, remote_track in diff.matched
            if remote_track.ref(platform)
        }
        if refs:
            await store.save_track_refs(into, platform, refs)
        new_tracks = [_canonical_copy(t) for t in diff.to_remove]
        if new_tracks:
            await store.append_tracks(into, new_tracks)
        logger.info(
            "Imported %d new track(s) from %s playlist %s into %s",
            len(new_tracks), platform, remote_playlist_id, into,
        )
        return await store.load_playlist(into)


def _canonical_copy(remote: Track) -> Track:
    """A fresh canonical track keeping only the remote's identity ref."""
    return Track(
        title=remote.title,
        artist=remote.artist,
        album=remote.album,
        duration_seconds=remote.duration_seconds,
        platform_refs=dict(remote.platform_refs),
    )
