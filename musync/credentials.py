"""Credential provider: "give me a usable bearer token for platform P".

Tokens are issued and refreshed elsewhere; this module only stores what it
is handed and reports whether a usable one exists.
"""

from __future__ import annotations

import logging
import time

import aiosqlite

from musync.db import get_db
from reconcile.errors import StoreUnavailable
from reconcile.models import Credential, CredentialState

logger = logging.getLogger(__name__)

_EXPIRY_MARGIN = 60  # seconds; a token this close to expiry counts as expired


async def store_credential(
    user_id: str,
    platform: str,
    access_token: str,
    expires_at: int | None = None,
) -> None:
    """Upsert a token into the ``credentials`` table."""
    try:
        db = get_db()
        await db.execute(
            """
            INSERT INTO credentials (user_id, platform, access_token, expires_at)
            VALUES (?, ?, ?, ?)
            ON CONFLICT(user_id, platform)
            DO UPDATE SET access_token = excluded.access_token,
                          expires_at   = excluded.expires_at,
                          updated_at   = datetime('now')
            """,
            (user_id, platform, access_token, expires_at),
        )
        await db.commit()
    except (aiosqlite.Error, RuntimeError) as exc:
        raise StoreUnavailable(f"could not store {platform} credential: {exc}") from exc
    logger.info("Stored %s credential for user %s", platform, user_id)


async def _load(user_id: str, platform: str) -> tuple[str, int | None] | None:
    try:
        db = get_db()
        cursor = await db.execute(
            "SELECT access_token, expires_at FROM credentials WHERE user_id = ? AND platform = ?",
            (user_id, platform),
        )
        row = await cursor.fetchone()
    except (aiosqlite.Error, RuntimeError) as exc:
        raise StoreUnavailable(str(exc)) from exc
    if not row:
        return None
    return row[0], row[1]


async def get_credential(
    user_id: str,
    platform: str,
    supplied: str | None = None,
) -> Credential:
    """Resolve the credential for *platform*.

    A stored, unexpired token wins.  A token supplied by the caller covers a
    missing or expired one, and keeps the sync going in degraded mode when
    the store cannot be read at all.
    """
    try:
        stored = await _load(user_id, platform)
    except StoreUnavailable as exc:
        logger.warning("Credential store unreadable for %s/%s: %s", user_id, platform, exc.detail)
        if supplied:
            return Credential(
                platform=platform,
                state=CredentialState.DEGRADED,
                token=supplied,
                reason="store unavailable, using the token supplied with the request",
            )
        return Credential(
            platform=platform,
            state=CredentialState.UNAVAILABLE,
            reason="store unavailable and no token supplied",
        )

    if stored is not None:
        token, expires_at = stored
        if expires_at is None or expires_at > time.time() + _EXPIRY_MARGIN:
            return Credential(platform=platform, state=CredentialState.AVAILABLE, token=token)
        if not supplied:
            return Credential(
                platform=platform,
                state=CredentialState.UNAVAILABLE,
                reason=f"{platform} credential expired, reconnect the account",
            )

    if supplied:
        return Credential(platform=platform, state=CredentialState.AVAILABLE, token=supplied)
    return Credential(
        platform=platform,
        state=CredentialState.UNAVAILABLE,
        reason=f"no {platform} account connected",
    )
