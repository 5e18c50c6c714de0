"""Tests for the credential provider capability states."""

from __future__ import annotations

import time

import pytest

from musync.credentials import get_credential, store_credential
from musync.db import close_db, init_db
from reconcile.errors import StoreUnavailable
from reconcile.models import CredentialState


@pytest.fixture(autouse=True)
async def db(monkeypatch, tmp_path):
    monkeypatch.setenv("DB_PATH", str(tmp_path / "test.db"))
    from musync.config import get_settings
    get_settings.cache_clear()
    await init_db()
    yield
    await close_db()


@pytest.mark.asyncio
async def test_stored_unexpired_is_available():
    await store_credential("u1", "spotify", "stored-tok", int(time.time()) + 3600)
    cred = await get_credential("u1", "spotify", supplied="other")
    assert cred.state == CredentialState.AVAILABLE
    assert cred.token == "stored-tok"
    assert cred.usable


@pytest.mark.asyncio
async def test_stored_without_expiry_is_available():
    await store_credential("u1", "youtube", "tok")
    assert (await get_credential("u1", "youtube")).state == CredentialState.AVAILABLE


@pytest.mark.asyncio
async def test_expired_without_supplied_is_unavailable():
    await store_credential("u1", "spotify", "old", int(time.time()) - 10)
    cred = await get_credential("u1", "spotify")
    assert cred.state == CredentialState.UNAVAILABLE
    assert "expired" in cred.reason
    assert not cred.usable


@pytest.mark.asyncio
async def test_expired_with_supplied_uses_supplied():
    await store_credential("u1", "spotify", "old", int(time.time()) - 10)
    cred = await get_credential("u1", "spotify", supplied="fresh")
    assert cred.state == CredentialState.AVAILABLE
    assert cred.token == "fresh"


@pytest.mark.asyncio
async def test_nothing_stored_but_supplied_is_available():
    cred = await get_credential("u1", "spotify", supplied="fresh")
    assert cred.state == CredentialState.AVAILABLE
    assert cred.token == "fresh"


@pytest.mark.asyncio
async def test_nothing_at_all_is_unavailable():
    cred = await get_credential("u1", "spotify")
    assert cred.state == CredentialState.UNAVAILABLE
    assert cred.token is None


@pytest.mark.asyncio
async def test_store_down_with_supplied_is_degraded():
    await close_db()
    cred = await get_credential("u1", "spotify", supplied="fresh")
    assert cred.state == CredentialState.DEGRADED
    assert cred.token == "fresh"
    assert cred.usable
    assert "store unavailable" in cred.reason


@pytest.mark.asyncio
async def test_store_down_without_supplied_is_unavailable():
    await close_db()
    cred = await get_credential("u1", "spotify")
    assert cred.state == CredentialState.UNAVAILABLE


@pytest.mark.asyncio
async def test_store_credential_when_store_down_raises():
    await close_db()
    with pytest.raises(StoreUnavailable):
        await store_credential("u1", "spotify", "tok")
