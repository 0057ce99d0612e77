"""
Local user mapping tests: one user per (provider, subject), profile kept fresh.
"""

from __future__ import annotations

import logging

import pytest

from backend.identity_access.errors import UpsertFailed
from backend.identity_access.tokens import VerifiedClaims
from backend.identity_access.users import MemoryUserStore, upsert_from_claims


pytestmark = pytest.mark.anyio("asyncio")


def _claims(subject: str = "google-sub-1", name: str | None = "Listener") -> VerifiedClaims:
    return VerifiedClaims(
        subject=subject,
        email="listener@example.com",
        name=name,
        picture=None,
        issuer="https://accounts.google.com",
        audience="client",
        expires_at=0,
    )


@pytest.mark.anyio
async def test_repeat_login_keeps_user_id_and_updates_profile():
    store = MemoryUserStore()
    first = await upsert_from_claims(store, _claims())
    second = await upsert_from_claims(store, _claims(name="Renamed"))
    assert first.id == second.id
    assert second.name == "Renamed"


@pytest.mark.anyio
async def test_distinct_subjects_get_distinct_users():
    store = MemoryUserStore()
    a = await upsert_from_claims(store, _claims("sub-a"))
    b = await upsert_from_claims(store, _claims("sub-b"))
    assert a.id != b.id


@pytest.mark.anyio
async def test_store_errors_become_upsert_failed(caplog):
    class BrokenStore:
        async def upsert(self, provider, provider_subject, profile):
            raise ConnectionError("listener@example.com unreachable")

    with caplog.at_level(logging.WARNING, logger="sniff.identity_access"):
        with pytest.raises(UpsertFailed):
            await upsert_from_claims(BrokenStore(), _claims())
    # Only the exception class is logged, never profile data.
    assert "ConnectionError" in caplog.text
    assert "listener@example.com" not in caplog.text
