"""
PKCE/state vault tests.

Focus:
- S256 challenge matches the RFC 7636 appendix B vector
- states are unique, high-entropy and consumable exactly once
- 5 minute TTL boundary; expired records are removed on consumption
"""

from __future__ import annotations

import base64
import hashlib

import pytest

from backend.identity_access.errors import StateExpired, StateNotFound
from backend.identity_access.oidc import OIDCClient
from backend.identity_access.stores import MemoryKeyValueStore, StateStore


def test_code_challenge_matches_rfc7636_vector():
    verifier = "dBjftJeZ4CVP-mB92K27uhbUJU1p1r_wW1gFWFOEjXk"
    assert OIDCClient.code_challenge_s256(verifier) == "E9Melhoa2OwvFrEMTJguCHaoeK1t8URWbuGJSstw-cM"


@pytest.mark.anyio
async def test_begin_challenge_derives_challenge_from_stored_verifier(clock):
    store = StateStore(clock=clock)
    challenge = await store.begin_challenge(device_id="device-1")
    digest = hashlib.sha256(challenge.code_verifier.encode("ascii")).digest()
    assert challenge.code_challenge == base64.urlsafe_b64encode(digest).decode("ascii").rstrip("=")
    assert "=" not in challenge.code_challenge

    pending = await store.consume_state(challenge.state)
    assert pending.code_verifier == challenge.code_verifier
    assert pending.device_id == "device-1"
    assert pending.created_at == clock.now


@pytest.mark.anyio
async def test_states_are_unique_and_long(clock):
    store = StateStore(clock=clock)
    states = [(await store.begin_challenge()).state for _ in range(200)]
    assert len(set(states)) == len(states)
    # 24 random bytes -> 32 url-safe characters (>= 16 bytes of entropy)
    assert all(len(s) >= 32 for s in states)


@pytest.mark.anyio
async def test_state_is_consumed_once(clock):
    store = StateStore(clock=clock)
    state = (await store.begin_challenge()).state
    await store.consume_state(state)
    with pytest.raises(StateNotFound):
        await store.consume_state(state)


@pytest.mark.anyio
async def test_unknown_state_is_not_found(clock):
    with pytest.raises(StateNotFound):
        await StateStore(clock=clock).consume_state("never-issued")


@pytest.mark.anyio
async def test_state_just_inside_ttl_succeeds(clock):
    store = StateStore(clock=clock)
    state = (await store.begin_challenge()).state
    clock.advance(4 * 60 + 59)
    assert (await store.consume_state(state)).state == state


@pytest.mark.anyio
async def test_state_just_past_ttl_expires_and_is_removed(clock):
    kv = MemoryKeyValueStore()
    store = StateStore(kv, clock=clock)
    state = (await store.begin_challenge()).state
    clock.advance(5 * 60 + 1)
    with pytest.raises(StateExpired):
        await store.consume_state(state)
    assert len(kv) == 0
    with pytest.raises(StateNotFound):
        await store.consume_state(state)


@pytest.mark.anyio
async def test_purge_expired_drops_only_stale_states(clock):
    kv = MemoryKeyValueStore()
    store = StateStore(kv, clock=clock)
    old = (await store.begin_challenge()).state
    clock.advance(200)
    fresh = (await store.begin_challenge()).state
    clock.advance(200)
    assert await store.purge_expired() == 1
    assert (await store.consume_state(fresh)).state == fresh
    with pytest.raises(StateNotFound):
        await store.consume_state(old)
