"""
Vaults for pending logins, one-time tokens and refresh tokens.

Why: Keep server-side login state (PKCE code_verifier, OTT handoff, live
refresh tokens) opaque to clients. Each vault sits on a `KeyValueStore`
capability so the in-memory map can be swapped for a shared store
(`stores_db.DBKeyValueStore`) when more than one instance serves traffic.

Concurrency: Every store call is awaitable so a database backend never blocks
the event loop. Consumption is one `take` (get-and-delete): the in-memory
store pops without awaiting in between, the database store issues a single
`delete ... returning`, so two concurrent callbacks never both observe the
same record.
"""
from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Callable, Dict, Optional, Protocol
import secrets
import time

from .domain import (
    ONE_TIME_TOKEN_TTL_SECONDS,
    PENDING_LOGIN_TTL_SECONDS,
    REFRESH_RECORD_RETENTION_SECONDS,
)
from .errors import InvalidOtt, OttExpired, StateExpired, StateNotFound
from .oidc import OIDCClient

Clock = Callable[[], float]


@dataclass(frozen=True)
class ExpiringEntry:
    value: Dict[str, Any]
    created_at: float
    expires_at: float

    def is_expired(self, now: float) -> bool:
        return now > self.expires_at


class KeyValueStore(Protocol):
    """Key-value capability with per-entry deadlines.

    `take` must remove and return the entry atomically, expired or not, so the
    caller can tell "expired" from "unknown". `get` hides expired entries.
    """

    async def put(self, key: str, value: Dict[str, Any], *, created_at: float, expires_at: float) -> None: ...

    async def take(self, key: str) -> Optional[ExpiringEntry]: ...

    async def get(self, key: str, *, now: float) -> Optional[ExpiringEntry]: ...

    async def delete(self, key: str) -> None: ...

    async def purge_expired(self, now: float) -> int: ...


class MemoryKeyValueStore:
    def __init__(self):
        self._data: Dict[str, ExpiringEntry] = {}

    async def put(self, key: str, value: Dict[str, Any], *, created_at: float, expires_at: float) -> None:
        self._data[key] = ExpiringEntry(value=dict(value), created_at=created_at, expires_at=expires_at)

    async def take(self, key: str) -> Optional[ExpiringEntry]:
        return self._data.pop(key, None)

    async def get(self, key: str, *, now: float) -> Optional[ExpiringEntry]:
        entry = self._data.get(key)
        if entry is None:
            return None
        if entry.is_expired(now):
            self._data.pop(key, None)
            return None
        return entry

    async def delete(self, key: str) -> None:
        self._data.pop(key, None)

    async def purge_expired(self, now: float) -> int:
        stale = [k for k, e in self._data.items() if e.is_expired(now)]
        for k in stale:
            del self._data[k]
        return len(stale)

    def __len__(self) -> int:
        return len(self._data)


# --- PKCE / state --------------------------------------------------------------


@dataclass(frozen=True)
class PendingLogin:
    state: str
    code_verifier: str
    created_at: float
    device_id: Optional[str] = None


@dataclass(frozen=True)
class Challenge:
    state: str
    code_challenge: str
    code_verifier: str


class StateStore:
    def __init__(self, kv: KeyValueStore | None = None, *, ttl_seconds: int = PENDING_LOGIN_TTL_SECONDS, clock: Clock = time.time):
        self._kv = kv if kv is not None else MemoryKeyValueStore()
        self.ttl_seconds = ttl_seconds
        self._clock = clock

    async def begin_challenge(self, device_id: Optional[str] = None) -> Challenge:
        code_verifier = OIDCClient.generate_code_verifier()
        code_challenge = OIDCClient.code_challenge_s256(code_verifier)
        state = secrets.token_urlsafe(24)
        now = self._clock()
        await self._kv.put(
            state,
            {"code_verifier": code_verifier, "device_id": device_id},
            created_at=now,
            expires_at=now + self.ttl_seconds,
        )
        return Challenge(state=state, code_challenge=code_challenge, code_verifier=code_verifier)

    async def consume_state(self, state: str) -> PendingLogin:
        """Remove and return the pending login for `state`.

        The record is gone afterwards whether or not it had expired, so a
        replayed state always fails with StateNotFound.
        """
        entry = await self._kv.take(state)
        if entry is None:
            raise StateNotFound()
        if entry.is_expired(self._clock()):
            raise StateExpired()
        return PendingLogin(
            state=state,
            code_verifier=entry.value["code_verifier"],
            created_at=entry.created_at,
            device_id=entry.value.get("device_id"),
        )

    async def purge_expired(self) -> int:
        return await self._kv.purge_expired(self._clock())


# --- One-time tokens -----------------------------------------------------------


@dataclass(frozen=True)
class OneTimeToken:
    ott: str
    user_id: str
    name: str
    picture: Optional[str]
    created_at: float


class OneTimeTokenStore:
    def __init__(self, kv: KeyValueStore | None = None, *, ttl_seconds: int = ONE_TIME_TOKEN_TTL_SECONDS, clock: Clock = time.time):
        self._kv = kv if kv is not None else MemoryKeyValueStore()
        self.ttl_seconds = ttl_seconds
        self._clock = clock

    async def issue(self, *, user_id: str, name: str, picture: Optional[str]) -> OneTimeToken:
        ott = secrets.token_urlsafe(20)
        now = self._clock()
        await self._kv.put(
            ott,
            {"user_id": user_id, "name": name, "picture": picture},
            created_at=now,
            expires_at=now + self.ttl_seconds,
        )
        return OneTimeToken(ott=ott, user_id=user_id, name=name, picture=picture, created_at=now)

    async def consume(self, ott: str) -> OneTimeToken:
        entry = await self._kv.take(ott)
        if entry is None:
            raise InvalidOtt()
        if entry.is_expired(self._clock()):
            raise OttExpired()
        return OneTimeToken(
            ott=ott,
            user_id=entry.value["user_id"],
            name=entry.value["name"],
            picture=entry.value.get("picture"),
            created_at=entry.created_at,
        )

    async def purge_expired(self) -> int:
        return await self._kv.purge_expired(self._clock())


# --- Refresh tokens ------------------------------------------------------------


@dataclass(frozen=True)
class RefreshRecord:
    refresh_token: str
    user_id: str
    session_id: str
    created_at: float


class RefreshStore:
    """Live refresh tokens; a record's existence is what keeps a session alive.

    One user may hold several records (one per device). Records outlive
    their token by a day so an expired token is reported as such by the
    signature check before the sweep drops the record.
    """

    def __init__(self, kv: KeyValueStore | None = None, *, ttl_seconds: int = REFRESH_RECORD_RETENTION_SECONDS, clock: Clock = time.time):
        self._kv = kv if kv is not None else MemoryKeyValueStore()
        self.ttl_seconds = ttl_seconds
        self._clock = clock

    async def record(self, refresh_token: str, user_id: str, session_id: str) -> RefreshRecord:
        now = self._clock()
        await self._kv.put(
            refresh_token,
            {"user_id": user_id, "session_id": session_id},
            created_at=now,
            expires_at=now + self.ttl_seconds,
        )
        return RefreshRecord(refresh_token=refresh_token, user_id=user_id, session_id=session_id, created_at=now)

    async def lookup(self, refresh_token: str) -> Optional[RefreshRecord]:
        entry = await self._kv.get(refresh_token, now=self._clock())
        if entry is None:
            return None
        return RefreshRecord(
            refresh_token=refresh_token,
            user_id=entry.value["user_id"],
            session_id=entry.value["session_id"],
            created_at=entry.created_at,
        )

    async def revoke(self, refresh_token: str) -> None:
        await self._kv.delete(refresh_token)

    async def purge_expired(self) -> int:
        return await self._kv.purge_expired(self._clock())
