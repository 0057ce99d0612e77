"""
Who is calling: an authenticated user or an anonymous guest.

Why: Fetch history is persisted either under a guest id (generated by the app
before login) or under a user id. After login the app claims the guest's rows
for the user. Modelling the caller as a tagged variant keeps every consumer
honest about both cases instead of dispatching through a table of callbacks.
"""
from __future__ import annotations

from dataclasses import dataclass
from typing import Dict, Optional, Protocol, Union
import logging

from .errors import ClaimFailed, InvalidGuestId, SignatureInvalid, TokenExpired, Unauthenticated
from .sessions import ACCESS, SessionTokenIssuer

logger = logging.getLogger("sniff.identity_access")

MIN_GUEST_ID_LENGTH = 11


@dataclass(frozen=True)
class UserActor:
    user_id: str
    session_id: str


@dataclass(frozen=True)
class GuestActor:
    guest_id: str


Actor = Union[UserActor, GuestActor]


def is_valid_guest_id(guest_id: object) -> bool:
    """Guest ids are app-generated opaque strings; an '@' hints at an email."""
    return isinstance(guest_id, str) and len(guest_id) >= MIN_GUEST_ID_LENGTH and "@" not in guest_id


def bearer_token(authorization: Optional[str]) -> Optional[str]:
    if not authorization:
        return None
    scheme, _, value = authorization.strip().partition(" ")
    if scheme.lower() != "bearer" or not value.strip():
        return None
    return value.strip()


def authenticate_user(issuer: SessionTokenIssuer, authorization: Optional[str]) -> UserActor:
    """Verify a bearer access token by signature and expiry alone."""
    token = bearer_token(authorization)
    if not token:
        raise Unauthenticated()
    try:
        claims = issuer.verify(token, expected_type=ACCESS)
    except (SignatureInvalid, TokenExpired) as exc:
        raise Unauthenticated() from exc
    return UserActor(user_id=claims.subject, session_id=claims.session_id)


def resolve_actor(issuer: SessionTokenIssuer, authorization: Optional[str], guest_id: Optional[str]) -> Actor:
    """Prefer a valid bearer token; fall back to a well-formed guest id."""
    if bearer_token(authorization):
        return authenticate_user(issuer, authorization)
    if is_valid_guest_id(guest_id):
        return GuestActor(guest_id=str(guest_id))
    raise Unauthenticated()


def owner_columns(actor: Actor) -> Dict[str, Optional[str]]:
    """Column values identifying the owner of a persisted row."""
    if isinstance(actor, UserActor):
        return {"user_id": actor.user_id, "guest_id": None}
    if isinstance(actor, GuestActor):
        return {"user_id": None, "guest_id": actor.guest_id}
    raise TypeError(f"unknown actor: {actor!r}")


@dataclass(frozen=True)
class ClaimResult:
    events: int
    items: int


class GuestClaimStore(Protocol):
    async def reassign(self, guest_id: str, user_id: str) -> ClaimResult: ...


class MemoryGuestClaimStore:
    """Rows keyed by id, each carrying `user_id`/`guest_id` owner columns."""

    def __init__(self):
        self.events: Dict[str, Dict[str, Optional[str]]] = {}
        self.items: Dict[str, Dict[str, Optional[str]]] = {}

    def add_event(self, event_id: str, actor: Actor) -> None:
        self.events[event_id] = owner_columns(actor)

    def add_item(self, item_id: str, actor: Actor) -> None:
        self.items[item_id] = owner_columns(actor)

    async def reassign(self, guest_id: str, user_id: str) -> ClaimResult:
        return ClaimResult(
            events=_reassign_rows(self.events, guest_id, user_id),
            items=_reassign_rows(self.items, guest_id, user_id),
        )


def _reassign_rows(rows: Dict[str, Dict[str, Optional[str]]], guest_id: str, user_id: str) -> int:
    count = 0
    for row in rows.values():
        if row.get("guest_id") == guest_id and row.get("user_id") is None:
            row["user_id"] = user_id
            row["guest_id"] = None
            count += 1
    return count


async def claim_guest_data(store: GuestClaimStore, actor: Actor, guest_id: Optional[str]) -> ClaimResult:
    """Move every unclaimed row of `guest_id` to the authenticated user.

    Rows already owned by a user are left alone, so claiming twice is a no-op.
    """
    if not isinstance(actor, UserActor):
        raise Unauthenticated()
    if not is_valid_guest_id(guest_id):
        raise InvalidGuestId()
    try:
        return await store.reassign(str(guest_id), actor.user_id)
    except Exception as exc:
        logger.warning("Guest claim failed: %s", exc.__class__.__name__)
        raise ClaimFailed() from exc
