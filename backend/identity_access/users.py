"""
Mapping from verified provider claims to a durable local user.

The store itself is an external collaborator. This module defines the
contract (`UserStore`), a dict-backed implementation for development/tests,
and `upsert_from_claims`, which turns any store failure into UpsertFailed.
"""
from __future__ import annotations

from dataclasses import dataclass
from typing import Dict, Optional, Protocol, Tuple
import logging
import uuid

from .domain import PROVIDER
from .errors import UpsertFailed
from .tokens import VerifiedClaims

logger = logging.getLogger("sniff.identity_access")


@dataclass(frozen=True)
class LocalUser:
    id: str
    email: Optional[str]
    name: Optional[str]
    picture: Optional[str]


@dataclass(frozen=True)
class ProfileFields:
    email: Optional[str]
    name: Optional[str]
    picture: Optional[str]


class UserStore(Protocol):
    async def upsert(self, provider: str, provider_subject: str, profile: ProfileFields) -> LocalUser: ...


class MemoryUserStore:
    """Keyed uniquely on (provider, provider_subject); repeat logins update in place."""

    def __init__(self):
        self._data: Dict[Tuple[str, str], LocalUser] = {}

    async def upsert(self, provider: str, provider_subject: str, profile: ProfileFields) -> LocalUser:
        key = (provider, provider_subject)
        existing = self._data.get(key)
        user = LocalUser(
            id=existing.id if existing else str(uuid.uuid4()),
            email=profile.email,
            name=profile.name,
            picture=profile.picture,
        )
        self._data[key] = user
        return user


async def upsert_from_claims(store: UserStore, claims: VerifiedClaims) -> LocalUser:
    profile = ProfileFields(email=claims.email, name=claims.name, picture=claims.picture)
    try:
        return await store.upsert(PROVIDER, claims.subject, profile)
    except UpsertFailed:
        raise
    except Exception as exc:
        logger.warning("User upsert failed: %s", exc.__class__.__name__)
        raise UpsertFailed() from exc
