"""
JWT verification helpers for the identity_access bounded context.

Why: Keep cryptographic validation of ID tokens outside the web adapter so we
can unit test it independently and swap the key cache later on.

Security: Validates audience, issuer and expiry first (cheap, offline), then
the RS256 signature against the provider's JWKS. Malformed or mis-addressed
tokens therefore fail without a network round trip. The algorithm is pinned to
RS256 regardless of what the token header or JWKS entry claims.
"""
from __future__ import annotations

from dataclasses import dataclass
from typing import Callable, Dict, List, Optional
import logging
import time

import httpx
from jose import jwt
from jose.exceptions import JOSEError

from .domain import GOOGLE_ISSUERS, HTTP_TIMEOUT_SECONDS, ID_TOKEN_CLOCK_SKEW_SECONDS, JWKS_TTL_SECONDS
from .errors import (
    AudienceMismatch,
    InvalidToken,
    IssuerMismatch,
    KeyNotFound,
    KeySetFetchFailed,
    SignatureInvalid,
    TokenExpired,
)

logger = logging.getLogger("sniff.identity_access")

ALGORITHM = "RS256"


async def http_get(url: str):
    async with httpx.AsyncClient(timeout=HTTP_TIMEOUT_SECONDS) as client:
        return await client.get(url)


@dataclass(frozen=True)
class SigningKey:
    kid: str
    jwk: Dict[str, object]
    fetched_at: float


@dataclass(frozen=True)
class VerifiedClaims:
    subject: str
    email: Optional[str]
    name: Optional[str]
    picture: Optional[str]
    issuer: str
    audience: str
    expires_at: int


class JWKSCache:
    """Process-wide cache of the provider's public signing keys.

    The whole key set is replaced on refresh, never merged, so a key the
    provider has rotated out disappears at the next refresh.
    """

    def __init__(self, jwks_uri: str, ttl_seconds: int = JWKS_TTL_SECONDS, clock: Callable[[], float] = time.time):
        self.jwks_uri = jwks_uri
        self.ttl_seconds = ttl_seconds
        self._clock = clock
        self._keys: Optional[List[Dict[str, object]]] = None
        self._fetched_at = 0.0

    def _is_stale(self, now: float) -> bool:
        return self._keys is None or now - self._fetched_at > self.ttl_seconds

    async def resolve_signing_key(self, kid: str) -> SigningKey:
        now = self._clock()
        refreshed = False
        if self._is_stale(now):
            await self.refresh()
            refreshed = True
        key = _find_key(self._keys or [], kid)
        if key is None and not refreshed:
            # Unknown kid may mean the provider rotated keys since our last fetch.
            await self.refresh()
            key = _find_key(self._keys or [], kid)
        if key is None:
            raise KeyNotFound()
        return SigningKey(kid=kid, jwk=key, fetched_at=self._fetched_at)

    async def refresh(self) -> None:
        self._keys = await self._fetch()
        self._fetched_at = self._clock()
        logger.info("JWKS refreshed (%d keys)", len(self._keys))

    async def _fetch(self) -> List[Dict[str, object]]:
        try:
            resp = await http_get(self.jwks_uri)
        except httpx.HTTPError as exc:
            raise KeySetFetchFailed() from exc
        if resp.status_code != 200:
            raise KeySetFetchFailed()
        try:
            jwks = resp.json()
        except ValueError as exc:
            raise KeySetFetchFailed("jwks_invalid") from exc
        keys = jwks.get("keys") if isinstance(jwks, dict) else None
        if not isinstance(keys, list):
            raise KeySetFetchFailed("jwks_invalid")
        return [k for k in keys if isinstance(k, dict)]


def _find_key(keys: List[Dict[str, object]], kid: str) -> Dict[str, object] | None:
    for key in keys:
        if key.get("kid") == kid:
            return key
    return None


async def verify_id_token(*, id_token: str, audience: str, resolver: JWKSCache) -> VerifiedClaims:
    """Validate a provider ID token and return its verified claims.

    Parameters
    ----------
    id_token:
        The raw JWT string returned by the token endpoint.
    audience:
        Expected `aud`, i.e. our OAuth client id.
    resolver:
        Key cache used to look up the signing key by `kid`.

    Raises
    ------
    InvalidToken, AudienceMismatch, IssuerMismatch, TokenExpired,
    KeyNotFound, SignatureInvalid:
        On the first failing check, in that order.
    """
    try:
        header = jwt.get_unverified_header(id_token)
        payload = jwt.get_unverified_claims(id_token)
    except JOSEError as exc:
        raise InvalidToken() from exc
    if not isinstance(header, dict) or not isinstance(payload, dict):
        raise InvalidToken()

    aud = payload.get("aud")
    if not audience or aud != audience:
        raise AudienceMismatch()

    iss = payload.get("iss")
    if iss not in GOOGLE_ISSUERS:
        raise IssuerMismatch()

    exp = payload.get("exp")
    if not isinstance(exp, (int, float)) or isinstance(exp, bool):
        raise InvalidToken()
    if exp + ID_TOKEN_CLOCK_SKEW_SECONDS < time.time():
        raise TokenExpired()

    kid = header.get("kid")
    if not kid or not isinstance(kid, str):
        raise SignatureInvalid("missing_kid")
    key = await resolver.resolve_signing_key(kid)
    try:
        jwt.decode(
            id_token,
            key.jwk,
            algorithms=[ALGORITHM],
            options={
                "verify_signature": True,
                # Claims were checked above with our own skew allowance.
                "verify_aud": False,
                "verify_iss": False,
                "verify_exp": False,
                "verify_iat": False,
                "verify_nbf": False,
                "verify_at_hash": False,
            },
        )
    except JOSEError as exc:
        raise SignatureInvalid() from exc

    subject = payload.get("sub")
    if not subject:
        raise InvalidToken()
    return VerifiedClaims(
        subject=str(subject),
        email=_opt_str(payload.get("email")),
        name=_opt_str(payload.get("name")),
        picture=_opt_str(payload.get("picture")),
        issuer=str(iss),
        audience=str(aud),
        expires_at=int(exp),
    )


def _opt_str(value: object) -> Optional[str]:
    return str(value) if value else None
