"""
Auth orchestrator: sequences the login handshake and session operations.

Flow of one login attempt:

    start ──► (provider redirect) ──► callback ──► (deep link) ──► finish
    STARTED        CALLBACK_RECEIVED          OTT_ISSUED          FINISHED

A pending login expires after 5 minutes and an OTT after 60 seconds; both are
consumed on first use, successful or not. `refresh` and `logout` only touch
the refresh vault and the session issuer.

External calls (token exchange, key fetch, user upsert) run strictly one after
another: each step needs the previous step's output. Any failure in callback
aborts before an OTT exists; an upserted user without an OTT is harmless
because the next login upserts again.
"""
from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Dict, Optional
from urllib.parse import quote
import logging

from .domain import ACCESS_TOKEN_TTL_SECONDS, TOKEN_TYPE
from .errors import (
    ConfigMissing,
    InvalidRefresh,
    MissingParameters,
    RefreshExpired,
    SignatureInvalid,
    TokenExpired,
)
from .oidc import OIDCClient
from .sessions import REFRESH, SessionTokenIssuer, new_session_id
from .stores import OneTimeTokenStore, RefreshStore, StateStore
from .tokens import JWKSCache, verify_id_token
from .users import UserStore, upsert_from_claims

logger = logging.getLogger("sniff.identity_access")


@dataclass(frozen=True)
class DeepLinkConfig:
    scheme: str = "miffler"
    path: str = "oauth-complete"

    def build(self, ott: str) -> str:
        return f"{self.scheme}://{self.path}?ott={quote(ott, safe='')}"


class AuthService:
    def __init__(
        self,
        *,
        oidc: OIDCClient,
        jwks: JWKSCache,
        users: UserStore,
        issuer: SessionTokenIssuer,
        states: StateStore | None = None,
        otts: OneTimeTokenStore | None = None,
        refresh_tokens: RefreshStore | None = None,
        provider_grants: RefreshStore | None = None,
        deep_link: DeepLinkConfig | None = None,
    ):
        self.oidc = oidc
        self.jwks = jwks
        self.users = users
        self.issuer = issuer
        self.states = states or StateStore()
        self.otts = otts or OneTimeTokenStore()
        self.refresh_tokens = refresh_tokens or RefreshStore()
        # Provider refresh tokens are retained apart from our own sessions and
        # are never accepted by `refresh`.
        self.provider_grants = provider_grants or RefreshStore()
        self.deep_link = deep_link or DeepLinkConfig()

    async def start(self, device_id: Optional[str] = None) -> Dict[str, str]:
        if not self.oidc.cfg.is_complete:
            raise ConfigMissing()
        challenge = await self.states.begin_challenge(device_id)
        url = self.oidc.build_authorization_url(state=challenge.state, code_challenge=challenge.code_challenge)
        return {"authorizationUrl": url, "state": challenge.state}

    async def callback(self, code: Optional[str], state: Optional[str]) -> str:
        """Complete the provider redirect and return the app deep link."""
        if not code or not state:
            raise MissingParameters("missing_code_or_state")
        pending = await self.states.consume_state(state)
        tokens = await self.oidc.exchange_code_for_tokens(code=code, code_verifier=pending.code_verifier)
        claims = await verify_id_token(id_token=tokens.id_token, audience=self.oidc.cfg.client_id, resolver=self.jwks)
        user = await upsert_from_claims(self.users, claims)
        if tokens.refresh_token:
            await self.provider_grants.record(tokens.refresh_token, user.id, new_session_id())
        ott = await self.otts.issue(
            user_id=user.id,
            name=user.name or user.email or "User",
            picture=user.picture,
        )
        logger.info("Login callback completed (device=%s)", "yes" if pending.device_id else "no")
        return self.deep_link.build(ott.ott)

    async def finish(self, ott: Optional[str]) -> Dict[str, Any]:
        if not ott:
            raise MissingParameters("missing_ott")
        handoff = await self.otts.consume(ott)
        session_id = new_session_id()
        access_token = self.issuer.sign_access(handoff.user_id, session_id)
        refresh_token = self.issuer.sign_refresh(handoff.user_id, session_id)
        await self.refresh_tokens.record(refresh_token, handoff.user_id, session_id)
        return {
            "accessToken": access_token,
            "refreshToken": refresh_token,
            "tokenType": TOKEN_TYPE,
            "expiresIn": ACCESS_TOKEN_TTL_SECONDS,
            "user": {"id": handoff.user_id, "name": handoff.name, "picture": handoff.picture},
        }

    async def logout(self, refresh_token: Optional[str]) -> Dict[str, bool]:
        if not refresh_token:
            raise MissingParameters("missing_refresh_token")
        await self.refresh_tokens.revoke(refresh_token)
        return {"ok": True}

    async def refresh(self, refresh_token: Optional[str]) -> Dict[str, Any]:
        """Mint a new access token for an existing session.

        The refresh token is not rotated; it stays valid until logout or its
        own expiry. A token that fails verification loses its record.
        """
        if not refresh_token:
            raise MissingParameters("missing_refresh_token")
        record = await self.refresh_tokens.lookup(refresh_token)
        if record is None:
            raise InvalidRefresh()
        try:
            self.issuer.verify(refresh_token, expected_type=REFRESH)
        except (SignatureInvalid, TokenExpired) as exc:
            await self.refresh_tokens.revoke(refresh_token)
            raise RefreshExpired() from exc
        access_token = self.issuer.sign_access(record.user_id, record.session_id)
        return {"accessToken": access_token, "expiresIn": ACCESS_TOKEN_TTL_SECONDS, "tokenType": TOKEN_TYPE}

    async def purge_expired(self) -> int:
        """Drop expired vault entries; returns how many were removed."""
        removed = 0
        for vault in (self.states, self.otts, self.refresh_tokens, self.provider_grants):
            removed += await vault.purge_expired()
        return removed
