"""
Minimal OIDC client for the Google authorization-code + PKCE flow.

Why: Keep web framework independent business logic in a separate module. The
orchestrator calls into this client to build the authorization URL and to
exchange the authorization code for tokens.

Security: Uses PKCE (S256) parameters; the caller is responsible for state &
code_verifier storage (see `stores.StateStore`). This client does not manage
persistence and never retries a failed exchange.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Dict, Optional
import hashlib
import base64
import secrets
from urllib.parse import urlencode

# Small indirection to ease monkeypatching in tests
import httpx as http

from .domain import HTTP_TIMEOUT_SECONDS, SCOPES
from .errors import TokenExchangeFailed


async def http_post(url: str, data: Dict[str, str], headers: Dict[str, str]):
    async with http.AsyncClient(timeout=HTTP_TIMEOUT_SECONDS) as client:
        return await client.post(url, data=data, headers=headers)


@dataclass(frozen=True)
class OIDCConfig:
    client_id: str  # e.g., 1234.apps.googleusercontent.com
    client_secret: str
    redirect_uri: str  # e.g., https://api.example.com/api/auth/google/callback
    auth_endpoint: str = "https://accounts.google.com/o/oauth2/v2/auth"
    token_endpoint: str = "https://oauth2.googleapis.com/token"
    jwks_uri: str = "https://www.googleapis.com/oauth2/v3/certs"

    @property
    def is_complete(self) -> bool:
        return bool(self.client_id and self.redirect_uri)


@dataclass(frozen=True)
class ProviderTokenSet:
    access_token: str
    id_token: str
    expires_in: int
    refresh_token: Optional[str] = None


class OIDCClient:
    def __init__(self, config: OIDCConfig):
        self.cfg = config

    @staticmethod
    def generate_code_verifier(length: int = 32) -> str:
        """Generate a high-entropy URL-safe code_verifier.

        Note: 32 random bytes encode to 43 characters, the RFC 7636 minimum.
        """
        return secrets.token_urlsafe(length)

    @staticmethod
    def code_challenge_s256(code_verifier: str) -> str:
        """Derive S256 code challenge from verifier."""
        digest = hashlib.sha256(code_verifier.encode("ascii")).digest()
        return base64.urlsafe_b64encode(digest).decode("ascii").rstrip("=")

    def build_authorization_url(self, *, state: str, code_challenge: str) -> str:
        """Return the provider authorization URL for the configured client.

        Parameters
        - state: Opaque anti-CSRF token generated by the state store
        - code_challenge: The S256 code challenge derived from the verifier

        `access_type=offline` and `prompt=consent` ask the provider for a
        refresh token on every login.
        """
        params = {
            "client_id": self.cfg.client_id,
            "redirect_uri": self.cfg.redirect_uri,
            "response_type": "code",
            "scope": SCOPES,
            "access_type": "offline",
            "prompt": "consent",
            "code_challenge": code_challenge,
            "code_challenge_method": "S256",
            "state": state,
        }
        return f"{self.cfg.auth_endpoint}?{urlencode(params)}"

    async def exchange_code_for_tokens(self, *, code: str, code_verifier: str) -> ProviderTokenSet:
        """Exchange authorization code for tokens at the token endpoint.

        Returns the provider token set on success; raises TokenExchangeFailed
        on transport errors, non-2xx responses or a body without `id_token`.
        """
        data = {
            "grant_type": "authorization_code",
            "code": code,
            "client_id": self.cfg.client_id,
            "client_secret": self.cfg.client_secret or "",
            "redirect_uri": self.cfg.redirect_uri,
            "code_verifier": code_verifier,
        }
        headers = {"Content-Type": "application/x-www-form-urlencoded"}
        try:
            resp = await http_post(self.cfg.token_endpoint, data=data, headers=headers)
        except http.HTTPError as exc:
            raise TokenExchangeFailed() from exc
        if not 200 <= resp.status_code < 300:
            raise TokenExchangeFailed()
        try:
            body = resp.json()
        except ValueError as exc:
            raise TokenExchangeFailed() from exc
        if not isinstance(body, dict):
            raise TokenExchangeFailed()
        id_token = body.get("id_token")
        if not id_token or not isinstance(id_token, str):
            raise TokenExchangeFailed("missing_id_token")
        try:
            expires_in = int(body.get("expires_in") or 0)
        except (TypeError, ValueError) as exc:
            raise TokenExchangeFailed() from exc
        refresh_token = body.get("refresh_token")
        return ProviderTokenSet(
            access_token=str(body.get("access_token") or ""),
            id_token=id_token,
            expires_in=expires_in,
            refresh_token=refresh_token if isinstance(refresh_token, str) and refresh_token else None,
        )
