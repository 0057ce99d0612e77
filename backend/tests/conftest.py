"""
Pytest configuration for backend tests.

Why: Force AnyIO to use the asyncio backend, keep provider HTTP calls offline,
and share RSA key material for signing fake Google ID tokens.
"""
from __future__ import annotations

import time
from typing import Any, Dict

import httpx
import pytest
from cryptography.hazmat.primitives import serialization
from cryptography.hazmat.primitives.asymmetric import rsa
from jose import jwk, jwt

from backend.identity_access import oidc as oidc_mod
from backend.identity_access import tokens as tokens_mod
from backend.identity_access.oidc import OIDCClient, OIDCConfig
from backend.identity_access.service import AuthService, DeepLinkConfig
from backend.identity_access.sessions import SessionTokenIssuer
from backend.identity_access.tokens import JWKSCache
from backend.identity_access.users import LocalUser

CLIENT_ID = "sniff-test.apps.googleusercontent.com"
TEST_SECRET = "test-internal-secret-0123456789abcdef"


@pytest.fixture
def anyio_backend():
    return "asyncio"


@pytest.fixture(autouse=True)
def _clear_env(monkeypatch: pytest.MonkeyPatch):
    """Keep env-driven behavior deterministic; tests opt into prod explicitly."""
    for var in (
        "SNIFF_ENV",
        "INTERNAL_JWT_SECRET",
        "INTERNAL_JWT_PRIVATE",
        "STORE_BACKEND",
        "DATABASE_URL",
        "SUPABASE_DB_URL",
        "APP_DEEP_LINK_SCHEME",
        "APP_DEEP_LINK_PATH",
    ):
        monkeypatch.delenv(var, raising=False)
    yield


class FakeClock:
    """Manually advanced clock for TTL boundary tests."""

    def __init__(self, start: float = 1_700_000_000.0):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture(scope="session")
def rsa_key() -> Dict[str, Any]:
    private = rsa.generate_private_key(public_exponent=65537, key_size=2048)
    private_pem = private.private_bytes(
        encoding=serialization.Encoding.PEM,
        format=serialization.PrivateFormat.PKCS8,
        encryption_algorithm=serialization.NoEncryption(),
    ).decode("ascii")
    public_pem = private.public_key().public_bytes(
        encoding=serialization.Encoding.PEM,
        format=serialization.PublicFormat.SubjectPublicKeyInfo,
    ).decode("ascii")
    public_jwk = jwk.construct(public_pem, algorithm="RS256").to_dict()
    public_jwk["kid"] = "kid-1"
    return {"private_pem": private_pem, "jwk": public_jwk}


@pytest.fixture
def make_id_token(rsa_key):
    def _make(kid: str = "kid-1", private_pem: str | None = None, **overrides: Any) -> str:
        now = int(time.time())
        claims = {
            "iss": "https://accounts.google.com",
            "aud": CLIENT_ID,
            "sub": "google-sub-1",
            "email": "listener@example.com",
            "name": "Listener",
            "picture": "https://example.com/p.png",
            "iat": now,
            "exp": now + 3600,
        }
        claims.update(overrides)
        return jwt.encode(claims, private_pem or rsa_key["private_pem"], algorithm="RS256", headers={"kid": kid})

    return _make


@pytest.fixture
def jwks_endpoint(monkeypatch: pytest.MonkeyPatch, rsa_key):
    """Serve the test JWKS from `tokens.http_get` and count fetches."""
    calls = {"count": 0, "keys": [rsa_key["jwk"]]}

    async def fake_get(url: str):
        calls["count"] += 1
        return httpx.Response(200, json={"keys": list(calls["keys"])})

    monkeypatch.setattr(tokens_mod, "http_get", fake_get)
    return calls


@pytest.fixture
def token_endpoint(monkeypatch: pytest.MonkeyPatch, make_id_token):
    """Answer token exchanges with a freshly signed ID token."""
    calls: Dict[str, Any] = {"requests": [], "body": None}

    async def fake_post(url: str, data: Dict[str, str], headers: Dict[str, str]):
        calls["requests"].append({"url": url, "data": dict(data), "headers": dict(headers)})
        body = calls["body"] or {
            "access_token": "provider-access",
            "refresh_token": "provider-refresh",
            "id_token": make_id_token(),
            "expires_in": 3599,
        }
        return httpx.Response(200, json=body)

    monkeypatch.setattr(oidc_mod, "http_post", fake_post)
    return calls


class StubUserStore:
    def __init__(self, user_id: str = "u1"):
        self.user_id = user_id
        self.calls = []

    async def upsert(self, provider, provider_subject, profile):
        self.calls.append((provider, provider_subject, profile))
        return LocalUser(id=self.user_id, email=profile.email, name=profile.name, picture=profile.picture)


@pytest.fixture
def oidc_config() -> OIDCConfig:
    return OIDCConfig(
        client_id=CLIENT_ID,
        client_secret="client-secret",
        redirect_uri="https://api.example.com/api/auth/google/callback",
    )


@pytest.fixture
def issuer() -> SessionTokenIssuer:
    return SessionTokenIssuer(TEST_SECRET)


@pytest.fixture
def auth_service(oidc_config, issuer) -> AuthService:
    return AuthService(
        oidc=OIDCClient(oidc_config),
        jwks=JWKSCache(oidc_config.jwks_uri),
        users=StubUserStore(),
        issuer=issuer,
        deep_link=DeepLinkConfig(scheme="miffler", path="oauth-complete"),
    )
