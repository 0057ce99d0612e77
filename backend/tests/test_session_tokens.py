"""
Internal session token tests.

Focus:
- access tokens live 15 minutes, refresh tokens 30 days
- claims carry subject, session id and type
- wrong secret, tampering and expiry are distinguished
"""

from __future__ import annotations

import time

import pytest
from jose import jwt

from backend.identity_access.errors import SignatureInvalid, TokenExpired
from backend.identity_access.sessions import SessionTokenIssuer, new_session_id

from conftest import TEST_SECRET


def test_access_token_claims_and_lifetime(issuer):
    token = issuer.sign_access("u1", "s1")
    claims = issuer.verify(token)
    assert (claims.subject, claims.session_id, claims.token_type) == ("u1", "s1", "access")
    assert abs(claims.expires_at - (time.time() + 900)) < 5


def test_refresh_token_lifetime(issuer):
    claims = issuer.verify(issuer.sign_refresh("u1", "s1"))
    assert claims.token_type == "refresh"
    assert abs(claims.expires_at - (time.time() + 30 * 24 * 3600)) < 5


def test_tokens_use_hs256(issuer):
    assert jwt.get_unverified_header(issuer.sign_access("u1", "s1"))["alg"] == "HS256"


def test_refresh_tokens_for_same_session_differ(issuer):
    assert issuer.sign_refresh("u1", "s1") != issuer.sign_refresh("u1", "s1")


def test_expected_type_is_enforced(issuer):
    with pytest.raises(SignatureInvalid):
        issuer.verify(issuer.sign_access("u1", "s1"), expected_type="refresh")


def test_foreign_secret_is_rejected(issuer):
    other = SessionTokenIssuer("another-secret-that-is-long-enough-000")
    with pytest.raises(SignatureInvalid):
        issuer.verify(other.sign_access("u1", "s1"))


def test_tampered_token_is_rejected(issuer):
    token = issuer.sign_access("u1", "s1")
    head, payload, sig = token.split(".")
    forged = jwt.encode({"sub": "admin", "sid": "s1", "typ": "access", "exp": int(time.time()) + 60}, "x", algorithm="HS256")
    with pytest.raises(SignatureInvalid):
        issuer.verify(".".join([head, forged.split(".")[1], sig]))


def test_expired_token_reports_expiry():
    past = SessionTokenIssuer(TEST_SECRET, clock=lambda: time.time() - 3600)
    token = past.sign_access("u1", "s1")
    with pytest.raises(TokenExpired):
        SessionTokenIssuer(TEST_SECRET).verify(token)


def test_empty_secret_is_refused():
    with pytest.raises(ValueError):
        SessionTokenIssuer("")


def test_session_ids_are_unique():
    ids = {new_session_id() for _ in range(200)}
    assert len(ids) == 200
