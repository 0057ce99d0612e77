"""
Identity domain constants.

Why:
- Centralize lifetimes and provider identifiers so vaults, issuer and
  orchestrator agree on them.
- Name each lifetime after the record it bounds (PendingLogin, OTT, RefreshRecord).
"""

from __future__ import annotations

PROVIDER = "google"

# Google signs ID tokens with either issuer spelling.
GOOGLE_ISSUERS = frozenset({"accounts.google.com", "https://accounts.google.com"})

PENDING_LOGIN_TTL_SECONDS = 5 * 60
# Deep-link handoff to a cold-started app may need longer; product decision pending.
ONE_TIME_TOKEN_TTL_SECONDS = 60
ACCESS_TOKEN_TTL_SECONDS = 15 * 60
REFRESH_TOKEN_TTL_SECONDS = 30 * 24 * 3600
REFRESH_RECORD_RETENTION_SECONDS = REFRESH_TOKEN_TTL_SECONDS + 24 * 3600
JWKS_TTL_SECONDS = 5 * 60
ID_TOKEN_CLOCK_SKEW_SECONDS = 30
# Applies to every call to the provider (token exchange and key fetch).
HTTP_TIMEOUT_SECONDS = 5.0

SCOPES = "openid profile email"
TOKEN_TYPE = "Bearer"

__all__ = [
    "PROVIDER",
    "GOOGLE_ISSUERS",
    "PENDING_LOGIN_TTL_SECONDS",
    "ONE_TIME_TOKEN_TTL_SECONDS",
    "ACCESS_TOKEN_TTL_SECONDS",
    "REFRESH_TOKEN_TTL_SECONDS",
    "REFRESH_RECORD_RETENTION_SECONDS",
    "JWKS_TTL_SECONDS",
    "ID_TOKEN_CLOCK_SKEW_SECONDS",
    "HTTP_TIMEOUT_SECONDS",
    "SCOPES",
    "TOKEN_TYPE",
]
