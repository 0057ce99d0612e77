"""
Configuration and startup security checks for the Sniff backend.

Why: A missing internal signing secret silently invalidates every session on
restart and breaks multi-instance setups. Production must fail fast instead;
development stays permissive and gets an ephemeral secret with a warning.

Permissions: The caller needs no special privileges. Functions read
environment variables and raise `SystemExit` on fatal misconfiguration.
"""
from __future__ import annotations

import logging
import os
import secrets

from backend.identity_access.oidc import OIDCConfig
from backend.identity_access.service import DeepLinkConfig

logger = logging.getLogger("sniff.web.config")

MIN_SECRET_LENGTH = 32


def _env() -> str:
    return (os.getenv("SNIFF_ENV", "dev") or "dev").lower()


def _is_prod_like(env: str) -> bool:
    env_l = (env or "").lower()
    return env_l in {"prod", "production", "stage", "staging"}


def _internal_secret_from_env() -> str:
    return (os.getenv("INTERNAL_JWT_SECRET") or os.getenv("INTERNAL_JWT_PRIVATE") or "").strip()


def _is_placeholder(value: str) -> bool:
    upper = value.upper()
    return upper.startswith("CHANGE_ME") or upper in {"DUMMY_DO_NOT_USE", "SECRET"}


def ensure_secure_config_on_startup() -> None:
    """Fail fast on insecure production configuration.

    Intent: Abort process startup when obviously insecure settings are detected
    in production/staging. Development remains permissive for convenience.

    Checks:
    - INTERNAL_JWT_SECRET must be set, not a placeholder, and at least 32 chars.
    - Google client id, client secret and redirect URI must be set.
    - The redirect URI must use https.
    - STORE_BACKEND=db needs a DSN that does not disable TLS.
    """
    if not _is_prod_like(_env()):
        return  # dev/test remain permissive

    # 1) Internal signing secret
    secret = _internal_secret_from_env()
    if not secret or _is_placeholder(secret):
        raise SystemExit(
            "Refusing to start: INTERNAL_JWT_SECRET is unset or a placeholder in production."
        )
    if len(secret) < MIN_SECRET_LENGTH:
        raise SystemExit(
            f"Refusing to start: INTERNAL_JWT_SECRET must be at least {MIN_SECRET_LENGTH} characters in production."
        )

    # 2) Provider client registration
    for var in ("GOOGLE_WEB_CLIENT_ID", "GOOGLE_WEB_CLIENT_SECRET", "GOOGLE_BACKEND_REDIRECT"):
        if not (os.getenv(var, "") or "").strip():
            raise SystemExit(f"Refusing to start: {var} is unset in production.")

    # 3) Redirect URI must be https
    redirect = (os.getenv("GOOGLE_BACKEND_REDIRECT", "") or "").strip().lower()
    if not redirect.startswith("https://"):
        raise SystemExit("Refusing to start: GOOGLE_BACKEND_REDIRECT must use https in production.")

    # 4) Database backend
    if (os.getenv("STORE_BACKEND", "memory") or "").strip().lower() == "db":
        dsn = os.getenv("DATABASE_URL", "") or os.getenv("SUPABASE_DB_URL", "")
        if not dsn:
            raise SystemExit("Refusing to start: STORE_BACKEND=db requires DATABASE_URL.")
        if "sslmode=disable" in dsn:
            raise SystemExit(
                "Refusing to start: DATABASE_URL contains sslmode=disable in production. Use sslmode=require."
            )


def load_internal_secret() -> str:
    """Return the HS256 secret for internal tokens.

    Outside production an unset secret is replaced by a random one; every
    session is lost when the process restarts.
    """
    secret = _internal_secret_from_env()
    if secret:
        return secret
    if _is_prod_like(_env()):
        raise SystemExit("Refusing to start: INTERNAL_JWT_SECRET is unset in production.")
    logger.warning(
        "INTERNAL_JWT_SECRET is not set; using an ephemeral key. All sessions will be lost on restart."
    )
    return secrets.token_hex(32)


def load_oidc_config() -> OIDCConfig:
    return OIDCConfig(
        client_id=os.getenv("GOOGLE_WEB_CLIENT_ID", ""),
        client_secret=os.getenv("GOOGLE_WEB_CLIENT_SECRET", ""),
        redirect_uri=os.getenv("GOOGLE_BACKEND_REDIRECT", ""),
    )


def load_deep_link_config() -> DeepLinkConfig:
    return DeepLinkConfig(
        scheme=os.getenv("APP_DEEP_LINK_SCHEME", "miffler") or "miffler",
        path=os.getenv("APP_DEEP_LINK_PATH", "oauth-complete") or "oauth-complete",
    )


def store_backend() -> str:
    return (os.getenv("STORE_BACKEND", "memory") or "memory").strip().lower()


def sweep_interval_seconds() -> float:
    raw = os.getenv("VAULT_SWEEP_INTERVAL_SECONDS", "60")
    try:
        return max(0.0, float(raw))
    except (TypeError, ValueError):
        return 60.0
