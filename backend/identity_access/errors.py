"""
Error taxonomy for the identity_access bounded context.

Why: Callers (HTTP adapter, tests) need a stable, machine-readable reason for
every rejected login or session operation without parsing messages. Each
exception carries a snake_case `code` and a coarse `category` that the web
layer maps to a status code.

Security: Messages never include token material; only the code is exposed.
"""

from __future__ import annotations

CONFIGURATION = "configuration"
PROTOCOL = "protocol"
STATE = "state"
UPSTREAM = "upstream"
VERIFICATION = "verification"


class AuthError(Exception):
    """Base class for all authentication failures."""

    code = "auth_failed"
    category = PROTOCOL

    def __init__(self, code: str | None = None):
        self.code = code or type(self).code
        super().__init__(self.code)


# Configuration
class ConfigMissing(AuthError):
    code = "config_missing"
    category = CONFIGURATION


# Protocol / validation
class MissingParameters(AuthError):
    code = "missing_parameters"


class InvalidToken(AuthError):
    code = "invalid_id_token"


class Unauthenticated(AuthError):
    code = "invalid_token"


class InvalidGuestId(AuthError):
    code = "invalid_guestId"


# State / replay
class StateNotFound(AuthError):
    code = "state_not_found"
    category = STATE


class StateExpired(AuthError):
    code = "state_expired"
    category = STATE


class InvalidOtt(AuthError):
    code = "invalid_ott"
    category = STATE


class OttExpired(AuthError):
    code = "ott_expired"
    category = STATE


class InvalidRefresh(AuthError):
    code = "invalid_refresh"
    category = STATE


class RefreshExpired(AuthError):
    code = "refresh_expired"
    category = STATE


# Upstream
class TokenExchangeFailed(AuthError):
    code = "token_exchange_failed"
    category = UPSTREAM


class KeySetFetchFailed(AuthError):
    code = "jwks_fetch_failed"
    category = UPSTREAM


class UpsertFailed(AuthError):
    code = "upsert_failed"
    category = UPSTREAM


class ClaimFailed(AuthError):
    code = "claim_failed"
    category = UPSTREAM


# Signature / claims
class AudienceMismatch(AuthError):
    code = "aud_mismatch"
    category = VERIFICATION


class IssuerMismatch(AuthError):
    code = "iss_mismatch"
    category = VERIFICATION


class TokenExpired(AuthError):
    code = "token_expired"
    category = VERIFICATION


class SignatureInvalid(AuthError):
    code = "signature_invalid"
    category = VERIFICATION


class KeyNotFound(AuthError):
    code = "jwks_key_not_found"
    category = VERIFICATION
