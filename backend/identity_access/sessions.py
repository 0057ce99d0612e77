"""
Internal session tokens (access + refresh) for the mobile application.

Why: After the provider login completes, the app talks to us with our own
short-lived access token and a long-lived refresh token. Both are HS256 JWTs
signed with one process-wide secret; there is no per-user key material.

Claims: `sub` (local user id), `sid` (session id), `typ` ("access" or
"refresh"), `iat`, `exp`.
"""
from __future__ import annotations

from dataclasses import dataclass
from typing import Callable, Optional
import secrets
import time

from jose import jwt
from jose.exceptions import ExpiredSignatureError, JOSEError

from .domain import ACCESS_TOKEN_TTL_SECONDS, REFRESH_TOKEN_TTL_SECONDS
from .errors import SignatureInvalid, TokenExpired

ALGORITHM = "HS256"
ACCESS = "access"
REFRESH = "refresh"


def new_session_id() -> str:
    return secrets.token_urlsafe(18)


@dataclass(frozen=True)
class SessionClaims:
    subject: str
    session_id: str
    token_type: str
    issued_at: int
    expires_at: int


class SessionTokenIssuer:
    def __init__(self, secret: str, *, clock: Callable[[], float] = time.time):
        if not secret:
            raise ValueError("internal signing secret must not be empty")
        self._secret = secret
        self._clock = clock

    def sign_access(self, user_id: str, session_id: str) -> str:
        return self._sign(user_id, session_id, ACCESS, ACCESS_TOKEN_TTL_SECONDS)

    def sign_refresh(self, user_id: str, session_id: str) -> str:
        return self._sign(user_id, session_id, REFRESH, REFRESH_TOKEN_TTL_SECONDS)

    def _sign(self, user_id: str, session_id: str, token_type: str, ttl_seconds: int) -> str:
        now = int(self._clock())
        claims = {
            "sub": user_id,
            "sid": session_id,
            "typ": token_type,
            # Two refresh tokens minted in the same second must still differ.
            "jti": secrets.token_urlsafe(16),
            "iat": now,
            "exp": now + ttl_seconds,
        }
        return jwt.encode(claims, self._secret, algorithm=ALGORITHM)

    def verify(self, token: str, expected_type: Optional[str] = None) -> SessionClaims:
        """Check signature and expiry; optionally pin the token type.

        Raises TokenExpired for a well-signed but expired token and
        SignatureInvalid for anything else that fails.
        """
        try:
            claims = jwt.decode(
                token,
                self._secret,
                algorithms=[ALGORITHM],
                options={"verify_aud": False, "leeway": 0},
            )
        except ExpiredSignatureError as exc:
            raise TokenExpired() from exc
        except JOSEError as exc:
            raise SignatureInvalid() from exc
        sub, sid, typ = claims.get("sub"), claims.get("sid"), claims.get("typ")
        if not sub or not sid or typ not in (ACCESS, REFRESH):
            raise SignatureInvalid("invalid_claims")
        if expected_type is not None and typ != expected_type:
            raise SignatureInvalid("wrong_token_type")
        return SessionClaims(
            subject=str(sub),
            session_id=str(sid),
            token_type=str(typ),
            issued_at=int(claims.get("iat") or 0),
            expires_at=int(claims["exp"]),
        )
