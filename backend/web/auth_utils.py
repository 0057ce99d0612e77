"""
Shared authentication utilities for routers.

Why:
    Every auth-related response must carry the same cache policy and the same
    error body shape. Keeping the mapping from `AuthError` categories to HTTP
    status codes in one place avoids drift between the auth and guest routers.
"""

from __future__ import annotations

from fastapi import Request
from fastapi.responses import JSONResponse

from backend.identity_access import errors
from backend.identity_access.actors import UserActor, authenticate_user
from backend.identity_access.service import AuthService

NO_STORE = {"Cache-Control": "private, no-store"}

_STATUS_BY_CATEGORY = {
    errors.CONFIGURATION: 500,
    errors.UPSTREAM: 502,
}


def private_json(body: dict, *, status_code: int = 200) -> JSONResponse:
    return JSONResponse(body, status_code=status_code, headers=dict(NO_STORE))


def error_response(exc: errors.AuthError) -> JSONResponse:
    """Map an AuthError to `{"error": code}` with a category-based status."""
    status = _STATUS_BY_CATEGORY.get(exc.category, 400)
    if isinstance(exc, errors.Unauthenticated):
        status = 401
    return private_json({"error": exc.code}, status_code=status)


def get_auth_service(request: Request) -> AuthService:
    return request.app.state.auth_service


def require_user(request: Request) -> UserActor:
    """Authenticate the bearer access token; raises Unauthenticated."""
    return authenticate_user(get_auth_service(request).issuer, request.headers.get("authorization"))
