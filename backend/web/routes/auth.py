"""
Authentication-related FastAPI routes (router-only module).

Why:
    Keep the HTTP binding of the login handshake thin: validate body shapes,
    call the orchestrator, map `AuthError` codes to JSON responses. All
    protocol state lives in `identity_access`.

Flow:
    POST /api/auth/start            app asks for the provider URL
    GET  /api/auth/google/callback  provider redirects the system browser here
    POST /api/auth/finish           app trades the one-time token for sessions
    POST /api/auth/refresh          new access token for a live session
    POST /api/auth/logout           revoke one refresh token
"""

from __future__ import annotations

from fastapi import APIRouter, Request
from fastapi.responses import RedirectResponse
from pydantic import BaseModel, ConfigDict, Field
import logging

from backend.identity_access.errors import AuthError
from backend.web.auth_utils import NO_STORE, error_response, get_auth_service, private_json, require_user


auth_router = APIRouter(tags=["Auth"])  # explicit paths, no prefix
logger = logging.getLogger("sniff.web.auth")


class StartPayload(BaseModel):
    device_id: str | None = Field(default=None, max_length=200)


class FinishPayload(BaseModel):
    ott: str | None = None


class RefreshTokenPayload(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    refresh_token: str | None = Field(default=None, alias="refreshToken")


@auth_router.post("/api/auth/start")
async def auth_start(request: Request, payload: StartPayload | None = None):
    """
    Begin a login: mint PKCE material and return the provider URL.

    Behavior:
        - 200 `{authorizationUrl, state}`; the app opens the URL in the
          system browser.
        - 500 `config_missing` when the provider client is not configured.
    Permissions:
        Public.
    """
    try:
        result = await get_auth_service(request).start(device_id=payload.device_id if payload else None)
    except AuthError as exc:
        logger.error("Login start rejected: %s", exc.code)
        return error_response(exc)
    return private_json(result)


@auth_router.get("/api/auth/google/callback")
async def auth_google_callback(request: Request, code: str | None = None, state: str | None = None):
    """
    Provider redirect target; answers with a 302 to the app deep link.

    Behavior:
        - 302 to `<scheme>://<path>?ott=...` on success.
        - 400 on missing/unknown/expired state or a rejected ID token.
        - 502 when the provider or the user store fails.
    Security:
        Sets `Cache-Control: private, no-store` on every response; the deep
        link carries a bearer-equivalent one-time token.
    """
    try:
        deep_link = await get_auth_service(request).callback(code, state)
    except AuthError as exc:
        logger.warning("Login callback failed: %s", exc.code)
        return error_response(exc)
    return RedirectResponse(url=deep_link, status_code=302, headers=dict(NO_STORE))


@auth_router.post("/api/auth/finish")
async def auth_finish(request: Request, payload: FinishPayload | None = None):
    """Trade a one-time token for an access/refresh token pair."""
    try:
        result = await get_auth_service(request).finish(payload.ott if payload else None)
    except AuthError as exc:
        logger.warning("Login finish failed: %s", exc.code)
        return error_response(exc)
    return private_json(result)


@auth_router.post("/api/auth/logout")
async def auth_logout(request: Request, payload: RefreshTokenPayload | None = None):
    """Revoke a refresh token. Unknown tokens are not an error."""
    try:
        result = await get_auth_service(request).logout(payload.refresh_token if payload else None)
    except AuthError as exc:
        return error_response(exc)
    return private_json(result)


@auth_router.post("/api/auth/refresh")
async def auth_refresh(request: Request, payload: RefreshTokenPayload | None = None):
    """Issue a new access token; the refresh token itself is not rotated."""
    try:
        result = await get_auth_service(request).refresh(payload.refresh_token if payload else None)
    except AuthError as exc:
        logger.warning("Session refresh failed: %s", exc.code)
        return error_response(exc)
    return private_json(result)


@auth_router.get("/api/auth/me")
async def auth_me(request: Request):
    """Return the session behind the bearer access token (signature check only)."""
    try:
        actor = require_user(request)
    except AuthError as exc:
        return error_response(exc)
    return private_json({"user_id": actor.user_id, "session_id": actor.session_id})
