"""Guest data routes: hand a guest's history over to the signed-in user."""

from __future__ import annotations

from fastapi import APIRouter, Request
from pydantic import BaseModel, ConfigDict, Field

from backend.identity_access.actors import claim_guest_data, resolve_actor
from backend.identity_access.errors import AuthError
from backend.web.auth_utils import error_response, get_auth_service, private_json

guest_router = APIRouter(tags=["Guest"])


class ClaimPayload(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    guest_id: str | None = Field(default=None, alias="guestId", max_length=200)


@guest_router.post("/api/guest/claim")
async def guest_claim(request: Request, payload: ClaimPayload | None = None):
    """
    Re-attribute a guest's fetch events and music items to the caller.

    Behavior:
        - 200 `{events, items}` with the number of rows moved.
        - 400 `invalid_guestId` for malformed guest ids.
        - 401 `invalid_token` without a valid bearer access token.
    Permissions:
        Authenticated user (bearer access token).
    """
    try:
        guest_id = payload.guest_id if payload else None
        # A guest caller resolves to GuestActor and is refused by the claim.
        actor = resolve_actor(get_auth_service(request).issuer, request.headers.get("authorization"), guest_id)
        result = await claim_guest_data(request.app.state.guest_store, actor, guest_id)
    except AuthError as exc:
        return error_response(exc)
    return private_json({"events": result.events, "items": result.items})
