"Sniff backend: identity service"
from __future__ import annotations

from contextlib import asynccontextmanager
import asyncio
import logging
import os
import sys

from fastapi import FastAPI
from fastapi.responses import JSONResponse

from backend.identity_access.actors import GuestClaimStore, MemoryGuestClaimStore
from backend.identity_access.oidc import OIDCClient
from backend.identity_access.service import AuthService
from backend.identity_access.sessions import SessionTokenIssuer
from backend.identity_access.stores import OneTimeTokenStore, RefreshStore, StateStore
from backend.identity_access.tokens import JWKSCache
from backend.identity_access.users import MemoryUserStore
from backend.web import config as _cfg
from backend.web.routes.auth import auth_router
from backend.web.routes.guest import guest_router


def _should_load_dotenv() -> bool:
    """Decide if we should load a local .env file.

    - Never load under pytest to avoid contaminating test env.
    - Allow explicit opt-out via SNIFF_ENABLE_DOTENV (default true outside pytest).
    """
    if "pytest" in sys.modules or os.getenv("PYTEST_CURRENT_TEST"):
        return False
    flag = (os.getenv("SNIFF_ENABLE_DOTENV", "true") or "").strip().lower()
    return flag in ("1", "true", "yes")


try:
    from dotenv import load_dotenv
    if _should_load_dotenv():
        load_dotenv()
except ImportError:
    pass

# Minimal production safety checks (fail-fast on insecure config)
_cfg.ensure_secure_config_on_startup()

logger = logging.getLogger("sniff.web")


# --- Service wiring -------------------------------------------------------------

def build_auth_service() -> AuthService:
    """Assemble the orchestrator from environment configuration.

    `STORE_BACKEND=db` puts vaults and users in Postgres so several instances
    can share login state; the default keeps everything in process memory.
    """
    oidc_cfg = _cfg.load_oidc_config()
    issuer = SessionTokenIssuer(_cfg.load_internal_secret())
    jwks = JWKSCache(oidc_cfg.jwks_uri)
    if _cfg.store_backend() == "db":
        from backend.identity_access.stores_db import DBKeyValueStore, DBUserStore

        return AuthService(
            oidc=OIDCClient(oidc_cfg),
            jwks=jwks,
            users=DBUserStore(),
            issuer=issuer,
            states=StateStore(DBKeyValueStore("pending_login")),
            otts=OneTimeTokenStore(DBKeyValueStore("one_time_token")),
            refresh_tokens=RefreshStore(DBKeyValueStore("refresh_token")),
            provider_grants=RefreshStore(DBKeyValueStore("provider_refresh_token")),
            deep_link=_cfg.load_deep_link_config(),
        )
    return AuthService(
        oidc=OIDCClient(oidc_cfg),
        jwks=jwks,
        users=MemoryUserStore(),
        issuer=issuer,
        deep_link=_cfg.load_deep_link_config(),
    )


def build_guest_store() -> GuestClaimStore:
    if _cfg.store_backend() == "db":
        from backend.identity_access.stores_db import DBGuestClaimStore

        return DBGuestClaimStore()
    return MemoryGuestClaimStore()


async def _sweep_forever(service: AuthService, interval: float) -> None:
    while True:
        await asyncio.sleep(interval)
        try:
            removed = await service.purge_expired()
        except Exception as exc:
            # Keep sweeping; a transient store error must not kill the task.
            logger.warning("Vault sweep failed: %s", exc.__class__.__name__)
            continue
        if removed:
            logger.info("Vault sweep removed %d expired entries", removed)


# --- App factory ------------------------------------------------------------------

def create_app(auth_service: AuthService, guest_store: GuestClaimStore | None = None, *, sweep_interval: float | None = None) -> FastAPI:
    """Return the FastAPI app bound to the given service instances.

    Why: Tests build an app around stubbed collaborators without touching the
    module-level singleton.
    """
    interval = _cfg.sweep_interval_seconds() if sweep_interval is None else sweep_interval

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        task = asyncio.create_task(_sweep_forever(auth_service, interval)) if interval > 0 else None
        try:
            yield
        finally:
            if task is not None:
                task.cancel()
                try:
                    await task
                except asyncio.CancelledError:
                    pass

    app = FastAPI(title="Sniff backend", description="Login and session service", version="0.1.0", lifespan=lifespan)
    app.state.auth_service = auth_service
    app.state.guest_store = guest_store if guest_store is not None else MemoryGuestClaimStore()
    app.include_router(auth_router)
    app.include_router(guest_router)

    @app.get("/health")
    async def health_check():
        # Security: include no-store to avoid caching any runtime status.
        return JSONResponse({"status": "healthy"}, headers={"Cache-Control": "private, no-store"})

    return app


AUTH_SERVICE = build_auth_service()
app = create_app(AUTH_SERVICE, build_guest_store())
