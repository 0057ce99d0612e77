"""
Database-backed stores for production use (Postgres/Supabase).

Why: In-memory vaults are neither durable nor shared between instances. These
adapters keep the same contracts as the in-memory versions:

- `DBKeyValueStore` backs a vault; `take` is a single
  `delete ... returning`, so single consumption holds across instances.
- `DBUserStore` upserts profiles keyed on `(provider, provider_sub)`.
- `DBGuestClaimStore` re-attributes guest rows to a user.

psycopg calls are blocking; every async method hands them to a worker thread
with `asyncio.to_thread` so the event loop keeps serving other requests.

Security:
- Intended to be used with a service role connection string; anon clients must
  not access these tables.
- Table names are validated against a strict identifier pattern before being
  interpolated into SQL; all values are bound parameters.

Note: This module uses psycopg3. It is imported only when enabled via
`STORE_BACKEND=db`. Tests use the in-memory stores or a fake psycopg.
"""
from __future__ import annotations

from typing import Any, Dict, Optional
import asyncio
import os
import re

try:
    import psycopg
    from psycopg.types.json import Json
    HAVE_PSYCOPG = True
except ImportError:  # pragma: no cover - optional dependency in dev
    psycopg = None  # type: ignore
    Json = None  # type: ignore
    HAVE_PSYCOPG = False

from .stores import ExpiringEntry
from .users import LocalUser, ProfileFields
from .actors import ClaimResult

_TABLE_RE = re.compile(r"^[A-Za-z_][A-Za-z0-9_]{0,62}(?:\.[A-Za-z_][A-Za-z0-9_]{0,62})?$")


def _resolve_dsn(dsn: str | None) -> str:
    if not HAVE_PSYCOPG:
        raise RuntimeError("psycopg3 is required for database-backed stores")
    resolved = dsn or os.getenv("DATABASE_URL") or os.getenv("SUPABASE_DB_URL", "")
    if not resolved:
        raise RuntimeError("No database DSN provided")
    return resolved


def _checked_table(table: str) -> str:
    if not _TABLE_RE.match(table or ""):
        raise ValueError("Invalid table name")
    return table


class DBKeyValueStore:
    """Vault storage in one shared table, partitioned by `namespace`.

    Expected schema::

        create table public.auth_vault (
          namespace text not null,
          key text not null,
          payload jsonb not null,
          created_at double precision not null,
          expires_at double precision not null,
          primary key (namespace, key)
        );
    """

    def __init__(self, namespace: str, dsn: str | None = None, table: str = "public.auth_vault") -> None:
        self._dsn = _resolve_dsn(dsn)
        self._table = _checked_table(table)
        self.namespace = namespace

    async def put(self, key: str, value: Dict[str, Any], *, created_at: float, expires_at: float) -> None:
        await asyncio.to_thread(self._put_sync, key, value, created_at, expires_at)

    async def take(self, key: str) -> Optional[ExpiringEntry]:
        return await asyncio.to_thread(self._take_sync, key)

    async def get(self, key: str, *, now: float) -> Optional[ExpiringEntry]:
        return await asyncio.to_thread(self._get_sync, key, now)

    async def delete(self, key: str) -> None:
        await asyncio.to_thread(self._delete_sync, key)

    async def purge_expired(self, now: float) -> int:
        return await asyncio.to_thread(self._purge_sync, now)

    def _put_sync(self, key: str, value: Dict[str, Any], created_at: float, expires_at: float) -> None:
        with psycopg.connect(self._dsn, autocommit=True) as conn:
            with conn.cursor() as cur:
                cur.execute(
                    f"insert into {self._table} (namespace, key, payload, created_at, expires_at) "
                    f"values (%s, %s, %s, %s, %s) "
                    f"on conflict (namespace, key) do update set payload = excluded.payload, "
                    f"created_at = excluded.created_at, expires_at = excluded.expires_at",
                    (self.namespace, key, Json(value), created_at, expires_at),
                )

    def _take_sync(self, key: str) -> Optional[ExpiringEntry]:
        with psycopg.connect(self._dsn, autocommit=True) as conn:
            with conn.cursor() as cur:
                cur.execute(
                    f"delete from {self._table} where namespace = %s and key = %s "
                    f"returning payload, created_at, expires_at",
                    (self.namespace, key),
                )
                return _entry(cur.fetchone())

    def _get_sync(self, key: str, now: float) -> Optional[ExpiringEntry]:
        with psycopg.connect(self._dsn) as conn:
            with conn.cursor() as cur:
                cur.execute(
                    f"select payload, created_at, expires_at from {self._table} "
                    f"where namespace = %s and key = %s and expires_at >= %s",
                    (self.namespace, key, now),
                )
                return _entry(cur.fetchone())

    def _delete_sync(self, key: str) -> None:
        with psycopg.connect(self._dsn, autocommit=True) as conn:
            with conn.cursor() as cur:
                cur.execute(
                    f"delete from {self._table} where namespace = %s and key = %s",
                    (self.namespace, key),
                )

    def _purge_sync(self, now: float) -> int:
        with psycopg.connect(self._dsn, autocommit=True) as conn:
            with conn.cursor() as cur:
                cur.execute(
                    f"delete from {self._table} where namespace = %s and expires_at < %s",
                    (self.namespace, now),
                )
                return int(cur.rowcount or 0)


def _entry(row) -> Optional[ExpiringEntry]:
    if not row:
        return None
    payload = row[0] if isinstance(row[0], dict) else {}
    return ExpiringEntry(value=payload, created_at=float(row[1]), expires_at=float(row[2]))


class DBUserStore:
    """Profiles table with a unique constraint on (provider, provider_sub)."""

    def __init__(self, dsn: str | None = None, table: str = "public.profiles") -> None:
        self._dsn = _resolve_dsn(dsn)
        self._table = _checked_table(table)

    async def upsert(self, provider: str, provider_subject: str, profile: ProfileFields) -> LocalUser:
        return await asyncio.to_thread(self._upsert_sync, provider, provider_subject, profile)

    def _upsert_sync(self, provider: str, provider_subject: str, profile: ProfileFields) -> LocalUser:
        with psycopg.connect(self._dsn, autocommit=True) as conn:
            with conn.cursor() as cur:
                cur.execute(
                    f"insert into {self._table} (provider, provider_sub, email, full_name, avatar_url) "
                    f"values (%s, %s, %s, %s, %s) "
                    f"on conflict (provider, provider_sub) do update set email = excluded.email, "
                    f"full_name = excluded.full_name, avatar_url = excluded.avatar_url "
                    f"returning id, email, full_name, avatar_url",
                    (provider, provider_subject, profile.email, profile.name, profile.picture),
                )
                row = cur.fetchone()
        if not row:
            raise RuntimeError("upsert returned no row")
        return LocalUser(id=str(row[0]), email=row[1], name=row[2], picture=row[3])


class DBGuestClaimStore:
    def __init__(
        self,
        dsn: str | None = None,
        events_table: str = "public.fetch_events",
        items_table: str = "public.music_items",
    ) -> None:
        self._dsn = _resolve_dsn(dsn)
        self._events = _checked_table(events_table)
        self._items = _checked_table(items_table)

    async def reassign(self, guest_id: str, user_id: str) -> ClaimResult:
        return await asyncio.to_thread(self._reassign_sync, guest_id, user_id)

    def _reassign_sync(self, guest_id: str, user_id: str) -> ClaimResult:
        counts = []
        # One transaction: events and their items move together or not at all.
        with psycopg.connect(self._dsn) as conn:
            with conn.cursor() as cur:
                for table in (self._events, self._items):
                    cur.execute(
                        f"update {table} set user_id = %s, guest_id = null "
                        f"where guest_id = %s and user_id is null",
                        (user_id, guest_id),
                    )
                    counts.append(int(cur.rowcount or 0))
            conn.commit()
        return ClaimResult(events=counts[0], items=counts[1])
