"""
Key-value store collaborator.

The Decay Store and the Scheduler only ever touch records by exact key:

  get(key)                      -> str | None
  put(key, value, ttl_seconds)  -> None     (ttl_seconds=None means no expiry)
  delete(key)                   -> bool     (True when something was removed)

No transactions and no range scans. A record past its expiry reads as absent;
that is a normal state, not an error.

Backends (selected by KV_BACKEND):
  - supabase  rows in a ``kv_records`` table {key, value, expires_at}
  - redis     SET key value EX ttl
  - memory    process-local dict, used for local development and tests
"""

import asyncio
import logging
import time
from datetime import datetime, timedelta, timezone
from typing import Callable, Optional

from app.services.errors import UnconfiguredError

logger = logging.getLogger(__name__)

SUPPORTED_BACKENDS = ("supabase", "redis", "memory")


class KVStore:
    """Interface shared by every backend."""

    async def get(self, key: str) -> Optional[str]:
        raise NotImplementedError

    async def put(self, key: str, value: str, ttl_seconds: Optional[int] = None) -> None:
        raise NotImplementedError

    async def delete(self, key: str) -> bool:
        raise NotImplementedError

    async def ping(self) -> bool:
        raise NotImplementedError


# ---------------------------------------------------------------------------
# In-memory backend
# ---------------------------------------------------------------------------

class InMemoryKVStore(KVStore):
    """
    Dict-backed store with per-record expiry.

    ``clock`` returns epoch seconds; tests pass a fake clock to move time
    forward past a TTL without sleeping.
    """

    def __init__(self, clock: Callable[[], float] = time.time):
        self._clock = clock
        self._records: dict[str, tuple[str, Optional[float]]] = {}

    async def get(self, key: str) -> Optional[str]:
        record = self._records.get(key)
        if record is None:
            return None
        value, expires_at = record
        if expires_at is not None and expires_at <= self._clock():
            del self._records[key]
            return None
        return value

    async def put(self, key: str, value: str, ttl_seconds: Optional[int] = None) -> None:
        expires_at = self._clock() + ttl_seconds if ttl_seconds else None
        self._records[key] = (value, expires_at)

    async def delete(self, key: str) -> bool:
        # An expired record counts as already gone
        if await self.get(key) is None:
            return False
        del self._records[key]
        return True

    async def ping(self) -> bool:
        return True


# ---------------------------------------------------------------------------
# Supabase backend
# ---------------------------------------------------------------------------

class SupabaseKVStore(KVStore):
    """
    Stores records as rows of a Supabase table.

    Expected schema:
        create table kv_records (
            key        text primary key,
            value      text not null,
            expires_at timestamptz
        );

    The supabase-py client is synchronous, so each call runs in a worker
    thread to keep fan-out reads concurrent.
    """

    def __init__(self, client, table: str = "kv_records"):
        self._client = client
        self._table = table

    def _get_sync(self, key: str) -> Optional[str]:
        result = (
            self._client.table(self._table)
            .select("value, expires_at")
            .eq("key", key)
            .limit(1)
            .execute()
        )
        if not result.data:
            return None
        row = result.data[0]
        expires_at = row.get("expires_at")
        if expires_at and _parse_timestamp(expires_at) <= datetime.now(timezone.utc):
            return None
        return row.get("value")

    def _put_sync(self, key: str, value: str, ttl_seconds: Optional[int]) -> None:
        expires_at = None
        if ttl_seconds:
            expires_at = (datetime.now(timezone.utc) + timedelta(seconds=ttl_seconds)).isoformat()
        self._client.table(self._table).upsert(
            {"key": key, "value": value, "expires_at": expires_at}
        ).execute()

    def _delete_sync(self, key: str) -> bool:
        result = self._client.table(self._table).delete().eq("key", key).execute()
        return bool(result.data)

    async def get(self, key: str) -> Optional[str]:
        return await asyncio.to_thread(self._get_sync, key)

    async def put(self, key: str, value: str, ttl_seconds: Optional[int] = None) -> None:
        await asyncio.to_thread(self._put_sync, key, value, ttl_seconds)

    async def delete(self, key: str) -> bool:
        return await asyncio.to_thread(self._delete_sync, key)

    async def ping(self) -> bool:
        await asyncio.to_thread(
            lambda: self._client.table(self._table).select("key").limit(1).execute()
        )
        return True


def _parse_timestamp(value: str) -> datetime:
    """Parse a Postgres timestamptz string (``Z`` or ``+00:00`` suffix)."""
    parsed = datetime.fromisoformat(value.replace("Z", "+00:00"))
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


# ---------------------------------------------------------------------------
# Redis backend
# ---------------------------------------------------------------------------

class RedisKVStore(KVStore):
    """Thin wrapper over ``redis.asyncio.Redis``; expiry is native (SET EX)."""

    def __init__(self, client):
        self._client = client

    async def get(self, key: str) -> Optional[str]:
        value = await self._client.get(key)
        if isinstance(value, bytes):
            return value.decode("utf-8")
        return value

    async def put(self, key: str, value: str, ttl_seconds: Optional[int] = None) -> None:
        await self._client.set(key, value, ex=ttl_seconds or None)

    async def delete(self, key: str) -> bool:
        return bool(await self._client.delete(key))

    async def ping(self) -> bool:
        return bool(await self._client.ping())


# ---------------------------------------------------------------------------
# Namespacing and factory
# ---------------------------------------------------------------------------

class PrefixedKVStore(KVStore):
    """Scopes every key under ``<prefix>:`` so inbox and calendar can share a backend."""

    def __init__(self, inner: KVStore, prefix: str):
        self._inner = inner
        self._prefix = prefix

    def _key(self, key: str) -> str:
        return f"{self._prefix}:{key}"

    async def get(self, key: str) -> Optional[str]:
        return await self._inner.get(self._key(key))

    async def put(self, key: str, value: str, ttl_seconds: Optional[int] = None) -> None:
        await self._inner.put(self._key(key), value, ttl_seconds)

    async def delete(self, key: str) -> bool:
        return await self._inner.delete(self._key(key))

    async def ping(self) -> bool:
        return await self._inner.ping()


def build_kv_store(
    backend: Optional[str],
    supabase_client=None,
    redis_client=None,
    table: str = "kv_records",
) -> KVStore:
    """
    Construct the backend named by ``backend``.

    Raises UnconfiguredError when the backend is unset, unknown, or its
    client was not configured. Never falls back to another backend.
    """
    resolved = (backend or "").lower().strip()
    if not resolved:
        raise UnconfiguredError("KV_BACKEND is not configured")

    if resolved == "memory":
        return InMemoryKVStore()

    if resolved == "supabase":
        if supabase_client is None:
            raise UnconfiguredError(
                "KV_BACKEND=supabase requires SUPABASE_URL and SUPABASE_SERVICE_KEY"
            )
        return SupabaseKVStore(supabase_client, table=table)

    if resolved == "redis":
        if redis_client is None:
            raise UnconfiguredError("KV_BACKEND=redis requires REDIS_URL")
        return RedisKVStore(redis_client)

    raise UnconfiguredError(
        f"Unknown KV backend {resolved!r}. Supported backends: {list(SUPPORTED_BACKENDS)}"
    )
