"""
Key-value backend client configuration.

Uses Supabase (table-backed records) or Redis (native TTL) depending on
KV_BACKEND. Clients are created once at import; a client whose settings are
missing is None and any store that needs it fails fast with UnconfiguredError.
"""

import os

from dotenv import load_dotenv
from redis.asyncio import Redis
from supabase import Client, create_client

load_dotenv()

KV_BACKEND = os.getenv("KV_BACKEND", "")
KV_TABLE = os.getenv("KV_TABLE", "kv_records")

SUPABASE_URL = os.getenv("SUPABASE_URL")
SUPABASE_SERVICE_KEY = os.getenv("SUPABASE_SERVICE_KEY")
REDIS_URL = os.getenv("REDIS_URL")

# Service-level client (bypasses RLS); the kv table is not user-facing
supabase_admin: Client = (
    create_client(SUPABASE_URL, SUPABASE_SERVICE_KEY)
    if SUPABASE_URL and SUPABASE_SERVICE_KEY
    else None
)

# Lazy connection: from_url does not connect until the first command
redis_client: Redis = Redis.from_url(REDIS_URL, decode_responses=True) if REDIS_URL else None
