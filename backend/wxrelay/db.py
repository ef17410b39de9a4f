"""
Shared store clients.
Uses Supabase (PostgreSQL) for bindings and Redis for the platform token cache.

Clients are built explicitly at application startup and handed to the
services that need them; nothing here is created at import time.
"""

import redis.asyncio as aioredis
from supabase import AsyncClient, acreate_client

from wxrelay.config import Settings


async def create_supabase_client(settings: Settings) -> AsyncClient:
    """Admin client for the bindings table (service-role key, bypasses RLS)."""
    return await acreate_client(settings.supabase_url, settings.supabase_service_key)


def create_redis_client(settings: Settings) -> aioredis.Redis:
    """Redis client with string responses; the connection is opened lazily."""
    return aioredis.from_url(settings.redis_url, decode_responses=True)
