"""
cache.py: Redis caching layer for Luzimarket.

Namespace conventions:
  zones:{state|*}:{active|all}   → filtered delivery-zone list   TTL zone_cache_ttl

Design:
  - Uses redis.asyncio (async client, part of redis-py 5.x)
  - Pool created once in lifespan, stored on app.state.redis
  - Helper functions take the client as a param; no module-level global state
  - Catalog reads are best-effort: a Redis failure is logged and treated as a miss
"""
import json
import logging
from typing import Optional

import redis.asyncio as aioredis
from redis.exceptions import RedisError

from luzimarket.config import settings

logger = logging.getLogger(__name__)

# ---------------------------------------------------------------------------
# Key prefix constants
# ---------------------------------------------------------------------------
ZONES_PREFIX = "zones"


# ---------------------------------------------------------------------------
# Key builders
# ---------------------------------------------------------------------------

def make_zones_key(state_code: Optional[str], active: Optional[bool]) -> str:
    """Build Redis key for a zone list: zones:{state}:{active}"""
    state_part = state_code.lower() if state_code else "*"
    active_part = "all" if active is None else str(active).lower()
    return f"{ZONES_PREFIX}:{state_part}:{active_part}"


# ---------------------------------------------------------------------------
# Pool factory; called once in lifespan
# ---------------------------------------------------------------------------

async def create_redis_pool() -> aioredis.Redis:
    """
    Create and return an async Redis connection pool.
    Called once in FastAPI lifespan startup; stored on app.state.redis.
    Verifies connectivity with PING before returning.
    """
    client = aioredis.from_url(
        settings.redis_url,
        encoding="utf-8",
        decode_responses=True,
        max_connections=20,
    )
    await client.ping()
    logger.info("Redis connection pool established at %s", settings.redis_url)
    return client


# ---------------------------------------------------------------------------
# Zone catalog helpers
# ---------------------------------------------------------------------------

async def get_zone_cache(client: aioredis.Redis, key: str) -> Optional[list[dict]]:
    try:
        raw = await client.get(key)
    except RedisError as exc:
        logger.warning("Zone cache read failed key=%s: %s", key, exc)
        return None
    if raw is None:
        return None
    logger.debug("Zone cache hit key=%s", key)
    return json.loads(raw)


async def set_zone_cache(
    client: aioredis.Redis, key: str, zones: list[dict], ttl: Optional[int] = None
) -> None:
    ttl = ttl or settings.zone_cache_ttl
    try:
        await client.setex(key, ttl, json.dumps(zones))
    except RedisError as exc:
        logger.warning("Zone cache write failed key=%s: %s", key, exc)
        return
    logger.info("Zone list cached key=%s ttl=%ds", key, ttl)

