from __future__ import annotations
import json
from typing import Any

from redis import asyncio as aioredis
from redis.exceptions import RedisError

from .config import get_settings

S = get_settings()

# one client per process; pub/sub, worker locks and heartbeats share it
redis = aioredis.from_url(S.REDIS_URL, encoding="utf-8", decode_responses=True)


async def publish_json(channel: str, payload: dict[str, Any]) -> int:
    """Publish a compact JSON message. Returns the number of subscribers reached."""
    return await redis.publish(channel, json.dumps(payload, separators=(",", ":")))


async def try_lock(key: str, ttl_sec: int) -> bool:
    # SET NX EX: expires on its own, nobody has to release it
    return await redis.set(key, "1", ex=ttl_sec, nx=True) is True


async def redis_health() -> bool:
    try:
        return bool(await redis.ping())
    except (RedisError, OSError):
        return False
