from __future__ import annotations
import asyncio
import logging
from datetime import datetime, timezone
from redis.exceptions import RedisError
from ..redis_client import redis

log = logging.getLogger("gatherings.heartbeat")

async def beat(key: str, interval_sec: int = 5, ttl_sec: int = 20):
    while True:
        try:
            await redis.set(key, datetime.now(timezone.utc).isoformat(), ex=ttl_sec)
        except (RedisError, OSError) as e:
            log.warning("heartbeat_failed", extra={"key": key, "error": str(e)})
        await asyncio.sleep(interval_sec)
