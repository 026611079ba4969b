from __future__ import annotations
import json
import time
import uuid
from typing import AsyncIterator, Optional

from fastapi import APIRouter, Request
from fastapi.responses import StreamingResponse

from ...auth.deps import get_current_user
from ... import redis_client
from ...services.notifications import gathering_channel

router = APIRouter(prefix="/events", tags=["events"])

KEEPALIVE_SEC = 15.0


def _sse(event: dict) -> bytes:
    return f"event: {event.get('type', 'message')}\ndata: {json.dumps(event, separators=(',', ':'))}\n\n".encode()


def _wanted(event: dict, only_user: Optional[uuid.UUID]) -> bool:
    if only_user is None:
        return True
    return str(only_user) in event.get("user_ids", [])


async def _stream(channel: str, only_user: Optional[uuid.UUID]) -> AsyncIterator[bytes]:
    pubsub = redis_client.redis.pubsub()
    await pubsub.subscribe(channel)
    last_sent = time.monotonic()
    try:
        yield b": ok\n\n"
        while True:
            msg = await pubsub.get_message(ignore_subscribe_messages=True, timeout=1.0)
            if msg and msg.get("type") == "message":
                try:
                    event = json.loads(msg["data"])
                except json.JSONDecodeError:
                    continue
                if _wanted(event, only_user):
                    yield _sse(event)
                    last_sent = time.monotonic()
            elif time.monotonic() - last_sent >= KEEPALIVE_SEC:
                yield b": keepalive\n\n"
                last_sent = time.monotonic()
    finally:
        await pubsub.unsubscribe(channel)
        await pubsub.aclose()


# promotion events for one gathering; ?mine=true narrows to the caller's own promotions
@router.get("/gatherings/{gathering_id}")
async def sse_gathering(gathering_id: uuid.UUID, request: Request, mine: bool = False):
    only_user = (await get_current_user(request)).user_id if mine else None
    return StreamingResponse(
        _stream(gathering_channel(gathering_id), only_user),
        media_type="text/event-stream",
        headers={"Cache-Control": "no-cache", "X-Accel-Buffering": "no"},
    )
