from __future__ import annotations
import uuid
from datetime import datetime, timezone
from typing import Protocol, Sequence

from .. import redis_client

PROMOTED_EVENT = "reservation_promoted"


def gathering_channel(gathering_id: uuid.UUID) -> str:
    return f"gathering:{gathering_id}"


class Notifier(Protocol):
    async def notify_promoted(self, gathering_id: uuid.UUID, user_ids: Sequence[uuid.UUID]) -> None: ...


class RedisNotifier:
    """Publishes one promotion event per gathering to Redis Pub/Sub (consumed by the SSE router)."""

    async def notify_promoted(self, gathering_id: uuid.UUID, user_ids: Sequence[uuid.UUID]) -> None:
        await redis_client.publish_json(
            gathering_channel(gathering_id),
            {
                "type": PROMOTED_EVENT,
                "gathering_id": str(gathering_id),
                "user_ids": [str(u) for u in user_ids],
                "ts": datetime.now(timezone.utc).isoformat(),
            },
        )
