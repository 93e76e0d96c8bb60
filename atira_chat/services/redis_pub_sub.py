# atira_chat/services/redis_pub_sub.py
from __future__ import annotations

import json
import logging
from typing import TYPE_CHECKING, Any, Iterable, Optional

import redis.asyncio as redis

if TYPE_CHECKING:
    from atira_chat.services.chat_relay import ChatRelay

logger = logging.getLogger(__name__)

CHANNEL_PREFIX = "room:"


class AsyncRedisPubSubService:
    """
    Cross-process fan-out over Redis Pub/Sub.

    The relay computes *which rooms* a delivery targets; this service
    carries that decision to every process. Each process pattern-subscribes
    ``room:*`` and delivers to the members it holds locally, so room
    membership never has to leave the process that owns the socket.

    Envelope (JSON):
        {"rooms": ["user_7", "admin_global"], "event": "message", "data": {...}}
    """

    def __init__(
        self,
        host: str = "localhost",
        port: int = 6379,
        access_key: str = "",
        ssl: bool = False,
        client: Optional[Any] = None,
    ):
        self.host = host
        self.port = port
        self.access_key = access_key
        self.ssl = ssl
        self.client = client
        self.pubsub = None

    async def connect(self):
        """Establish async connection to Redis."""
        if self.client is None:
            scheme = "rediss" if self.ssl else "redis"
            auth = f":{self.access_key}@" if self.access_key else ""
            self.client = redis.from_url(
                f"{scheme}://{auth}{self.host}:{self.port}",
                decode_responses=True,
            )
        await self.client.ping()
        logger.info(f"✓ Connected to Redis at {self.host}:{self.port}")

    async def publish(self, room_ids: Iterable[str], event: str, data: Any) -> None:
        """Publish one fan-out decision on the primary room's channel."""
        rooms = list(room_ids)
        if not rooms:
            return
        channel = f"{CHANNEL_PREFIX}{rooms[0]}"
        await self.client.publish(channel, json.dumps({"rooms": rooms, "event": event, "data": data}))
        logger.debug(f"📤 Published '{event}' to Redis channel '{channel}'")

    async def listen(self, relay: "ChatRelay", pattern: str = f"{CHANNEL_PREFIX}*") -> None:
        """
        Deliver every published fan-out to this process's local members.

        Run as a background task for the lifetime of the app.
        """
        self.pubsub = self.client.pubsub()
        await self.pubsub.psubscribe(pattern)
        logger.info(f"✓ Subscribed to Redis pattern '{pattern}'")

        async for message in self.pubsub.listen():
            if message["type"] not in ("message", "pmessage"):
                continue
            try:
                envelope = json.loads(message["data"])
                rooms = envelope.get("rooms") or []
                event = envelope.get("event")
                if not rooms or not event:
                    logger.warning("Redis envelope without rooms/event - ignoring")
                    continue
                await relay.deliver_local(rooms, event, envelope.get("data"))
            except Exception as e:
                logger.error(f"Error processing Redis message: {e}")

    async def close(self):
        """Close connections."""
        if self.pubsub:
            await self.pubsub.punsubscribe()
            await self.pubsub.aclose()
        if self.client:
            await self.client.aclose()
        logger.info("Redis connection closed")
