"""
Redis pub/sub utilities for realtime conversation and inbox events.

Topics:
    conversation:{conversation_id}  events for one conversation
    inbox:{user_id}                 events that change a user's inbox view
"""
import json
import logging
from typing import Any, AsyncIterator, Dict, Optional

import redis
import redis.asyncio as aioredis

from core.config import REDIS_URL

logger = logging.getLogger(__name__)

_redis: Optional[aioredis.Redis] = None
_sync_redis: Optional[redis.Redis] = None


def get_redis() -> aioredis.Redis:
    """Get or create the async Redis connection singleton."""
    global _redis
    if _redis is None:
        try:
            _redis = aioredis.from_url(REDIS_URL, decode_responses=True)
            logger.info("Redis pub/sub connection initialized")
        except Exception as e:
            logger.error(f"Failed to initialize Redis connection: {e}")
            raise
    return _redis


def get_sync_redis() -> redis.Redis:
    """Blocking client for publishers running in threads (background tasks, worker executor)."""
    global _sync_redis
    if _sync_redis is None:
        _sync_redis = redis.Redis.from_url(REDIS_URL, decode_responses=True)
    return _sync_redis


def conversation_topic(conversation_id: int) -> str:
    return f"conversation:{conversation_id}"


def inbox_topic(user_id: int) -> str:
    return f"inbox:{user_id}"


def publish_event_sync(topic: str, event: Dict[str, Any]) -> bool:
    """Best-effort publish from synchronous code. Returns False on failure."""
    try:
        get_sync_redis().publish(topic, json.dumps(event, default=str))
        return True
    except Exception as e:
        logger.error(f"Failed to publish event to {topic}: {e}")
        return False


class Subscription:
    """
    A live subscription to one topic.

    Use as an async context manager, or call close() explicitly. Iterating
    yields decoded event dicts in publish order.
    """

    def __init__(self, topic: str, client: Optional[aioredis.Redis] = None):
        self.topic = topic
        self._client = client
        self._pubsub = None
        self._closed = False

    @property
    def closed(self) -> bool:
        return self._closed

    async def open(self) -> "Subscription":
        if self._closed:
            raise RuntimeError(f"Subscription to {self.topic} is closed")
        if self._pubsub is None:
            client = self._client or get_redis()
            self._pubsub = client.pubsub()
            await self._pubsub.subscribe(self.topic)
            logger.debug(f"Subscribed to Redis channel: {self.topic}")
        return self

    async def close(self) -> None:
        if self._closed:
            return
        self._closed = True
        if self._pubsub is not None:
            try:
                await self._pubsub.unsubscribe(self.topic)
                await self._pubsub.aclose()
                logger.debug(f"Unsubscribed from Redis channel: {self.topic}")
            except Exception as e:
                logger.warning(f"Error closing subscription to {self.topic}: {e}")
            self._pubsub = None

    async def __aenter__(self) -> "Subscription":
        return await self.open()

    async def __aexit__(self, exc_type, exc, tb) -> None:
        await self.close()

    async def __aiter__(self) -> AsyncIterator[Dict[str, Any]]:
        await self.open()
        async for msg in self._pubsub.listen():
            if self._closed:
                break
            if msg is None or msg.get("type") != "message":
                continue
            try:
                yield json.loads(msg["data"])
            except (TypeError, json.JSONDecodeError):
                logger.warning(f"Discarded malformed event on {self.topic}")


def subscribe(topic: str) -> Subscription:
    return Subscription(topic)
