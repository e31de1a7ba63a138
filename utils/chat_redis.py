import asyncio
import json
import logging
from typing import Any, Dict, Optional

import redis.asyncio as redis

from core.config import REDIS_URL

logger = logging.getLogger(__name__)

CHAT_EVENT_QUEUE_KEY = "chat:event_queue"

_redis_client: Optional[redis.Redis] = None
_redis_lock = asyncio.Lock()


async def get_chat_redis() -> Optional[redis.Redis]:
    """Create or return cached Redis connection for the chat event queue."""
    global _redis_client

    if _redis_client:
        return _redis_client

    async with _redis_lock:
        if _redis_client:
            return _redis_client
        try:
            _redis_client = redis.from_url(REDIS_URL, decode_responses=True)
            logger.info("Chat Redis client initialized")
        except Exception as exc:
            logger.error(f"Failed to initialize chat Redis client: {exc}")
            _redis_client = None
    return _redis_client


async def enqueue_chat_event(event_type: str, payload: Dict[str, Any]) -> bool:
    """
    Push a chat event onto the Redis queue for the worker. The queue is a
    single FIFO list, so events for a conversation are handled in the order
    they were enqueued. Returns False if queueing failed.
    """
    client = await get_chat_redis()
    if not client:
        return False

    try:
        entry = json.dumps({"type": event_type, "payload": payload}, default=str)
        await client.rpush(CHAT_EVENT_QUEUE_KEY, entry)
        return True
    except Exception as exc:
        logger.error(f"Failed to enqueue chat event: {exc}")
        return False


def decode_chat_event(raw_event: str) -> Optional[Dict[str, Any]]:
    try:
        event = json.loads(raw_event)
    except (TypeError, json.JSONDecodeError):
        return None
    if not isinstance(event, dict) or "type" not in event:
        return None
    event.setdefault("payload", {})
    return event
