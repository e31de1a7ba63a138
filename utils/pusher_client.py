import logging
from typing import Any, Dict, Optional

import pusher

from core.config import (
    PUSHER_APP_ID,
    PUSHER_CLUSTER,
    PUSHER_ENABLED,
    PUSHER_KEY,
    PUSHER_SECRET,
)

logger = logging.getLogger(__name__)

_pusher_client: Optional[pusher.Pusher] = None


def conversation_channel(conversation_id: int) -> str:
    return f"private-conversation-{conversation_id}"


def inbox_channel(user_id: int) -> str:
    return f"private-inbox-{user_id}"


def get_pusher_client() -> Optional[pusher.Pusher]:
    """Get or create Pusher client instance"""
    global _pusher_client

    if not PUSHER_ENABLED:
        return None

    if _pusher_client is None:
        if not all([PUSHER_APP_ID, PUSHER_KEY, PUSHER_SECRET]):
            logger.warning("Pusher credentials not fully configured")
            return None
        try:
            _pusher_client = pusher.Pusher(
                app_id=PUSHER_APP_ID,
                key=PUSHER_KEY,
                secret=PUSHER_SECRET,
                cluster=PUSHER_CLUSTER,
                ssl=True,
            )
            logger.info("Pusher client initialized")
        except Exception as e:
            logger.error(f"Failed to initialize Pusher: {e}")
            return None

    return _pusher_client


def trigger_sync(channel: str, event: str, data: Dict[str, Any]) -> bool:
    """
    Publish to a Pusher channel. Runs in background tasks and the chat
    worker's executor, so blocking is fine. Returns False on failure.
    """
    client = get_pusher_client()
    if not client:
        logger.debug("Pusher not available, event not published")
        return False

    try:
        client.trigger(channel, event, data)
        return True
    except Exception as e:
        logger.error(f"Failed to publish to Pusher channel {channel}: {e}")
        return False
