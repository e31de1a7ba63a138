"""
Realtime fan-out for conversation events.

Events are published after the database commit, to Redis topics (consumed
by the SSE streams) and to Pusher channels (consumed by mobile/web
clients). Every publish is best-effort: failures are logged and never
reach the sender.

Event payloads carry message ids and timestamps so clients can order and
de-duplicate on their side.
"""

import logging
from datetime import datetime
from typing import Any, Dict, List, Optional

from core.db import get_db_context
from models import MESSAGE_TYPE_IMAGE, Conversation, Message
from utils.onesignal_client import get_user_player_ids, is_user_active, send_push_notification
from utils.pricing import minor_to_usd
from utils.pusher_client import conversation_channel, inbox_channel, trigger_sync
from utils.redis_pubsub import conversation_topic, inbox_topic, publish_event_sync
from utils.storage import presign_get

logger = logging.getLogger(__name__)

EVENT_MESSAGE_CREATED = "message.created"
EVENT_MESSAGES_READ = "messages.read"
EVENT_CONVERSATION_UPDATED = "conversation.updated"

# Worker queue event types
QUEUE_MESSAGE_CREATED = "message_created"
QUEUE_MESSAGES_READ = "messages_read"

_PUSHER_EVENT_NAMES = {
    EVENT_MESSAGE_CREATED: "new-message",
    EVENT_MESSAGES_READ: "messages-read",
    EVENT_CONVERSATION_UPDATED: "conversation-updated",
}

PUSH_PREVIEW_LENGTH = 100


def _iso(value: Optional[datetime]) -> Optional[str]:
    return value.isoformat() if value else None


def serialize_message(message: Message) -> Dict[str, Any]:
    image_url = None
    if message.message_type == MESSAGE_TYPE_IMAGE:
        image_url = presign_get(message.content)
    return {
        "id": message.id,
        "conversation_id": message.conversation_id,
        "sender_id": message.sender_id,
        "recipient_id": message.recipient_id,
        "content": message.content,
        "message_type": message.message_type,
        "credits_cost": message.credits_cost,
        "earner_amount": minor_to_usd(message.earner_amount_minor or 0),
        "platform_fee": minor_to_usd(message.platform_fee_minor or 0),
        "created_at": _iso(message.created_at),
        "read_at": _iso(message.read_at),
        "image_url": image_url,
        "client_message_id": message.client_message_id,
    }


def build_message_created_event(
    message: Message, conversation: Conversation, conversation_created: bool
) -> Dict[str, Any]:
    return {
        "type": EVENT_MESSAGE_CREATED,
        "conversation_id": conversation.id,
        "message_id": message.id,
        "recipient_id": message.recipient_id,
        "conversation_created": conversation_created,
        "message": serialize_message(message),
        "conversation": {
            "id": conversation.id,
            "seeker_id": conversation.seeker_id,
            "earner_id": conversation.earner_id,
            "total_messages": conversation.total_messages,
            "last_message_at": _iso(conversation.last_message_at),
        },
    }


def build_messages_read_event(
    conversation_id: int, reader_id: int, message_ids: List[int], read_at: datetime
) -> Dict[str, Any]:
    return {
        "type": EVENT_MESSAGES_READ,
        "conversation_id": conversation_id,
        "reader_id": reader_id,
        "message_ids": list(message_ids),
        "read_at": _iso(read_at),
    }


def build_conversation_updated_event(event: Dict[str, Any]) -> Dict[str, Any]:
    conversation = event["conversation"]
    return {
        "type": EVENT_CONVERSATION_UPDATED,
        "conversation_id": conversation["id"],
        "message_id": event["message_id"],
        "last_message_at": conversation["last_message_at"],
        "total_messages": conversation["total_messages"],
    }


def _publish(topic: str, channel: str, event: Dict[str, Any]) -> None:
    publish_event_sync(topic, event)
    trigger_sync(channel, _PUSHER_EVENT_NAMES[event["type"]], event)


def fan_out_message_created(event: Dict[str, Any]) -> None:
    """Deliver a new message to the conversation topic and both inboxes."""
    conversation_id = event["conversation_id"]
    try:
        _publish(conversation_topic(conversation_id), conversation_channel(conversation_id), event)
        inbox_event = build_conversation_updated_event(event)
        for user_id in (event["conversation"]["seeker_id"], event["conversation"]["earner_id"]):
            _publish(inbox_topic(user_id), inbox_channel(user_id), inbox_event)
    except Exception as e:
        logger.error(f"Failed to fan out message {event.get('message_id')}: {e}")


def fan_out_messages_read(event: Dict[str, Any]) -> None:
    conversation_id = event["conversation_id"]
    try:
        _publish(conversation_topic(conversation_id), conversation_channel(conversation_id), event)
    except Exception as e:
        logger.error(f"Failed to fan out read receipt for conversation {conversation_id}: {e}")


def build_push_args(
    message: Message, conversation_created: bool, sender_username: str
) -> Dict[str, Any]:
    preview = "Sent you a photo" if message.message_type == MESSAGE_TYPE_IMAGE else message.content
    return {
        "recipient_id": message.recipient_id,
        "conversation_id": message.conversation_id,
        "message_id": message.id,
        "sender_id": message.sender_id,
        "sender_username": sender_username,
        "preview": preview[:PUSH_PREVIEW_LENGTH],
        "is_new_conversation": conversation_created,
    }


def send_push_if_needed_sync(
    recipient_id: int,
    conversation_id: int,
    message_id: int,
    sender_id: int,
    sender_username: str,
    preview: str,
    is_new_conversation: bool,
) -> None:
    """Push to the recipient's devices: in-app if they are active, system otherwise."""
    try:
        with get_db_context() as db:
            player_ids = get_user_player_ids(recipient_id, db, valid_only=True)
            if not player_ids:
                logger.debug(f"No valid OneSignal players for user {recipient_id}")
                return

            is_active = is_user_active(recipient_id, db)
            heading = f"New message from {sender_username}" if is_new_conversation else sender_username
            data = {
                "type": "message",
                "conversation_id": conversation_id,
                "message_id": message_id,
                "sender_id": sender_id,
            }
            send_push_notification(
                player_ids=player_ids,
                heading=heading,
                content=preview,
                data=data,
                is_in_app_notification=is_active,
                db=db,
            )
            logger.info(
                f"Sent {'in-app' if is_active else 'system'} push | recipient_id={recipient_id} | "
                f"conversation_id={conversation_id} | player_count={len(player_ids)}"
            )
    except Exception as e:
        logger.error(f"Failed to send push notification: {e}")


def handle_message_created(payload: Dict[str, Any]) -> None:
    fan_out_message_created(payload["event"])
    if payload.get("push_args"):
        send_push_if_needed_sync(**payload["push_args"])


def handle_messages_read(payload: Dict[str, Any]) -> None:
    fan_out_messages_read(payload["event"])


QUEUE_HANDLERS = {
    QUEUE_MESSAGE_CREATED: handle_message_created,
    QUEUE_MESSAGES_READ: handle_messages_read,
}
