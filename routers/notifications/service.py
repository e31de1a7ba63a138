"""Notifications domain service layer."""

import logging
import os
import time
from datetime import datetime
from typing import Dict, Optional, Tuple

from fastapi import HTTPException, status
from sqlalchemy.exc import SQLAlchemyError

from core.config import ONESIGNAL_ENABLED, ONESIGNAL_MAX_PLAYERS_PER_USER, PUSHER_ENABLED
from core.rate_limit import default_rate_limiter
from utils.pusher_client import get_pusher_client

from . import repository as notifications_repository
from .schemas import ListPlayersResponse, OneSignalPlayerResponse, RegisterPlayerResponse

logger = logging.getLogger(__name__)

RATE_LIMIT_WINDOW_SECONDS = 60
RATE_LIMIT_MAX_REQUESTS = 20
VALID_PLATFORMS = ("ios", "android", "web")

_AUTH_CACHE_TTL_SECONDS = int(os.getenv("PUSHER_AUTH_CACHE_TTL_SECONDS", "5"))
_conversation_cache: Dict[int, Tuple[int, int, float]] = {}

CONVERSATION_CHANNEL_PREFIX = "private-conversation-"
INBOX_CHANNEL_PREFIX = "private-inbox-"


def _cache_get_conversation(conversation_id: int) -> Optional[Tuple[int, int]]:
    cached = _conversation_cache.get(conversation_id)
    if not cached:
        return None
    seeker_id, earner_id, expires_at = cached
    if expires_at > time.time():
        return seeker_id, earner_id
    _conversation_cache.pop(conversation_id, None)
    return None


def _cache_set_conversation(conversation_id: int, seeker_id: int, earner_id: int) -> None:
    if _AUTH_CACHE_TTL_SECONDS <= 0:
        return
    _conversation_cache[conversation_id] = (
        seeker_id,
        earner_id,
        time.time() + _AUTH_CACHE_TTL_SECONDS,
    )


def _channel_suffix_id(channel_name: str, prefix: str) -> int:
    suffix = channel_name[len(prefix):]
    if not suffix.isdigit():
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST, detail="Invalid channel name format"
        )
    return int(suffix)


def register_onesignal_player(
    db, *, current_user, ip: str, player_id: str, platform: str
) -> RegisterPlayerResponse:
    if not ONESIGNAL_ENABLED:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN, detail="OneSignal is disabled"
        )

    limit = default_rate_limiter.allow(
        key=f"osreg:{ip}:{current_user.account_id}",
        limit=RATE_LIMIT_MAX_REQUESTS,
        window_seconds=RATE_LIMIT_WINDOW_SECONDS,
    )
    if not limit.allowed:
        raise HTTPException(
            status_code=status.HTTP_429_TOO_MANY_REQUESTS,
            detail="Too many requests. Please try again later.",
            headers={"Retry-After": str(limit.retry_after_seconds)},
        )

    if platform not in VALID_PLATFORMS:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="Platform must be 'ios', 'android', or 'web'",
        )

    now = datetime.utcnow()

    existing = notifications_repository.get_player_by_player_id(db, player_id)
    if existing:
        if existing.user_id != current_user.account_id:
            raise HTTPException(
                status_code=status.HTTP_409_CONFLICT,
                detail="Player ID is already registered to another user",
            )

        existing.last_active = now
        existing.is_valid = True
        existing.platform = platform
        message = "Player updated"
    else:
        player_count = notifications_repository.count_players_for_user(db, current_user.account_id)
        if player_count >= ONESIGNAL_MAX_PLAYERS_PER_USER:
            raise HTTPException(
                status_code=status.HTTP_409_CONFLICT,
                detail="Player limit reached for this user",
            )
        notifications_repository.create_player(
            db,
            user_id=current_user.account_id,
            player_id=player_id,
            platform=platform,
            now=now,
        )
        message = "Player registered"

    try:
        db.commit()
    except SQLAlchemyError as exc:
        db.rollback()
        logger.error(f"Failed to register OneSignal player {player_id}: {exc}")
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Failed to register player",
        )

    logger.info(f"{message}: {player_id} for user {current_user.account_id}")
    return RegisterPlayerResponse(
        message=message, player_id=player_id, user_id=current_user.account_id
    )


def list_onesignal_players(db, *, current_user, limit: int, offset: int) -> ListPlayersResponse:
    if not ONESIGNAL_ENABLED:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN, detail="OneSignal is disabled"
        )

    players = notifications_repository.list_players_for_user(
        db, user_id=current_user.account_id, limit=limit, offset=offset
    )
    total = notifications_repository.count_players_for_user(db, current_user.account_id)

    return ListPlayersResponse(
        total=total,
        limit=limit,
        offset=offset,
        players=[OneSignalPlayerResponse.model_validate(p) for p in players],
    )


def pusher_authenticate(db, *, current_user, socket_id: str, channel_name: str) -> dict:
    """
    Authorize a private channel subscription.

    private-conversation-{id}: caller must be a participant
    private-inbox-{user_id}: caller must own the inbox
    """
    if not PUSHER_ENABLED:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN, detail="Pusher is not enabled"
        )

    if channel_name.startswith(CONVERSATION_CHANNEL_PREFIX):
        conversation_id = _channel_suffix_id(channel_name, CONVERSATION_CHANNEL_PREFIX)
        participants = _cache_get_conversation(conversation_id)
        if participants is None:
            participants = notifications_repository.get_conversation_participants(
                db, conversation_id=conversation_id
            )
            if participants is None:
                raise HTTPException(
                    status_code=status.HTTP_404_NOT_FOUND, detail="Conversation not found"
                )
            _cache_set_conversation(conversation_id, *participants)

        if current_user.account_id not in participants:
            raise HTTPException(
                status_code=status.HTTP_403_FORBIDDEN,
                detail="Not authorized for this conversation",
            )
    elif channel_name.startswith(INBOX_CHANNEL_PREFIX):
        owner_id = _channel_suffix_id(channel_name, INBOX_CHANNEL_PREFIX)
        if owner_id != current_user.account_id:
            raise HTTPException(
                status_code=status.HTTP_403_FORBIDDEN,
                detail="Not authorized for this inbox",
            )
    else:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST, detail="Unknown channel type"
        )

    pusher_client = get_pusher_client()
    if not pusher_client:
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Pusher client not available",
        )
    return pusher_client.authenticate(channel=channel_name, socket_id=socket_id)
