"""Notifications domain repository layer."""

from datetime import datetime
from typing import List, Optional, Tuple

from sqlalchemy import desc, func
from sqlalchemy.orm import Session

from models import Conversation, OneSignalPlayer


def get_player_by_player_id(db: Session, player_id: str) -> Optional[OneSignalPlayer]:
    return db.query(OneSignalPlayer).filter(OneSignalPlayer.player_id == player_id).first()


def count_players_for_user(db: Session, user_id: int) -> int:
    return (
        db.query(func.count(OneSignalPlayer.id))
        .filter(OneSignalPlayer.user_id == user_id)
        .scalar()
        or 0
    )


def create_player(
    db: Session, *, user_id: int, player_id: str, platform: str, now: datetime
) -> OneSignalPlayer:
    new_player = OneSignalPlayer(
        user_id=user_id,
        player_id=player_id,
        platform=platform,
        is_valid=True,
        last_active=now,
    )
    db.add(new_player)
    return new_player


def list_players_for_user(
    db: Session, *, user_id: int, limit: int, offset: int
) -> List[OneSignalPlayer]:
    return (
        db.query(OneSignalPlayer)
        .filter(OneSignalPlayer.user_id == user_id)
        .order_by(desc(OneSignalPlayer.created_at))
        .offset(offset)
        .limit(limit)
        .all()
    )


def get_conversation_participants(
    db: Session, *, conversation_id: int
) -> Optional[Tuple[int, int]]:
    row = (
        db.query(Conversation.seeker_id, Conversation.earner_id)
        .filter(Conversation.id == conversation_id)
        .first()
    )
    return (row[0], row[1]) if row else None
