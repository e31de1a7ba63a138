"""Messaging repository layer."""

from datetime import datetime
from typing import Dict, Iterable, List, Optional

from sqlalchemy import and_, func, or_, update
from sqlalchemy.orm import Session

from models import Conversation, Message, User


def sorted_pair(user_a: int, user_b: int):
    return (user_a, user_b) if user_a <= user_b else (user_b, user_a)


def get_user(db: Session, *, user_id: int) -> Optional[User]:
    return db.query(User).filter(User.account_id == user_id).first()


def get_users_by_ids(db: Session, *, user_ids: Iterable[int]) -> Dict[int, User]:
    ids = list(set(user_ids))
    if not ids:
        return {}
    return {u.account_id: u for u in db.query(User).filter(User.account_id.in_(ids)).all()}


def get_conversation(db: Session, *, conversation_id: int) -> Optional[Conversation]:
    return db.query(Conversation).filter(Conversation.id == conversation_id).first()


def get_conversation_by_users(db: Session, *, user_a: int, user_b: int) -> Optional[Conversation]:
    low, high = sorted_pair(user_a, user_b)
    return (
        db.query(Conversation)
        .filter(Conversation.user_low_id == low, Conversation.user_high_id == high)
        .first()
    )


def add_conversation(db: Session, *, seeker_id: int, earner_id: int) -> Conversation:
    low, high = sorted_pair(seeker_id, earner_id)
    conversation = Conversation(
        seeker_id=seeker_id,
        earner_id=earner_id,
        payer_user_id=seeker_id,
        user_low_id=low,
        user_high_id=high,
        total_messages=0,
        total_credits_spent=0,
    )
    db.add(conversation)
    return conversation


def increment_conversation_totals(
    db: Session, *, conversation_id: int, credits_cost: int, at: datetime
) -> int:
    """Bump totals in one statement so concurrent sends never lose an update."""
    result = db.execute(
        update(Conversation)
        .where(Conversation.id == conversation_id)
        .values(
            total_messages=Conversation.total_messages + 1,
            total_credits_spent=Conversation.total_credits_spent + credits_cost,
            last_message_at=at,
        )
        .execution_options(synchronize_session=False)
    )
    return result.rowcount


def list_conversations_for_user(
    db: Session, *, user_id: int, limit: int, offset: int
) -> List[Conversation]:
    return (
        db.query(Conversation)
        .filter(or_(Conversation.seeker_id == user_id, Conversation.earner_id == user_id))
        .order_by(
            Conversation.last_message_at.is_(None),
            Conversation.last_message_at.desc(),
            Conversation.id.desc(),
        )
        .offset(offset)
        .limit(limit)
        .all()
    )


def count_conversations_for_user(db: Session, *, user_id: int) -> int:
    return (
        db.query(func.count(Conversation.id))
        .filter(or_(Conversation.seeker_id == user_id, Conversation.earner_id == user_id))
        .scalar()
        or 0
    )


def get_message_by_client_id(
    db: Session, *, conversation_id: int, sender_id: int, client_message_id: str
) -> Optional[Message]:
    return (
        db.query(Message)
        .filter(
            Message.conversation_id == conversation_id,
            Message.sender_id == sender_id,
            Message.client_message_id == client_message_id,
        )
        .first()
    )


def list_messages(
    db: Session, *, conversation_id: int, limit: int, before_id: Optional[int] = None
) -> List[Message]:
    """Newest page first from the database, returned oldest to newest."""
    query = db.query(Message).filter(Message.conversation_id == conversation_id)
    if before_id is not None:
        query = query.filter(Message.id < before_id)
    rows = query.order_by(Message.created_at.desc(), Message.id.desc()).limit(limit).all()
    rows.reverse()
    return rows


def get_last_messages(db: Session, *, conversation_ids: List[int]) -> Dict[int, Message]:
    if not conversation_ids:
        return {}
    latest = (
        db.query(Message.conversation_id, func.max(Message.id).label("max_id"))
        .filter(Message.conversation_id.in_(conversation_ids))
        .group_by(Message.conversation_id)
        .subquery()
    )
    rows = db.query(Message).join(
        latest,
        and_(Message.conversation_id == latest.c.conversation_id, Message.id == latest.c.max_id),
    )
    return {m.conversation_id: m for m in rows.all()}


def unread_ids(db: Session, *, conversation_id: int, viewer_id: int) -> List[int]:
    return [
        row[0]
        for row in db.query(Message.id)
        .filter(
            Message.conversation_id == conversation_id,
            Message.recipient_id == viewer_id,
            Message.read_at.is_(None),
        )
        .order_by(Message.id)
        .all()
    ]


def set_read_at(
    db: Session, *, conversation_id: int, viewer_id: int, message_ids: List[int], at: datetime
) -> List[int]:
    """
    Stamp rows that are still unread and return the ids this statement
    actually wrote, so read_at is written at most once per message.
    """
    if not message_ids:
        return []
    stmt = (
        update(Message)
        .where(
            Message.conversation_id == conversation_id,
            Message.recipient_id == viewer_id,
            Message.read_at.is_(None),
            Message.id.in_(message_ids),
        )
        .values(read_at=at)
        .execution_options(synchronize_session=False)
    )
    if db.get_bind().dialect.update_returning:
        return sorted(row[0] for row in db.execute(stmt.returning(Message.id)))

    db.execute(stmt)
    return [
        row[0]
        for row in db.query(Message.id)
        .filter(Message.id.in_(message_ids), Message.read_at == at)
        .order_by(Message.id)
        .all()
    ]


def count_unread(db: Session, *, conversation_id: int, viewer_id: int) -> int:
    return (
        db.query(func.count(Message.id))
        .filter(
            Message.conversation_id == conversation_id,
            Message.recipient_id == viewer_id,
            Message.read_at.is_(None),
        )
        .scalar()
        or 0
    )


def count_unread_by_conversation(
    db: Session, *, conversation_ids: List[int], viewer_id: int
) -> Dict[int, int]:
    if not conversation_ids:
        return {}
    rows = (
        db.query(Message.conversation_id, func.count(Message.id))
        .filter(
            Message.conversation_id.in_(conversation_ids),
            Message.recipient_id == viewer_id,
            Message.read_at.is_(None),
        )
        .group_by(Message.conversation_id)
        .all()
    )
    return {conversation_id: count for conversation_id, count in rows}


def count_total_unread(db: Session, *, viewer_id: int) -> int:
    return (
        db.query(func.count(Message.id))
        .filter(Message.recipient_id == viewer_id, Message.read_at.is_(None))
        .scalar()
        or 0
    )
