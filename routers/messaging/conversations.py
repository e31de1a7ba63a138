from typing import Optional

from fastapi import APIRouter, BackgroundTasks, Depends, Query
from sqlalchemy.orm import Session

from core.config import MESSAGE_HISTORY_LIMIT
from core.db import get_db
from models import User
from routers.dependencies import get_current_user

from .errors import MessagingError
from .events import build_messages_read_event, fan_out_messages_read
from .schemas import (
    ConversationListResponse,
    ConversationResponse,
    MarkReadResponse,
    MessageListResponse,
    UnreadCountResponse,
)
from .service import MarkReadResult
from .service import count_total_unread as service_count_total_unread
from .service import get_conversation_detail as service_get_conversation_detail
from .service import get_messages as service_get_messages
from .service import list_conversations as service_list_conversations
from .service import mark_conversation_read as service_mark_conversation_read

router = APIRouter(tags=["Conversations"])


def _schedule_read_fan_out(background_tasks: BackgroundTasks, result: MarkReadResult) -> None:
    if not result.message_ids:
        return
    event = build_messages_read_event(
        result.conversation_id, result.reader_id, result.message_ids, result.read_at
    )
    background_tasks.add_task(fan_out_messages_read, event)


@router.get("/conversations", response_model=ConversationListResponse)
def list_conversations(
    limit: int = Query(20, ge=1, le=100),
    offset: int = Query(0, ge=0),
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
):
    """Conversations for the current user, most recently active first."""
    return service_list_conversations(db, current_user=current_user, limit=limit, offset=offset)


@router.get("/conversations/{conversation_id}", response_model=ConversationResponse)
def get_conversation(
    conversation_id: int,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
):
    try:
        return service_get_conversation_detail(
            db, current_user=current_user, conversation_id=conversation_id
        )
    except MessagingError as exc:
        raise exc.to_http() from exc


@router.get("/conversations/{conversation_id}/messages", response_model=MessageListResponse)
def get_messages(
    conversation_id: int,
    background_tasks: BackgroundTasks,
    limit: int = Query(50, ge=1, le=MESSAGE_HISTORY_LIMIT),
    before_id: Optional[int] = Query(None, description="Return messages older than this ID"),
    mark_read: bool = Query(True, description="Mark incoming messages as read"),
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
):
    """
    Message history, oldest first. Fetching with mark_read (the default)
    counts as viewing the conversation and stamps incoming messages read.
    """
    try:
        page, read_result = service_get_messages(
            db,
            current_user=current_user,
            conversation_id=conversation_id,
            limit=limit,
            before_id=before_id,
            mark_read=mark_read,
        )
    except MessagingError as exc:
        raise exc.to_http() from exc

    _schedule_read_fan_out(background_tasks, read_result)
    return page


@router.post("/conversations/{conversation_id}/read", response_model=MarkReadResponse)
def mark_conversation_read(
    conversation_id: int,
    background_tasks: BackgroundTasks,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
):
    """Mark every incoming message in the conversation as read. Idempotent."""
    try:
        result = service_mark_conversation_read(
            db, conversation_id=conversation_id, viewer_id=current_user.account_id
        )
    except MessagingError as exc:
        raise exc.to_http() from exc

    _schedule_read_fan_out(background_tasks, result)
    return MarkReadResponse(
        conversation_id=conversation_id,
        marked_read=result.count,
        message_ids=result.message_ids,
        read_at=result.read_at,
    )


@router.get("/unread-count", response_model=UnreadCountResponse)
def get_unread_count(
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
):
    return UnreadCountResponse(
        unread_count=service_count_total_unread(db, viewer_id=current_user.account_id)
    )
