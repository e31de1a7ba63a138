import logging

from fastapi import APIRouter, BackgroundTasks, Depends, File, HTTPException, UploadFile, status
from fastapi.concurrency import run_in_threadpool
from sqlalchemy.orm import Session

from core.config import CHAT_IMAGE_MAX_MB, MESSAGING_ENABLED
from core.db import get_db
from models import MESSAGE_TYPE_IMAGE, User
from routers.dependencies import get_current_user
from utils.chat_redis import enqueue_chat_event
from utils.storage import (
    ALLOWED_IMAGE_TYPES,
    StorageError,
    build_chat_image_path,
    is_owned_chat_image_path,
    presign_get,
    upload_chat_image,
)

from .errors import MessagingError
from .events import (
    QUEUE_MESSAGE_CREATED,
    build_message_created_event,
    build_push_args,
    fan_out_message_created,
    send_push_if_needed_sync,
)
from .schemas import ImageUploadResponse, PricingResponse, SendMessageRequest, SendMessageResponse
from .service import get_display_username, message_to_response
from .service import get_pricing as service_get_pricing
from .service import send_message as service_send_message

logger = logging.getLogger(__name__)

router = APIRouter(tags=["Messages"])


def _require_messaging_enabled() -> None:
    if not MESSAGING_ENABLED:
        raise HTTPException(status_code=403, detail="Messaging is disabled")


@router.post("/send", response_model=SendMessageResponse)
async def send_message(
    request: SendMessageRequest,
    background_tasks: BackgroundTasks,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
):
    """
    Send a text or image message. The first message between a seeker and an
    earner opens their conversation. Seekers are charged per message.
    """
    _require_messaging_enabled()

    if request.message_type == MESSAGE_TYPE_IMAGE and not is_owned_chat_image_path(
        request.content.strip(), current_user.account_id
    ):
        raise HTTPException(status_code=400, detail="Image path does not belong to sender")

    try:
        result = await run_in_threadpool(
            service_send_message,
            db,
            sender=current_user,
            recipient_id=request.recipient_id,
            content=request.content,
            message_type=request.message_type,
            conversation_id=request.conversation_id,
            client_message_id=request.client_message_id,
        )
    except MessagingError as exc:
        raise exc.to_http() from exc

    message_payload = message_to_response(result.message)

    if not result.duplicate:
        event = build_message_created_event(
            result.message, result.conversation, result.conversation_created
        )
        push_args = build_push_args(
            result.message, result.conversation_created, get_display_username(current_user)
        )
        # Queue for the worker; fall back to in-process delivery
        event_enqueued = await enqueue_chat_event(
            QUEUE_MESSAGE_CREATED, {"event": event, "push_args": push_args}
        )
        if not event_enqueued:
            background_tasks.add_task(fan_out_message_created, event)
            background_tasks.add_task(send_push_if_needed_sync, **push_args)

    return SendMessageResponse(
        conversation_id=result.conversation.id,
        message=message_payload,
        conversation_created=result.conversation_created,
        duplicate=result.duplicate,
        credits_charged=result.credits_charged,
        new_balance=result.new_balance,
    )


@router.post("/images", response_model=ImageUploadResponse)
async def upload_image(
    file: UploadFile = File(...),
    current_user: User = Depends(get_current_user),
):
    """Upload an image; send its returned path as an image message."""
    _require_messaging_enabled()

    content_type = (file.content_type or "").lower()
    if content_type not in ALLOWED_IMAGE_TYPES:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail=f"Unsupported image type. Allowed: {', '.join(sorted(ALLOWED_IMAGE_TYPES))}",
        )

    data = await file.read()
    if not data:
        raise HTTPException(status_code=400, detail="Image file is empty")
    if len(data) > CHAT_IMAGE_MAX_MB * 1024 * 1024:
        raise HTTPException(
            status_code=status.HTTP_413_REQUEST_ENTITY_TOO_LARGE,
            detail=f"Image exceeds {CHAT_IMAGE_MAX_MB}MB limit",
        )

    path = build_chat_image_path(current_user.account_id, content_type)
    try:
        await run_in_threadpool(upload_chat_image, path, data, content_type)
    except StorageError as e:
        logger.error(f"Chat image upload failed for user {current_user.account_id}: {e}")
        raise HTTPException(status_code=503, detail="Image upload failed, please retry")

    return ImageUploadResponse(path=path, image_url=presign_get(path))


@router.get("/pricing", response_model=PricingResponse)
async def get_pricing():
    """Current per-message prices and the creator revenue share."""
    return service_get_pricing()
