"""
Server-sent event streams for conversations and inboxes.

A stream holds a Redis subscription for as long as the client stays
connected, interleaved with heartbeats. The subscription is always closed
when the stream ends, whichever side ends it.
"""

import asyncio
import hashlib
import json
import logging
import time
from collections import defaultdict
from typing import Any, AsyncGenerator, AsyncIterator, Awaitable, Callable, Dict, Optional, Set

from fastapi import APIRouter, HTTPException, Query, Request, status
from fastapi.concurrency import run_in_threadpool
from fastapi.responses import StreamingResponse
from redis.exceptions import RedisError
from sqlalchemy.exc import SQLAlchemyError

from auth import decode_jwt_payload, validate_descope_jwt
from core.config import (
    SSE_ALLOW_QUERY_TOKEN,
    SSE_HEARTBEAT_SECONDS,
    SSE_MAX_CONCURRENT_STREAMS_PER_USER,
    SSE_MAX_MISSED_HEARTBEATS,
    SSE_RETRY_MS,
)
from core.db import get_db_context
from routers.dependencies import extract_bearer_token, resolve_user
from utils.redis_pubsub import Subscription, conversation_topic, inbox_topic, subscribe

from .errors import MessagingError
from .events import EVENT_MESSAGE_CREATED, build_messages_read_event, fan_out_messages_read
from .service import get_conversation_for_participant, mark_messages_read

logger = logging.getLogger(__name__)

router = APIRouter(tags=["Message Streams"])

_active_connections: Dict[int, Set[int]] = defaultdict(set)  # user_id -> connection ids

EventHook = Callable[[Dict[str, Any]], Awaitable[None]]


def sse_format(data: dict, event: Optional[str] = None, id_: Optional[str] = None) -> bytes:
    """Build an SSE frame."""
    chunks = []
    if event:
        chunks.append(f"event: {event}\n")
    if id_:
        chunks.append(f"id: {id_}\n")
    payload = json.dumps(data, separators=(",", ":"), default=str)
    chunks.append(f"data: {payload}\n\n")
    return "".join(chunks).encode("utf-8")


def sse_retry(ms: int = SSE_RETRY_MS) -> bytes:
    return f"retry: {ms}\n\n".encode("utf-8")


def hash_user_id(user_id: int) -> str:
    """Hash user ID for logging (privacy)."""
    return hashlib.sha256(str(user_id).encode()).hexdigest()[:8]


def get_token_expiry(token: str) -> Optional[float]:
    exp = decode_jwt_payload(token).get("exp")
    try:
        return float(exp) if exp else None
    except (TypeError, ValueError):
        return None


def _resolve_token(request: Request, token_param: Optional[str]) -> str:
    token = extract_bearer_token(request)
    if token:
        return token
    if token_param and SSE_ALLOW_QUERY_TOKEN:
        return token_param
    if token_param:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED, detail="Use Authorization header for SSE"
        )
    raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Missing token")


def authenticate_stream_user(token: str, conversation_id: Optional[int] = None) -> int:
    """
    Resolve the stream's user without holding a DB session for the life of
    the stream. With conversation_id, also require participation.
    """
    user_info = validate_descope_jwt(token)
    with get_db_context() as db:
        user = resolve_user(db, user_info, create=False)
        if user is None:
            raise HTTPException(status_code=401, detail="User not found")
        if conversation_id is not None:
            try:
                get_conversation_for_participant(
                    db, conversation_id=conversation_id, user_id=user.account_id
                )
            except MessagingError as exc:
                raise exc.to_http() from exc
        return user.account_id


def mark_streamed_message_read(conversation_id: int, viewer_id: int, message_id: int) -> None:
    """A message delivered to an open conversation stream counts as seen."""
    with get_db_context() as db:
        result = mark_messages_read(
            db, conversation_id=conversation_id, viewer_id=viewer_id, message_ids=[message_id]
        )
    if result.message_ids:
        fan_out_messages_read(
            build_messages_read_event(
                conversation_id, viewer_id, result.message_ids, result.read_at
            )
        )


def _acquire_slot(user_id: int, connection_id: int) -> None:
    active = _active_connections[user_id]
    if len(active) >= SSE_MAX_CONCURRENT_STREAMS_PER_USER:
        logger.warning(f"Stream limit exceeded for user {hash_user_id(user_id)}")
        raise HTTPException(
            status_code=429,
            detail=f"Maximum {SSE_MAX_CONCURRENT_STREAMS_PER_USER} concurrent streams allowed per user",
        )
    active.add(connection_id)


def _release_slot(user_id: int, connection_id: int) -> None:
    _active_connections[user_id].discard(connection_id)
    if not _active_connections[user_id]:
        del _active_connections[user_id]


async def _next_event(events: AsyncIterator[Dict[str, Any]]) -> Optional[Dict[str, Any]]:
    """Next event, or None once the subscription is exhausted."""
    try:
        return await events.__anext__()
    except StopAsyncIteration:
        return None


async def event_stream(
    request: Request,
    subscription: Subscription,
    *,
    user_id: int,
    token_expiry: Optional[float] = None,
    on_event: Optional[EventHook] = None,
    release: Optional[Callable[[], None]] = None,
) -> AsyncGenerator[bytes, None]:
    """
    Multiplex the subscription with heartbeats until the client goes away,
    the token expires or too many heartbeats are missed.
    """
    user_id_hash = hash_user_id(user_id)
    heartbeat: Optional[asyncio.Task] = None
    event_task: Optional[asyncio.Task] = None
    max_heartbeat_interval = SSE_HEARTBEAT_SECONDS * (SSE_MAX_MISSED_HEARTBEATS + 1)

    try:
        yield sse_retry()

        events = None
        try:
            await subscription.open()
            events = subscription.__aiter__()
        except (RedisError, OSError) as e:
            logger.warning(f"Redis unavailable for {subscription.topic}, heartbeats only: {e}")

        heartbeat = asyncio.create_task(asyncio.sleep(SSE_HEARTBEAT_SECONDS))
        if events is not None:
            event_task = asyncio.create_task(_next_event(events))
        last_heartbeat_time = time.monotonic()

        while True:
            if await request.is_disconnected():
                logger.debug(f"SSE client disconnected: user={user_id_hash}")
                break

            if time.monotonic() - last_heartbeat_time > max_heartbeat_interval:
                logger.warning(f"Too many missed heartbeats for user {user_id_hash}, closing")
                break

            tasks = {heartbeat}
            if event_task is not None:
                tasks.add(event_task)
            done, _ = await asyncio.wait(tasks, return_when=asyncio.FIRST_COMPLETED)

            if heartbeat in done:
                if token_expiry is not None and time.time() >= token_expiry:
                    logger.info(f"Token expired for user {user_id_hash}, disconnecting")
                    yield sse_format({"type": "auth_expired", "message": "Token expired"})
                    break
                last_heartbeat_time = time.monotonic()
                redis_status = "available" if event_task is not None else "unavailable"
                yield sse_format(
                    {
                        "type": "heartbeat",
                        "relay_lag": event_task is None,
                        "redis_status": redis_status,
                    }
                )
                heartbeat = asyncio.create_task(asyncio.sleep(SSE_HEARTBEAT_SECONDS))

            if event_task is not None and event_task in done:
                try:
                    event = event_task.result()
                except (RedisError, OSError) as e:
                    logger.error(f"Error reading {subscription.topic}: {e}")
                    event_task = None
                    continue
                if event is None:
                    logger.debug(f"Subscription to {subscription.topic} ended")
                    event_task = None
                    continue

                message_id = event.get("message_id")
                yield sse_format(event, id_=str(message_id) if message_id else None)
                if on_event is not None:
                    await on_event(event)
                event_task = asyncio.create_task(_next_event(events))
    except asyncio.CancelledError:
        logger.debug(f"SSE stream cancelled: user={user_id_hash}")
        raise
    finally:
        pending = [task for task in (heartbeat, event_task) if task is not None]
        for task in pending:
            task.cancel()
        for task in pending:
            try:
                await task
            except asyncio.CancelledError:
                pass
            except (RedisError, OSError) as e:
                logger.debug(f"Pending read on {subscription.topic} failed during close: {e}")
        await subscription.close()
        if release is not None:
            release()
        logger.info(f"SSE stream closed: user={user_id_hash} topic={subscription.topic}")


def _streaming_response(body: AsyncGenerator[bytes, None]) -> StreamingResponse:
    return StreamingResponse(
        body,
        media_type="text/event-stream",
        headers={
            "Cache-Control": "no-cache, no-transform",
            "Connection": "keep-alive",
            "X-Accel-Buffering": "no",
        },
    )


async def _open_stream(
    request: Request,
    token_param: Optional[str],
    *,
    topic_for: Callable[[int], str],
    conversation_id: Optional[int] = None,
    make_hook: Optional[Callable[[int], EventHook]] = None,
) -> StreamingResponse:
    token = _resolve_token(request, token_param)
    user_id = await run_in_threadpool(authenticate_stream_user, token, conversation_id)

    connection_id = id(request)
    _acquire_slot(user_id, connection_id)
    logger.info(f"SSE stream opened: user={hash_user_id(user_id)}")

    return _streaming_response(
        event_stream(
            request,
            subscribe(topic_for(user_id)),
            user_id=user_id,
            token_expiry=get_token_expiry(token),
            on_event=make_hook(user_id) if make_hook else None,
            release=lambda: _release_slot(user_id, connection_id),
        )
    )


@router.get("/conversations/{conversation_id}/stream")
async def conversation_stream(
    conversation_id: int,
    request: Request,
    token: Optional[str] = Query(default=None),
):
    """
    Live events for one conversation: new messages and read receipts.
    Messages addressed to the viewer are marked read as they are delivered.
    """

    def make_hook(viewer_id: int) -> EventHook:
        async def on_event(event: Dict[str, Any]) -> None:
            if event.get("type") != EVENT_MESSAGE_CREATED:
                return
            if event.get("recipient_id") != viewer_id:
                return
            try:
                await run_in_threadpool(
                    mark_streamed_message_read, conversation_id, viewer_id, event["message_id"]
                )
            except SQLAlchemyError as e:
                logger.error(f"Failed to mark streamed message {event.get('message_id')} read: {e}")

        return on_event

    return await _open_stream(
        request,
        token,
        topic_for=lambda _user_id: conversation_topic(conversation_id),
        conversation_id=conversation_id,
        make_hook=make_hook,
    )


@router.get("/inbox/stream")
async def inbox_stream(request: Request, token: Optional[str] = Query(default=None)):
    """Live inbox updates for the current user across all conversations."""
    return await _open_stream(request, token, topic_for=inbox_topic)
