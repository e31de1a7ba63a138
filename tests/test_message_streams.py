import asyncio
import base64
import json
import time

import pytest
from fastapi import HTTPException
from redis.exceptions import ConnectionError as RedisConnectionError

from core.rate_limit import RateLimiter
from models import Message
from routers.messaging import streams
from routers.messaging.service import send_message


class FakeRequest:
    def __init__(self, headers=None):
        self.headers = headers or {}
        self.disconnected = False

    async def is_disconnected(self):
        return self.disconnected


class FakeSubscription:
    """In-memory subscription that stays open after its events until cancelled."""

    def __init__(self, events=(), topic="conversation:1", fail_open=False):
        self.topic = topic
        self._events = list(events)
        self._fail_open = fail_open
        self.closed = False

    async def open(self):
        if self._fail_open:
            raise RedisConnectionError("connection refused")
        return self

    async def close(self):
        self.closed = True

    async def __aiter__(self):
        for event in self._events:
            yield event
        await asyncio.Event().wait()


def _parse(frame: bytes) -> dict:
    fields = {}
    for line in frame.decode().strip().splitlines():
        key, _, value = line.partition(": ")
        fields[key] = value
    if "data" in fields:
        fields["data"] = json.loads(fields["data"])
    return fields


async def _collect(stream, request, stop_after):
    frames = []
    async for frame in stream:
        frames.append(frame)
        if len(frames) >= stop_after:
            request.disconnected = True
    return frames


def _token(claims: dict) -> str:
    body = base64.urlsafe_b64encode(json.dumps(claims).encode()).decode().rstrip("=")
    return f"header.{body}.signature"


@pytest.mark.asyncio
async def test_stream_delivers_events_in_order_then_cleans_up():
    request = FakeRequest()
    subscription = FakeSubscription(
        [{"type": "message.created", "message_id": 1}, {"type": "messages.read", "message_ids": [1]}]
    )
    released = []
    hooked = []

    async def on_event(event):
        hooked.append(event["type"])

    frames = await _collect(
        streams.event_stream(
            request,
            subscription,
            user_id=1,
            on_event=on_event,
            release=lambda: released.append(True),
        ),
        request,
        stop_after=3,
    )

    assert frames[0] == b"retry: 5000\n\n"
    first = _parse(frames[1])
    assert first["id"] == "1"
    assert first["data"]["type"] == "message.created"
    assert _parse(frames[2])["data"]["type"] == "messages.read"
    assert hooked == ["message.created", "messages.read"]
    assert subscription.closed is True
    assert released == [True]


@pytest.mark.asyncio
async def test_stream_falls_back_to_heartbeats_without_redis(monkeypatch):
    monkeypatch.setattr(streams, "SSE_HEARTBEAT_SECONDS", 0.01)
    request = FakeRequest()
    subscription = FakeSubscription(fail_open=True)

    frames = await _collect(
        streams.event_stream(request, subscription, user_id=1), request, stop_after=2
    )

    heartbeat = _parse(frames[1])["data"]
    assert heartbeat == {"type": "heartbeat", "relay_lag": True, "redis_status": "unavailable"}
    assert subscription.closed is True


@pytest.mark.asyncio
async def test_stream_ends_when_token_expires(monkeypatch):
    monkeypatch.setattr(streams, "SSE_HEARTBEAT_SECONDS", 0.01)
    request = FakeRequest()
    subscription = FakeSubscription()

    frames = [
        frame
        async for frame in streams.event_stream(
            request, subscription, user_id=1, token_expiry=time.time() - 1
        )
    ]

    assert len(frames) == 2
    assert _parse(frames[1])["data"]["type"] == "auth_expired"
    assert subscription.closed is True


def test_sse_format_omits_empty_fields():
    assert streams.sse_format({"a": 1}) == b'data: {"a":1}\n\n'
    assert streams.sse_format({"a": 1}, event="x", id_="7") == b'event: x\nid: 7\ndata: {"a":1}\n\n'


def test_token_expiry_read_from_claims():
    assert streams.get_token_expiry(_token({"exp": 1700000000})) == 1700000000.0
    assert streams.get_token_expiry(_token({"sub": "u"})) is None
    assert streams.get_token_expiry("not-a-jwt") is None


def test_query_token_is_used_only_without_header(monkeypatch):
    header_request = FakeRequest({"authorization": "Bearer from-header"})
    assert streams._resolve_token(header_request, "from-query") == "from-header"
    assert streams._resolve_token(FakeRequest(), "from-query") == "from-query"

    monkeypatch.setattr(streams, "SSE_ALLOW_QUERY_TOKEN", False)
    with pytest.raises(HTTPException) as exc_info:
        streams._resolve_token(FakeRequest(), "from-query")
    assert exc_info.value.status_code == 401


def test_concurrent_stream_limit(monkeypatch):
    monkeypatch.setattr(streams, "SSE_MAX_CONCURRENT_STREAMS_PER_USER", 2)
    streams._acquire_slot(42, 1)
    streams._acquire_slot(42, 2)
    try:
        with pytest.raises(HTTPException) as exc_info:
            streams._acquire_slot(42, 3)
        assert exc_info.value.status_code == 429
    finally:
        streams._release_slot(42, 1)
        streams._release_slot(42, 2)
    assert 42 not in streams._active_connections


@pytest.fixture
def conversation_message(test_db, seeker, earner):
    return send_message(
        test_db,
        sender=seeker,
        recipient_id=earner.account_id,
        content="are you there?",
        rate_limiter=RateLimiter(redis_url=None),
    )


def test_authenticate_stream_user_checks_participation(
    monkeypatch, db_context, conversation_message
):
    monkeypatch.setattr(streams, "get_db_context", db_context)
    conversation_id = conversation_message.conversation.id

    monkeypatch.setattr(streams, "validate_descope_jwt", lambda token: {"userId": "earner_1"})
    assert streams.authenticate_stream_user("t", conversation_id) == conversation_message.message.recipient_id

    monkeypatch.setattr(streams, "validate_descope_jwt", lambda token: {"userId": "seeker_2"})
    with pytest.raises(HTTPException) as exc_info:
        streams.authenticate_stream_user("t", conversation_id)
    assert exc_info.value.status_code == 403

    monkeypatch.setattr(
        streams, "validate_descope_jwt", lambda token: {"userId": "unknown", "loginIds": ["nobody@example.com"]}
    )
    with pytest.raises(HTTPException) as exc_info:
        streams.authenticate_stream_user("t")
    assert exc_info.value.status_code == 401


def test_streamed_message_is_marked_read_once(monkeypatch, test_db, db_context, earner, conversation_message):
    fanned_out = []
    monkeypatch.setattr(streams, "get_db_context", db_context)
    monkeypatch.setattr(streams, "fan_out_messages_read", fanned_out.append)
    conversation_id = conversation_message.conversation.id
    message_id = conversation_message.message.id
    viewer_id = earner.account_id
    # Release the read transaction so the second connection can write
    test_db.commit()

    streams.mark_streamed_message_read(conversation_id, viewer_id, message_id)
    streams.mark_streamed_message_read(conversation_id, viewer_id, message_id)

    test_db.expire_all()
    assert test_db.get(Message, message_id).read_at is not None
    assert len(fanned_out) == 1
    assert fanned_out[0]["message_ids"] == [message_id]
    assert fanned_out[0]["reader_id"] == viewer_id


@pytest.mark.asyncio
async def test_stream_closed_after_first_frame_releases_slot():
    streams._acquire_slot(7, 123)
    subscription = FakeSubscription()
    stream = streams.event_stream(
        FakeRequest(), subscription, user_id=7, release=lambda: streams._release_slot(7, 123)
    )

    assert await stream.__anext__() == b"retry: 5000\n\n"
    await stream.aclose()

    assert subscription.closed is True
    assert 7 not in streams._active_connections
