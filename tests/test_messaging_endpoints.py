import pytest
from fastapi import FastAPI
from fastapi.testclient import TestClient

from core.db import get_db
from routers.dependencies import get_current_user
from routers.messaging import api as messaging_api
from routers.messaging import conversations as conversations_router
from routers.messaging import messages as messages_router
from routers.messaging.events import QUEUE_MESSAGE_CREATED


@pytest.fixture
def acting(seeker):
    """Mutable holder for the authenticated user."""
    return {"user": seeker}


@pytest.fixture
def queued(monkeypatch):
    calls = []

    async def fake_enqueue(event_type, payload):
        calls.append((event_type, payload))
        return True

    monkeypatch.setattr(messages_router, "enqueue_chat_event", fake_enqueue)
    return calls


@pytest.fixture
def read_fan_out(monkeypatch):
    calls = []
    monkeypatch.setattr(conversations_router, "fan_out_messages_read", calls.append)
    return calls


@pytest.fixture
def client(test_db, acting, queued, read_fan_out):
    app = FastAPI()
    app.include_router(messaging_api.router)

    def override_get_db():
        yield test_db

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_current_user] = lambda: acting["user"]

    with TestClient(app) as test_client:
        yield test_client

    app.dependency_overrides = {}


def _send(client, recipient_id, content="hello", **extra):
    return client.post(
        "/messages/send", json={"recipient_id": recipient_id, "content": content, **extra}
    )


def test_send_message_success(client, earner, queued):
    response = _send(client, earner.account_id, client_message_id="abc")

    assert response.status_code == 200
    body = response.json()
    assert body["conversation_created"] is True
    assert body["duplicate"] is False
    assert body["credits_charged"] == 5
    assert body["new_balance"] == 95
    assert body["message"]["content"] == "hello"
    assert body["message"]["earner_amount"] == 0.35

    assert len(queued) == 1
    event_type, payload = queued[0]
    assert event_type == QUEUE_MESSAGE_CREATED
    assert payload["event"]["message_id"] == body["message"]["id"]
    assert payload["push_args"]["recipient_id"] == earner.account_id
    assert payload["push_args"]["sender_username"] == "seeker1"


def test_send_falls_back_to_background_delivery(client, earner, monkeypatch):
    delivered = []

    async def enqueue_fails(event_type, payload):
        return False

    monkeypatch.setattr(messages_router, "enqueue_chat_event", enqueue_fails)
    monkeypatch.setattr(messages_router, "fan_out_message_created", lambda event: delivered.append(event))
    monkeypatch.setattr(
        messages_router, "send_push_if_needed_sync", lambda **kwargs: delivered.append(kwargs)
    )

    response = _send(client, earner.account_id)

    assert response.status_code == 200
    assert delivered[0]["type"] == "message.created"
    assert delivered[1]["recipient_id"] == earner.account_id


def test_duplicate_send_is_not_fanned_out_twice(client, earner, queued):
    first = _send(client, earner.account_id, client_message_id="dup-1").json()
    second = _send(
        client, earner.account_id, client_message_id="dup-1", conversation_id=first["conversation_id"]
    )

    assert second.status_code == 200
    assert second.json()["duplicate"] is True
    assert second.json()["message"]["id"] == first["message"]["id"]
    assert len(queued) == 1


def test_insufficient_credits_response(client, acting, broke_seeker, earner, queued):
    acting["user"] = broke_seeker

    response = _send(client, earner.account_id)

    assert response.status_code == 402
    detail = response.json()["detail"]
    assert detail["code"] == "insufficient_credits"
    assert detail["retryable"] is False
    assert detail["required"] == 5
    assert detail["available"] == 0
    assert "Top up" in detail["message"]
    assert queued == []


def test_empty_message_rejected(client, earner):
    response = _send(client, earner.account_id, content="   ")

    assert response.status_code == 400
    assert response.json()["detail"]["code"] == "empty_message"


def test_unknown_message_type_fails_validation(client, earner):
    response = _send(client, earner.account_id, message_type="video")
    assert response.status_code == 422


def test_image_path_must_belong_to_sender(client, earner):
    response = _send(client, earner.account_id, content="999/1-abc.png", message_type="image")
    assert response.status_code == 400


def test_rate_limit_sets_retry_after(client, earner, monkeypatch):
    from core.rate_limit import RateLimitResult, default_rate_limiter

    monkeypatch.setattr(
        default_rate_limiter,
        "allow",
        lambda **kwargs: RateLimitResult(allowed=False, retry_after_seconds=30),
    )

    response = _send(client, earner.account_id)

    assert response.status_code == 429
    assert response.headers["Retry-After"] == "30"
    assert response.json()["detail"]["retryable"] is True


def test_messaging_disabled(client, earner, monkeypatch):
    monkeypatch.setattr(messages_router, "MESSAGING_ENABLED", False)
    assert _send(client, earner.account_id).status_code == 403


def test_conversation_list_for_earner(client, acting, seeker, earner):
    _send(client, earner.account_id, content="first")
    _send(client, earner.account_id, content="second")
    acting["user"] = earner

    response = client.get("/messages/conversations")

    assert response.status_code == 200
    body = response.json()
    assert body["total"] == 1
    conversation = body["conversations"][0]
    assert conversation["unread_count"] == 2
    assert conversation["total_messages"] == 2
    assert conversation["total_credits_spent"] == 10
    assert conversation["other_user"]["username"] == "seeker1"
    assert conversation["last_message"]["content"] == "second"


def test_conversation_detail_access(client, acting, earner, broke_seeker):
    conversation_id = _send(client, earner.account_id).json()["conversation_id"]

    assert client.get(f"/messages/conversations/{conversation_id}").status_code == 200

    acting["user"] = broke_seeker
    response = client.get(f"/messages/conversations/{conversation_id}")
    assert response.status_code == 403
    assert response.json()["detail"]["code"] == "forbidden"

    assert client.get("/messages/conversations/99999").status_code == 404


def test_history_marks_incoming_read(client, acting, earner, read_fan_out):
    conversation_id = _send(client, earner.account_id).json()["conversation_id"]
    acting["user"] = earner

    response = client.get(f"/messages/conversations/{conversation_id}/messages")

    assert response.status_code == 200
    body = response.json()
    assert body["marked_read"] == 1
    assert body["messages"][0]["content"] == "hello"
    assert len(read_fan_out) == 1
    assert read_fan_out[0]["reader_id"] == earner.account_id
    assert client.get("/messages/unread-count").json() == {"unread_count": 0}


def test_explicit_mark_read(client, acting, earner, read_fan_out):
    conversation_id = _send(client, earner.account_id).json()["conversation_id"]
    acting["user"] = earner
    assert client.get("/messages/unread-count").json() == {"unread_count": 1}

    first = client.post(f"/messages/conversations/{conversation_id}/read")
    second = client.post(f"/messages/conversations/{conversation_id}/read")

    assert first.status_code == 200
    assert first.json()["marked_read"] == 1
    assert second.json()["marked_read"] == 0
    assert len(read_fan_out) == 1


def test_pricing(client):
    assert client.get("/messages/pricing").json() == {
        "text_credits": 5,
        "image_credits": 10,
        "credit_value_usd": 0.1,
        "creator_share_percent": 70,
    }


def test_image_upload(client, seeker, monkeypatch):
    uploads = []
    monkeypatch.setattr(
        messages_router, "upload_chat_image", lambda path, data, content_type: uploads.append((path, data)) or path
    )
    monkeypatch.setattr(messages_router, "presign_get", lambda key: f"https://signed/{key}")

    response = client.post(
        "/messages/images", files={"file": ("photo.png", b"\x89PNG-bytes", "image/png")}
    )

    assert response.status_code == 200
    body = response.json()
    assert body["path"].startswith(f"{seeker.account_id}/")
    assert body["path"].endswith(".png")
    assert body["image_url"] == f"https://signed/{body['path']}"
    assert uploads == [(body["path"], b"\x89PNG-bytes")]


def test_image_upload_rejects_other_types(client):
    response = client.post(
        "/messages/images", files={"file": ("notes.txt", b"hello", "text/plain")}
    )
    assert response.status_code == 400
