import pytest
from fastapi import FastAPI
from fastapi.testclient import TestClient

from core.db import get_db
from core.rate_limit import RateLimiter
from routers.dependencies import get_current_user
from routers.messaging.service import send_message
from routers.notifications import service as notifications_service
from routers.notifications.api import router as notifications_router


class _PusherStub:
    def __init__(self):
        self.calls = []

    def authenticate(self, channel, socket_id, custom_data=None):
        self.calls.append((channel, socket_id, custom_data))
        return {"auth": "token"}


@pytest.fixture
def acting(seeker):
    return {"user": seeker}


@pytest.fixture
def stub(monkeypatch):
    pusher = _PusherStub()
    monkeypatch.setattr(notifications_service, "get_pusher_client", lambda: pusher)
    return pusher


@pytest.fixture
def client(test_db, acting, monkeypatch):
    app = FastAPI()
    app.include_router(notifications_router)

    def override_get_db():
        yield test_db

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_current_user] = lambda: acting["user"]
    monkeypatch.setattr(notifications_service, "PUSHER_ENABLED", True)
    monkeypatch.setattr(notifications_service, "_AUTH_CACHE_TTL_SECONDS", 0)
    notifications_service._conversation_cache.clear()

    with TestClient(app) as test_client:
        yield test_client

    app.dependency_overrides = {}
    notifications_service._conversation_cache.clear()


@pytest.fixture
def conversation_id(test_db, seeker, earner):
    result = send_message(
        test_db,
        sender=seeker,
        recipient_id=earner.account_id,
        content="hi",
        rate_limiter=RateLimiter(redis_url=None),
    )
    return result.conversation.id


def _auth(client, channel_name):
    return client.post("/pusher/auth", data={"socket_id": "1.1", "channel_name": channel_name})


def test_participant_can_join_conversation_channel(client, stub, conversation_id, acting, earner):
    response = _auth(client, f"private-conversation-{conversation_id}")
    assert response.status_code == 200
    assert response.json() == {"auth": "token"}

    acting["user"] = earner
    assert _auth(client, f"private-conversation-{conversation_id}").status_code == 200
    assert [call[0] for call in stub.calls] == [f"private-conversation-{conversation_id}"] * 2


def test_outsider_rejected_from_conversation_channel(client, stub, conversation_id, acting, broke_seeker):
    acting["user"] = broke_seeker

    response = _auth(client, f"private-conversation-{conversation_id}")

    assert response.status_code == 403
    assert stub.calls == []


def test_unknown_conversation_channel(client, stub):
    assert _auth(client, "private-conversation-424242").status_code == 404


def test_inbox_channel_owner_only(client, stub, seeker):
    assert _auth(client, f"private-inbox-{seeker.account_id}").status_code == 200
    assert _auth(client, f"private-inbox-{seeker.account_id + 1}").status_code == 403


@pytest.mark.parametrize(
    "channel_name",
    ["global-chat", "presence-user-1", "private-group-1", "private-conversation-abc"],
)
def test_other_channels_rejected(client, stub, channel_name):
    assert _auth(client, channel_name).status_code == 400
    assert stub.calls == []


def test_pusher_disabled(client, stub, seeker, monkeypatch):
    monkeypatch.setattr(notifications_service, "PUSHER_ENABLED", False)
    assert _auth(client, f"private-inbox-{seeker.account_id}").status_code == 403


def test_participants_are_cached(client, stub, conversation_id, monkeypatch):
    monkeypatch.setattr(notifications_service, "_AUTH_CACHE_TTL_SECONDS", 60)
    assert _auth(client, f"private-conversation-{conversation_id}").status_code == 200

    def _fail(db, *, conversation_id):
        raise AssertionError("participants should come from the cache")

    monkeypatch.setattr(notifications_service.notifications_repository, "get_conversation_participants", _fail)
    assert _auth(client, f"private-conversation-{conversation_id}").status_code == 200
