from datetime import datetime

import pytest

from core.rate_limit import RateLimiter
from models import Message
from routers.messaging import service as messaging_service
from routers.messaging.errors import Unauthorized


@pytest.fixture
def conversation_with_messages(test_db, seeker, earner):
    limiter = RateLimiter(redis_url=None)
    sent = [
        messaging_service.send_message(
            test_db, sender=seeker, recipient_id=earner.account_id, content=f"q{i}", rate_limiter=limiter
        )
        for i in range(3)
    ]
    messaging_service.send_message(
        test_db, sender=earner, recipient_id=seeker.account_id, content="answer", rate_limiter=limiter
    )
    return sent[0].conversation.id


def test_unread_counts_are_per_viewer(test_db, seeker, earner, conversation_with_messages):
    conversation_id = conversation_with_messages

    assert messaging_service.count_unread(test_db, conversation_id=conversation_id, viewer_id=earner.account_id) == 3
    assert messaging_service.count_unread(test_db, conversation_id=conversation_id, viewer_id=seeker.account_id) == 1
    assert messaging_service.count_total_unread(test_db, viewer_id=earner.account_id) == 3


def test_mark_read_only_touches_incoming_messages(test_db, seeker, earner, conversation_with_messages):
    result = messaging_service.mark_conversation_read(
        test_db, conversation_id=conversation_with_messages, viewer_id=earner.account_id
    )

    assert result.count == 3
    assert result.read_at is not None
    outgoing = test_db.query(Message).filter(Message.sender_id == earner.account_id).one()
    assert outgoing.read_at is None
    assert messaging_service.count_unread(
        test_db, conversation_id=conversation_with_messages, viewer_id=earner.account_id
    ) == 0


def test_mark_read_is_idempotent(test_db, earner, conversation_with_messages):
    first = messaging_service.mark_conversation_read(
        test_db, conversation_id=conversation_with_messages, viewer_id=earner.account_id
    )
    stamped = {m.id: m.read_at for m in test_db.query(Message).filter(Message.read_at.isnot(None))}

    second = messaging_service.mark_conversation_read(
        test_db, conversation_id=conversation_with_messages, viewer_id=earner.account_id
    )

    assert first.count == 3
    assert second.count == 0
    assert second.read_at is None
    assert {m.id: m.read_at for m in test_db.query(Message).filter(Message.read_at.isnot(None))} == stamped


def test_mark_specific_messages(test_db, earner, conversation_with_messages):
    first_id = (
        test_db.query(Message.id)
        .filter(Message.recipient_id == earner.account_id)
        .order_by(Message.id)
        .first()[0]
    )

    result = messaging_service.mark_messages_read(
        test_db,
        conversation_id=conversation_with_messages,
        viewer_id=earner.account_id,
        message_ids=[first_id],
    )

    assert result.message_ids == [first_id]
    assert messaging_service.count_unread(
        test_db, conversation_id=conversation_with_messages, viewer_id=earner.account_id
    ) == 2


def test_outsider_cannot_mark_read(test_db, broke_seeker, conversation_with_messages):
    with pytest.raises(Unauthorized):
        messaging_service.mark_conversation_read(
            test_db, conversation_id=conversation_with_messages, viewer_id=broke_seeker.account_id
        )


def test_history_marks_read_and_pages_backwards(test_db, earner, conversation_with_messages):
    page, read_result = messaging_service.get_messages(
        test_db, current_user=earner, conversation_id=conversation_with_messages, limit=2
    )

    assert read_result.count == 3
    assert page.marked_read == 3
    assert page.has_more is True
    assert [m.content for m in page.messages] == ["q2", "answer"]

    older, _ = messaging_service.get_messages(
        test_db,
        current_user=earner,
        conversation_id=conversation_with_messages,
        limit=2,
        before_id=page.messages[0].id,
    )
    assert [m.content for m in older.messages] == ["q0", "q1"]
    assert older.has_more is False


def test_history_without_mark_read(test_db, earner, conversation_with_messages):
    page, read_result = messaging_service.get_messages(
        test_db,
        current_user=earner,
        conversation_id=conversation_with_messages,
        limit=10,
        mark_read=False,
    )

    assert read_result.count == 0
    assert all(m.read_at is None for m in page.messages)


def test_mark_read_reports_only_rows_it_stamped(test_db, earner, conversation_with_messages, monkeypatch):
    incoming = [
        m.id
        for m in test_db.query(Message)
        .filter(Message.recipient_id == earner.account_id)
        .order_by(Message.id)
    ]
    earlier = datetime(2024, 1, 1, 12, 0, 0)
    # Another request stamps the first message after this one listed it as unread
    test_db.query(Message).filter(Message.id == incoming[0]).update({"read_at": earlier})
    test_db.commit()
    monkeypatch.setattr(
        messaging_service.messaging_repository, "unread_ids", lambda db, **kwargs: list(incoming)
    )

    result = messaging_service.mark_conversation_read(
        test_db, conversation_id=conversation_with_messages, viewer_id=earner.account_id
    )

    assert result.message_ids == incoming[1:]
    test_db.expire_all()
    assert test_db.get(Message, incoming[0]).read_at == earlier
    assert all(test_db.get(Message, i).read_at == result.read_at for i in incoming[1:])
