import pytest

from models import Conversation
from routers.messaging import service as messaging_service
from routers.messaging.errors import (
    ConversationNotFound,
    DuplicateConversation,
    InvalidRecipient,
    Unauthorized,
)


def test_find_returns_none_when_absent(test_db, seeker, earner):
    assert messaging_service.find_conversation(test_db, seeker.account_id, earner.account_id) is None


def test_create_then_find_in_either_order(test_db, seeker, earner):
    created = messaging_service.create_conversation(
        test_db, seeker_id=seeker.account_id, earner_id=earner.account_id
    )
    test_db.commit()

    by_seeker = messaging_service.find_conversation(test_db, seeker.account_id, earner.account_id)
    by_earner = messaging_service.find_conversation(test_db, earner.account_id, seeker.account_id)

    assert by_seeker.id == created.id
    assert by_earner.id == created.id
    assert created.seeker_id == seeker.account_id
    assert created.earner_id == earner.account_id
    assert created.payer_user_id == seeker.account_id
    assert created.total_messages == 0


def test_second_create_for_pair_is_duplicate(test_db, seeker, earner):
    messaging_service.create_conversation(
        test_db, seeker_id=seeker.account_id, earner_id=earner.account_id
    )
    test_db.commit()

    with pytest.raises(DuplicateConversation) as exc_info:
        messaging_service.create_conversation(
            test_db, seeker_id=seeker.account_id, earner_id=earner.account_id
        )

    assert exc_info.value.user_low_id == min(seeker.account_id, earner.account_id)
    # The savepoint rollback leaves the outer session usable
    assert test_db.query(Conversation).count() == 1


def test_create_with_same_user_rejected(test_db, seeker):
    with pytest.raises(InvalidRecipient):
        messaging_service.create_conversation(
            test_db, seeker_id=seeker.account_id, earner_id=seeker.account_id
        )


def test_find_or_create_assigns_roles_from_user_type(test_db, seeker, earner):
    conversation, created = messaging_service.find_or_create_conversation(
        test_db, sender=earner, recipient=seeker
    )

    assert created is True
    assert conversation.seeker_id == seeker.account_id
    assert conversation.earner_id == earner.account_id


def test_find_or_create_reuses_existing(test_db, seeker, earner):
    first, _ = messaging_service.find_or_create_conversation(test_db, sender=seeker, recipient=earner)
    test_db.commit()

    second, created = messaging_service.find_or_create_conversation(
        test_db, sender=earner, recipient=seeker
    )

    assert created is False
    assert second.id == first.id


def test_find_or_create_recovers_from_lost_race(test_db, seeker, earner, monkeypatch):
    winner = messaging_service.create_conversation(
        test_db, seeker_id=seeker.account_id, earner_id=earner.account_id
    )
    test_db.commit()

    real_find = messaging_service.find_conversation
    calls = {"n": 0}

    def stale_then_real(db, a, b):
        calls["n"] += 1
        # First lookup happens before the concurrent insert became visible
        return None if calls["n"] == 1 else real_find(db, a, b)

    monkeypatch.setattr(messaging_service, "find_conversation", stale_then_real)

    conversation, created = messaging_service.find_or_create_conversation(
        test_db, sender=seeker, recipient=earner
    )

    assert created is False
    assert conversation.id == winner.id
    assert test_db.query(Conversation).count() == 1


def test_same_role_pair_rejected(test_db, earner, other_earner):
    with pytest.raises(InvalidRecipient):
        messaging_service.find_or_create_conversation(test_db, sender=earner, recipient=other_earner)


def test_participant_lookup(test_db, seeker, earner, broke_seeker):
    conversation = messaging_service.create_conversation(
        test_db, seeker_id=seeker.account_id, earner_id=earner.account_id
    )
    test_db.commit()

    found = messaging_service.get_conversation_for_participant(
        test_db, conversation_id=conversation.id, user_id=earner.account_id
    )
    assert found.id == conversation.id

    with pytest.raises(Unauthorized):
        messaging_service.get_conversation_for_participant(
            test_db, conversation_id=conversation.id, user_id=broke_seeker.account_id
        )
    with pytest.raises(ConversationNotFound):
        messaging_service.get_conversation_for_participant(
            test_db, conversation_id=conversation.id + 100, user_id=seeker.account_id
        )
