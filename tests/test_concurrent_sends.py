import threading
from concurrent.futures import ThreadPoolExecutor

from core.rate_limit import RateLimiter
from models import Conversation, Message, User, Wallet
from routers.messaging.errors import InsufficientCredits, MessagingError, TransientIOFailure
from routers.messaging.service import send_message
from utils.wallet_ledger import get_credit_balance, get_earnings_balance


def _send_in_own_session(session_factory, barrier, sender_id, recipient_id, content, attempts=1):
    """Send from a fresh session once every racer is ready; errors are returned, not raised."""
    db = session_factory()
    try:
        sender = db.get(User, sender_id)
        db.commit()
        barrier.wait(timeout=10)
        for attempt in range(attempts):
            try:
                return send_message(
                    db,
                    sender=sender,
                    recipient_id=recipient_id,
                    content=content,
                    rate_limiter=RateLimiter(redis_url=None),
                )
            except TransientIOFailure as exc:
                if attempt == attempts - 1:
                    return exc
            except MessagingError as exc:
                return exc
    finally:
        db.close()


def _race(session_factory, sends, attempts=1):
    barrier = threading.Barrier(len(sends))
    with ThreadPoolExecutor(max_workers=len(sends)) as pool:
        futures = [
            pool.submit(
                _send_in_own_session, session_factory, barrier, sender_id, recipient_id, content, attempts
            )
            for sender_id, recipient_id, content in sends
        ]
        return [future.result(timeout=30) for future in futures]


def test_two_sends_against_one_send_balance_charge_once(test_db, session_factory, broke_seeker, earner):
    seeker_id = broke_seeker.account_id
    earner_id = earner.account_id
    test_db.query(Wallet).filter(Wallet.user_id == seeker_id).update({"credit_balance": 5})
    # Release the fixture session's locks before the racers start
    test_db.commit()

    results = _race(session_factory, [(seeker_id, earner_id, "first"), (seeker_id, earner_id, "second")])

    sent = [r for r in results if not isinstance(r, MessagingError)]
    failed = [r for r in results if isinstance(r, MessagingError)]
    assert len(sent) == 1
    assert len(failed) == 1
    assert isinstance(failed[0], (InsufficientCredits, TransientIOFailure))

    test_db.expire_all()
    assert get_credit_balance(test_db, seeker_id) == 0
    assert get_earnings_balance(test_db, earner_id) == 35
    assert test_db.query(Message).count() == 1
    conversation = test_db.query(Conversation).one()
    assert conversation.total_credits_spent == 5
    assert conversation.total_messages == 1


def test_simultaneous_first_contact_shares_one_conversation(test_db, session_factory, seeker, earner):
    seeker_id = seeker.account_id
    earner_id = earner.account_id
    test_db.commit()

    results = _race(
        session_factory,
        [(seeker_id, earner_id, "hello"), (earner_id, seeker_id, "hi there")],
        attempts=3,
    )

    assert not [r for r in results if isinstance(r, MessagingError)]
    assert sum(1 for r in results if r.conversation_created) == 1

    test_db.expire_all()
    conversation = test_db.query(Conversation).one()
    messages = test_db.query(Message).order_by(Message.id).all()
    assert len(messages) == 2
    assert {m.conversation_id for m in messages} == {conversation.id}
    assert {m.sender_id for m in messages} == {seeker_id, earner_id}
    assert conversation.seeker_id == seeker_id
    assert conversation.total_messages == 2
