"""
Messaging domain service layer.

send_message is the only way a message comes into existence. It validates
before touching the database, then writes the message, settles the ledger
and updates the conversation totals in one transaction. Realtime fan-out
and push notifications happen after commit and are the caller's job (see
routers.messaging.events).
"""

import logging
from dataclasses import dataclass, field
from datetime import datetime
from typing import List, Optional, Tuple

from sqlalchemy import text
from sqlalchemy.exc import DBAPIError, IntegrityError, OperationalError, SQLAlchemyError
from sqlalchemy.exc import TimeoutError as PoolTimeoutError
from sqlalchemy.orm import Session

from core.config import (
    MESSAGE_MAX_LENGTH,
    MESSAGE_SEND_TIMEOUT_SECONDS,
    MESSAGES_MAX_PER_MINUTE,
)
from core.ports.wallet import WalletPort
from core.rate_limit import RateLimiter, default_rate_limiter
from core.wallet import wallet as default_wallet
from models import (
    MESSAGE_TYPE_IMAGE,
    MESSAGE_TYPE_TEXT,
    Conversation,
    Message,
    User,
)
from utils.logging_helpers import log_error, log_info, log_warning
from utils.message_sanitizer import sanitize_message
from utils.pricing import PricingPolicy, default_pricing_policy
from utils.wallet_ledger import InsufficientBalanceError

from . import repository as messaging_repository
from .errors import (
    ConversationNotFound,
    DuplicateConversation,
    EmptyMessage,
    InsufficientCredits,
    InvalidMessageType,
    InvalidRecipient,
    LedgerSettlementFailed,
    MessageTooLong,
    MessagingError,
    RateLimited,
    RecipientNotFound,
    TransientIOFailure,
    Unauthorized,
)
from .events import serialize_message
from .schemas import (
    ConversationListResponse,
    ConversationResponse,
    MessageListResponse,
    MessageResponse,
    ParticipantProfile,
    PricingResponse,
)

logger = logging.getLogger(__name__)

VALID_MESSAGE_TYPES = (MESSAGE_TYPE_TEXT, MESSAGE_TYPE_IMAGE)


@dataclass
class SendMessageResult:
    message: Message
    conversation: Conversation
    conversation_created: bool
    duplicate: bool
    credits_charged: int
    new_balance: Optional[int] = None


@dataclass
class MarkReadResult:
    conversation_id: int
    reader_id: int
    message_ids: List[int] = field(default_factory=list)
    read_at: Optional[datetime] = None

    @property
    def count(self) -> int:
        return len(self.message_ids)


def get_display_username(user: User) -> str:
    """Get display username with fallback logic"""
    if user.username and user.username.strip():
        return user.username
    if user.email:
        return user.email.split("@")[0]
    return f"User{user.account_id}"


# ---------------------------------------------------------------------------
# Validation
# ---------------------------------------------------------------------------


def validate_message_content(
    content: Optional[str], message_type: str, max_length: int = MESSAGE_MAX_LENGTH
) -> str:
    """
    Normalize message content, raising before any I/O happens.

    Text is trimmed, length-checked against max_length and stripped of
    markup. Image content is an opaque storage path and only has to be
    non-empty.
    """
    if message_type not in VALID_MESSAGE_TYPES:
        raise InvalidMessageType(f"Unknown message type: {message_type!r}")

    trimmed = (content or "").strip()
    if not trimmed:
        raise EmptyMessage("Message content is empty")

    if message_type == MESSAGE_TYPE_IMAGE:
        return trimmed

    if len(trimmed) > max_length:
        raise MessageTooLong(len(trimmed), max_length)

    sanitized = sanitize_message(trimmed)
    if not sanitized:
        raise EmptyMessage("Message content is empty after sanitizing")
    return sanitized


def _check_send_rate(sender_id: int, rate_limiter: Optional[RateLimiter]) -> None:
    limiter = rate_limiter or default_rate_limiter
    result = limiter.allow(
        key=f"messages:send:{sender_id}", limit=MESSAGES_MAX_PER_MINUTE, window_seconds=60
    )
    if not result.allowed:
        raise RateLimited(result.retry_after_seconds)


# ---------------------------------------------------------------------------
# Conversation store
# ---------------------------------------------------------------------------


def find_conversation(db: Session, user_a: int, user_b: int) -> Optional[Conversation]:
    """Look up the conversation for an unordered pair. Absence is not an error."""
    return messaging_repository.get_conversation_by_users(db, user_a=user_a, user_b=user_b)


def create_conversation(db: Session, *, seeker_id: int, earner_id: int) -> Conversation:
    """
    Insert a conversation inside a savepoint.

    Raises:
        DuplicateConversation: The pair already has a conversation
    """
    if seeker_id == earner_id:
        raise InvalidRecipient("You cannot message yourself.")

    try:
        with db.begin_nested():
            conversation = messaging_repository.add_conversation(
                db, seeker_id=seeker_id, earner_id=earner_id
            )
    except IntegrityError as exc:
        low, high = messaging_repository.sorted_pair(seeker_id, earner_id)
        raise DuplicateConversation(low, high) from exc
    return conversation


def assign_roles(sender: User, recipient: User) -> Tuple[int, int]:
    """Return (seeker_id, earner_id) for a new conversation."""
    if sender.user_type == recipient.user_type:
        raise InvalidRecipient("Conversations are only possible between a seeker and an earner.")
    if sender.is_seeker:
        return sender.account_id, recipient.account_id
    return recipient.account_id, sender.account_id


def find_or_create_conversation(
    db: Session, *, sender: User, recipient: User
) -> Tuple[Conversation, bool]:
    """
    Return (conversation, created). Losing a creation race to a concurrent
    sender yields the winner's conversation.
    """
    existing = find_conversation(db, sender.account_id, recipient.account_id)
    if existing:
        return existing, False

    seeker_id, earner_id = assign_roles(sender, recipient)
    try:
        return create_conversation(db, seeker_id=seeker_id, earner_id=earner_id), True
    except DuplicateConversation:
        winner = find_conversation(db, sender.account_id, recipient.account_id)
        if winner is None:
            raise
        logger.info(
            f"Conversation create race lost, using existing | conversation_id={winner.id}"
        )
        return winner, False


def get_conversation_for_participant(
    db: Session, *, conversation_id: int, user_id: int
) -> Conversation:
    conversation = messaging_repository.get_conversation(db, conversation_id=conversation_id)
    if conversation is None:
        raise ConversationNotFound(f"Conversation {conversation_id} not found")
    if not conversation.has_participant(user_id):
        raise Unauthorized(f"User {user_id} is not in conversation {conversation_id}")
    return conversation


def touch_on_new_message(
    db: Session, *, conversation_id: int, credits_cost: int, at: datetime
) -> None:
    updated = messaging_repository.increment_conversation_totals(
        db, conversation_id=conversation_id, credits_cost=credits_cost, at=at
    )
    if updated != 1:
        raise ConversationNotFound(f"Conversation {conversation_id} vanished during send")


def _resolve_conversation(
    db: Session, *, sender: User, recipient: User, conversation_id: Optional[int]
) -> Tuple[Conversation, bool]:
    if conversation_id is None:
        return find_or_create_conversation(db, sender=sender, recipient=recipient)

    conversation = get_conversation_for_participant(
        db, conversation_id=conversation_id, user_id=sender.account_id
    )
    if not conversation.has_participant(recipient.account_id):
        raise Unauthorized(
            f"Recipient {recipient.account_id} is not in conversation {conversation_id}"
        )
    return conversation, False


# ---------------------------------------------------------------------------
# Message pipeline
# ---------------------------------------------------------------------------


def _apply_statement_timeout(db: Session) -> None:
    if MESSAGE_SEND_TIMEOUT_SECONDS <= 0:
        return
    if db.get_bind().dialect.name == "postgresql":
        db.execute(text(f"SET LOCAL statement_timeout = {int(MESSAGE_SEND_TIMEOUT_SECONDS) * 1000}"))


def send_message(
    db: Session,
    *,
    sender: User,
    recipient_id: int,
    content: str,
    message_type: str = MESSAGE_TYPE_TEXT,
    conversation_id: Optional[int] = None,
    client_message_id: Optional[str] = None,
    pricing: Optional[PricingPolicy] = None,
    wallet: Optional[WalletPort] = None,
    rate_limiter: Optional[RateLimiter] = None,
) -> SendMessageResult:
    """
    Validate, price, persist and settle one message.

    Either the message row, the seeker debit, the earner credit and the
    conversation totals all commit together, or none of them do.

    Raises:
        EmptyMessage, MessageTooLong, InvalidMessageType, InvalidRecipient:
            Rejected before any database access
        RateLimited: Sender is over the per-minute limit
        RecipientNotFound, ConversationNotFound, Unauthorized
        InsufficientCredits: Balance does not cover the price, including
            when a concurrent send spent it first
        LedgerSettlementFailed: Earner credit failed; nothing was persisted
        TransientIOFailure: Database error or timeout; safe to retry
    """
    pricing = pricing or default_pricing_policy
    wallet = wallet or default_wallet

    body = validate_message_content(content, message_type)
    if recipient_id == sender.account_id:
        raise InvalidRecipient("You cannot message yourself.")
    _check_send_rate(sender.account_id, rate_limiter)

    try:
        _apply_statement_timeout(db)

        recipient = messaging_repository.get_user(db, user_id=recipient_id)
        if recipient is None:
            raise RecipientNotFound(f"User {recipient_id} not found")

        conversation, created = _resolve_conversation(
            db, sender=sender, recipient=recipient, conversation_id=conversation_id
        )

        if client_message_id:
            existing = messaging_repository.get_message_by_client_id(
                db,
                conversation_id=conversation.id,
                sender_id=sender.account_id,
                client_message_id=client_message_id,
            )
            if existing is not None:
                db.commit()
                log_info(
                    logger,
                    "Duplicate send ignored",
                    user_id=sender.account_id,
                    message_id=existing.id,
                    client_message_id=client_message_id,
                )
                return SendMessageResult(
                    message=existing,
                    conversation=conversation,
                    conversation_created=False,
                    duplicate=True,
                    credits_charged=0,
                )

        quote = pricing.quote(message_type, sender.account_id == conversation.seeker_id)

        if not quote.is_free:
            available = wallet.get_balance(db, user_id=sender.account_id)
            if available < quote.credits:
                raise InsufficientCredits(quote.credits, available)

        now = datetime.utcnow()
        message = Message(
            conversation_id=conversation.id,
            sender_id=sender.account_id,
            recipient_id=recipient.account_id,
            content=body,
            message_type=message_type,
            credits_cost=quote.credits,
            earner_amount_minor=quote.earner_amount_minor,
            platform_fee_minor=quote.platform_fee_minor,
            client_message_id=client_message_id,
            created_at=now,
        )
        db.add(message)
        db.flush()

        new_balance = None
        if not quote.is_free:
            try:
                new_balance = wallet.atomic_debit(
                    db, user_id=sender.account_id, amount=quote.credits, reference_id=str(message.id)
                )
            except InsufficientBalanceError as exc:
                raise InsufficientCredits(quote.credits, exc.available) from exc

            if quote.earner_amount_minor > 0:
                try:
                    wallet.credit_earnings(
                        db,
                        user_id=conversation.earner_id,
                        amount_minor=quote.earner_amount_minor,
                        reference_id=str(message.id),
                    )
                except Exception as exc:
                    raise LedgerSettlementFailed(
                        f"Earner credit failed for message {message.id}: {exc}"
                    ) from exc

        touch_on_new_message(db, conversation_id=conversation.id, credits_cost=quote.credits, at=now)
        db.commit()
    except MessagingError as exc:
        db.rollback()
        log_warning(
            logger,
            f"Send rejected: {type(exc).__name__}",
            user_id=sender.account_id,
            recipient_id=recipient_id,
            detail=str(exc),
        )
        raise
    except IntegrityError as exc:
        db.rollback()
        if client_message_id:
            # Same client_message_id committed concurrently
            existing = _find_duplicate(db, sender.account_id, recipient_id, client_message_id)
            if existing is not None:
                return SendMessageResult(
                    message=existing,
                    conversation=existing.conversation,
                    conversation_created=False,
                    duplicate=True,
                    credits_charged=0,
                )
        log_error(logger, f"Integrity error sending message: {exc}", user_id=sender.account_id)
        raise MessagingError("Integrity error while sending") from exc
    except (OperationalError, PoolTimeoutError, DBAPIError) as exc:
        db.rollback()
        log_error(logger, f"Transient database failure sending message: {exc}", user_id=sender.account_id)
        raise TransientIOFailure(str(exc)) from exc
    except SQLAlchemyError as exc:
        db.rollback()
        log_error(
            logger, f"Database error sending message: {exc}", user_id=sender.account_id, exc_info=True
        )
        raise MessagingError(str(exc)) from exc

    log_info(
        logger,
        "Message sent",
        user_id=sender.account_id,
        conversation_id=conversation.id,
        message_id=message.id,
        credits=quote.credits,
        new_conversation=created,
    )
    return SendMessageResult(
        message=message,
        conversation=conversation,
        conversation_created=created,
        duplicate=False,
        credits_charged=quote.credits,
        new_balance=new_balance,
    )


def _find_duplicate(
    db: Session, sender_id: int, recipient_id: int, client_message_id: str
) -> Optional[Message]:
    conversation = find_conversation(db, sender_id, recipient_id)
    if conversation is None:
        return None
    return messaging_repository.get_message_by_client_id(
        db,
        conversation_id=conversation.id,
        sender_id=sender_id,
        client_message_id=client_message_id,
    )


# ---------------------------------------------------------------------------
# Read receipts
# ---------------------------------------------------------------------------


def mark_messages_read(
    db: Session,
    *,
    conversation_id: int,
    viewer_id: int,
    message_ids: Optional[List[int]] = None,
) -> MarkReadResult:
    """
    Stamp read_at on unread messages addressed to the viewer. Calling it
    again is a no-op; read_at is never overwritten. Commits.
    """
    ids = messaging_repository.unread_ids(db, conversation_id=conversation_id, viewer_id=viewer_id)
    if message_ids is not None:
        wanted = set(message_ids)
        ids = [i for i in ids if i in wanted]
    if not ids:
        return MarkReadResult(conversation_id=conversation_id, reader_id=viewer_id)

    read_at = datetime.utcnow()
    stamped = messaging_repository.set_read_at(
        db, conversation_id=conversation_id, viewer_id=viewer_id, message_ids=ids, at=read_at
    )
    db.commit()
    if not stamped:
        return MarkReadResult(conversation_id=conversation_id, reader_id=viewer_id)
    return MarkReadResult(
        conversation_id=conversation_id, reader_id=viewer_id, message_ids=stamped, read_at=read_at
    )


def mark_conversation_read(db: Session, *, conversation_id: int, viewer_id: int) -> MarkReadResult:
    get_conversation_for_participant(db, conversation_id=conversation_id, user_id=viewer_id)
    return mark_messages_read(db, conversation_id=conversation_id, viewer_id=viewer_id)


def count_unread(db: Session, *, conversation_id: int, viewer_id: int) -> int:
    return messaging_repository.count_unread(db, conversation_id=conversation_id, viewer_id=viewer_id)


def count_total_unread(db: Session, *, viewer_id: int) -> int:
    return messaging_repository.count_total_unread(db, viewer_id=viewer_id)


# ---------------------------------------------------------------------------
# Read models
# ---------------------------------------------------------------------------


def message_to_response(message: Message) -> MessageResponse:
    return MessageResponse(**serialize_message(message))


def _participant_profile(user: Optional[User]) -> Optional[ParticipantProfile]:
    if user is None:
        return None
    return ParticipantProfile(
        user_id=user.account_id,
        username=get_display_username(user),
        profile_pic_url=user.profile_pic_url,
        user_type=user.user_type,
    )


def _conversation_to_response(
    conversation: Conversation,
    *,
    viewer_id: int,
    other_user: Optional[User],
    last_message: Optional[Message],
    unread_count: int,
) -> ConversationResponse:
    return ConversationResponse(
        id=conversation.id,
        seeker_id=conversation.seeker_id,
        earner_id=conversation.earner_id,
        total_messages=conversation.total_messages,
        total_credits_spent=conversation.total_credits_spent,
        last_message_at=conversation.last_message_at,
        created_at=conversation.created_at,
        other_user=_participant_profile(other_user),
        last_message=message_to_response(last_message) if last_message else None,
        unread_count=unread_count,
    )


def list_conversations(
    db: Session, *, current_user: User, limit: int, offset: int
) -> ConversationListResponse:
    viewer_id = current_user.account_id
    conversations = messaging_repository.list_conversations_for_user(
        db, user_id=viewer_id, limit=limit, offset=offset
    )
    ids = [c.id for c in conversations]
    others = messaging_repository.get_users_by_ids(
        db, user_ids=[c.other_participant(viewer_id) for c in conversations]
    )
    last_messages = messaging_repository.get_last_messages(db, conversation_ids=ids)
    unread = messaging_repository.count_unread_by_conversation(
        db, conversation_ids=ids, viewer_id=viewer_id
    )

    return ConversationListResponse(
        conversations=[
            _conversation_to_response(
                c,
                viewer_id=viewer_id,
                other_user=others.get(c.other_participant(viewer_id)),
                last_message=last_messages.get(c.id),
                unread_count=unread.get(c.id, 0),
            )
            for c in conversations
        ],
        total=messaging_repository.count_conversations_for_user(db, user_id=viewer_id),
        limit=limit,
        offset=offset,
    )


def get_conversation_detail(
    db: Session, *, current_user: User, conversation_id: int
) -> ConversationResponse:
    viewer_id = current_user.account_id
    conversation = get_conversation_for_participant(
        db, conversation_id=conversation_id, user_id=viewer_id
    )
    other = messaging_repository.get_user(db, user_id=conversation.other_participant(viewer_id))
    last = messaging_repository.get_last_messages(db, conversation_ids=[conversation.id])
    return _conversation_to_response(
        conversation,
        viewer_id=viewer_id,
        other_user=other,
        last_message=last.get(conversation.id),
        unread_count=count_unread(db, conversation_id=conversation.id, viewer_id=viewer_id),
    )


def get_messages(
    db: Session,
    *,
    current_user: User,
    conversation_id: int,
    limit: int,
    before_id: Optional[int] = None,
    mark_read: bool = True,
) -> Tuple[MessageListResponse, MarkReadResult]:
    """One page of history, oldest first. Viewing marks incoming messages read."""
    viewer_id = current_user.account_id
    get_conversation_for_participant(db, conversation_id=conversation_id, user_id=viewer_id)

    read_result = MarkReadResult(conversation_id=conversation_id, reader_id=viewer_id)
    if mark_read:
        read_result = mark_messages_read(db, conversation_id=conversation_id, viewer_id=viewer_id)

    rows = messaging_repository.list_messages(
        db, conversation_id=conversation_id, limit=limit + 1, before_id=before_id
    )
    has_more = len(rows) > limit
    if has_more:
        rows = rows[1:]

    return (
        MessageListResponse(
            conversation_id=conversation_id,
            messages=[message_to_response(m) for m in rows],
            has_more=has_more,
            marked_read=read_result.count,
        ),
        read_result,
    )


def get_pricing(pricing: Optional[PricingPolicy] = None) -> PricingResponse:
    return PricingResponse(**(pricing or default_pricing_policy).as_dict())
