import random
from datetime import datetime

from sqlalchemy import (
    BigInteger,
    CheckConstraint,
    Column,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    UniqueConstraint,
    Boolean,
)
from sqlalchemy.orm import relationship

from core.db import Base

USER_TYPE_SEEKER = "seeker"
USER_TYPE_EARNER = "earner"

MESSAGE_TYPE_TEXT = "text"
MESSAGE_TYPE_IMAGE = "image"


def generate_account_id():
    """Generate a 10-digit random unique number."""
    return int("".join(str(random.randint(1, 9)) for _ in range(10)))


# =================================
#  Users Table
# =================================
class User(Base):
    __tablename__ = "users"

    account_id = Column(BigInteger, primary_key=True, index=True, nullable=False, default=generate_account_id)
    descope_user_id = Column(String, unique=True, index=True, nullable=True)
    email = Column(String, unique=True, index=True, nullable=False)
    username = Column(String, unique=True, index=True, nullable=False)
    profile_pic_url = Column(String, nullable=True)
    user_type = Column(String, nullable=False, default=USER_TYPE_SEEKER)  # "seeker" or "earner"
    created_at = Column(DateTime, default=datetime.utcnow, nullable=False)

    wallet = relationship("Wallet", back_populates="user", uselist=False)

    __table_args__ = (
        CheckConstraint("user_type IN ('seeker', 'earner')", name="ck_users_user_type"),
    )

    @property
    def is_seeker(self) -> bool:
        return self.user_type == USER_TYPE_SEEKER


# =================================
#  Wallets Table
# =================================
class Wallet(Base):
    __tablename__ = "wallets"

    user_id = Column(BigInteger, ForeignKey("users.account_id"), primary_key=True)
    credit_balance = Column(Integer, nullable=False, default=0)
    available_earnings_minor = Column(BigInteger, nullable=False, default=0)  # cents
    updated_at = Column(DateTime, default=datetime.utcnow, nullable=False)

    user = relationship("User", back_populates="wallet")

    __table_args__ = (
        CheckConstraint("credit_balance >= 0", name="ck_wallets_credit_balance_non_negative"),
    )


# =================================
#  Wallet Ledger Table
# =================================
class WalletLedger(Base):
    __tablename__ = "wallet_ledger"

    id = Column(Integer, primary_key=True, index=True)
    user_id = Column(BigInteger, ForeignKey("users.account_id"), nullable=False, index=True)
    asset = Column(String, nullable=False)  # "credits" or "usd"
    delta = Column(BigInteger, nullable=False)  # credits or cents, can be negative
    balance_after = Column(BigInteger, nullable=False)
    kind = Column(String, nullable=False)  # message_debit/message_earning/topup/adjustment
    external_ref_type = Column(String, nullable=True)  # "message"
    external_ref_id = Column(String, nullable=True)
    idempotency_key = Column(String, nullable=True, unique=True)
    created_at = Column(DateTime, default=datetime.utcnow, nullable=False)

    user = relationship("User", backref="wallet_ledger_entries")


# =================================
#  Conversations Table
# =================================
class Conversation(Base):
    __tablename__ = "conversations"

    id = Column(Integer, primary_key=True, index=True)
    seeker_id = Column(BigInteger, ForeignKey("users.account_id"), nullable=False, index=True)
    earner_id = Column(BigInteger, ForeignKey("users.account_id"), nullable=False, index=True)
    payer_user_id = Column(BigInteger, ForeignKey("users.account_id"), nullable=False)
    # Sorted participant pair; the unique constraint makes the pair unordered
    user_low_id = Column(BigInteger, nullable=False)
    user_high_id = Column(BigInteger, nullable=False)
    total_messages = Column(Integer, nullable=False, default=0)
    total_credits_spent = Column(Integer, nullable=False, default=0)
    last_message_at = Column(DateTime, nullable=True, index=True)
    created_at = Column(DateTime, default=datetime.utcnow, nullable=False)

    seeker = relationship("User", foreign_keys=[seeker_id])
    earner = relationship("User", foreign_keys=[earner_id])

    __table_args__ = (
        UniqueConstraint("user_low_id", "user_high_id", name="uq_conversation_participants"),
        CheckConstraint("seeker_id <> earner_id", name="ck_conversation_distinct_participants"),
    )

    def has_participant(self, user_id: int) -> bool:
        return user_id in (self.seeker_id, self.earner_id)

    def other_participant(self, user_id: int) -> int:
        return self.earner_id if user_id == self.seeker_id else self.seeker_id


# =================================
#  Messages Table
# =================================
class Message(Base):
    __tablename__ = "messages"

    id = Column(Integer, primary_key=True, index=True)
    conversation_id = Column(Integer, ForeignKey("conversations.id"), nullable=False, index=True)
    sender_id = Column(BigInteger, ForeignKey("users.account_id"), nullable=False)
    recipient_id = Column(BigInteger, ForeignKey("users.account_id"), nullable=False)
    content = Column(Text, nullable=False)
    message_type = Column(String, nullable=False, default=MESSAGE_TYPE_TEXT)
    credits_cost = Column(Integer, nullable=False, default=0)
    earner_amount_minor = Column(Integer, nullable=False, default=0)
    platform_fee_minor = Column(Integer, nullable=False, default=0)
    client_message_id = Column(String, nullable=True)  # For idempotency
    created_at = Column(DateTime, default=datetime.utcnow, nullable=False, index=True)
    read_at = Column(DateTime, nullable=True)

    conversation = relationship("Conversation", backref="messages")
    sender = relationship("User", foreign_keys=[sender_id])

    __table_args__ = (
        CheckConstraint("message_type IN ('text', 'image')", name="ck_messages_message_type"),
        CheckConstraint("credits_cost >= 0", name="ck_messages_credits_cost_non_negative"),
        UniqueConstraint(
            "conversation_id", "sender_id", "client_message_id", name="uq_messages_client_message_id"
        ),
        Index("ix_messages_unread", "conversation_id", "recipient_id", "read_at"),
    )


# =================================
#  OneSignal Players Table
# =================================
class OneSignalPlayer(Base):
    __tablename__ = "onesignal_players"

    id = Column(Integer, primary_key=True, index=True)
    user_id = Column(BigInteger, ForeignKey("users.account_id"), nullable=False, index=True)
    player_id = Column(String, unique=True, nullable=False, index=True)
    platform = Column(String, nullable=False)  # "ios", "android", "web"
    is_valid = Column(Boolean, default=True, nullable=False)
    created_at = Column(DateTime, default=datetime.utcnow, nullable=False)
    last_active = Column(DateTime, default=datetime.utcnow, nullable=False)
    last_failure_at = Column(DateTime, nullable=True)

    user = relationship("User", backref="onesignal_players")
