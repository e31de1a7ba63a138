"""Messaging domain schemas."""

from datetime import datetime
from typing import List, Literal, Optional

from pydantic import BaseModel, Field


class SendMessageRequest(BaseModel):
    recipient_id: int = Field(..., description="User ID of recipient")
    content: str = Field(..., description="Message text, or storage path for image messages")
    message_type: Literal["text", "image"] = "text"
    conversation_id: Optional[int] = Field(
        None, description="Existing conversation; omitted for the first message"
    )
    client_message_id: Optional[str] = Field(
        None, max_length=64, description="Client-provided ID for idempotency"
    )


class MessageResponse(BaseModel):
    id: int
    conversation_id: int
    sender_id: int
    recipient_id: int
    content: str
    message_type: str
    credits_cost: int
    earner_amount: float
    platform_fee: float
    created_at: datetime
    read_at: Optional[datetime] = None
    image_url: Optional[str] = None
    client_message_id: Optional[str] = None


class SendMessageResponse(BaseModel):
    conversation_id: int
    message: MessageResponse
    conversation_created: bool
    duplicate: bool
    credits_charged: int
    new_balance: Optional[int] = None


class ParticipantProfile(BaseModel):
    user_id: int
    username: str
    profile_pic_url: Optional[str] = None
    user_type: str


class ConversationResponse(BaseModel):
    id: int
    seeker_id: int
    earner_id: int
    total_messages: int
    total_credits_spent: int
    last_message_at: Optional[datetime] = None
    created_at: datetime
    other_user: Optional[ParticipantProfile] = None
    last_message: Optional[MessageResponse] = None
    unread_count: int = 0


class ConversationListResponse(BaseModel):
    conversations: List[ConversationResponse]
    total: int
    limit: int
    offset: int


class MessageListResponse(BaseModel):
    conversation_id: int
    messages: List[MessageResponse]
    has_more: bool
    marked_read: int = 0


class MarkReadResponse(BaseModel):
    conversation_id: int
    marked_read: int
    message_ids: List[int]
    read_at: Optional[datetime] = None


class UnreadCountResponse(BaseModel):
    unread_count: int


class PricingResponse(BaseModel):
    text_credits: int
    image_credits: int
    credit_value_usd: float
    creator_share_percent: int


class ImageUploadResponse(BaseModel):
    path: str
    image_url: Optional[str] = None
