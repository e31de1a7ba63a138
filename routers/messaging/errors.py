"""
Messaging domain errors.

Each error carries the HTTP status and stable code the API reports. Only
InsufficientCredits and the validation errors expose a specific message to
the client; everything else uses the generic send failure text.
"""

from typing import Optional

from fastapi import HTTPException, status

GENERIC_SEND_FAILURE = "Failed to send message. Please try again."


class MessagingError(Exception):
    status_code = status.HTTP_500_INTERNAL_SERVER_ERROR
    code = "send_failed"
    retryable = False
    public_message: Optional[str] = None

    def client_message(self) -> str:
        return self.public_message or GENERIC_SEND_FAILURE

    def to_http(self) -> HTTPException:
        return HTTPException(
            status_code=self.status_code,
            detail={
                "code": self.code,
                "message": self.client_message(),
                "retryable": self.retryable,
            },
        )


class EmptyMessage(MessagingError):
    status_code = status.HTTP_400_BAD_REQUEST
    code = "empty_message"
    public_message = "Message cannot be empty."


class MessageTooLong(MessagingError):
    status_code = status.HTTP_400_BAD_REQUEST
    code = "message_too_long"

    def __init__(self, length: int, max_length: int):
        super().__init__(f"Message is {length} characters, max is {max_length}")
        self.length = length
        self.max_length = max_length

    def client_message(self) -> str:
        return f"Message too long (max {self.max_length} characters)."


class InvalidMessageType(MessagingError):
    status_code = status.HTTP_400_BAD_REQUEST
    code = "invalid_input"
    public_message = "Message type must be 'text' or 'image'."


class InvalidRecipient(MessagingError):
    status_code = status.HTTP_400_BAD_REQUEST
    code = "invalid_input"

    def __init__(self, reason: str):
        super().__init__(reason)
        self.reason = reason

    def client_message(self) -> str:
        return self.reason


class RecipientNotFound(MessagingError):
    status_code = status.HTTP_404_NOT_FOUND
    code = "not_found"
    public_message = "Recipient not found."


class ConversationNotFound(MessagingError):
    status_code = status.HTTP_404_NOT_FOUND
    code = "not_found"
    public_message = "Conversation not found."


class Unauthorized(MessagingError):
    status_code = status.HTTP_403_FORBIDDEN
    code = "forbidden"
    public_message = "You are not a participant in this conversation."


class InsufficientCredits(MessagingError):
    status_code = status.HTTP_402_PAYMENT_REQUIRED
    code = "insufficient_credits"

    def __init__(self, required: int, available: int):
        super().__init__(f"Required {required} credits, available {available}")
        self.required = required
        self.available = available

    def client_message(self) -> str:
        return (
            f"Not enough credits. This message costs {self.required} credits "
            f"and you have {self.available}. Top up to keep chatting."
        )

    def to_http(self) -> HTTPException:
        exc = super().to_http()
        exc.detail["required"] = self.required
        exc.detail["available"] = self.available
        return exc


class DuplicateConversation(MessagingError):
    status_code = status.HTTP_409_CONFLICT
    code = "conflict"

    def __init__(self, user_low_id: int, user_high_id: int):
        super().__init__(f"Conversation already exists for {user_low_id}/{user_high_id}")
        self.user_low_id = user_low_id
        self.user_high_id = user_high_id


class LedgerSettlementFailed(MessagingError):
    code = "send_failed"


class TransientIOFailure(MessagingError):
    status_code = status.HTTP_503_SERVICE_UNAVAILABLE
    code = "send_failed"
    retryable = True


class RateLimited(MessagingError):
    status_code = status.HTTP_429_TOO_MANY_REQUESTS
    code = "rate_limited"

    def __init__(self, retry_after_seconds: int):
        super().__init__(f"Rate limited, retry after {retry_after_seconds}s")
        self.retry_after_seconds = retry_after_seconds
        self.retryable = True

    def client_message(self) -> str:
        return f"You're sending messages too quickly. Try again in {self.retry_after_seconds}s."

    def to_http(self) -> HTTPException:
        exc = super().to_http()
        exc.headers = {"Retry-After": str(self.retry_after_seconds)}
        return exc
