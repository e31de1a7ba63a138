"""
Message pricing.

Single source of truth for what a message costs the seeker and how the cash
value is split between the earner and the platform. All cash amounts are in
minor units (cents).
"""

from dataclasses import dataclass
from decimal import ROUND_HALF_UP, Decimal

from core.config import (
    CREATOR_SHARE_PERCENT,
    CREDIT_VALUE_MINOR,
    MESSAGE_IMAGE_CREDITS,
    MESSAGE_TEXT_CREDITS,
)
from models import MESSAGE_TYPE_IMAGE, MESSAGE_TYPE_TEXT


@dataclass(frozen=True)
class MessageQuote:
    credits: int
    gross_minor: int
    earner_amount_minor: int
    platform_fee_minor: int

    @property
    def is_free(self) -> bool:
        return self.credits == 0


FREE_QUOTE = MessageQuote(credits=0, gross_minor=0, earner_amount_minor=0, platform_fee_minor=0)


def minor_to_usd(amount_minor: int) -> float:
    return float(Decimal(amount_minor) / Decimal(100))


@dataclass(frozen=True)
class PricingPolicy:
    text_credits: int = MESSAGE_TEXT_CREDITS
    image_credits: int = MESSAGE_IMAGE_CREDITS
    credit_value_minor: int = CREDIT_VALUE_MINOR
    creator_share_percent: int = CREATOR_SHARE_PERCENT

    def __post_init__(self):
        if self.text_credits < 0 or self.image_credits < 0:
            raise ValueError("message prices cannot be negative")
        if self.credit_value_minor <= 0:
            raise ValueError("credit_value_minor must be positive")
        if not 0 <= self.creator_share_percent <= 100:
            raise ValueError("creator_share_percent must be between 0 and 100")

    def credits_for(self, message_type: str) -> int:
        if message_type == MESSAGE_TYPE_TEXT:
            return self.text_credits
        if message_type == MESSAGE_TYPE_IMAGE:
            return self.image_credits
        raise ValueError(f"Unknown message type: {message_type}")

    def quote(self, message_type: str, sender_is_seeker: bool) -> MessageQuote:
        """Price a message. Earners always send for free."""
        credits = self.credits_for(message_type)
        if not sender_is_seeker or credits == 0:
            return FREE_QUOTE

        gross_minor = credits * self.credit_value_minor
        earner_minor = int(
            (Decimal(gross_minor) * Decimal(self.creator_share_percent) / Decimal(100)).quantize(
                Decimal("1"), rounding=ROUND_HALF_UP
            )
        )
        # Platform keeps the remainder so the split always sums to gross
        return MessageQuote(
            credits=credits,
            gross_minor=gross_minor,
            earner_amount_minor=earner_minor,
            platform_fee_minor=gross_minor - earner_minor,
        )

    def as_dict(self) -> dict:
        return {
            "text_credits": self.text_credits,
            "image_credits": self.image_credits,
            "credit_value_usd": minor_to_usd(self.credit_value_minor),
            "creator_share_percent": self.creator_share_percent,
        }


default_pricing_policy = PricingPolicy()
