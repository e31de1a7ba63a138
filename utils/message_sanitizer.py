"""
Message sanitization to prevent XSS in rendered chat text.
"""

import logging

import bleach

from core.config import MESSAGE_SANITIZE_ENABLED

logger = logging.getLogger(__name__)

_ALLOWED_CONTROL_CHARS = {"\n", "\r", "\t"}


def strip_control_chars(text: str) -> str:
    return "".join(c for c in text if c.isprintable() or c in _ALLOWED_CONTROL_CHARS)


def sanitize_message(message: str, enabled: bool = MESSAGE_SANITIZE_ENABLED) -> str:
    """
    Strip HTML tags and control characters from a user message.

    The result is already trimmed; an empty string means nothing displayable
    was left.
    """
    if not message:
        return ""

    cleaned = message.strip()
    if not enabled:
        return cleaned

    # tags=[] allows no markup, strip=True drops tags instead of escaping them
    sanitized = bleach.clean(cleaned, tags=[], strip=True)
    return strip_control_chars(sanitized).strip()
