"""
Logging helpers that append request context as `key=value` pairs.
"""

import logging
from typing import Optional

from core.logging import request_id_var


def get_request_id() -> str:
    return request_id_var.get("")


def format_context(user_id: Optional[int] = None, **kwargs) -> str:
    parts = []
    request_id = get_request_id()
    if request_id:
        parts.append(f"id={request_id}")
    if user_id:
        parts.append(f"user_id={user_id}")
    for key, value in kwargs.items():
        if value is not None:
            parts.append(f"{key}={value}")
    return " | ".join(parts)


def log_with_context(
    logger: logging.Logger,
    level: int,
    message: str,
    user_id: Optional[int] = None,
    exc_info: bool = False,
    **kwargs,
):
    context_str = format_context(user_id, **kwargs)
    full_message = f"{message} | {context_str}" if context_str else message
    logger.log(level, full_message, exc_info=exc_info)


def log_info(logger: logging.Logger, message: str, user_id: Optional[int] = None, **kwargs):
    log_with_context(logger, logging.INFO, message, user_id, **kwargs)


def log_warning(logger: logging.Logger, message: str, user_id: Optional[int] = None, **kwargs):
    log_with_context(logger, logging.WARNING, message, user_id, **kwargs)


def log_error(
    logger: logging.Logger,
    message: str,
    user_id: Optional[int] = None,
    exc_info: bool = False,
    **kwargs,
):
    log_with_context(logger, logging.ERROR, message, user_id, exc_info=exc_info, **kwargs)
