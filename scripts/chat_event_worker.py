"""
Drains the chat event queue and performs realtime fan-out and push
notifications outside the request path.

    python -m scripts.chat_event_worker
"""

import asyncio
import logging
import signal
from typing import Any, Callable, Dict, Optional

from redis.exceptions import RedisError

from core.config import ENVIRONMENT, LOG_LEVEL
from core.logging import configure_logging
from routers.messaging.events import QUEUE_HANDLERS
from utils.chat_redis import CHAT_EVENT_QUEUE_KEY, decode_chat_event, get_chat_redis

logger = logging.getLogger("chat_event_worker")


async def _run_blocking(func: Callable[..., Any], *args):
    loop = asyncio.get_running_loop()
    return await loop.run_in_executor(None, lambda: func(*args))


async def dispatch_event(
    raw_event: str, handlers: Optional[Dict[str, Callable[[Dict[str, Any]], None]]] = None
) -> bool:
    """Run the handler for one queued event. Returns False if it was discarded."""
    handlers = QUEUE_HANDLERS if handlers is None else handlers
    event = decode_chat_event(raw_event)
    if event is None:
        logger.warning("Discarded malformed chat event: %s", raw_event)
        return False

    handler = handlers.get(event["type"])
    if not handler:
        logger.warning("No handler for chat event type '%s'", event["type"])
        return False

    await _run_blocking(handler, event["payload"])
    return True


async def worker_loop(stop_event: asyncio.Event):
    redis = await get_chat_redis()
    if not redis:
        raise RuntimeError("Unable to initialize Redis client for chat worker")

    logger.info("Chat event worker started. Listening for events...")
    while not stop_event.is_set():
        try:
            item = await redis.blpop(CHAT_EVENT_QUEUE_KEY, timeout=5)
            if not item:
                continue
            _, raw_event = item
            await dispatch_event(raw_event)
        except asyncio.CancelledError:
            break
        except RedisError as exc:
            logger.error("Redis error in chat worker: %s", exc)
            await asyncio.sleep(1)
        except Exception as exc:
            logger.exception("Error processing chat event: %s", exc)
            await asyncio.sleep(1)

    logger.info("Chat event worker shutting down")


def main():
    configure_logging(environment=ENVIRONMENT, log_level=LOG_LEVEL)
    stop_event = asyncio.Event()

    def _handle_signal(signum, frame):
        logger.info("Received signal %s, stopping worker...", signum)
        stop_event.set()

    signal.signal(signal.SIGINT, _handle_signal)
    signal.signal(signal.SIGTERM, _handle_signal)

    asyncio.run(worker_loop(stop_event))


if __name__ == "__main__":
    main()
