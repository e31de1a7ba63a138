from fastapi import APIRouter

from . import conversations, messages, streams

router = APIRouter(prefix="/messages")
router.include_router(messages.router)
router.include_router(conversations.router)
router.include_router(streams.router)
