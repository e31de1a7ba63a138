from fastapi import APIRouter

from . import wallet

router = APIRouter()
router.include_router(wallet.router)
