from typing import Optional

from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session

from core.db import get_db
from routers.dependencies import get_current_user

from .schemas import LedgerListResponse, WalletBalanceResponse
from .service import get_wallet_summary as service_get_wallet_summary
from .service import list_ledger as service_list_ledger

router = APIRouter(prefix="/wallet", tags=["Wallet"])


@router.get("/me", response_model=WalletBalanceResponse)
def get_wallet_info(
    include_transactions: bool = False,
    db: Session = Depends(get_db),
    current_user=Depends(get_current_user),
):
    """Credit balance and creator earnings for the current user."""
    return service_get_wallet_summary(
        db, current_user=current_user, include_transactions=include_transactions
    )


@router.get("/ledger", response_model=LedgerListResponse)
def list_ledger_entries(
    asset: Optional[str] = Query(default=None, pattern="^(credits|usd)$"),
    limit: int = Query(default=50, ge=1, le=100),
    offset: int = Query(default=0, ge=0),
    db: Session = Depends(get_db),
    current_user=Depends(get_current_user),
):
    return service_list_ledger(
        db, current_user=current_user, asset=asset, limit=limit, offset=offset
    )
