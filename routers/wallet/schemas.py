"""Wallet domain schemas."""

from datetime import datetime
from typing import List, Optional

from pydantic import BaseModel, Field


class LedgerEntryResponse(BaseModel):
    id: int
    asset: str
    delta: int
    balance_after: int
    kind: str
    external_ref_type: Optional[str] = None
    external_ref_id: Optional[str] = None
    created_at: datetime

    class Config:
        from_attributes = True


class WalletBalanceResponse(BaseModel):
    credit_balance: int
    available_earnings_minor: int
    available_earnings_usd: float
    recent_transactions: Optional[List[LedgerEntryResponse]] = None


class LedgerListResponse(BaseModel):
    entries: List[LedgerEntryResponse]
    limit: int = Field(..., ge=1)
    offset: int = Field(..., ge=0)
