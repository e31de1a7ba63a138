"""Wallet domain service layer."""

import logging
from typing import Optional

from sqlalchemy.orm import Session

from utils.pricing import minor_to_usd
from utils.wallet_ledger import (
    credit_earnings,
    debit_credits,
    get_credit_balance,
    get_earnings_balance,
    get_ledger_entries,
)

from .schemas import LedgerEntryResponse, LedgerListResponse, WalletBalanceResponse

logger = logging.getLogger(__name__)


class SqlWallet:
    """WalletPort backed by the wallets and wallet_ledger tables."""

    def get_balance(self, db: Session, *, user_id: int) -> int:
        return get_credit_balance(db, user_id)

    def atomic_debit(
        self,
        db: Session,
        *,
        user_id: int,
        amount: int,
        reference_id: Optional[str] = None,
    ) -> int:
        return debit_credits(
            db,
            user_id,
            amount,
            external_ref_type="message" if reference_id else None,
            external_ref_id=reference_id,
            idempotency_key=f"message:{reference_id}:debit" if reference_id else None,
        )

    def credit_earnings(
        self,
        db: Session,
        *,
        user_id: int,
        amount_minor: int,
        reference_id: Optional[str] = None,
    ) -> int:
        return credit_earnings(
            db,
            user_id,
            amount_minor,
            external_ref_type="message" if reference_id else None,
            external_ref_id=reference_id,
            idempotency_key=f"message:{reference_id}:earning" if reference_id else None,
        )


default_wallet = SqlWallet()


def get_wallet_summary(
    db: Session, *, current_user, include_transactions: bool = False
) -> WalletBalanceResponse:
    # Display only; the send path re-checks against the live balance
    earnings_minor = get_earnings_balance(db, current_user.account_id)
    recent = None
    if include_transactions:
        recent = [
            LedgerEntryResponse.model_validate(entry)
            for entry in get_ledger_entries(db, current_user.account_id, limit=20)
        ]
    return WalletBalanceResponse(
        credit_balance=get_credit_balance(db, current_user.account_id),
        available_earnings_minor=earnings_minor,
        available_earnings_usd=minor_to_usd(earnings_minor),
        recent_transactions=recent,
    )


def list_ledger(
    db: Session,
    *,
    current_user,
    asset: Optional[str],
    limit: int,
    offset: int,
) -> LedgerListResponse:
    entries = get_ledger_entries(
        db, current_user.account_id, asset=asset, limit=limit, offset=offset
    )
    return LedgerListResponse(
        entries=[LedgerEntryResponse.model_validate(entry) for entry in entries],
        limit=limit,
        offset=offset,
    )
