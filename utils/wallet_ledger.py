"""
Wallet Ledger Service

Credit balances and creator earnings with an append-only audit ledger.
Credits are whole units; earnings are stored in minor units (cents).

Balance changes are single conditional UPDATE statements so that two
concurrent spends can never take a wallet below zero. Callers own the
transaction: nothing here commits.
"""
import logging
from datetime import datetime
from typing import Optional

from sqlalchemy import select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from models import Wallet, WalletLedger

logger = logging.getLogger(__name__)

ASSET_CREDITS = "credits"
ASSET_USD = "usd"

KIND_MESSAGE_DEBIT = "message_debit"
KIND_MESSAGE_EARNING = "message_earning"
KIND_TOPUP = "topup"
KIND_ADJUSTMENT = "adjustment"


class InsufficientBalanceError(ValueError):
    def __init__(self, user_id: int, required: int, available: int):
        super().__init__(
            f"Insufficient balance. Required: {required}, Available: {available}"
        )
        self.user_id = user_id
        self.required = required
        self.available = available


def ensure_wallet(db: Session, user_id: int) -> None:
    """Create an empty wallet row for the user if none exists."""
    exists = db.execute(select(Wallet.user_id).where(Wallet.user_id == user_id)).first()
    if exists:
        return
    try:
        with db.begin_nested():
            db.add(Wallet(user_id=user_id, credit_balance=0, available_earnings_minor=0))
    except IntegrityError:
        # Created concurrently; the row is there now
        logger.debug(f"Wallet for user {user_id} created concurrently")


def get_credit_balance(db: Session, user_id: int) -> int:
    balance = db.execute(
        select(Wallet.credit_balance).where(Wallet.user_id == user_id)
    ).scalar_one_or_none()
    return balance or 0


def get_earnings_balance(db: Session, user_id: int) -> int:
    balance = db.execute(
        select(Wallet.available_earnings_minor).where(Wallet.user_id == user_id)
    ).scalar_one_or_none()
    return balance or 0


def _add_ledger_row(
    db: Session,
    *,
    user_id: int,
    asset: str,
    delta: int,
    balance_after: int,
    kind: str,
    external_ref_type: Optional[str],
    external_ref_id: Optional[str],
    idempotency_key: Optional[str],
) -> WalletLedger:
    entry = WalletLedger(
        user_id=user_id,
        asset=asset,
        delta=delta,
        balance_after=balance_after,
        kind=kind,
        external_ref_type=external_ref_type,
        external_ref_id=external_ref_id,
        idempotency_key=idempotency_key,
        created_at=datetime.utcnow(),
    )
    db.add(entry)
    return entry


def debit_credits(
    db: Session,
    user_id: int,
    amount: int,
    *,
    kind: str = KIND_MESSAGE_DEBIT,
    external_ref_type: Optional[str] = None,
    external_ref_id: Optional[str] = None,
    idempotency_key: Optional[str] = None,
) -> int:
    """
    Atomically take `amount` credits from the user's wallet.

    The decrement only applies when the balance covers it, so the check and
    the write cannot be separated by a concurrent spend.

    Returns:
        New credit balance

    Raises:
        ValueError: If amount is not positive
        InsufficientBalanceError: If the balance does not cover the amount
    """
    if amount <= 0:
        raise ValueError("amount must be positive")

    result = db.execute(
        update(Wallet)
        .where(Wallet.user_id == user_id, Wallet.credit_balance >= amount)
        .values(
            credit_balance=Wallet.credit_balance - amount,
            updated_at=datetime.utcnow(),
        )
        .execution_options(synchronize_session=False)
    )
    if result.rowcount == 0:
        raise InsufficientBalanceError(user_id, amount, get_credit_balance(db, user_id))

    new_balance = get_credit_balance(db, user_id)
    _add_ledger_row(
        db,
        user_id=user_id,
        asset=ASSET_CREDITS,
        delta=-amount,
        balance_after=new_balance,
        kind=kind,
        external_ref_type=external_ref_type,
        external_ref_id=external_ref_id,
        idempotency_key=idempotency_key,
    )
    db.flush()

    logger.info(
        f"Credits debited: user={user_id}, amount={amount}, balance={new_balance}, kind={kind}"
    )
    return new_balance


def add_credits(
    db: Session,
    user_id: int,
    amount: int,
    *,
    kind: str = KIND_TOPUP,
    external_ref_type: Optional[str] = None,
    external_ref_id: Optional[str] = None,
    idempotency_key: Optional[str] = None,
) -> int:
    """Grant credits to a user (top-ups, adjustments). Returns the new balance."""
    if amount <= 0:
        raise ValueError("amount must be positive")

    if idempotency_key:
        existing = db.query(WalletLedger).filter(WalletLedger.idempotency_key == idempotency_key).first()
        if existing:
            logger.info(f"Duplicate idempotency_key {idempotency_key} detected, returning existing balance")
            return existing.balance_after

    ensure_wallet(db, user_id)
    db.execute(
        update(Wallet)
        .where(Wallet.user_id == user_id)
        .values(credit_balance=Wallet.credit_balance + amount, updated_at=datetime.utcnow())
        .execution_options(synchronize_session=False)
    )
    new_balance = get_credit_balance(db, user_id)
    _add_ledger_row(
        db,
        user_id=user_id,
        asset=ASSET_CREDITS,
        delta=amount,
        balance_after=new_balance,
        kind=kind,
        external_ref_type=external_ref_type,
        external_ref_id=external_ref_id,
        idempotency_key=idempotency_key,
    )
    db.flush()
    return new_balance


def credit_earnings(
    db: Session,
    user_id: int,
    amount_minor: int,
    *,
    kind: str = KIND_MESSAGE_EARNING,
    external_ref_type: Optional[str] = None,
    external_ref_id: Optional[str] = None,
    idempotency_key: Optional[str] = None,
) -> int:
    """
    Add cash earnings (cents) to the user's available earnings.

    Returns:
        New earnings balance in minor units
    """
    if amount_minor <= 0:
        raise ValueError("amount_minor must be positive")

    ensure_wallet(db, user_id)
    result = db.execute(
        update(Wallet)
        .where(Wallet.user_id == user_id)
        .values(
            available_earnings_minor=Wallet.available_earnings_minor + amount_minor,
            updated_at=datetime.utcnow(),
        )
        .execution_options(synchronize_session=False)
    )
    if result.rowcount != 1:
        raise RuntimeError(f"Earnings credit for user {user_id} updated {result.rowcount} rows")

    new_balance = get_earnings_balance(db, user_id)
    _add_ledger_row(
        db,
        user_id=user_id,
        asset=ASSET_USD,
        delta=amount_minor,
        balance_after=new_balance,
        kind=kind,
        external_ref_type=external_ref_type,
        external_ref_id=external_ref_id,
        idempotency_key=idempotency_key,
    )
    db.flush()

    logger.info(
        f"Earnings credited: user={user_id}, amount_minor={amount_minor}, balance={new_balance}"
    )
    return new_balance


def get_ledger_entries(
    db: Session,
    user_id: int,
    asset: Optional[str] = None,
    kind: Optional[str] = None,
    limit: int = 100,
    offset: int = 0,
) -> list:
    """
    Get ledger entries for a user with optional filters, newest first.
    """
    query = db.query(WalletLedger).filter(WalletLedger.user_id == user_id)

    if asset:
        query = query.filter(WalletLedger.asset == asset)

    if kind:
        query = query.filter(WalletLedger.kind == kind)

    return (
        query.order_by(WalletLedger.created_at.desc(), WalletLedger.id.desc())
        .offset(offset)
        .limit(limit)
        .all()
    )
