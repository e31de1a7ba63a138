from typing import Optional, Protocol

from sqlalchemy.orm import Session


class WalletPort(Protocol):
    def get_balance(self, db: Session, *, user_id: int) -> int: ...

    def atomic_debit(
        self,
        db: Session,
        *,
        user_id: int,
        amount: int,
        reference_id: Optional[str] = None,
    ) -> int: ...

    def credit_earnings(
        self,
        db: Session,
        *,
        user_id: int,
        amount_minor: int,
        reference_id: Optional[str] = None,
    ) -> int: ...
