"""Wallet facade for other domains.

Domains must not import routers.wallet directly; they go through this
object, which satisfies core.ports.wallet.WalletPort.
"""

from typing import Optional

from sqlalchemy.orm import Session


class WalletFacade:
    def get_balance(self, db: Session, *, user_id: int) -> int:
        from routers.wallet import service as wallet_service

        return wallet_service.default_wallet.get_balance(db, user_id=user_id)

    def atomic_debit(
        self, db: Session, *, user_id: int, amount: int, reference_id: Optional[str] = None
    ) -> int:
        from routers.wallet import service as wallet_service

        return wallet_service.default_wallet.atomic_debit(
            db, user_id=user_id, amount=amount, reference_id=reference_id
        )

    def credit_earnings(
        self, db: Session, *, user_id: int, amount_minor: int, reference_id: Optional[str] = None
    ) -> int:
        from routers.wallet import service as wallet_service

        return wallet_service.default_wallet.credit_earnings(
            db, user_id=user_id, amount_minor=amount_minor, reference_id=reference_id
        )


wallet = WalletFacade()
