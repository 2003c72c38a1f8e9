"""Payout repository for data access."""

from typing import Any
from uuid import UUID

from sqlalchemy.orm import Session

from app.models.payout import Payout, PayoutStatus, PayoutTransaction


class PayoutRepository:
    """Repository for Payout and its transaction links."""

    def __init__(self, db: Session):
        self.db = db

    def create(self, **fields: Any) -> Payout:
        payout = Payout(**fields)
        self.db.add(payout)
        self.db.flush()
        return payout

    def get_by_id(self, payout_id: UUID) -> Payout | None:
        return self.db.query(Payout).filter(Payout.id == payout_id).first()

    def link_transaction(self, payout_id: UUID, transaction_id: UUID) -> PayoutTransaction:
        link = PayoutTransaction(payout_id=payout_id, transaction_id=transaction_id)
        self.db.add(link)
        self.db.flush()
        return link

    def count_failed_for_transaction(self, transaction_id: UUID) -> int:
        return (
            self.db.query(Payout)
            .join(PayoutTransaction, PayoutTransaction.payout_id == Payout.id)
            .filter(
                PayoutTransaction.transaction_id == transaction_id,
                Payout.status == PayoutStatus.FAILED.value,
            )
            .count()
        )
