"""Transaction repository for data access."""

from datetime import datetime
from typing import Any
from uuid import UUID

from sqlalchemy.orm import Session

from app.models.transaction import Transaction, TransactionStatus


class TransactionRepository:
    """Repository for Transaction model.

    Methods only flush; the caller's unit of work commits.
    """

    def __init__(self, db: Session):
        self.db = db

    def create(self, **fields: Any) -> Transaction:
        transaction = Transaction(**fields)
        self.db.add(transaction)
        self.db.flush()
        return transaction

    def get_by_id(self, transaction_id: UUID, for_update: bool = False) -> Transaction | None:
        query = self.db.query(Transaction).filter(Transaction.id == transaction_id)
        if for_update:
            query = query.with_for_update()
        return query.first()

    def get_active_by_rental(self, rental_id: UUID, for_update: bool = False) -> Transaction | None:
        """Get the non-cancelled transaction of a rental, if any."""
        query = self.db.query(Transaction).filter(
            Transaction.rental_id == rental_id,
            Transaction.status != TransactionStatus.CANCELLED.value,
        )
        if for_update:
            query = query.with_for_update()
        return query.first()

    def get_latest_by_rental(self, rental_id: UUID) -> Transaction | None:
        return (
            self.db.query(Transaction)
            .filter(Transaction.rental_id == rental_id)
            .order_by(Transaction.created_at.desc())
            .first()
        )

    def get_due_for_payout(self, now: datetime) -> list[Transaction]:
        """Captured transactions whose payout time has passed and that are not paid out."""
        return (
            self.db.query(Transaction)
            .filter(
                Transaction.status == TransactionStatus.PAYMENT_COMPLETED.value,
                Transaction.payout_scheduled_at.isnot(None),
                Transaction.payout_scheduled_at <= now,
                Transaction.payout_completed_at.is_(None),
            )
            .order_by(Transaction.payout_scheduled_at)
            .all()
        )

    def get_processing_created_before(self, cutoff: datetime) -> list[Transaction]:
        """Transactions still awaiting payer approval that were started before ``cutoff``."""
        return (
            self.db.query(Transaction)
            .filter(
                Transaction.status == TransactionStatus.PAYMENT_PROCESSING.value,
                Transaction.created_at < cutoff,
            )
            .all()
        )
