"""Payment repository for data access."""

from datetime import datetime
from typing import Any
from uuid import UUID

from sqlalchemy import or_
from sqlalchemy.orm import Session

from app.models.payment import Payment, PaymentStatus, PaymentType


class PaymentRepository:
    """Repository for Payment model."""

    def __init__(self, db: Session):
        self.db = db

    def create(self, **fields: Any) -> Payment:
        payment = Payment(**fields)
        self.db.add(payment)
        self.db.flush()
        return payment

    def get_by_id(self, payment_id: UUID, for_update: bool = False) -> Payment | None:
        query = self.db.query(Payment).filter(Payment.id == payment_id)
        if for_update:
            query = query.with_for_update()
        return query.first()

    def get_by_external_id(self, external_id: str, for_update: bool = False) -> Payment | None:
        """Get a payment by provider order ID or provider payment ID."""
        query = self.db.query(Payment).filter(
            or_(
                Payment.external_order_id == external_id,
                Payment.external_payment_id == external_id,
            )
        )
        if for_update:
            query = query.with_for_update()
        return query.order_by(Payment.created_at).first()

    def get_rental_payment(
        self,
        rental_id: UUID,
        statuses: list[PaymentStatus],
        for_update: bool = False,
    ) -> Payment | None:
        """Get the original rental charge for a rental in one of ``statuses``."""
        query = self.db.query(Payment).filter(
            Payment.rental_id == rental_id,
            Payment.type == PaymentType.RENTAL_PAYMENT.value,
            Payment.status.in_([s.value for s in statuses]),
        )
        if for_update:
            query = query.with_for_update()
        return query.order_by(Payment.created_at.desc()).first()

    def get_pending_by_transaction(self, transaction_id: UUID) -> list[Payment]:
        return (
            self.db.query(Payment)
            .filter(
                Payment.transaction_id == transaction_id,
                Payment.status == PaymentStatus.PENDING.value,
            )
            .all()
        )

    def get_processed_by_payer_since(self, payer_id: str, since: datetime) -> list[Payment]:
        """Rental charges a payer has had processed since ``since``."""
        return (
            self.db.query(Payment)
            .filter(
                Payment.payer_id == payer_id,
                Payment.type == PaymentType.RENTAL_PAYMENT.value,
                Payment.processed_at.isnot(None),
                Payment.processed_at >= since,
            )
            .all()
        )

    def count_between_parties_since(self, party_a: str, party_b: str, since: datetime) -> int:
        """Count processed rental charges in either direction between two users."""
        return (
            self.db.query(Payment)
            .filter(
                Payment.type == PaymentType.RENTAL_PAYMENT.value,
                Payment.processed_at.isnot(None),
                Payment.processed_at >= since,
                or_(
                    (Payment.payer_id == party_a) & (Payment.payee_id == party_b),
                    (Payment.payer_id == party_b) & (Payment.payee_id == party_a),
                ),
            )
            .count()
        )
