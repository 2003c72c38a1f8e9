"""Rental repository for data access."""

from datetime import datetime
from uuid import UUID

from sqlalchemy.orm import Session

from app.models.rental import Rental, RentalStatus


class RentalRepository:
    """Repository for Rental model.

    The settlement core only reads rentals and advances them to approved
    once payment is captured.
    """

    def __init__(self, db: Session):
        self.db = db

    def get_by_id(self, rental_id: UUID) -> Rental | None:
        return self.db.query(Rental).filter(Rental.id == rental_id).first()

    def mark_approved(self, rental: Rental, approved_at: datetime) -> Rental:
        """Advance a pending rental to approved after its payment is captured."""
        if rental.status == RentalStatus.PENDING.value:
            rental.status = RentalStatus.APPROVED.value  # type: ignore[assignment]
            rental.approved_at = approved_at  # type: ignore[assignment]
            self.db.flush()
        return rental
