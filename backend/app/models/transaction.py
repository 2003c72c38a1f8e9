"""Transaction model - the financial ledger entry of a rental."""

from enum import Enum

from sqlalchemy import (
    Boolean,
    Column,
    DateTime,
    ForeignKey,
    Index,
    Numeric,
    String,
    Text,
    text,
)

from app.core.database import Base
from app.models.shared import UUIDType, generate_uuid, utc_now


class TransactionStatus(str, Enum):
    """Transaction status enum."""

    PENDING = "pending"
    PAYMENT_PROCESSING = "payment_processing"
    PAYMENT_COMPLETED = "payment_completed"
    UNDER_REVIEW = "under_review"
    ACTIVE = "active"
    COMPLETED = "completed"
    PAYOUT_COMPLETED = "payout_completed"
    DISPUTED = "disputed"
    CANCELLED = "cancelled"
    REFUNDED = "refunded"


_ACTIVE_ROW = text("status != 'cancelled'")


class Transaction(Base):
    """Transaction model - amounts, commission snapshot and settlement status.

    At most one non-cancelled transaction exists per rental; the partial
    unique index enforces it under concurrent initiation.
    """

    __tablename__ = "transactions"
    __table_args__ = (
        Index(
            "uq_transactions_active_rental",
            "rental_id",
            unique=True,
            sqlite_where=_ACTIVE_ROW,
            postgresql_where=_ACTIVE_ROW,
        ),
        Index("ix_transactions_status_payout_scheduled_at", "status", "payout_scheduled_at"),
    )

    id = Column(UUIDType, primary_key=True, default=generate_uuid)
    rental_id = Column(
        UUIDType, ForeignKey("rentals.id", ondelete="RESTRICT"), nullable=False, index=True
    )

    # Amounts
    rental_amount = Column(Numeric(12, 2), nullable=False)
    security_deposit = Column(Numeric(12, 2), nullable=False, default=0)
    commission_rate = Column(Numeric(5, 4), nullable=False)
    commission_amount = Column(Numeric(12, 2), nullable=False)
    total_payer_amount = Column(Numeric(12, 2), nullable=False)
    owner_payout_amount = Column(Numeric(12, 2), nullable=False)
    currency = Column(String(3), nullable=False, default="USD")

    status = Column(String(30), nullable=False, default=TransactionStatus.PENDING.value)

    # Settlement timestamps
    payment_completed_at = Column(DateTime(timezone=True), nullable=True)
    payout_scheduled_at = Column(DateTime(timezone=True), nullable=True)
    payout_completed_at = Column(DateTime(timezone=True), nullable=True)
    deposit_refunded_at = Column(DateTime(timezone=True), nullable=True)

    # Disputes
    has_dispute = Column(Boolean, nullable=False, default=False)
    dispute_reason = Column(Text, nullable=True)
    dispute_opened_at = Column(DateTime(timezone=True), nullable=True)
    dispute_resolved_at = Column(DateTime(timezone=True), nullable=True)

    created_at = Column(DateTime(timezone=True), nullable=False, default=utc_now)
    updated_at = Column(DateTime(timezone=True), nullable=False, default=utc_now, onupdate=utc_now)
