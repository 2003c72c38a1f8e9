"""Payout model - a disbursement to a tool owner."""

from enum import Enum

from sqlalchemy import JSON, Column, DateTime, ForeignKey, Integer, Numeric, String, Text

from app.core.database import Base
from app.models.shared import EncryptedString, UUIDType, generate_uuid, utc_now


class PayoutStatus(str, Enum):
    """Payout status enum."""

    PENDING = "pending"
    SCHEDULED = "scheduled"
    PROCESSING = "processing"
    ON_HOLD = "on_hold"
    COMPLETED = "completed"
    FAILED = "failed"
    CANCELLED = "cancelled"


class Payout(Base):
    """Payout model - may settle several transactions at once."""

    __tablename__ = "payouts"

    id = Column(UUIDType, primary_key=True, default=generate_uuid)
    recipient_id = Column(
        UUIDType, ForeignKey("users.id", ondelete="RESTRICT"), nullable=False, index=True
    )
    status = Column(String(20), nullable=False, default=PayoutStatus.PENDING.value)
    provider = Column(String(30), nullable=False, default="paypal")

    amount = Column(Numeric(12, 2), nullable=False)
    currency = Column(String(3), nullable=False, default="USD")
    platform_fee = Column(Numeric(12, 2), nullable=False, default=0)
    net_amount = Column(Numeric(12, 2), nullable=False)

    payout_method = Column(String(30), nullable=False, default="paypal")
    payout_destination = Column(EncryptedString, nullable=True)

    external_payout_id = Column(String(255), nullable=True, index=True)
    external_batch_id = Column(String(255), nullable=True)
    failure_reason = Column(Text, nullable=True)
    retry_count = Column(Integer, nullable=False, default=0)
    payout_metadata = Column(JSON, nullable=True, default=dict)

    # Timestamps
    created_at = Column(DateTime(timezone=True), nullable=False, default=utc_now)
    scheduled_at = Column(DateTime(timezone=True), nullable=True)
    processed_at = Column(DateTime(timezone=True), nullable=True)
    completed_at = Column(DateTime(timezone=True), nullable=True)
    failed_at = Column(DateTime(timezone=True), nullable=True)


class PayoutTransaction(Base):
    """Join table linking Payouts to the Transactions they settle."""

    __tablename__ = "payout_transactions"

    id = Column(UUIDType, primary_key=True, default=generate_uuid)
    payout_id = Column(
        UUIDType,
        ForeignKey("payouts.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    transaction_id = Column(
        UUIDType,
        ForeignKey("transactions.id", ondelete="RESTRICT"),
        nullable=False,
        index=True,
    )
    created_at = Column(DateTime(timezone=True), nullable=False, default=utc_now)
