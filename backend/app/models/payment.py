"""Payment model - a single money movement tied to a rental."""

from enum import Enum

from sqlalchemy import JSON, Column, DateTime, ForeignKey, Numeric, String, Text

from app.core.database import Base
from app.models.shared import UUIDType, generate_uuid, utc_now


class PaymentStatus(str, Enum):
    """Payment status enum."""

    PENDING = "pending"
    PROCESSING = "processing"
    COMPLETED = "completed"
    FAILED = "failed"
    UNDER_REVIEW = "under_review"
    CANCELLED = "cancelled"
    REFUNDED = "refunded"
    PARTIALLY_REFUNDED = "partially_refunded"


class PaymentType(str, Enum):
    """What a payment row represents. Never changes after creation."""

    RENTAL_PAYMENT = "rental_payment"
    PLATFORM_COMMISSION = "platform_commission"
    REFUND = "refund"
    DEPOSIT_REFUND = "deposit_refund"
    OWNER_PAYOUT = "owner_payout"


class PaymentProvider(str, Enum):
    """Supported payment providers."""

    PAYPAL = "paypal"
    PLATFORM = "platform"  # Internal bookkeeping entries such as commission


class Payment(Base):
    """Payment model - charges, refunds, commission skims and payouts."""

    __tablename__ = "payments"

    id = Column(UUIDType, primary_key=True, default=generate_uuid)
    rental_id = Column(
        UUIDType, ForeignKey("rentals.id", ondelete="RESTRICT"), nullable=False, index=True
    )
    transaction_id = Column(
        UUIDType, ForeignKey("transactions.id", ondelete="SET NULL"), nullable=True, index=True
    )

    # Parties; platform-owned sides use PLATFORM_ACCOUNT_ID
    payer_id = Column(String(36), nullable=False, index=True)
    payee_id = Column(String(36), nullable=True, index=True)

    type = Column(String(30), nullable=False)
    status = Column(String(30), nullable=False, default=PaymentStatus.PENDING.value)
    provider = Column(String(30), nullable=False, default=PaymentProvider.PAYPAL.value)

    amount = Column(Numeric(12, 2), nullable=False)
    currency = Column(String(3), nullable=False, default="USD")

    # Provider references
    external_payment_id = Column(String(255), nullable=True, index=True)
    external_order_id = Column(String(255), nullable=True, index=True)
    external_payer_id = Column(String(255), nullable=True)

    failure_reason = Column(Text, nullable=True)
    refunded_amount = Column(Numeric(12, 2), nullable=False, default=0)
    refund_reason = Column(Text, nullable=True)
    payment_metadata = Column(JSON, nullable=True, default=dict)

    # Timestamps
    created_at = Column(DateTime(timezone=True), nullable=False, default=utc_now)
    updated_at = Column(DateTime(timezone=True), nullable=False, default=utc_now, onupdate=utc_now)
    processed_at = Column(DateTime(timezone=True), nullable=True)
    failed_at = Column(DateTime(timezone=True), nullable=True)
    refunded_at = Column(DateTime(timezone=True), nullable=True)

    @property
    def is_refunded(self) -> bool:
        return self.status in (
            PaymentStatus.REFUNDED.value,
            PaymentStatus.PARTIALLY_REFUNDED.value,
        )
