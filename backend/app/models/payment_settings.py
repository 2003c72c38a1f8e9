"""PaymentSettings model - per-user payout configuration."""

from enum import Enum

from sqlalchemy import Boolean, Column, DateTime, ForeignKey, Integer, Numeric, String

from app.core.database import Base
from app.models.shared import EncryptedString, UUIDType, generate_uuid, utc_now


class PayoutSchedule(str, Enum):
    """How often an owner is paid out."""

    ON_DEMAND = "on_demand"
    DAILY = "daily"
    WEEKLY = "weekly"
    BI_WEEKLY = "bi_weekly"
    MONTHLY = "monthly"


class PaymentSettings(Base):
    """Payout preferences of a user. One row per user."""

    __tablename__ = "payment_settings"

    id = Column(UUIDType, primary_key=True, default=generate_uuid)
    user_id = Column(
        UUIDType,
        ForeignKey("users.id", ondelete="CASCADE"),
        nullable=False,
        unique=True,
        index=True,
    )

    preferred_payout_method = Column(String(30), nullable=False, default="paypal")
    paypal_email = Column(EncryptedString, nullable=True)

    # Commission override
    custom_commission_rate = Column(Numeric(5, 4), nullable=True)
    is_commission_enabled = Column(Boolean, nullable=False, default=True)

    # Payout schedule; day_of_week follows date.weekday() (0 = Monday)
    payout_schedule = Column(String(20), nullable=False, default=PayoutSchedule.ON_DEMAND.value)
    payout_day_of_week = Column(Integer, nullable=True)
    payout_day_of_month = Column(Integer, nullable=True)
    minimum_payout_amount = Column(Numeric(12, 2), nullable=False)

    # Notifications
    notify_on_payment_received = Column(Boolean, nullable=False, default=True)
    notify_on_payout_sent = Column(Boolean, nullable=False, default=True)
    notify_on_payout_failed = Column(Boolean, nullable=False, default=True)

    # Verification and tax details
    is_payout_verified = Column(Boolean, nullable=False, default=False)
    verified_at = Column(DateTime(timezone=True), nullable=True)
    tax_info_provided = Column(Boolean, nullable=False, default=False)
    business_name = Column(String(255), nullable=True)
    business_type = Column(String(50), nullable=True)

    created_at = Column(DateTime(timezone=True), nullable=False, default=utc_now)
    updated_at = Column(DateTime(timezone=True), nullable=False, default=utc_now, onupdate=utc_now)
