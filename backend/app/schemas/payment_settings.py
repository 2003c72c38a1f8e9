"""Payment settings schemas."""

from datetime import datetime
from decimal import Decimal
from uuid import UUID

from pydantic import BaseModel, ConfigDict, EmailStr, Field

from app.models.payment_settings import PayoutSchedule


class PaymentSettingsUpdate(BaseModel):
    """Schema for a partial update of a user's payment settings."""

    preferred_payout_method: str | None = Field(default=None, max_length=30)
    paypal_email: EmailStr | None = None
    custom_commission_rate: Decimal | None = Field(default=None, ge=0, le=1)
    is_commission_enabled: bool | None = None
    payout_schedule: PayoutSchedule | None = None
    payout_day_of_week: int | None = Field(default=None, ge=0, le=6)
    payout_day_of_month: int | None = Field(default=None, ge=1, le=31)
    minimum_payout_amount: Decimal | None = Field(default=None, ge=0)
    notify_on_payment_received: bool | None = None
    notify_on_payout_sent: bool | None = None
    notify_on_payout_failed: bool | None = None
    tax_info_provided: bool | None = None
    business_name: str | None = Field(default=None, max_length=255)
    business_type: str | None = Field(default=None, max_length=50)


class PaymentSettingsResponse(BaseModel):
    """Schema for payment settings response."""

    model_config = ConfigDict(from_attributes=True)

    id: UUID
    user_id: UUID
    preferred_payout_method: str
    paypal_email: str | None = None
    custom_commission_rate: Decimal | None = None
    is_commission_enabled: bool
    payout_schedule: str
    payout_day_of_week: int | None = None
    payout_day_of_month: int | None = None
    minimum_payout_amount: Decimal
    notify_on_payment_received: bool
    notify_on_payout_sent: bool
    notify_on_payout_failed: bool
    is_payout_verified: bool
    verified_at: datetime | None = None
    tax_info_provided: bool
    business_name: str | None = None
    business_type: str | None = None
    created_at: datetime
    updated_at: datetime


class CanReceivePaymentsResponse(BaseModel):
    """Whether an owner is set up to receive payouts."""

    owner_id: UUID
    can_receive_payments: bool
