"""Payment, transaction and payout schemas."""

from datetime import datetime
from decimal import Decimal
from typing import Any
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field


class CompletePaymentRequest(BaseModel):
    """Schema for completing a payment after payer approval."""

    payment_id: str = Field(..., min_length=1, description="Provider order or payment ID")
    payer_id: str = Field(..., min_length=1, description="Provider payer ID")


class RefundRequest(BaseModel):
    """Schema for refunding a rental."""

    amount: Decimal = Field(..., gt=0)
    reason: str = Field(..., min_length=1, max_length=500)


class ReviewDecisionRequest(BaseModel):
    """Schema for resolving a payment held for manual review."""

    approved: bool
    notes: str | None = Field(default=None, max_length=1000)


class PaymentResultResponse(BaseModel):
    """Outcome of a settlement operation."""

    success: bool
    error_message: str | None = None
    payment_id: UUID | None = None
    transaction_id: UUID | None = None
    order_id: str | None = None
    approval_url: str | None = None
    status: str | None = None
    requires_review: bool = False


class RefundResultResponse(BaseModel):
    """Outcome of a refund."""

    success: bool
    error_message: str | None = None
    refund_id: str | None = None
    refunded_amount: Decimal | None = None


class PayoutResultResponse(BaseModel):
    """Outcome of a payout."""

    success: bool
    error_message: str | None = None
    payout_id: UUID | None = None
    external_payout_id: str | None = None
    amount: Decimal | None = None


class ProcessPayoutsResponse(BaseModel):
    """Summary of a scheduled payout run."""

    processed: int
    succeeded: int
    failed: int


class ProviderStatusResponse(BaseModel):
    """Provider's view of a payment or payout."""

    success: bool
    status: str | None = None
    amount: Decimal | None = None
    currency: str | None = None
    error_message: str | None = None


class FeeBreakdownResponse(BaseModel):
    """Schema for a rental fee breakdown."""

    rental_amount: Decimal
    security_deposit: Decimal
    commission_rate: Decimal
    commission_amount: Decimal
    total_payer_amount: Decimal
    owner_payout_amount: Decimal


class TransactionResponse(BaseModel):
    """Schema for transaction response."""

    model_config = ConfigDict(from_attributes=True)

    id: UUID
    rental_id: UUID
    rental_amount: Decimal
    security_deposit: Decimal
    commission_rate: Decimal
    commission_amount: Decimal
    total_payer_amount: Decimal
    owner_payout_amount: Decimal
    currency: str
    status: str
    payment_completed_at: datetime | None = None
    payout_scheduled_at: datetime | None = None
    payout_completed_at: datetime | None = None
    deposit_refunded_at: datetime | None = None
    has_dispute: bool
    created_at: datetime


class PaymentResponse(BaseModel):
    """Schema for payment response."""

    model_config = ConfigDict(from_attributes=True)

    id: UUID
    rental_id: UUID
    transaction_id: UUID | None = None
    payer_id: str
    payee_id: str | None = None
    type: str
    status: str
    provider: str
    amount: Decimal
    currency: str
    external_payment_id: str | None = None
    external_order_id: str | None = None
    failure_reason: str | None = None
    refunded_amount: Decimal
    payment_metadata: dict[str, Any] | None = None
    created_at: datetime
    processed_at: datetime | None = None
