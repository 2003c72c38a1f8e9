from app.schemas.payment import (
    CompletePaymentRequest,
    FeeBreakdownResponse,
    PaymentResponse,
    PaymentResultResponse,
    PayoutResultResponse,
    ProcessPayoutsResponse,
    ProviderStatusResponse,
    RefundRequest,
    RefundResultResponse,
    ReviewDecisionRequest,
    TransactionResponse,
)
from app.schemas.payment_settings import (
    CanReceivePaymentsResponse,
    PaymentSettingsResponse,
    PaymentSettingsUpdate,
)

__all__ = [
    "CanReceivePaymentsResponse",
    "CompletePaymentRequest",
    "FeeBreakdownResponse",
    "PaymentResponse",
    "PaymentResultResponse",
    "PaymentSettingsResponse",
    "PaymentSettingsUpdate",
    "PayoutResultResponse",
    "ProcessPayoutsResponse",
    "ProviderStatusResponse",
    "RefundRequest",
    "RefundResultResponse",
    "ReviewDecisionRequest",
    "TransactionResponse",
]
