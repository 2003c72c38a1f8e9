"""Payment provider abstraction layer.

Adapters report business-level outcomes (declines, non-2xx responses,
timeouts) through result objects and only raise PaymentProviderError for
transport or serialization failures.
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from decimal import Decimal
from typing import Any
from uuid import UUID

from app.models.payment import PaymentProvider


@dataclass
class CreatePaymentRequest:
    """Request to create a provider-side payment the payer must approve."""

    rental_id: UUID
    amount: Decimal
    currency: str
    description: str
    return_url: str
    cancel_url: str
    payee_email: str | None = None
    platform_fee: Decimal | None = None
    is_marketplace_payment: bool = False
    metadata: dict[str, Any] = field(default_factory=dict)


@dataclass
class CreatePaymentResult:
    """Result of creating a payment."""

    success: bool
    payment_id: str | None = None
    order_id: str | None = None
    approval_url: str | None = None
    status: str | None = None
    error_message: str | None = None


@dataclass
class CapturePaymentRequest:
    """Request to capture an approved payment."""

    payment_id: str
    payer_id: str


@dataclass
class CapturePaymentResult:
    """Result of capturing a payment."""

    success: bool
    capture_id: str | None = None
    amount: Decimal | None = None
    currency: str | None = None
    status: str | None = None
    error_message: str | None = None


@dataclass
class PaymentStatusResult:
    """Provider's own view of a payment."""

    success: bool
    status: str | None = None
    amount: Decimal | None = None
    currency: str | None = None
    payer_id: str | None = None
    error_message: str | None = None


@dataclass
class RefundPaymentRequest:
    """Request to refund all or part of a captured payment."""

    payment_id: str
    amount: Decimal
    currency: str
    reason: str


@dataclass
class RefundResult:
    """Result of a refund."""

    success: bool
    refund_id: str | None = None
    amount: Decimal | None = None
    status: str | None = None
    error_message: str | None = None


@dataclass
class CreatePayoutRequest:
    """Request to disburse funds to a recipient."""

    recipient_email: str
    amount: Decimal
    currency: str
    sender_batch_id: str
    note: str = ""
    recipient_id: UUID | None = None


@dataclass
class CreatePayoutResult:
    """Result of creating a payout."""

    success: bool
    payout_id: str | None = None
    batch_id: str | None = None
    status: str | None = None
    error_message: str | None = None


@dataclass
class PayoutStatusResult:
    """Provider's own view of a payout."""

    success: bool
    status: str | None = None
    amount: Decimal | None = None
    currency: str | None = None
    error_message: str | None = None


@dataclass
class WebhookValidationResult:
    """Result of webhook signature validation."""

    is_valid: bool
    error_message: str | None = None


@dataclass
class WebhookProcessResult:
    """Structured view of a webhook event."""

    success: bool
    event_type: str | None = None
    resource_id: str | None = None
    payer_id: str | None = None
    summary: str | None = None
    error_message: str | None = None
    metadata: dict[str, Any] = field(default_factory=dict)


class PaymentProviderBase(ABC):
    """Abstract base class for payment providers."""

    @property
    @abstractmethod
    def provider_name(self) -> PaymentProvider:
        """Return the provider enum value."""
        pass  # pragma: no cover

    @property
    def is_configured(self) -> bool:
        return True

    @abstractmethod
    async def create_payment(self, request: CreatePaymentRequest) -> CreatePaymentResult:
        """Create a payment the payer approves on the provider's site."""
        pass  # pragma: no cover

    @abstractmethod
    async def capture_payment(self, request: CapturePaymentRequest) -> CapturePaymentResult:
        """Capture an approved payment."""
        pass  # pragma: no cover

    @abstractmethod
    async def get_payment_status(self, payment_id: str) -> PaymentStatusResult:
        """Query the provider for a payment's status and amount."""
        pass  # pragma: no cover

    @abstractmethod
    async def refund_payment(self, request: RefundPaymentRequest) -> RefundResult:
        """Refund all or part of a captured payment."""
        pass  # pragma: no cover

    @abstractmethod
    async def create_payout(self, request: CreatePayoutRequest) -> CreatePayoutResult:
        """Send funds to a recipient."""
        pass  # pragma: no cover

    @abstractmethod
    async def get_payout_status(self, payout_id: str) -> PayoutStatusResult:
        """Query the provider for a payout's status."""
        pass  # pragma: no cover

    @abstractmethod
    async def validate_webhook(
        self, payload: bytes, headers: dict[str, str]
    ) -> WebhookValidationResult:
        """Verify that a webhook came from the provider."""
        pass  # pragma: no cover

    @abstractmethod
    async def process_webhook(self, payload: dict[str, Any]) -> WebhookProcessResult:
        """Parse a webhook payload into a structured result."""
        pass  # pragma: no cover


def get_payment_provider(provider: PaymentProvider | str) -> PaymentProviderBase:
    """Factory function to get a payment provider instance."""
    from app.services.payment_providers.paypal import PayPalProvider

    provider = PaymentProvider(provider)
    providers: dict[PaymentProvider, type[PaymentProviderBase]] = {
        PaymentProvider.PAYPAL: PayPalProvider,
    }

    provider_class = providers.get(provider)
    if not provider_class:
        raise ValueError(f"Unsupported payment provider: {provider}")

    return provider_class()
