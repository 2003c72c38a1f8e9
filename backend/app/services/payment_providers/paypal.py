"""PayPal payment provider implementation.

Uses the Orders v2 API for checkout (create -> payer approves -> capture),
the Payments v2 API for refunds against a capture and Payouts v1 for owner
disbursements. Webhooks are checked locally for freshness and then verified
through PayPal's verify-webhook-signature endpoint.
"""

import json
import logging
from datetime import UTC, datetime, timedelta
from decimal import Decimal
from typing import Any

import httpx

from app.core.config import settings
from app.core.errors import PaymentProviderError
from app.models.payment import PaymentProvider
from app.services.payment_provider import (
    CapturePaymentRequest,
    CapturePaymentResult,
    CreatePaymentRequest,
    CreatePaymentResult,
    CreatePayoutRequest,
    CreatePayoutResult,
    PaymentProviderBase,
    PaymentStatusResult,
    PayoutStatusResult,
    RefundPaymentRequest,
    RefundResult,
    WebhookProcessResult,
    WebhookValidationResult,
)

logger = logging.getLogger(__name__)

REQUIRED_WEBHOOK_HEADERS = (
    "PAYPAL-AUTH-ALGO",
    "PAYPAL-CERT-URL",
    "PAYPAL-TRANSMISSION-ID",
    "PAYPAL-TRANSMISSION-SIG",
    "PAYPAL-TRANSMISSION-TIME",
)

# Refresh the OAuth token this long before PayPal says it expires
TOKEN_EXPIRY_MARGIN = timedelta(seconds=60)


def _money(value: Decimal) -> str:
    return f"{Decimal(str(value)):.2f}"


def _parse_amount(amount: dict[str, Any] | None) -> tuple[Decimal | None, str | None]:
    if not amount or amount.get("value") is None:
        return None, None
    currency = amount.get("currency_code") or amount.get("currency")
    return Decimal(str(amount["value"])), currency


class PayPalProvider(PaymentProviderBase):
    """PayPal REST API adapter."""

    def __init__(
        self,
        client_id: str | None = None,
        client_secret: str | None = None,
        mode: str | None = None,
        webhook_id: str | None = None,
        http_client: httpx.AsyncClient | None = None,
        timeout: float | None = None,
    ):
        self.client_id = client_id or settings.paypal_client_id
        self.client_secret = client_secret or settings.paypal_client_secret
        self.mode = mode or settings.paypal_mode
        self.webhook_id = webhook_id or settings.paypal_webhook_id
        self.timeout = timeout or settings.PAYMENT_PROVIDER_TIMEOUT_SECONDS
        self._base_url = (
            "https://api-m.paypal.com" if self.mode == "live" else "https://api-m.sandbox.paypal.com"
        )
        self._client = http_client
        self._access_token: str | None = None
        self._token_expires_at: datetime | None = None

    @property
    def provider_name(self) -> PaymentProvider:
        return PaymentProvider.PAYPAL

    @property
    def is_configured(self) -> bool:
        return bool(self.client_id and self.client_secret)

    async def _post_form(self, url: str, data: dict[str, str]) -> httpx.Response:
        auth = (self.client_id, self.client_secret)
        if self._client is not None:
            return await self._client.post(url, data=data, auth=auth)
        async with httpx.AsyncClient(timeout=self.timeout) as client:
            return await client.post(url, data=data, auth=auth)

    async def _get_access_token(self) -> str:
        """Get an OAuth access token, reusing the cached one until it nearly expires."""
        now = datetime.now(UTC)
        if (
            self._access_token
            and self._token_expires_at
            and now < self._token_expires_at - TOKEN_EXPIRY_MARGIN
        ):
            return self._access_token

        try:
            response = await self._post_form(
                f"{self._base_url}/v1/oauth2/token",
                {"grant_type": "client_credentials"},
            )
        except httpx.HTTPError as e:
            raise PaymentProviderError("PayPal", f"authentication failed: {e}") from e

        if response.is_error:
            raise PaymentProviderError(
                "PayPal", f"authentication failed with status {response.status_code}"
            )

        data = self._decode(response)
        self._access_token = data["access_token"]
        self._token_expires_at = now + timedelta(seconds=int(data.get("expires_in", 3600)))
        return self._access_token

    @staticmethod
    def _decode(response: httpx.Response) -> dict[str, Any]:
        if not response.content:
            return {}
        try:
            result: dict[str, Any] = response.json()
            return result
        except json.JSONDecodeError as e:
            raise PaymentProviderError("PayPal", f"invalid JSON response: {e}") from e

    @staticmethod
    def _error_message(response: httpx.Response) -> str:
        try:
            body = response.json()
        except json.JSONDecodeError:
            body = {}
        if not isinstance(body, dict):
            body = {}
        detail = body.get("message") or body.get("error_description") or body.get("name")
        if detail:
            return f"PayPal error {response.status_code}: {detail}"
        return f"PayPal error {response.status_code}"

    async def _execute(
        self,
        method: str,
        endpoint: str,
        body: dict[str, Any] | None = None,
    ) -> tuple[dict[str, Any] | None, str | None]:
        """Call the PayPal API.

        Returns:
            (data, None) on a 2xx response, (None, error_message) on a non-2xx
            response or a timeout.

        Raises:
            PaymentProviderError: On other transport or decoding failures.
        """
        token = await self._get_access_token()
        url = f"{self._base_url}{endpoint}"
        headers = {
            "Authorization": f"Bearer {token}",
            "Content-Type": "application/json",
            "Accept": "application/json",
        }

        try:
            if self._client is not None:
                response = await self._client.request(method, url, json=body, headers=headers)
            else:
                async with httpx.AsyncClient(timeout=self.timeout) as client:
                    response = await client.request(method, url, json=body, headers=headers)
        except httpx.TimeoutException:
            logger.warning("PayPal %s %s timed out", method, endpoint)
            return None, "PayPal request timed out"
        except httpx.HTTPError as e:
            raise PaymentProviderError("PayPal", str(e)) from e

        if response.is_error:
            message = self._error_message(response)
            logger.warning("PayPal %s %s failed: %s", method, endpoint, message)
            return None, message

        return self._decode(response), None

    async def create_payment(self, request: CreatePaymentRequest) -> CreatePaymentResult:
        """Create a PayPal order with intent CAPTURE."""
        purchase_unit: dict[str, Any] = {
            "reference_id": str(request.rental_id),
            "description": request.description,
            "amount": {"currency_code": request.currency, "value": _money(request.amount)},
        }
        if request.is_marketplace_payment and request.payee_email:
            purchase_unit["payee"] = {"email_address": request.payee_email}
        if request.is_marketplace_payment and request.platform_fee is not None:
            purchase_unit["payment_instruction"] = {
                "platform_fees": [
                    {
                        "amount": {
                            "currency_code": request.currency,
                            "value": _money(request.platform_fee),
                        }
                    }
                ]
            }

        order = {
            "intent": "CAPTURE",
            "purchase_units": [purchase_unit],
            "application_context": {
                "return_url": request.return_url,
                "cancel_url": request.cancel_url,
                "shipping_preference": "NO_SHIPPING",
                "user_action": "PAY_NOW",
            },
        }

        data, error = await self._execute("POST", "/v2/checkout/orders", order)
        if data is None:
            return CreatePaymentResult(success=False, error_message=error)

        approval_url = next(
            (
                link["href"]
                for link in data.get("links", [])
                if link.get("rel") in ("approve", "payer-action")
            ),
            None,
        )
        return CreatePaymentResult(
            success=True,
            payment_id=data.get("id"),
            order_id=data.get("id"),
            approval_url=approval_url,
            status=data.get("status"),
        )

    async def capture_payment(self, request: CapturePaymentRequest) -> CapturePaymentResult:
        """Capture an approved order."""
        data, error = await self._execute(
            "POST", f"/v2/checkout/orders/{request.payment_id}/capture", {}
        )
        if data is None:
            return CapturePaymentResult(success=False, error_message=error)

        status = data.get("status")
        captures = (
            (data.get("purchase_units") or [{}])[0].get("payments", {}).get("captures", [])
        )
        capture = captures[0] if captures else {}
        amount, currency = _parse_amount(capture.get("amount"))

        if status != "COMPLETED":
            return CapturePaymentResult(
                success=False,
                status=status,
                error_message=f"Capture not completed (status {status})",
            )

        return CapturePaymentResult(
            success=True,
            capture_id=capture.get("id"),
            amount=amount,
            currency=currency,
            status=status,
        )

    async def get_payment_status(self, payment_id: str) -> PaymentStatusResult:
        """Read an order back from PayPal."""
        data, error = await self._execute("GET", f"/v2/checkout/orders/{payment_id}")
        if data is None:
            return PaymentStatusResult(success=False, error_message=error)

        purchase_unit = (data.get("purchase_units") or [{}])[0]
        amount, currency = _parse_amount(purchase_unit.get("amount"))
        return PaymentStatusResult(
            success=True,
            status=data.get("status"),
            amount=amount,
            currency=currency,
            payer_id=(data.get("payer") or {}).get("payer_id"),
        )

    async def refund_payment(self, request: RefundPaymentRequest) -> RefundResult:
        """Refund all or part of a capture."""
        body = {
            "amount": {"currency_code": request.currency, "value": _money(request.amount)},
            "note_to_payer": request.reason[:255],
        }
        data, error = await self._execute(
            "POST", f"/v2/payments/captures/{request.payment_id}/refund", body
        )
        if data is None:
            return RefundResult(success=False, error_message=error)

        amount, _ = _parse_amount(data.get("amount"))
        return RefundResult(
            success=True,
            refund_id=data.get("id"),
            amount=amount if amount is not None else request.amount,
            status=data.get("status"),
        )

    async def create_payout(self, request: CreatePayoutRequest) -> CreatePayoutResult:
        """Create a single-item payout batch to a PayPal email."""
        body = {
            "sender_batch_header": {
                "sender_batch_id": request.sender_batch_id,
                "email_subject": "You have a payout!",
                "email_message": request.note or "You have received a payout.",
            },
            "items": [
                {
                    "recipient_type": "EMAIL",
                    "amount": {"value": _money(request.amount), "currency": request.currency},
                    "receiver": request.recipient_email,
                    "note": request.note,
                    "sender_item_id": str(request.recipient_id or request.sender_batch_id),
                }
            ],
        }
        data, error = await self._execute("POST", "/v1/payments/payouts", body)
        if data is None:
            return CreatePayoutResult(success=False, error_message=error)

        header = data.get("batch_header", {})
        return CreatePayoutResult(
            success=True,
            payout_id=header.get("payout_batch_id"),
            batch_id=header.get("sender_batch_header", {}).get("sender_batch_id")
            or request.sender_batch_id,
            status=header.get("batch_status"),
        )

    async def get_payout_status(self, payout_id: str) -> PayoutStatusResult:
        """Read a payout batch back from PayPal."""
        data, error = await self._execute("GET", f"/v1/payments/payouts/{payout_id}")
        if data is None:
            return PayoutStatusResult(success=False, error_message=error)

        header = data.get("batch_header", {})
        amount, currency = _parse_amount(header.get("amount"))
        return PayoutStatusResult(
            success=True,
            status=header.get("batch_status"),
            amount=amount,
            currency=currency,
        )

    def _check_transmission_time(self, transmission_time: str) -> str | None:
        try:
            sent_at = datetime.fromisoformat(transmission_time.replace("Z", "+00:00"))
        except ValueError:
            return "Invalid PAYPAL-TRANSMISSION-TIME header"
        if sent_at.tzinfo is None:
            sent_at = sent_at.replace(tzinfo=UTC)
        tolerance = timedelta(minutes=settings.paypal_webhook_tolerance_minutes)
        if abs(datetime.now(UTC) - sent_at) > tolerance:
            return "Webhook timestamp outside of tolerance"
        return None

    async def validate_webhook(
        self, payload: bytes, headers: dict[str, str]
    ) -> WebhookValidationResult:
        """Validate headers locally, then ask PayPal to verify the signature."""
        normalized = {key.upper(): value for key, value in headers.items()}
        missing = [name for name in REQUIRED_WEBHOOK_HEADERS if not normalized.get(name)]
        if missing:
            return WebhookValidationResult(
                is_valid=False, error_message=f"Missing webhook headers: {', '.join(missing)}"
            )
        if not self.webhook_id:
            return WebhookValidationResult(is_valid=False, error_message="Webhook ID not configured")

        stale = self._check_transmission_time(normalized["PAYPAL-TRANSMISSION-TIME"])
        if stale:
            return WebhookValidationResult(is_valid=False, error_message=stale)

        try:
            event = json.loads(payload)
        except json.JSONDecodeError:
            return WebhookValidationResult(is_valid=False, error_message="Invalid JSON payload")

        body = {
            "auth_algo": normalized["PAYPAL-AUTH-ALGO"],
            "cert_url": normalized["PAYPAL-CERT-URL"],
            "transmission_id": normalized["PAYPAL-TRANSMISSION-ID"],
            "transmission_sig": normalized["PAYPAL-TRANSMISSION-SIG"],
            "transmission_time": normalized["PAYPAL-TRANSMISSION-TIME"],
            "webhook_id": self.webhook_id,
            "webhook_event": event,
        }
        data, error = await self._execute("POST", "/v1/notifications/verify-webhook-signature", body)
        if data is None:
            return WebhookValidationResult(is_valid=False, error_message=error)
        if data.get("verification_status") != "SUCCESS":
            return WebhookValidationResult(
                is_valid=False, error_message="Webhook signature verification failed"
            )
        return WebhookValidationResult(is_valid=True)

    async def process_webhook(self, payload: dict[str, Any]) -> WebhookProcessResult:
        """Extract the event type and the resource it refers to."""
        event_type = payload.get("event_type")
        resource = payload.get("resource") or {}
        if not event_type:
            return WebhookProcessResult(success=False, error_message="Missing event_type")

        order_id = (
            resource.get("supplementary_data", {}).get("related_ids", {}).get("order_id")
        )
        return WebhookProcessResult(
            success=True,
            event_type=event_type,
            resource_id=resource.get("id"),
            payer_id=(resource.get("payer") or {}).get("payer_id"),
            summary=payload.get("summary"),
            metadata={"event_id": payload.get("id"), "order_id": order_id},
        )
