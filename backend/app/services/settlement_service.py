"""Payment settlement workflow for rentals.

Orchestrates initiate -> capture -> fraud screen -> schedule payout -> payout,
plus refunds and security-deposit refunds. Each public operation runs inside
one UnitOfWork: business failures are returned as result objects, unexpected
exceptions roll the whole operation back and propagate. Emails are queued
as post-commit hooks and never take part in the database transaction.
"""

import asyncio
import json
import logging
from collections.abc import Awaitable
from dataclasses import dataclass
from datetime import datetime, timedelta
from decimal import Decimal
from functools import partial
from typing import TypeVar
from uuid import UUID

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from app.core.config import settings
from app.core.unit_of_work import UnitOfWork
from app.models.payment import Payment, PaymentProvider, PaymentStatus, PaymentType
from app.models.payout import PayoutStatus
from app.models.rental import Rental
from app.models.shared import PLATFORM_ACCOUNT_ID, as_utc, to_decimal, utc_now
from app.models.transaction import Transaction, TransactionStatus
from app.repositories.payment_repository import PaymentRepository
from app.repositories.payment_settings_repository import PaymentSettingsRepository
from app.repositories.payout_repository import PayoutRepository
from app.repositories.rental_repository import RentalRepository
from app.repositories.tool_repository import ToolRepository
from app.repositories.transaction_repository import TransactionRepository
from app.repositories.user_repository import UserRepository
from app.services import financial_calculator as calculator
from app.services.email_service import (
    EmailNotification,
    EmailService,
    NotificationType,
    format_amount,
)
from app.services.fraud_detection_service import FraudCheckResult, FraudDetectionService
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
    WebhookValidationResult,
    get_payment_provider,
)
from app.services.payment_settings_service import PaymentSettingsService
from app.services.payout_schedule import calculate_payout_time
from app.services.settlement_states import can_transition, transition

logger = logging.getLogger(__name__)

R = TypeVar("R")

PROVIDER_TIMEOUT_MESSAGE = "Payment provider did not respond in time"
BLOCKED_MESSAGE = (
    "Payment was blocked due to security concerns. "
    "Please contact support if you believe this is an error."
)
REVIEW_MESSAGE = (
    "Your payment is pending a security review. "
    "You will be notified once the review is complete."
)

ORDER_APPROVED_EVENT = "CHECKOUT.ORDER.APPROVED"
PAYMENT_REJECTED_EVENTS = frozenset({"PAYMENT.CAPTURE.DENIED", "CHECKOUT.ORDER.VOIDED"})


@dataclass
class PaymentResult:
    """Outcome of initiating, completing, reviewing or cancelling a payment."""

    success: bool
    error_message: str | None = None
    payment_id: UUID | None = None
    transaction_id: UUID | None = None
    order_id: str | None = None
    approval_url: str | None = None
    status: str | None = None
    requires_review: bool = False


@dataclass
class RefundOutcome:
    """Outcome of a rental or security-deposit refund."""

    success: bool
    error_message: str | None = None
    refund_id: str | None = None
    refunded_amount: Decimal | None = None


@dataclass
class PayoutResult:
    """Outcome of a payout to an owner."""

    success: bool
    error_message: str | None = None
    payout_id: UUID | None = None
    external_payout_id: str | None = None
    amount: Decimal | None = None


@dataclass
class PayoutRunSummary:
    """Counts from one scheduled payout run."""

    processed: int = 0
    succeeded: int = 0
    failed: int = 0


@dataclass
class WebhookOutcome:
    """Outcome of handling a provider webhook."""

    success: bool
    event_type: str | None = None
    handled: bool = False
    error_message: str | None = None


class PaymentSettlementService:
    """Owns every status change of transactions, payments and payouts."""

    def __init__(
        self,
        db: Session,
        provider: PaymentProviderBase | None = None,
        fraud_service: FraudDetectionService | None = None,
        email_service: EmailService | None = None,
    ):
        self.db = db
        self.provider = provider or get_payment_provider(PaymentProvider.PAYPAL)
        self.fraud_service = fraud_service or FraudDetectionService(db)
        self.email_service = email_service or EmailService()
        self.transaction_repo = TransactionRepository(db)
        self.payment_repo = PaymentRepository(db)
        self.payout_repo = PayoutRepository(db)
        self.rental_repo = RentalRepository(db)
        self.tool_repo = ToolRepository(db)
        self.user_repo = UserRepository(db)
        self.settings_repo = PaymentSettingsRepository(db)
        self.settings_service = PaymentSettingsService(db)

    # ----- Financials -----

    def calculate_rental_financials(
        self,
        rental_amount: Decimal,
        security_deposit: Decimal,
        owner_id: UUID | None = None,
    ) -> calculator.RentalFinancialBreakdown:
        """Fee breakdown using the owner's commission override when one applies."""
        owner_settings = self.settings_repo.get_by_user_id(owner_id) if owner_id else None
        rate = calculator.resolve_commission_rate(owner_settings, settings.DEFAULT_COMMISSION_RATE)
        return calculator.calculate_rental_financials(rental_amount, security_deposit, rate)

    def calculate_commission(self, rental_amount: Decimal, owner_id: UUID | None = None) -> Decimal:
        return self.calculate_rental_financials(rental_amount, Decimal("0"), owner_id).commission_amount

    # ----- Payment lifecycle -----

    async def initiate_rental_payment(self, rental_id: UUID, user_id: UUID) -> PaymentResult:
        """Create the transaction and a provider payment the renter must approve.

        A provider failure still commits so the cancelled transaction is kept.
        Any exception rolls back and leaves no transaction or payment behind.
        """
        async with UnitOfWork(self.db) as uow:
            rental = self.rental_repo.get_by_id(rental_id)
            if rental is None:
                return PaymentResult(success=False, error_message="Rental not found")
            if rental.renter_id != user_id:
                return PaymentResult(
                    success=False, error_message="Only the renter can pay for this rental"
                )

            existing = self.transaction_repo.get_active_by_rental(rental_id, for_update=True)
            if existing is not None:
                if not self._is_abandoned(existing):
                    return PaymentResult(
                        success=False,
                        error_message="Payment already initiated for this rental",
                        transaction_id=existing.id,  # type: ignore[arg-type]
                    )
                logger.info("Cancelling abandoned transaction %s for rental %s", existing.id, rental_id)
                self._cancel_transaction(existing, "Payment abandoned before approval")

            owner_settings = self.settings_service.get_or_create(rental.owner_id)  # type: ignore[arg-type]
            breakdown = self.calculate_rental_financials(
                to_decimal(rental.total_cost),
                to_decimal(rental.deposit_amount),
                rental.owner_id,  # type: ignore[arg-type]
            )

            try:
                transaction = self.transaction_repo.create(
                    rental_id=rental_id,
                    rental_amount=breakdown.rental_amount,
                    security_deposit=breakdown.security_deposit,
                    commission_rate=breakdown.commission_rate,
                    commission_amount=breakdown.commission_amount,
                    total_payer_amount=breakdown.total_payer_amount,
                    owner_payout_amount=breakdown.owner_payout_amount,
                    currency=settings.DEFAULT_CURRENCY,
                    status=TransactionStatus.PAYMENT_PROCESSING.value,
                )
            except IntegrityError:
                logger.warning("Concurrent payment initiation rejected for rental %s", rental_id)
                uow.rollback()
                return PaymentResult(
                    success=False, error_message="Payment already initiated for this rental"
                )

            tool = self.tool_repo.get_by_id(rental.tool_id)  # type: ignore[arg-type]
            tool_name = tool.name if tool else "tool"
            request = CreatePaymentRequest(
                rental_id=rental_id,
                amount=breakdown.total_payer_amount,
                currency=settings.DEFAULT_CURRENCY,
                description=f"Rental of {tool_name}",
                return_url=f"{settings.FRONTEND_BASE_URL}/payment/success?rental_id={rental_id}",
                cancel_url=f"{settings.FRONTEND_BASE_URL}/payment/cancel?rental_id={rental_id}",
                payee_email=owner_settings.paypal_email,  # type: ignore[arg-type]
                platform_fee=breakdown.commission_amount,
                is_marketplace_payment=settings.paypal_marketplace_enabled,
                metadata={"transaction_id": str(transaction.id)},
            )
            result = await self._provider_call(
                self.provider.create_payment(request),
                CreatePaymentResult(success=False, error_message=PROVIDER_TIMEOUT_MESSAGE),
            )

            if not result.success:
                transition(transaction, TransactionStatus.CANCELLED)
                self.db.flush()
                logger.warning(
                    "Payment creation failed for rental %s: %s", rental_id, result.error_message
                )
                return PaymentResult(
                    success=False,
                    error_message=result.error_message or "Failed to create payment",
                    transaction_id=transaction.id,  # type: ignore[arg-type]
                    status=transaction.status,  # type: ignore[arg-type]
                )

            payment = self.payment_repo.create(
                rental_id=rental_id,
                transaction_id=transaction.id,
                payer_id=str(user_id),
                payee_id=str(rental.owner_id),
                type=PaymentType.RENTAL_PAYMENT.value,
                status=PaymentStatus.PENDING.value,
                provider=self.provider.provider_name.value,
                amount=breakdown.total_payer_amount,
                currency=settings.DEFAULT_CURRENCY,
                external_payment_id=result.payment_id,
                external_order_id=result.order_id,
                payment_metadata={"approval_url": result.approval_url},
            )
            logger.info(
                "Initiated payment %s (order %s) for rental %s",
                payment.id,
                result.order_id,
                rental_id,
            )
            return PaymentResult(
                success=True,
                payment_id=payment.id,  # type: ignore[arg-type]
                transaction_id=transaction.id,  # type: ignore[arg-type]
                order_id=result.order_id,
                approval_url=result.approval_url,
                status=payment.status,  # type: ignore[arg-type]
            )

    async def complete_rental_payment(
        self, external_id: str, payer_id: str, user_id: UUID | None = None
    ) -> PaymentResult:
        """Verify, screen and capture a payment the renter has approved.

        Args:
            external_id: Provider order ID (or payment ID) of the payment.
            payer_id: Provider payer ID returned with the approval.
            user_id: Caller completing the payment. Must be the payer when given.
        """
        async with UnitOfWork(self.db) as uow:
            payment = self.payment_repo.get_by_external_id(external_id, for_update=True)
            if payment is None:
                return PaymentResult(success=False, error_message="Payment not found")
            if user_id is not None and payment.payer_id != str(user_id):
                return PaymentResult(
                    success=False, error_message="Only the renter can complete this payment"
                )
            if payment.status != PaymentStatus.PENDING.value:
                return PaymentResult(
                    success=False,
                    error_message=f"Payment is not pending (status: {payment.status})",
                    payment_id=payment.id,  # type: ignore[arg-type]
                    status=payment.status,  # type: ignore[arg-type]
                )

            transaction = self._transaction_for(payment)
            if transaction is None:
                return PaymentResult(success=False, error_message="Transaction not found")

            total = to_decimal(transaction.total_payer_amount)
            if not calculator.amounts_match(
                to_decimal(payment.amount), total, settings.PAYMENT_AMOUNT_TOLERANCE
            ):
                logger.warning(
                    "Payment %s amount %s does not match transaction total %s",
                    payment.id,
                    payment.amount,
                    total,
                )
                self._fail_payment(payment, transaction, "Payment amount does not match transaction")
                return self._failed_result(payment, "Payment amount mismatch")

            provider_view = await self._provider_call(
                self.provider.get_payment_status(self._provider_reference(payment)),
                PaymentStatusResult(success=False, error_message=PROVIDER_TIMEOUT_MESSAGE),
            )
            if not provider_view.success:
                self._fail_payment(
                    payment, transaction, provider_view.error_message or "Payment verification failed"
                )
                return self._failed_result(payment, "Payment verification failed")
            if provider_view.amount is None or not calculator.amounts_match(
                provider_view.amount, total, settings.PAYMENT_AMOUNT_TOLERANCE
            ):
                logger.warning(
                    "Provider amount %s for payment %s does not match transaction total %s",
                    provider_view.amount,
                    payment.id,
                    total,
                )
                self._fail_payment(payment, transaction, "Provider amount does not match transaction")
                return self._failed_result(payment, "Payment amount verification failed")

            payment.external_payer_id = payer_id  # type: ignore[assignment]
            fraud = await self._screen(payment)

            if fraud is not None and not fraud.is_approved:
                logger.warning(
                    "Payment %s blocked by fraud screen: %s", payment.id, fraud.blocking_reason
                )
                self._fail_payment(payment, transaction, fraud.blocking_reason or "Blocked by fraud screen")
                return self._failed_result(payment, BLOCKED_MESSAGE)

            if fraud is None or fraud.requires_manual_review:
                transition(payment, PaymentStatus.UNDER_REVIEW)
                transition(transaction, TransactionStatus.UNDER_REVIEW)
                self.db.flush()
                return PaymentResult(
                    success=False,
                    error_message=REVIEW_MESSAGE,
                    payment_id=payment.id,  # type: ignore[arg-type]
                    transaction_id=transaction.id,  # type: ignore[arg-type]
                    status=payment.status,  # type: ignore[arg-type]
                    requires_review=True,
                )

            await self.fraud_service.update_velocity_tracking(
                str(payment.payer_id), to_decimal(payment.amount)
            )
            return await self._capture_and_settle(uow, payment, transaction, payer_id)

    async def resolve_payment_review(
        self,
        payment_id: UUID,
        approved: bool,
        reviewer_id: UUID,
        notes: str | None = None,
    ) -> PaymentResult:
        """Approve (and capture) or reject a payment held for manual review."""
        async with UnitOfWork(self.db) as uow:
            payment = self.payment_repo.get_by_id(payment_id, for_update=True)
            if payment is None:
                return PaymentResult(success=False, error_message="Payment not found")
            if payment.status != PaymentStatus.UNDER_REVIEW.value:
                return PaymentResult(
                    success=False,
                    error_message=f"Payment is not under review (status: {payment.status})",
                    payment_id=payment.id,  # type: ignore[arg-type]
                )
            transaction = self._transaction_for(payment)
            if transaction is None:
                return PaymentResult(success=False, error_message="Transaction not found")

            await self.fraud_service.review_payment(payment.id, approved, str(reviewer_id), notes)  # type: ignore[arg-type]

            if not approved:
                logger.info("Payment %s rejected after review by %s", payment.id, reviewer_id)
                self._fail_payment(payment, transaction, "Rejected after security review")
                return PaymentResult(
                    success=True,
                    payment_id=payment.id,  # type: ignore[arg-type]
                    transaction_id=transaction.id,  # type: ignore[arg-type]
                    status=payment.status,  # type: ignore[arg-type]
                )

            await self.fraud_service.update_velocity_tracking(
                str(payment.payer_id), to_decimal(payment.amount)
            )
            return await self._capture_and_settle(
                uow, payment, transaction, str(payment.external_payer_id or "")
            )

    async def cancel_payment(self, rental_id: UUID, user_id: UUID) -> PaymentResult:
        """Let the renter abandon a payment that has not been approved yet."""
        async with UnitOfWork(self.db):
            rental = self.rental_repo.get_by_id(rental_id)
            transaction = self.transaction_repo.get_active_by_rental(rental_id, for_update=True)
            if rental is None or transaction is None:
                return PaymentResult(
                    success=False, error_message="No active payment found for this rental"
                )
            if rental.renter_id != user_id:
                return PaymentResult(
                    success=False, error_message="Only the renter can cancel this payment"
                )
            if transaction.status != TransactionStatus.PAYMENT_PROCESSING.value:
                return PaymentResult(
                    success=False,
                    error_message=f"Payment can no longer be cancelled (status: {transaction.status})",
                )

            self._cancel_transaction(transaction, "Cancelled by payer")
            logger.info("Payment for rental %s cancelled by renter %s", rental_id, user_id)
            return PaymentResult(
                success=True,
                transaction_id=transaction.id,  # type: ignore[arg-type]
                status=transaction.status,  # type: ignore[arg-type]
            )

    async def expire_abandoned_payments(self, now: datetime | None = None) -> int:
        """Cancel transactions whose payer never approved the payment."""
        now = now or utc_now()
        cutoff = now - timedelta(minutes=settings.PAYMENT_ABANDONED_AFTER_MINUTES)
        async with UnitOfWork(self.db):
            stale = self.transaction_repo.get_processing_created_before(cutoff)
            for transaction in stale:
                self._cancel_transaction(transaction, "Payment abandoned before approval")
            count = len(stale)
        if count:
            logger.info("Expired %d abandoned payments", count)
        return count

    # ----- Refunds -----

    async def refund_rental(self, rental_id: UUID, amount: Decimal, reason: str) -> RefundOutcome:
        """Refund all or part of a rental's captured payment."""
        amount = calculator.round_money(amount)
        if amount <= 0:
            return RefundOutcome(success=False, error_message="Refund amount must be greater than zero")

        async with UnitOfWork(self.db) as uow:
            payment = self.payment_repo.get_rental_payment(
                rental_id,
                [PaymentStatus.COMPLETED, PaymentStatus.PARTIALLY_REFUNDED, PaymentStatus.REFUNDED],
                for_update=True,
            )
            if payment is None:
                return RefundOutcome(
                    success=False, error_message="No completed payment found for this rental"
                )
            if payment.status == PaymentStatus.REFUNDED.value:
                return RefundOutcome(success=False, error_message="Payment has already been refunded")

            already_refunded = to_decimal(payment.refunded_amount)
            if already_refunded + amount > to_decimal(payment.amount):
                return RefundOutcome(
                    success=False, error_message="Refund amount exceeds refundable balance"
                )

            transaction = self._transaction_for(payment)
            already_closed = (
                transaction is not None and transaction.status == TransactionStatus.REFUNDED.value
            )
            if (
                transaction is not None
                and not already_closed
                and not can_transition(transaction, TransactionStatus.REFUNDED)
            ):
                return RefundOutcome(
                    success=False,
                    error_message=f"Rental cannot be refunded (status: {transaction.status})",
                )

            result = await self._provider_call(
                self.provider.refund_payment(
                    RefundPaymentRequest(
                        payment_id=self._provider_reference(payment),
                        amount=amount,
                        currency=str(payment.currency),
                        reason=reason,
                    )
                ),
                RefundResult(success=False, error_message=PROVIDER_TIMEOUT_MESSAGE),
            )
            if not result.success:
                logger.warning("Refund failed for rental %s: %s", rental_id, result.error_message)
                return RefundOutcome(success=False, error_message=result.error_message)

            refunded = self._apply_refund(payment, result.amount or amount, reason)
            self.payment_repo.create(
                rental_id=rental_id,
                transaction_id=payment.transaction_id,
                payer_id=PLATFORM_ACCOUNT_ID,
                payee_id=payment.payer_id,
                type=PaymentType.REFUND.value,
                status=PaymentStatus.COMPLETED.value,
                provider=payment.provider,
                amount=refunded,
                currency=payment.currency,
                external_payment_id=result.refund_id,
                refund_reason=reason,
                processed_at=utc_now(),
            )
            if transaction is not None and not already_closed:
                transition(transaction, TransactionStatus.REFUNDED)
            self.db.flush()

            rental = self.rental_repo.get_by_id(rental_id)
            if rental is not None:
                tool_name = self._tool_name(rental)
                refund_text = format_amount(refunded, str(payment.currency))
                self._notify(
                    uow,
                    rental.renter_id,  # type: ignore[arg-type]
                    "Refund Processed",
                    f"A refund of {refund_text} has been "
                    f"processed for your rental of {tool_name}.\n"
                    f"Reason: {reason}\n"
                    "The refund should appear in your account within 3-5 business days.",
                    NotificationType.REFUND_ISSUED,
                )
                self._notify(
                    uow,
                    rental.owner_id,  # type: ignore[arg-type]
                    "Rental Refunded",
                    f"A refund of {refund_text} has been "
                    f"issued for the rental of your {tool_name}.\n"
                    f"Reason: {reason}\n"
                    "This may affect your payout for this rental.",
                    NotificationType.REFUND_ISSUED,
                )

            logger.info("Refunded %s for rental %s (refund %s)", refunded, rental_id, result.refund_id)
            return RefundOutcome(success=True, refund_id=result.refund_id, refunded_amount=refunded)

    async def refund_security_deposit(self, rental_id: UUID) -> RefundOutcome:
        """Return the security deposit as a partial refund of the original charge."""
        async with UnitOfWork(self.db) as uow:
            transaction = self.transaction_repo.get_active_by_rental(rental_id, for_update=True)
            if transaction is None:
                return RefundOutcome(success=False, error_message="Transaction not found")
            if transaction.deposit_refunded_at is not None:
                return RefundOutcome(success=False, error_message="Security deposit already refunded")

            deposit = to_decimal(transaction.security_deposit)
            if deposit <= 0:
                return RefundOutcome(success=False, error_message="No security deposit to refund")

            payment = self.payment_repo.get_rental_payment(
                rental_id,
                [PaymentStatus.COMPLETED, PaymentStatus.PARTIALLY_REFUNDED],
                for_update=True,
            )
            if payment is None:
                return RefundOutcome(
                    success=False, error_message="No completed payment found for this rental"
                )
            if to_decimal(payment.refunded_amount) + deposit > to_decimal(payment.amount):
                return RefundOutcome(
                    success=False, error_message="Refund amount exceeds refundable balance"
                )

            reason = "Security deposit refund"
            result = await self._provider_call(
                self.provider.refund_payment(
                    RefundPaymentRequest(
                        payment_id=self._provider_reference(payment),
                        amount=deposit,
                        currency=str(payment.currency),
                        reason=reason,
                    )
                ),
                RefundResult(success=False, error_message=PROVIDER_TIMEOUT_MESSAGE),
            )
            if not result.success:
                logger.warning(
                    "Deposit refund failed for rental %s: %s", rental_id, result.error_message
                )
                return RefundOutcome(success=False, error_message=result.error_message)

            now = utc_now()
            refunded = self._apply_refund(payment, result.amount or deposit, reason)
            self.payment_repo.create(
                rental_id=rental_id,
                transaction_id=transaction.id,
                payer_id=PLATFORM_ACCOUNT_ID,
                payee_id=payment.payer_id,
                type=PaymentType.DEPOSIT_REFUND.value,
                status=PaymentStatus.COMPLETED.value,
                provider=payment.provider,
                amount=refunded,
                currency=payment.currency,
                external_payment_id=result.refund_id,
                refund_reason=reason,
                processed_at=now,
            )
            transaction.deposit_refunded_at = now  # type: ignore[assignment]
            self.db.flush()

            rental = self.rental_repo.get_by_id(rental_id)
            if rental is not None:
                refund_text = format_amount(refunded, str(payment.currency))
                self._notify(
                    uow,
                    rental.renter_id,  # type: ignore[arg-type]
                    "Security Deposit Refunded",
                    f"Your security deposit of {refund_text} has been refunded "
                    f"for the rental of {self._tool_name(rental)}.\n"
                    "Please allow 3-5 business days for the refund to appear in your account.",
                    NotificationType.DEPOSIT_REFUNDED,
                )

            logger.info("Refunded security deposit %s for rental %s", refunded, rental_id)
            return RefundOutcome(success=True, refund_id=result.refund_id, refunded_amount=refunded)

    # ----- Payouts -----

    async def create_owner_payout(self, transaction_id: UUID) -> PayoutResult:
        """Pay the owner's share of a captured transaction."""
        async with UnitOfWork(self.db) as uow:
            transaction = self.transaction_repo.get_by_id(transaction_id, for_update=True)
            if transaction is None:
                return PayoutResult(success=False, error_message="Transaction not found")
            if transaction.payout_completed_at is not None:
                return PayoutResult(
                    success=False, error_message="Payout already completed for this transaction"
                )
            if transaction.status not in (
                TransactionStatus.PAYMENT_COMPLETED.value,
                TransactionStatus.COMPLETED.value,
            ):
                return PayoutResult(
                    success=False,
                    error_message=f"Transaction is not eligible for payout (status: {transaction.status})",
                )

            rental = self.rental_repo.get_by_id(transaction.rental_id)  # type: ignore[arg-type]
            if rental is None:
                return PayoutResult(success=False, error_message="Rental not found")

            owner_settings = self.settings_service.get_or_create(rental.owner_id)  # type: ignore[arg-type]
            if not owner_settings.paypal_email:
                return PayoutResult(
                    success=False,
                    error_message="Owner has not configured a PayPal email for payouts",
                )

            amount = to_decimal(transaction.owner_payout_amount)
            minimum = to_decimal(owner_settings.minimum_payout_amount)
            if amount < minimum:
                return PayoutResult(
                    success=False,
                    error_message=f"Payout amount {amount} is below the minimum payout amount {minimum}",
                )

            now = utc_now()
            payout = self.payout_repo.create(
                recipient_id=rental.owner_id,
                status=PayoutStatus.PROCESSING.value,
                provider=self.provider.provider_name.value,
                amount=amount,
                currency=transaction.currency,
                platform_fee=transaction.commission_amount,
                net_amount=amount,
                payout_method=owner_settings.preferred_payout_method,
                payout_destination=owner_settings.paypal_email,
                scheduled_at=transaction.payout_scheduled_at,
                processed_at=now,
                retry_count=self.payout_repo.count_failed_for_transaction(transaction.id),  # type: ignore[arg-type]
            )
            self.payout_repo.link_transaction(payout.id, transaction.id)  # type: ignore[arg-type]

            tool_name = self._tool_name(rental)
            payout_text = format_amount(amount, str(transaction.currency))
            result = await self._provider_call(
                self.provider.create_payout(
                    CreatePayoutRequest(
                        recipient_email=str(owner_settings.paypal_email),
                        amount=amount,
                        currency=str(transaction.currency),
                        sender_batch_id=f"PAYOUT_{now:%Y%m%d%H%M%S}_{transaction.id}",
                        note=f"Payout for the rental of {tool_name}",
                        recipient_id=rental.owner_id,  # type: ignore[arg-type]
                    )
                ),
                CreatePayoutResult(success=False, error_message=PROVIDER_TIMEOUT_MESSAGE),
            )

            if not result.success:
                transition(payout, PayoutStatus.FAILED)
                payout.failed_at = now  # type: ignore[assignment]
                payout.failure_reason = result.error_message  # type: ignore[assignment]
                self.db.flush()
                logger.warning(
                    "Payout %s for transaction %s failed: %s",
                    payout.id,
                    transaction.id,
                    result.error_message,
                )
                if owner_settings.notify_on_payout_failed:
                    self._notify(
                        uow,
                        rental.owner_id,  # type: ignore[arg-type]
                        "Payout Failed",
                        f"We were unable to process your payout of {payout_text}. "
                        "Please check your PayPal settings.\n"
                        f"Error: {result.error_message}",
                        NotificationType.PAYOUT_FAILED,
                    )
                return PayoutResult(
                    success=False,
                    error_message=result.error_message,
                    payout_id=payout.id,  # type: ignore[arg-type]
                    amount=amount,
                )

            transition(payout, PayoutStatus.COMPLETED)
            payout.completed_at = now  # type: ignore[assignment]
            payout.external_payout_id = result.payout_id  # type: ignore[assignment]
            payout.external_batch_id = result.batch_id  # type: ignore[assignment]

            transition(transaction, TransactionStatus.PAYOUT_COMPLETED)
            transaction.payout_completed_at = now  # type: ignore[assignment]

            self.payment_repo.create(
                rental_id=rental.id,
                transaction_id=transaction.id,
                payer_id=PLATFORM_ACCOUNT_ID,
                payee_id=str(rental.owner_id),
                type=PaymentType.OWNER_PAYOUT.value,
                status=PaymentStatus.COMPLETED.value,
                provider=self.provider.provider_name.value,
                amount=amount,
                currency=transaction.currency,
                external_payment_id=result.payout_id,
                processed_at=now,
            )
            self.db.flush()

            if owner_settings.notify_on_payout_sent:
                self._notify(
                    uow,
                    rental.owner_id,  # type: ignore[arg-type]
                    "Payout Sent",
                    f"A payout of {payout_text} has been sent to your "
                    f"PayPal account for the rental of {tool_name}.",
                    NotificationType.PAYOUT_SENT,
                )

            logger.info(
                "Payout %s of %s sent for transaction %s", payout.id, amount, transaction.id
            )
            return PayoutResult(
                success=True,
                payout_id=payout.id,  # type: ignore[arg-type]
                external_payout_id=result.payout_id,
                amount=amount,
            )

    async def process_scheduled_payouts(self, now: datetime | None = None) -> PayoutRunSummary:
        """Pay out every captured transaction whose payout time has passed.

        Safe to re-run: paid-out transactions drop out of the due query and
        are rejected by the completion gate.
        """
        now = now or utc_now()
        due_ids = [t.id for t in self.transaction_repo.get_due_for_payout(now)]
        self.db.rollback()

        summary = PayoutRunSummary()
        for transaction_id in due_ids:
            summary.processed += 1
            try:
                result = await self.create_owner_payout(transaction_id)  # type: ignore[arg-type]
            except Exception:
                logger.exception("Scheduled payout failed for transaction %s", transaction_id)
                summary.failed += 1
                continue
            if result.success:
                summary.succeeded += 1
            else:
                logger.warning(
                    "Scheduled payout skipped for transaction %s: %s",
                    transaction_id,
                    result.error_message,
                )
                summary.failed += 1

        logger.info(
            "Scheduled payout run: %d processed, %d succeeded, %d failed",
            summary.processed,
            summary.succeeded,
            summary.failed,
        )
        return summary

    # ----- Webhooks and queries -----

    async def handle_provider_webhook(self, payload: bytes, headers: dict[str, str]) -> WebhookOutcome:
        """Validate a provider webhook and drive the matching settlement step."""
        validation = await self._provider_call(
            self.provider.validate_webhook(payload, headers),
            WebhookValidationResult(is_valid=False, error_message=PROVIDER_TIMEOUT_MESSAGE),
        )
        if not validation.is_valid:
            logger.warning("Rejected provider webhook: %s", validation.error_message)
            return WebhookOutcome(success=False, error_message=validation.error_message)

        try:
            event = json.loads(payload)
        except json.JSONDecodeError:
            return WebhookOutcome(success=False, error_message="Invalid JSON payload")

        processed = await self.provider.process_webhook(event)
        if not processed.success:
            return WebhookOutcome(success=False, error_message=processed.error_message)

        event_type = processed.event_type
        if event_type == ORDER_APPROVED_EVENT and processed.resource_id:
            result = await self.complete_rental_payment(
                processed.resource_id, processed.payer_id or ""
            )
            return WebhookOutcome(
                success=True,
                event_type=event_type,
                handled=True,
                error_message=None if result.success else result.error_message,
            )

        if event_type in PAYMENT_REJECTED_EVENTS:
            external_id = processed.metadata.get("order_id") or processed.resource_id
            if external_id:
                await self._fail_pending_payment(external_id, f"Provider event {event_type}")
            return WebhookOutcome(success=True, event_type=event_type, handled=True)

        logger.info("Ignoring provider webhook event %s", event_type)
        return WebhookOutcome(success=True, event_type=event_type, handled=False)

    async def get_payment_status(self, external_id: str) -> PaymentStatusResult:
        return await self._provider_call(
            self.provider.get_payment_status(external_id),
            PaymentStatusResult(success=False, error_message=PROVIDER_TIMEOUT_MESSAGE),
        )

    async def get_payout_status(self, payout_id: UUID) -> PayoutStatusResult:
        payout = self.payout_repo.get_by_id(payout_id)
        if payout is None:
            return PayoutStatusResult(success=False, error_message="Payout not found")
        if not payout.external_payout_id:
            return PayoutStatusResult(
                success=True,
                status=payout.status,  # type: ignore[arg-type]
                amount=to_decimal(payout.amount),
                currency=payout.currency,  # type: ignore[arg-type]
            )
        return await self._provider_call(
            self.provider.get_payout_status(str(payout.external_payout_id)),
            PayoutStatusResult(success=False, error_message=PROVIDER_TIMEOUT_MESSAGE),
        )

    def get_transaction_by_rental(self, rental_id: UUID) -> Transaction | None:
        """The active transaction of a rental, or its latest cancelled one."""
        return self.transaction_repo.get_active_by_rental(
            rental_id
        ) or self.transaction_repo.get_latest_by_rental(rental_id)

    # ----- Internals -----

    async def _provider_call(self, call: Awaitable[R], timeout_result: R) -> R:
        """Await a provider call, turning a timeout into ``timeout_result``."""
        try:
            return await asyncio.wait_for(call, settings.PAYMENT_PROVIDER_TIMEOUT_SECONDS)
        except TimeoutError:
            logger.warning(
                "Payment provider call timed out after %ss",
                settings.PAYMENT_PROVIDER_TIMEOUT_SECONDS,
            )
            return timeout_result

    async def _screen(self, payment: Payment) -> FraudCheckResult | None:
        """Run the fraud screen. None means it failed and the payment must be held."""
        try:
            return await self.fraud_service.check_payment(payment)
        except Exception:
            logger.exception("Fraud screen failed for payment %s, holding for review", payment.id)
            return None

    async def _capture_and_settle(
        self,
        uow: UnitOfWork,
        payment: Payment,
        transaction: Transaction,
        payer_id: str,
    ) -> PaymentResult:
        capture = await self._provider_call(
            self.provider.capture_payment(
                CapturePaymentRequest(payment_id=self._provider_reference(payment), payer_id=payer_id)
            ),
            CapturePaymentResult(success=False, error_message=PROVIDER_TIMEOUT_MESSAGE),
        )
        if not capture.success:
            logger.warning("Capture failed for payment %s: %s", payment.id, capture.error_message)
            self._fail_payment(payment, transaction, capture.error_message or "Capture failed")
            return self._failed_result(payment, capture.error_message or "Payment capture failed")

        now = utc_now()
        transition(payment, PaymentStatus.COMPLETED)
        payment.processed_at = now  # type: ignore[assignment]
        if capture.capture_id:
            payment.external_payment_id = capture.capture_id  # type: ignore[assignment]

        rental = self.rental_repo.get_by_id(transaction.rental_id)  # type: ignore[arg-type]
        if rental is None:
            raise LookupError(f"Rental {transaction.rental_id} missing for transaction {transaction.id}")

        transition(transaction, TransactionStatus.PAYMENT_COMPLETED)
        transaction.payment_completed_at = now  # type: ignore[assignment]
        transaction.payout_scheduled_at = self._schedule_payout(rental.owner_id, now)  # type: ignore[arg-type, assignment]

        self.rental_repo.mark_approved(rental, now)

        self.payment_repo.create(
            rental_id=rental.id,
            transaction_id=transaction.id,
            payer_id=str(rental.owner_id),
            payee_id=PLATFORM_ACCOUNT_ID,
            type=PaymentType.PLATFORM_COMMISSION.value,
            status=PaymentStatus.COMPLETED.value,
            provider=PaymentProvider.PLATFORM.value,
            amount=transaction.commission_amount,
            currency=transaction.currency,
            processed_at=now,
        )
        self.db.flush()

        self._queue_payment_emails(uow, rental, payment, transaction)
        logger.info(
            "Captured payment %s for rental %s, payout scheduled at %s",
            payment.id,
            rental.id,
            transaction.payout_scheduled_at,
        )
        return PaymentResult(
            success=True,
            payment_id=payment.id,  # type: ignore[arg-type]
            transaction_id=transaction.id,  # type: ignore[arg-type]
            status=payment.status,  # type: ignore[arg-type]
        )

    def _schedule_payout(self, owner_id: UUID, captured_at: datetime) -> datetime:
        """When to pay the owner. Never raises once the money is captured."""
        try:
            owner_settings = self.settings_service.get_or_create(owner_id)
            return calculate_payout_time(
                str(owner_settings.payout_schedule),
                captured_at,
                owner_settings.payout_day_of_week,  # type: ignore[arg-type]
                owner_settings.payout_day_of_month,  # type: ignore[arg-type]
                hold_hours=settings.PAYOUT_HOLD_HOURS,
                payout_hour=settings.PAYOUT_HOUR_UTC,
            )
        except Exception:
            logger.exception("Could not schedule payout for owner %s, using default hold", owner_id)
            return captured_at + timedelta(hours=settings.PAYOUT_HOLD_HOURS)

    def _queue_payment_emails(
        self,
        uow: UnitOfWork,
        rental: Rental,
        payment: Payment,
        transaction: Transaction,
    ) -> None:
        tool_name = self._tool_name(rental)
        currency = str(transaction.currency)
        paid = format_amount(payment.amount, currency)
        self._notify(
            uow,
            rental.renter_id,  # type: ignore[arg-type]
            "Payment Confirmed - Rental Approved",
            f"Your payment of {paid} has been confirmed for the rental "
            f"of {tool_name}.\n"
            f"Rental cost: {format_amount(transaction.rental_amount, currency)}\n"
            f"Security deposit: {format_amount(transaction.security_deposit, currency)}\n"
            f"Total paid: {paid}\n"
            "The owner has been notified and will arrange pickup details with you.",
            NotificationType.PAYMENT_CONFIRMATION,
        )

        owner_settings = self.settings_service.get_or_create(rental.owner_id)  # type: ignore[arg-type]
        if owner_settings.notify_on_payment_received:
            self._notify(
                uow,
                rental.owner_id,  # type: ignore[arg-type]
                "Payment Received",
                f"A renter has paid {paid} for the rental of {tool_name}.\n"
                f"Platform fee: {format_amount(transaction.commission_amount, currency)}\n"
                f"Your payout: {format_amount(transaction.owner_payout_amount, currency)}\n"
                f"Rental details: {settings.FRONTEND_BASE_URL}/rentals/{rental.id}",
                NotificationType.PAYMENT_RECEIVED,
            )

    def _notify(
        self,
        uow: UnitOfWork,
        user_id: UUID,
        subject: str,
        body: str,
        notification_type: NotificationType,
    ) -> None:
        """Queue an email to a user for after the unit of work commits."""
        user = self.user_repo.get_by_id(user_id)
        if user is None:
            logger.warning("Cannot notify missing user %s", user_id)
            return
        notification = EmailNotification(
            recipient_email=str(user.email),
            subject=subject,
            body=body,
            type=notification_type,
            user_id=user_id,
        )
        uow.after_commit(partial(self.email_service.send_notification, notification))

    def _tool_name(self, rental: Rental) -> str:
        tool = self.tool_repo.get_by_id(rental.tool_id)  # type: ignore[arg-type]
        return str(tool.name) if tool else "your tool"

    def _transaction_for(self, payment: Payment) -> Transaction | None:
        if payment.transaction_id is not None:
            return self.transaction_repo.get_by_id(payment.transaction_id, for_update=True)  # type: ignore[arg-type]
        return self.transaction_repo.get_active_by_rental(payment.rental_id, for_update=True)  # type: ignore[arg-type]

    @staticmethod
    def _provider_reference(payment: Payment) -> str:
        """Provider ID used for order calls before capture and for refunds after it."""
        if payment.status == PaymentStatus.PENDING.value or payment.status == PaymentStatus.UNDER_REVIEW.value:
            return str(payment.external_order_id or payment.external_payment_id)
        return str(payment.external_payment_id or payment.external_order_id)

    def _is_abandoned(self, transaction: Transaction) -> bool:
        if transaction.status != TransactionStatus.PAYMENT_PROCESSING.value:
            return False
        cutoff = utc_now() - timedelta(minutes=settings.PAYMENT_ABANDONED_AFTER_MINUTES)
        return as_utc(transaction.created_at) < cutoff  # type: ignore[arg-type]

    def _cancel_transaction(self, transaction: Transaction, reason: str) -> None:
        now = utc_now()
        for payment in self.payment_repo.get_pending_by_transaction(transaction.id):  # type: ignore[arg-type]
            transition(payment, PaymentStatus.CANCELLED)
            payment.failure_reason = reason  # type: ignore[assignment]
            payment.failed_at = now  # type: ignore[assignment]
        transition(transaction, TransactionStatus.CANCELLED)
        self.db.flush()

    def _fail_payment(self, payment: Payment, transaction: Transaction | None, reason: str) -> None:
        transition(payment, PaymentStatus.FAILED)
        payment.failure_reason = reason  # type: ignore[assignment]
        payment.failed_at = utc_now()  # type: ignore[assignment]
        if transaction is not None:
            transition(transaction, TransactionStatus.CANCELLED)
        self.db.flush()

    def _apply_refund(self, payment: Payment, amount: Decimal, reason: str) -> Decimal:
        """Accumulate a refund on the original payment and move its status."""
        refunded = to_decimal(payment.refunded_amount) + amount
        payment.refunded_amount = refunded  # type: ignore[assignment]
        payment.refund_reason = reason  # type: ignore[assignment]
        payment.refunded_at = utc_now()  # type: ignore[assignment]
        if refunded >= to_decimal(payment.amount):
            transition(payment, PaymentStatus.REFUNDED)
        else:
            transition(payment, PaymentStatus.PARTIALLY_REFUNDED)
        self.db.flush()
        return amount

    @staticmethod
    def _failed_result(payment: Payment, message: str) -> PaymentResult:
        return PaymentResult(
            success=False,
            error_message=message,
            payment_id=payment.id,  # type: ignore[arg-type]
            transaction_id=payment.transaction_id,  # type: ignore[arg-type]
            status=payment.status,  # type: ignore[arg-type]
        )

    async def _fail_pending_payment(self, external_id: str, reason: str) -> None:
        async with UnitOfWork(self.db):
            payment = self.payment_repo.get_by_external_id(external_id, for_update=True)
            if payment is None or payment.status != PaymentStatus.PENDING.value:
                return
            logger.warning("Failing payment %s: %s", payment.id, reason)
            self._fail_payment(payment, self._transaction_for(payment), reason)
