"""Tests for PaymentSettlementService - the payment, refund and payout workflow."""

import asyncio
import json
from datetime import timedelta
from decimal import Decimal
from unittest.mock import AsyncMock, MagicMock, patch
from uuid import uuid4

import pytest

from app.core.config import settings
from app.models import (
    Payment,
    PaymentStatus,
    PaymentType,
    Payout,
    PayoutStatus,
    Rental,
    RentalStatus,
    Transaction,
    TransactionStatus,
)
from app.models.fraud_check import FraudRiskLevel
from app.models.shared import PLATFORM_ACCOUNT_ID, utc_now
from app.schemas.payment_settings import PaymentSettingsUpdate
from app.services.fraud_detection_service import FraudCheckResult
from app.services.payment_provider import (
    CapturePaymentResult,
    CreatePaymentResult,
    CreatePayoutResult,
    RefundResult,
)
from app.services.payment_settings_service import PaymentSettingsService
from app.services.settlement_service import BLOCKED_MESSAGE, PaymentSettlementService
from tests.conftest import FakePaymentProvider, create_rental

FAR_FUTURE = utc_now() + timedelta(days=60)


@pytest.fixture
def email_service():
    service = MagicMock()
    service.send_notification = AsyncMock(return_value=True)
    return service


@pytest.fixture
def service(db_session, fake_provider, email_service):
    return PaymentSettlementService(db_session, provider=fake_provider, email_service=email_service)


def _fraud_service(result: FraudCheckResult | None = None, error: Exception | None = None) -> MagicMock:
    fraud = MagicMock()
    fraud.check_payment = AsyncMock(return_value=result, side_effect=error)
    fraud.update_velocity_tracking = AsyncMock()
    fraud.review_payment = AsyncMock()
    return fraud


def _review_result() -> FraudCheckResult:
    return FraudCheckResult(
        is_approved=True,
        risk_level=FraudRiskLevel.HIGH,
        risk_score=Decimal("65"),
        requires_manual_review=True,
        triggered_rules=["critical_amount_threshold", "back_and_forth_transaction"],
    )


def _set_paypal_email(db_session, user_id, email="owner-paypal@example.com"):
    PaymentSettingsService(db_session).update(user_id, PaymentSettingsUpdate(paypal_email=email))
    db_session.commit()


def _transaction(db_session, rental: Rental) -> Transaction:
    return (
        db_session.query(Transaction)
        .filter(Transaction.rental_id == rental.id)
        .order_by(Transaction.created_at.desc())
        .first()
    )


def _payments(db_session, rental: Rental, payment_type: PaymentType) -> list[Payment]:
    return (
        db_session.query(Payment)
        .filter(Payment.rental_id == rental.id, Payment.type == payment_type.value)
        .all()
    )


async def _pay(service: PaymentSettlementService, rental: Rental, renter_id):
    initiated = await service.initiate_rental_payment(rental.id, renter_id)
    assert initiated.success, initiated.error_message
    return initiated, await service.complete_rental_payment(initiated.order_id, "PAYER-123")


class TestFinancials:
    def test_default_commission(self, service, owner):
        breakdown = service.calculate_rental_financials(Decimal("100"), Decimal("20"), owner.id)

        assert breakdown.commission_amount == Decimal("10.00")
        assert breakdown.total_payer_amount == Decimal("120.00")
        assert breakdown.owner_payout_amount == Decimal("90.00")

    def test_owner_custom_commission(self, service, db_session, owner):
        PaymentSettingsService(db_session).update(
            owner.id, PaymentSettingsUpdate(custom_commission_rate=Decimal("0.15"))
        )
        db_session.commit()

        assert service.calculate_commission(Decimal("200"), owner.id) == Decimal("30.00")

    def test_without_owner_uses_default_rate(self, service):
        assert service.calculate_commission(Decimal("50")) == Decimal("5.00")


class TestInitiateRentalPayment:
    @pytest.mark.asyncio
    async def test_creates_transaction_and_pending_payment(
        self, service, db_session, rental, renter, fake_provider
    ):
        result = await service.initiate_rental_payment(rental.id, renter.id)

        assert result.success is True
        assert result.approval_url.startswith("https://paypal.test/")
        transaction = _transaction(db_session, rental)
        assert transaction.status == TransactionStatus.PAYMENT_PROCESSING.value
        assert transaction.total_payer_amount == Decimal("120.00")
        assert transaction.commission_rate == Decimal("0.1000")
        payment = _payments(db_session, rental, PaymentType.RENTAL_PAYMENT)[0]
        assert payment.status == PaymentStatus.PENDING.value
        assert payment.payer_id == str(renter.id)
        assert payment.payee_id == str(rental.owner_id)
        assert payment.external_order_id == result.order_id

        request = fake_provider.calls[0][1]
        assert request.amount == Decimal("120.00")
        assert request.platform_fee == Decimal("10.00")
        assert request.is_marketplace_payment is False

    @pytest.mark.asyncio
    async def test_second_initiation_is_rejected(self, service, db_session, rental, renter):
        first = await service.initiate_rental_payment(rental.id, renter.id)
        second = await service.initiate_rental_payment(rental.id, renter.id)

        assert first.success is True
        assert second.success is False
        assert second.error_message == "Payment already initiated for this rental"
        assert db_session.query(Transaction).filter(Transaction.rental_id == rental.id).count() == 1

    @pytest.mark.asyncio
    async def test_only_renter_can_pay(self, service, rental, owner):
        result = await service.initiate_rental_payment(rental.id, owner.id)

        assert result.success is False
        assert result.error_message == "Only the renter can pay for this rental"

    @pytest.mark.asyncio
    async def test_missing_rental(self, service, renter):
        result = await service.initiate_rental_payment(uuid4(), renter.id)

        assert result.success is False
        assert result.error_message == "Rental not found"

    @pytest.mark.asyncio
    async def test_provider_failure_cancels_transaction(
        self, service, db_session, rental, renter, fake_provider
    ):
        fake_provider.create_result = CreatePaymentResult(success=False, error_message="declined")

        result = await service.initiate_rental_payment(rental.id, renter.id)

        assert result.success is False
        assert result.error_message == "declined"
        assert _transaction(db_session, rental).status == TransactionStatus.CANCELLED.value
        assert _payments(db_session, rental, PaymentType.RENTAL_PAYMENT) == []

        fake_provider.create_result = None
        retry = await service.initiate_rental_payment(rental.id, renter.id)
        assert retry.success is True

    @pytest.mark.asyncio
    async def test_provider_timeout_cancels_transaction(self, db_session, rental, renter, email_service):
        class SlowProvider(FakePaymentProvider):
            async def create_payment(self, request):  # type: ignore[no-untyped-def]
                await asyncio.sleep(1)
                return await super().create_payment(request)

        service = PaymentSettlementService(
            db_session, provider=SlowProvider(), email_service=email_service
        )
        with patch.object(settings, "PAYMENT_PROVIDER_TIMEOUT_SECONDS", 0.01):
            result = await service.initiate_rental_payment(rental.id, renter.id)

        assert result.success is False
        assert result.error_message == "Payment provider did not respond in time"
        assert _transaction(db_session, rental).status == TransactionStatus.CANCELLED.value

    @pytest.mark.asyncio
    async def test_unexpected_error_leaves_nothing_behind(
        self, db_session, rental, renter, email_service
    ):
        provider = MagicMock()
        provider.provider_name.value = "paypal"
        provider.create_payment = AsyncMock(side_effect=RuntimeError("boom"))
        service = PaymentSettlementService(db_session, provider=provider, email_service=email_service)

        with pytest.raises(RuntimeError, match="boom"):
            await service.initiate_rental_payment(rental.id, renter.id)

        assert db_session.query(Transaction).count() == 0
        assert db_session.query(Payment).count() == 0

    @pytest.mark.asyncio
    async def test_abandoned_payment_is_replaced(self, service, db_session, rental, renter):
        first = await service.initiate_rental_payment(rental.id, renter.id)
        stale = _transaction(db_session, rental)
        stale.created_at = utc_now() - timedelta(minutes=30)
        db_session.commit()

        second = await service.initiate_rental_payment(rental.id, renter.id)

        assert second.success is True
        assert second.transaction_id != first.transaction_id
        old = db_session.query(Transaction).filter(Transaction.id == first.transaction_id).one()
        assert old.status == TransactionStatus.CANCELLED.value
        old_payment = db_session.query(Payment).filter(Payment.id == first.payment_id).one()
        assert old_payment.status == PaymentStatus.CANCELLED.value


class TestCompleteRentalPayment:
    @pytest.mark.asyncio
    async def test_captures_and_settles(self, service, db_session, rental, renter, email_service):
        initiated, result = await _pay(service, rental, renter.id)

        assert result.success is True
        payment = db_session.query(Payment).filter(Payment.id == initiated.payment_id).one()
        assert payment.status == PaymentStatus.COMPLETED.value
        assert payment.external_payment_id == f"CAPTURE-{initiated.order_id}"
        assert payment.external_order_id == initiated.order_id
        assert payment.external_payer_id == "PAYER-123"
        assert payment.processed_at is not None

        transaction = _transaction(db_session, rental)
        assert transaction.status == TransactionStatus.PAYMENT_COMPLETED.value
        assert transaction.payment_completed_at is not None
        assert transaction.payout_scheduled_at is not None

        db_session.refresh(rental)
        assert rental.status == RentalStatus.APPROVED.value

        commission = _payments(db_session, rental, PaymentType.PLATFORM_COMMISSION)
        assert len(commission) == 1
        assert commission[0].amount == Decimal("10.00")
        assert commission[0].payer_id == str(rental.owner_id)
        assert commission[0].payee_id == PLATFORM_ACCOUNT_ID

        subjects = [c.args[0].subject for c in email_service.send_notification.await_args_list]
        assert subjects == ["Payment Confirmed - Rental Approved", "Payment Received"]

    @pytest.mark.asyncio
    async def test_scheduling_error_falls_back_to_default_hold(
        self, service, db_session, rental, renter, fake_provider
    ):
        with patch(
            "app.services.settlement_service.calculate_payout_time",
            side_effect=RuntimeError("settings corrupt"),
        ):
            _, result = await _pay(service, rental, renter.id)

        assert result.success is True
        assert fake_provider.call_names().count("capture_payment") == 1
        transaction = _transaction(db_session, rental)
        assert transaction.status == TransactionStatus.PAYMENT_COMPLETED.value
        assert transaction.payout_scheduled_at - transaction.payment_completed_at == timedelta(
            hours=settings.PAYOUT_HOLD_HOURS
        )

    def test_settings_lookup_error_falls_back_to_default_hold(self, service, owner):
        captured_at = utc_now()

        with patch.object(
            service.settings_service, "get_or_create", side_effect=RuntimeError("lookup failed")
        ):
            scheduled = service._schedule_payout(owner.id, captured_at)

        assert scheduled == captured_at + timedelta(hours=settings.PAYOUT_HOLD_HOURS)

    @pytest.mark.asyncio
    async def test_only_payer_can_complete(self, service, db_session, rental, renter, fake_provider):
        initiated = await service.initiate_rental_payment(rental.id, renter.id)

        result = await service.complete_rental_payment(initiated.order_id, "PAYER-123", uuid4())

        assert result.success is False
        assert result.error_message == "Only the renter can complete this payment"
        assert fake_provider.call_names().count("capture_payment") == 0
        payment = db_session.query(Payment).filter(Payment.id == initiated.payment_id).one()
        assert payment.status == PaymentStatus.PENDING.value

    @pytest.mark.asyncio
    async def test_second_completion_does_not_capture_again(
        self, service, rental, renter, fake_provider
    ):
        initiated, first = await _pay(service, rental, renter.id)
        second = await service.complete_rental_payment(initiated.order_id, "PAYER-123")

        assert first.success is True
        assert second.success is False
        assert "not pending" in second.error_message
        assert fake_provider.call_names().count("capture_payment") == 1

    @pytest.mark.asyncio
    async def test_unknown_payment(self, service):
        result = await service.complete_rental_payment("ORDER-UNKNOWN", "PAYER-123")

        assert result.success is False
        assert result.error_message == "Payment not found"

    @pytest.mark.asyncio
    async def test_local_amount_mismatch_fails_without_screening(
        self, db_session, rental, renter, fake_provider, email_service
    ):
        fraud = _fraud_service()
        service = PaymentSettlementService(
            db_session, provider=fake_provider, fraud_service=fraud, email_service=email_service
        )
        initiated = await service.initiate_rental_payment(rental.id, renter.id)
        payment = db_session.query(Payment).filter(Payment.id == initiated.payment_id).one()
        payment.amount = Decimal("1.00")
        db_session.commit()

        result = await service.complete_rental_payment(initiated.order_id, "PAYER-123")

        assert result.success is False
        assert result.error_message == "Payment amount mismatch"
        fraud.check_payment.assert_not_awaited()
        assert "capture_payment" not in fake_provider.call_names()
        assert _transaction(db_session, rental).status == TransactionStatus.CANCELLED.value

    @pytest.mark.asyncio
    async def test_provider_amount_mismatch_fails(
        self, service, db_session, rental, renter, fake_provider
    ):
        initiated = await service.initiate_rental_payment(rental.id, renter.id)
        fake_provider.status_amount = Decimal("100.00")

        result = await service.complete_rental_payment(initiated.order_id, "PAYER-123")

        assert result.success is False
        assert result.error_message == "Payment amount verification failed"
        payment = db_session.query(Payment).filter(Payment.id == initiated.payment_id).one()
        assert payment.status == PaymentStatus.FAILED.value
        assert "capture_payment" not in fake_provider.call_names()

    @pytest.mark.asyncio
    async def test_blocked_payment(self, db_session, rental, renter, fake_provider, email_service):
        blocked = FraudCheckResult(
            is_approved=False,
            risk_level=FraudRiskLevel.CRITICAL,
            risk_score=Decimal("90"),
            requires_manual_review=True,
            blocking_reason="Risk score 90.00",
        )
        service = PaymentSettlementService(
            db_session,
            provider=fake_provider,
            fraud_service=_fraud_service(blocked),
            email_service=email_service,
        )
        initiated = await service.initiate_rental_payment(rental.id, renter.id)

        result = await service.complete_rental_payment(initiated.order_id, "PAYER-123")

        assert result.success is False
        assert result.error_message == BLOCKED_MESSAGE
        payment = db_session.query(Payment).filter(Payment.id == initiated.payment_id).one()
        assert payment.status == PaymentStatus.FAILED.value
        assert _transaction(db_session, rental).status == TransactionStatus.CANCELLED.value
        email_service.send_notification.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_high_risk_payment_is_held_for_review(
        self, db_session, rental, renter, fake_provider, email_service
    ):
        service = PaymentSettlementService(
            db_session,
            provider=fake_provider,
            fraud_service=_fraud_service(_review_result()),
            email_service=email_service,
        )
        initiated = await service.initiate_rental_payment(rental.id, renter.id)

        result = await service.complete_rental_payment(initiated.order_id, "PAYER-123")

        assert result.success is False
        assert result.requires_review is True
        assert result.status == PaymentStatus.UNDER_REVIEW.value
        assert _transaction(db_session, rental).status == TransactionStatus.UNDER_REVIEW.value
        assert "capture_payment" not in fake_provider.call_names()

    @pytest.mark.asyncio
    async def test_screening_error_holds_payment_for_review(
        self, db_session, rental, renter, fake_provider, email_service
    ):
        service = PaymentSettlementService(
            db_session,
            provider=fake_provider,
            fraud_service=_fraud_service(error=RuntimeError("scoring unavailable")),
            email_service=email_service,
        )
        initiated = await service.initiate_rental_payment(rental.id, renter.id)

        result = await service.complete_rental_payment(initiated.order_id, "PAYER-123")

        assert result.requires_review is True
        payment = db_session.query(Payment).filter(Payment.id == initiated.payment_id).one()
        assert payment.status == PaymentStatus.UNDER_REVIEW.value

    @pytest.mark.asyncio
    async def test_capture_failure_fails_payment(
        self, service, db_session, rental, renter, fake_provider
    ):
        fake_provider.capture_result = CapturePaymentResult(
            success=False, error_message="INSTRUMENT_DECLINED"
        )
        _, result = await _pay(service, rental, renter.id)

        assert result.success is False
        assert result.error_message == "INSTRUMENT_DECLINED"
        assert _transaction(db_session, rental).status == TransactionStatus.CANCELLED.value

    @pytest.mark.asyncio
    async def test_email_failure_does_not_undo_settlement(
        self, service, db_session, rental, renter, email_service
    ):
        email_service.send_notification.side_effect = ConnectionError("SMTP down")

        _, result = await _pay(service, rental, renter.id)

        assert result.success is True
        assert _transaction(db_session, rental).status == TransactionStatus.PAYMENT_COMPLETED.value


class TestPaymentReview:
    @pytest.mark.asyncio
    async def test_approve_captures_payment(
        self, db_session, rental, renter, owner, fake_provider, email_service
    ):
        fraud = _fraud_service(_review_result())
        service = PaymentSettlementService(
            db_session, provider=fake_provider, fraud_service=fraud, email_service=email_service
        )
        initiated, _ = await _pay(service, rental, renter.id)

        result = await service.resolve_payment_review(initiated.payment_id, True, owner.id, "ok")

        assert result.success is True
        assert result.status == PaymentStatus.COMPLETED.value
        assert _transaction(db_session, rental).status == TransactionStatus.PAYMENT_COMPLETED.value
        fraud.review_payment.assert_awaited_once()
        capture = [c for name, c in fake_provider.calls if name == "capture_payment"][0]
        assert capture.payer_id == "PAYER-123"

    @pytest.mark.asyncio
    async def test_reject_fails_payment(
        self, db_session, rental, renter, owner, fake_provider, email_service
    ):
        service = PaymentSettlementService(
            db_session,
            provider=fake_provider,
            fraud_service=_fraud_service(_review_result()),
            email_service=email_service,
        )
        initiated, _ = await _pay(service, rental, renter.id)

        result = await service.resolve_payment_review(initiated.payment_id, False, owner.id)

        assert result.success is True
        assert result.status == PaymentStatus.FAILED.value
        assert _transaction(db_session, rental).status == TransactionStatus.CANCELLED.value
        assert "capture_payment" not in fake_provider.call_names()

    @pytest.mark.asyncio
    async def test_payment_not_under_review(self, service, rental, renter, owner):
        initiated = await service.initiate_rental_payment(rental.id, renter.id)

        result = await service.resolve_payment_review(initiated.payment_id, True, owner.id)

        assert result.success is False
        assert "not under review" in result.error_message


class TestCancelAndExpire:
    @pytest.mark.asyncio
    async def test_renter_cancels_pending_payment(self, service, db_session, rental, renter):
        initiated = await service.initiate_rental_payment(rental.id, renter.id)

        result = await service.cancel_payment(rental.id, renter.id)

        assert result.success is True
        assert result.status == TransactionStatus.CANCELLED.value
        payment = db_session.query(Payment).filter(Payment.id == initiated.payment_id).one()
        assert payment.status == PaymentStatus.CANCELLED.value

    @pytest.mark.asyncio
    async def test_cannot_cancel_captured_payment(self, service, rental, renter):
        await _pay(service, rental, renter.id)

        result = await service.cancel_payment(rental.id, renter.id)

        assert result.success is False
        assert "can no longer be cancelled" in result.error_message

    @pytest.mark.asyncio
    async def test_expire_abandoned_payments(self, service, db_session, owner, renter):
        fresh = create_rental(db_session, owner, renter)
        stale = create_rental(db_session, owner, renter)
        await service.initiate_rental_payment(fresh.id, renter.id)
        await service.initiate_rental_payment(stale.id, renter.id)
        old = _transaction(db_session, stale)
        old.created_at = utc_now() - timedelta(hours=1)
        db_session.commit()

        count = await service.expire_abandoned_payments()

        assert count == 1
        assert _transaction(db_session, stale).status == TransactionStatus.CANCELLED.value
        assert _transaction(db_session, fresh).status == TransactionStatus.PAYMENT_PROCESSING.value


class TestRefunds:
    @pytest.mark.asyncio
    async def test_full_refund(self, service, db_session, rental, renter, email_service):
        initiated, _ = await _pay(service, rental, renter.id)
        email_service.send_notification.reset_mock()

        result = await service.refund_rental(rental.id, Decimal("120.00"), "Tool was broken")

        assert result.success is True
        assert result.refunded_amount == Decimal("120.00")
        payment = db_session.query(Payment).filter(Payment.id == initiated.payment_id).one()
        assert payment.status == PaymentStatus.REFUNDED.value
        assert payment.refunded_amount == Decimal("120.00")
        assert _transaction(db_session, rental).status == TransactionStatus.REFUNDED.value
        refunds = _payments(db_session, rental, PaymentType.REFUND)
        assert len(refunds) == 1
        assert refunds[0].payer_id == PLATFORM_ACCOUNT_ID
        assert refunds[0].payee_id == str(renter.id)
        subjects = [c.args[0].subject for c in email_service.send_notification.await_args_list]
        assert subjects == ["Refund Processed", "Rental Refunded"]

    @pytest.mark.asyncio
    async def test_refund_after_full_refund_is_rejected(
        self, service, rental, renter, fake_provider
    ):
        await _pay(service, rental, renter.id)
        await service.refund_rental(rental.id, Decimal("120.00"), "Cancelled")

        result = await service.refund_rental(rental.id, Decimal("1.00"), "Again")

        assert result.success is False
        assert result.error_message == "Payment has already been refunded"
        assert fake_provider.call_names().count("refund_payment") == 1

    @pytest.mark.asyncio
    async def test_partial_refunds_accumulate(self, service, db_session, rental, renter):
        initiated, _ = await _pay(service, rental, renter.id)

        first = await service.refund_rental(rental.id, Decimal("50.00"), "Late pickup")
        too_much = await service.refund_rental(rental.id, Decimal("80.00"), "More")
        second = await service.refund_rental(rental.id, Decimal("30.00"), "Missing parts")

        assert first.success is True
        assert too_much.success is False
        assert too_much.error_message == "Refund amount exceeds refundable balance"
        assert second.success is True
        payment = db_session.query(Payment).filter(Payment.id == initiated.payment_id).one()
        assert payment.status == PaymentStatus.PARTIALLY_REFUNDED.value
        assert payment.refunded_amount == Decimal("80.00")
        assert len(_payments(db_session, rental, PaymentType.REFUND)) == 2

    @pytest.mark.asyncio
    async def test_refund_without_payment(self, service, rental):
        result = await service.refund_rental(rental.id, Decimal("10.00"), "No payment")

        assert result.success is False
        assert result.error_message == "No completed payment found for this rental"

    @pytest.mark.asyncio
    async def test_provider_refund_failure_changes_nothing(
        self, service, db_session, rental, renter, fake_provider
    ):
        initiated, _ = await _pay(service, rental, renter.id)
        fake_provider.refund_result = RefundResult(success=False, error_message="REFUND_FAILED")

        result = await service.refund_rental(rental.id, Decimal("120.00"), "Cancelled")

        assert result.success is False
        payment = db_session.query(Payment).filter(Payment.id == initiated.payment_id).one()
        assert payment.status == PaymentStatus.COMPLETED.value
        assert _payments(db_session, rental, PaymentType.REFUND) == []

    @pytest.mark.asyncio
    async def test_records_amount_the_provider_refunded(
        self, service, db_session, rental, renter, fake_provider
    ):
        initiated, _ = await _pay(service, rental, renter.id)
        fake_provider.refund_result = RefundResult(
            success=True, refund_id="REFUND-PART", amount=Decimal("5.00"), status="COMPLETED"
        )

        result = await service.refund_rental(rental.id, Decimal("10.00"), "Scratched handle")

        assert result.success is True
        assert result.refunded_amount == Decimal("5.00")
        payment = db_session.query(Payment).filter(Payment.id == initiated.payment_id).one()
        assert payment.refunded_amount == Decimal("5.00")
        refunds = _payments(db_session, rental, PaymentType.REFUND)
        assert [r.amount for r in refunds] == [Decimal("5.00")]

    @pytest.mark.asyncio
    async def test_deposit_refund_only_once(
        self, service, db_session, rental, renter, fake_provider
    ):
        initiated, _ = await _pay(service, rental, renter.id)

        first = await service.refund_security_deposit(rental.id)
        second = await service.refund_security_deposit(rental.id)

        assert first.success is True
        assert first.refunded_amount == Decimal("20.00")
        assert second.success is False
        assert second.error_message == "Security deposit already refunded"
        assert fake_provider.call_names().count("refund_payment") == 1
        assert len(_payments(db_session, rental, PaymentType.DEPOSIT_REFUND)) == 1

        transaction = _transaction(db_session, rental)
        assert transaction.deposit_refunded_at is not None
        assert transaction.status == TransactionStatus.PAYMENT_COMPLETED.value
        payment = db_session.query(Payment).filter(Payment.id == initiated.payment_id).one()
        assert payment.status == PaymentStatus.PARTIALLY_REFUNDED.value

    @pytest.mark.asyncio
    async def test_deposit_refund_without_deposit(self, service, db_session, owner, renter):
        rental = create_rental(db_session, owner, renter, deposit_amount=Decimal("0"))
        await _pay(service, rental, renter.id)

        result = await service.refund_security_deposit(rental.id)

        assert result.success is False
        assert result.error_message == "No security deposit to refund"


class TestPayouts:
    @pytest.mark.asyncio
    async def test_owner_payout(self, service, db_session, rental, renter, owner, email_service):
        _set_paypal_email(db_session, owner.id)
        await _pay(service, rental, renter.id)
        transaction_id = _transaction(db_session, rental).id

        result = await service.create_owner_payout(transaction_id)

        assert result.success is True
        assert result.amount == Decimal("90.00")
        payout = db_session.query(Payout).filter(Payout.id == result.payout_id).one()
        assert payout.status == PayoutStatus.COMPLETED.value
        assert payout.payout_destination == "owner-paypal@example.com"
        transaction = _transaction(db_session, rental)
        assert transaction.status == TransactionStatus.PAYOUT_COMPLETED.value
        assert transaction.payout_completed_at is not None
        owner_payouts = _payments(db_session, rental, PaymentType.OWNER_PAYOUT)
        assert len(owner_payouts) == 1
        assert owner_payouts[0].payee_id == str(owner.id)
        subjects = [c.args[0].subject for c in email_service.send_notification.await_args_list]
        assert "Payout Sent" in subjects

    @pytest.mark.asyncio
    async def test_payout_requires_paypal_email(self, service, db_session, rental, renter):
        await _pay(service, rental, renter.id)

        result = await service.create_owner_payout(_transaction(db_session, rental).id)

        assert result.success is False
        assert "PayPal email" in result.error_message

    @pytest.mark.asyncio
    async def test_payout_below_minimum(self, service, db_session, owner, renter):
        _set_paypal_email(db_session, owner.id)
        rental = create_rental(db_session, owner, renter, total_cost=Decimal("5.00"))
        await _pay(service, rental, renter.id)

        result = await service.create_owner_payout(_transaction(db_session, rental).id)

        assert result.success is False
        assert "below the minimum" in result.error_message

    @pytest.mark.asyncio
    async def test_failed_payout_is_retried(
        self, service, db_session, rental, renter, owner, fake_provider
    ):
        _set_paypal_email(db_session, owner.id)
        await _pay(service, rental, renter.id)
        transaction_id = _transaction(db_session, rental).id
        fake_provider.payout_result = CreatePayoutResult(
            success=False, error_message="RECEIVER_UNREGISTERED"
        )

        failed = await service.create_owner_payout(transaction_id)

        assert failed.success is False
        assert _transaction(db_session, rental).status == TransactionStatus.PAYMENT_COMPLETED.value

        fake_provider.payout_result = None
        retried = await service.create_owner_payout(transaction_id)

        assert retried.success is True
        payout = db_session.query(Payout).filter(Payout.id == retried.payout_id).one()
        assert payout.retry_count == 1
        statuses = sorted(p.status for p in db_session.query(Payout).all())
        assert statuses == [PayoutStatus.COMPLETED.value, PayoutStatus.FAILED.value]

    @pytest.mark.asyncio
    async def test_scheduled_run_pays_each_transaction_once(
        self, service, db_session, rental, renter, owner, fake_provider
    ):
        _set_paypal_email(db_session, owner.id)
        await _pay(service, rental, renter.id)

        first = await service.process_scheduled_payouts(now=FAR_FUTURE)
        second = await service.process_scheduled_payouts(now=FAR_FUTURE)

        assert (first.processed, first.succeeded, first.failed) == (1, 1, 0)
        assert second.processed == 0
        assert fake_provider.call_names().count("create_payout") == 1
        assert db_session.query(Payout).count() == 1
        assert len(_payments(db_session, rental, PaymentType.OWNER_PAYOUT)) == 1

    @pytest.mark.asyncio
    async def test_scheduled_run_skips_payouts_not_due(self, service, db_session, rental, renter, owner):
        _set_paypal_email(db_session, owner.id)
        await _pay(service, rental, renter.id)

        summary = await service.process_scheduled_payouts(now=utc_now())

        assert summary.processed == 0

    @pytest.mark.asyncio
    async def test_scheduled_run_continues_after_error(
        self, service, db_session, owner, renter, fake_provider
    ):
        _set_paypal_email(db_session, owner.id)
        first_rental = create_rental(db_session, owner, renter)
        second_rental = create_rental(db_session, owner, renter)
        await _pay(service, first_rental, renter.id)
        await _pay(service, second_rental, renter.id)

        original = fake_provider.create_payout
        calls = {"count": 0}

        async def flaky_payout(request):  # type: ignore[no-untyped-def]
            calls["count"] += 1
            if calls["count"] == 1:
                raise RuntimeError("network down")
            return await original(request)

        fake_provider.create_payout = flaky_payout  # type: ignore[method-assign]

        summary = await service.process_scheduled_payouts(now=FAR_FUTURE)

        assert (summary.processed, summary.succeeded, summary.failed) == (2, 1, 1)


class TestWebhooks:
    @pytest.mark.asyncio
    async def test_order_approved_completes_payment(self, service, db_session, rental, renter):
        initiated = await service.initiate_rental_payment(rental.id, renter.id)
        payload = json.dumps(
            {
                "id": "WH-1",
                "event_type": "CHECKOUT.ORDER.APPROVED",
                "resource": {"id": initiated.order_id, "payer": {"payer_id": "PAYER-9"}},
            }
        ).encode()

        outcome = await service.handle_provider_webhook(payload, {})

        assert outcome.success is True
        assert outcome.handled is True
        payment = db_session.query(Payment).filter(Payment.id == initiated.payment_id).one()
        assert payment.status == PaymentStatus.COMPLETED.value
        assert payment.external_payer_id == "PAYER-9"

    @pytest.mark.asyncio
    async def test_invalid_signature_is_rejected(self, service, fake_provider):
        fake_provider.webhook_valid = False

        outcome = await service.handle_provider_webhook(b"{}", {})

        assert outcome.success is False
        assert outcome.error_message == "Invalid signature"

    @pytest.mark.asyncio
    async def test_denied_capture_fails_pending_payment(self, service, db_session, rental, renter):
        initiated = await service.initiate_rental_payment(rental.id, renter.id)
        payload = json.dumps(
            {"event_type": "PAYMENT.CAPTURE.DENIED", "resource": {"id": initiated.order_id}}
        ).encode()

        outcome = await service.handle_provider_webhook(payload, {})

        assert outcome.handled is True
        payment = db_session.query(Payment).filter(Payment.id == initiated.payment_id).one()
        assert payment.status == PaymentStatus.FAILED.value

    @pytest.mark.asyncio
    async def test_unhandled_event_is_acknowledged(self, service):
        payload = json.dumps({"event_type": "BILLING.PLAN.CREATED", "resource": {}}).encode()

        outcome = await service.handle_provider_webhook(payload, {})

        assert outcome.success is True
        assert outcome.handled is False


class TestQueries:
    @pytest.mark.asyncio
    async def test_transaction_by_rental_falls_back_to_cancelled(
        self, service, db_session, rental, renter
    ):
        await service.initiate_rental_payment(rental.id, renter.id)
        await service.cancel_payment(rental.id, renter.id)

        transaction = service.get_transaction_by_rental(rental.id)

        assert transaction is not None
        assert transaction.status == TransactionStatus.CANCELLED.value

    @pytest.mark.asyncio
    async def test_payout_status_without_provider_reference(self, service):
        result = await service.get_payout_status(uuid4())

        assert result.success is False
        assert result.error_message == "Payout not found"
