"""Payment API endpoints."""

from decimal import Decimal
from typing import Any
from uuid import UUID

from fastapi import APIRouter, Depends, HTTPException, Query, Request, Response
from sqlalchemy.orm import Session

from app.core.auth import ADMIN_ROLE, get_current_user_id, get_token_claims, require_admin
from app.core.database import get_db
from app.models.payment_settings import PaymentSettings
from app.models.transaction import Transaction
from app.repositories.payment_repository import PaymentRepository
from app.repositories.rental_repository import RentalRepository
from app.schemas.payment import (
    CompletePaymentRequest,
    FeeBreakdownResponse,
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
from app.services.payment_settings_service import PaymentSettingsService
from app.services.settlement_service import PaymentResult, PaymentSettlementService

router = APIRouter()


def get_settlement_service(db: Session = Depends(get_db)) -> PaymentSettlementService:
    return PaymentSettlementService(db)


def _payment_response(result: PaymentResult) -> PaymentResultResponse:
    if not result.success and not result.requires_review:
        raise HTTPException(status_code=400, detail=result.error_message)
    return PaymentResultResponse(**vars(result))


@router.post("/initiate/{rental_id}", response_model=PaymentResultResponse)
async def initiate_payment(
    rental_id: UUID,
    user_id: UUID = Depends(get_current_user_id),
    service: PaymentSettlementService = Depends(get_settlement_service),
) -> PaymentResultResponse:
    """Start paying for a rental. Returns the URL where the renter approves the payment."""
    result = await service.initiate_rental_payment(rental_id, user_id)
    return _payment_response(result)


@router.post("/complete", response_model=PaymentResultResponse)
async def complete_payment(
    data: CompletePaymentRequest,
    response: Response,
    user_id: UUID = Depends(get_current_user_id),
    service: PaymentSettlementService = Depends(get_settlement_service),
) -> PaymentResultResponse:
    """Capture a payment the renter has approved.

    Responds 202 when the payment is held for a security review.
    """
    result = await service.complete_rental_payment(data.payment_id, data.payer_id, user_id)
    if result.requires_review:
        response.status_code = 202
    return _payment_response(result)


@router.post("/cancel/{rental_id}", response_model=PaymentResultResponse)
async def cancel_payment(
    rental_id: UUID,
    user_id: UUID = Depends(get_current_user_id),
    service: PaymentSettlementService = Depends(get_settlement_service),
) -> PaymentResultResponse:
    """Abandon a payment the renter has not approved yet."""
    result = await service.cancel_payment(rental_id, user_id)
    return _payment_response(result)


@router.get("/status/{external_id}", response_model=ProviderStatusResponse)
async def get_payment_status(
    external_id: str,
    claims: dict[str, Any] = Depends(get_token_claims),
    user_id: UUID = Depends(get_current_user_id),
    db: Session = Depends(get_db),
    service: PaymentSettlementService = Depends(get_settlement_service),
) -> ProviderStatusResponse:
    """Query the provider for a payment's status."""
    payment = PaymentRepository(db).get_by_external_id(external_id)
    if not payment:
        raise HTTPException(status_code=404, detail="Payment not found")
    if claims.get("role") != ADMIN_ROLE and str(user_id) not in (payment.payer_id, payment.payee_id):
        raise HTTPException(status_code=403, detail="Not a party to this payment")

    result = await service.get_payment_status(external_id)
    return ProviderStatusResponse(
        success=result.success,
        status=result.status,
        amount=result.amount,
        currency=result.currency,
        error_message=result.error_message,
    )


@router.post("/refund/{rental_id}", response_model=RefundResultResponse)
async def refund_rental(
    rental_id: UUID,
    data: RefundRequest,
    admin_id: UUID = Depends(require_admin),
    service: PaymentSettlementService = Depends(get_settlement_service),
) -> RefundResultResponse:
    """Refund all or part of a rental payment."""
    result = await service.refund_rental(rental_id, data.amount, data.reason)
    if not result.success:
        raise HTTPException(status_code=400, detail=result.error_message)
    return RefundResultResponse(**vars(result))


@router.post("/refund-deposit/{rental_id}", response_model=RefundResultResponse)
async def refund_security_deposit(
    rental_id: UUID,
    admin_id: UUID = Depends(require_admin),
    service: PaymentSettlementService = Depends(get_settlement_service),
) -> RefundResultResponse:
    """Return a rental's security deposit to the renter."""
    result = await service.refund_security_deposit(rental_id)
    if not result.success:
        raise HTTPException(status_code=400, detail=result.error_message)
    return RefundResultResponse(**vars(result))


@router.get("/transaction/{rental_id}", response_model=TransactionResponse)
async def get_transaction(
    rental_id: UUID,
    claims: dict[str, Any] = Depends(get_token_claims),
    user_id: UUID = Depends(get_current_user_id),
    db: Session = Depends(get_db),
    service: PaymentSettlementService = Depends(get_settlement_service),
) -> Transaction:
    """Get the settlement transaction of a rental."""
    rental = RentalRepository(db).get_by_id(rental_id)
    if not rental:
        raise HTTPException(status_code=404, detail="Rental not found")
    if claims.get("role") != ADMIN_ROLE and user_id not in (rental.owner_id, rental.renter_id):
        raise HTTPException(status_code=403, detail="Not a party to this rental")

    transaction = service.get_transaction_by_rental(rental_id)
    if not transaction:
        raise HTTPException(status_code=404, detail="Transaction not found")
    return transaction


@router.get("/calculate-fees", response_model=FeeBreakdownResponse)
async def calculate_fees(
    rental_amount: Decimal = Query(..., ge=0),
    security_deposit: Decimal = Query(default=Decimal("0"), ge=0),
    owner_id: UUID | None = None,
    user_id: UUID = Depends(get_current_user_id),
    service: PaymentSettlementService = Depends(get_settlement_service),
) -> FeeBreakdownResponse:
    """Preview the fee breakdown of a rental."""
    breakdown = service.calculate_rental_financials(rental_amount, security_deposit, owner_id)
    return FeeBreakdownResponse(**vars(breakdown))


@router.get("/settings", response_model=PaymentSettingsResponse)
async def get_payment_settings(
    user_id: UUID = Depends(get_current_user_id),
    db: Session = Depends(get_db),
) -> PaymentSettings:
    """Get the caller's payment settings, creating defaults on first use."""
    payment_settings = PaymentSettingsService(db).get_or_create(user_id)
    db.commit()
    db.refresh(payment_settings)
    return payment_settings


@router.put("/settings", response_model=PaymentSettingsResponse)
async def update_payment_settings(
    data: PaymentSettingsUpdate,
    user_id: UUID = Depends(get_current_user_id),
    db: Session = Depends(get_db),
) -> PaymentSettings:
    """Update the caller's payment settings."""
    payment_settings = PaymentSettingsService(db).update(user_id, data)
    db.commit()
    db.refresh(payment_settings)
    return payment_settings


@router.post("/payout/{transaction_id}", response_model=PayoutResultResponse)
async def create_payout(
    transaction_id: UUID,
    admin_id: UUID = Depends(require_admin),
    service: PaymentSettlementService = Depends(get_settlement_service),
) -> PayoutResultResponse:
    """Pay out a transaction to its owner now."""
    result = await service.create_owner_payout(transaction_id)
    if not result.success:
        raise HTTPException(status_code=400, detail=result.error_message)
    return PayoutResultResponse(**vars(result))


@router.post("/process-scheduled-payouts", response_model=ProcessPayoutsResponse)
async def process_scheduled_payouts(
    admin_id: UUID = Depends(require_admin),
    service: PaymentSettlementService = Depends(get_settlement_service),
) -> ProcessPayoutsResponse:
    """Run every payout whose scheduled time has passed."""
    summary = await service.process_scheduled_payouts()
    return ProcessPayoutsResponse(**vars(summary))


@router.get("/payout/status/{payout_id}", response_model=ProviderStatusResponse)
async def get_payout_status(
    payout_id: UUID,
    user_id: UUID = Depends(get_current_user_id),
    service: PaymentSettlementService = Depends(get_settlement_service),
) -> ProviderStatusResponse:
    """Get a payout's status, from the provider once it has been sent."""
    result = await service.get_payout_status(payout_id)
    if not result.success and result.error_message == "Payout not found":
        raise HTTPException(status_code=404, detail=result.error_message)
    return ProviderStatusResponse(
        success=result.success,
        status=result.status,
        amount=result.amount,
        currency=result.currency,
        error_message=result.error_message,
    )


@router.post("/review/{payment_id}", response_model=PaymentResultResponse)
async def review_payment(
    payment_id: UUID,
    data: ReviewDecisionRequest,
    admin_id: UUID = Depends(require_admin),
    service: PaymentSettlementService = Depends(get_settlement_service),
) -> PaymentResultResponse:
    """Approve or reject a payment held for a security review."""
    result = await service.resolve_payment_review(payment_id, data.approved, admin_id, data.notes)
    return _payment_response(result)


@router.get("/can-receive-payments/{owner_id}", response_model=CanReceivePaymentsResponse)
async def can_receive_payments(
    owner_id: UUID,
    user_id: UUID = Depends(get_current_user_id),
    db: Session = Depends(get_db),
) -> CanReceivePaymentsResponse:
    """Whether an owner is set up to receive payouts."""
    can_receive = PaymentSettingsService(db).can_owner_receive_payments(owner_id)
    return CanReceivePaymentsResponse(owner_id=owner_id, can_receive_payments=can_receive)


@router.post("/webhook/paypal")
async def handle_paypal_webhook(
    request: Request,
    service: PaymentSettlementService = Depends(get_settlement_service),
) -> dict[str, Any]:
    """Handle PayPal webhook events. The signature is checked against PayPal."""
    payload = await request.body()
    outcome = await service.handle_provider_webhook(payload, dict(request.headers))
    if not outcome.success:
        raise HTTPException(status_code=400, detail=outcome.error_message or "Invalid webhook")
    return {"status": "ok", "event_type": outcome.event_type, "handled": outcome.handled}
