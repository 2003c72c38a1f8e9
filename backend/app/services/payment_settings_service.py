"""Service for per-user payment settings."""

import logging
from uuid import UUID

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from app.core.config import settings
from app.models.payment import PaymentProvider
from app.models.payment_settings import PaymentSettings, PayoutSchedule
from app.repositories.payment_settings_repository import PaymentSettingsRepository
from app.schemas.payment_settings import PaymentSettingsUpdate

logger = logging.getLogger(__name__)


class PaymentSettingsService:
    """Reads and updates payout configuration. Changes are flushed, not committed."""

    def __init__(self, db: Session):
        self.db = db
        self.repo = PaymentSettingsRepository(db)

    def get_or_create(self, user_id: UUID) -> PaymentSettings:
        """Get a user's settings, creating them with platform defaults on first use."""
        existing = self.repo.get_by_user_id(user_id)
        if existing is not None:
            return existing

        logger.info("Creating default payment settings for user %s", user_id)
        return self.repo.create(
            user_id,
            preferred_payout_method=PaymentProvider.PAYPAL.value,
            is_commission_enabled=True,
            payout_schedule=PayoutSchedule.ON_DEMAND.value,
            minimum_payout_amount=settings.MINIMUM_PAYOUT_AMOUNT,
            notify_on_payment_received=True,
            notify_on_payout_sent=True,
            notify_on_payout_failed=True,
        )

    def update(self, user_id: UUID, data: PaymentSettingsUpdate) -> PaymentSettings:
        """Apply a partial update. A new PayPal email must be verified again."""
        payment_settings = self.get_or_create(user_id)
        previous_email = payment_settings.paypal_email

        payment_settings = self.repo.update(payment_settings, data)

        if "paypal_email" in data.model_fields_set and data.paypal_email != previous_email:
            payment_settings.is_payout_verified = False  # type: ignore[assignment]
            payment_settings.verified_at = None  # type: ignore[assignment]
            self.db.flush()
        return payment_settings

    def can_owner_receive_payments(self, owner_id: UUID) -> bool:
        """Whether the owner has a PayPal email to receive payouts at."""
        try:
            payment_settings = self.repo.get_by_user_id(owner_id)
        except SQLAlchemyError:
            logger.exception("Failed to load payment settings for owner %s", owner_id)
            return False
        return bool(payment_settings and payment_settings.paypal_email)
