"""PaymentSettings repository for data access."""

from typing import Any
from uuid import UUID

from sqlalchemy.orm import Session

from app.models.payment_settings import PaymentSettings
from app.schemas.payment_settings import PaymentSettingsUpdate


class PaymentSettingsRepository:
    """Repository for PaymentSettings model."""

    def __init__(self, db: Session):
        self.db = db

    def get_by_user_id(self, user_id: UUID) -> PaymentSettings | None:
        return self.db.query(PaymentSettings).filter(PaymentSettings.user_id == user_id).first()

    def create(self, user_id: UUID, **fields: Any) -> PaymentSettings:
        payment_settings = PaymentSettings(user_id=user_id, **fields)
        self.db.add(payment_settings)
        self.db.flush()
        return payment_settings

    def update(self, payment_settings: PaymentSettings, data: PaymentSettingsUpdate) -> PaymentSettings:
        update_data = data.model_dump(exclude_unset=True)
        for key, value in update_data.items():
            if hasattr(value, "value"):
                value = value.value
            setattr(payment_settings, key, value)
        self.db.flush()
        return payment_settings
