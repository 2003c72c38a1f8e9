"""Repositories for fraud checks and velocity limits."""

from typing import Any
from uuid import UUID

from sqlalchemy.orm import Session

from app.models.fraud_check import FraudCheck, FraudCheckStatus, VelocityLimit


class FraudCheckRepository:
    """Repository for FraudCheck model."""

    def __init__(self, db: Session):
        self.db = db

    def create(self, **fields: Any) -> FraudCheck:
        check = FraudCheck(**fields)
        self.db.add(check)
        self.db.flush()
        return check

    def get_by_id(self, fraud_check_id: UUID) -> FraudCheck | None:
        return self.db.query(FraudCheck).filter(FraudCheck.id == fraud_check_id).first()

    def get_latest_for_payment(self, payment_id: UUID) -> FraudCheck | None:
        return (
            self.db.query(FraudCheck)
            .filter(FraudCheck.payment_id == payment_id)
            .order_by(FraudCheck.created_at.desc())
            .first()
        )

    def get_pending_reviews(self) -> list[FraudCheck]:
        return (
            self.db.query(FraudCheck)
            .filter(FraudCheck.status == FraudCheckStatus.PENDING_REVIEW.value)
            .order_by(FraudCheck.created_at)
            .all()
        )


class VelocityLimitRepository:
    """Repository for VelocityLimit model."""

    def __init__(self, db: Session):
        self.db = db

    def get_active_for_user(self, user_id: str) -> list[VelocityLimit]:
        return (
            self.db.query(VelocityLimit)
            .filter(VelocityLimit.user_id == user_id, VelocityLimit.is_active.is_(True))
            .all()
        )

    def get_for_user_and_type(self, user_id: str, limit_type: str) -> VelocityLimit | None:
        return (
            self.db.query(VelocityLimit)
            .filter(VelocityLimit.user_id == user_id, VelocityLimit.limit_type == limit_type)
            .first()
        )

    def create(self, **fields: Any) -> VelocityLimit:
        limit = VelocityLimit(**fields)
        self.db.add(limit)
        self.db.flush()
        return limit
