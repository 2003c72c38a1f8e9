"""Fraud screening records and per-user velocity limits."""

from enum import Enum

from sqlalchemy import JSON, Boolean, Column, DateTime, ForeignKey, Integer, Numeric, String, Text

from app.core.database import Base
from app.models.shared import UUIDType, generate_uuid, utc_now


class FraudRiskLevel(str, Enum):
    """Risk bands derived from a fraud score."""

    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    CRITICAL = "critical"


class FraudCheckStatus(str, Enum):
    """Lifecycle of a fraud check."""

    APPROVED = "approved"
    PENDING_REVIEW = "pending_review"
    BLOCKED = "blocked"
    REVIEWED_APPROVED = "reviewed_approved"
    REVIEWED_REJECTED = "reviewed_rejected"


class VelocityLimitType(str, Enum):
    """Velocity windows."""

    DAILY = "daily"
    WEEKLY = "weekly"
    MONTHLY = "monthly"


class FraudCheck(Base):
    """One screening of a payment."""

    __tablename__ = "fraud_checks"

    id = Column(UUIDType, primary_key=True, default=generate_uuid)
    user_id = Column(String(36), nullable=False, index=True)
    payment_id = Column(
        UUIDType, ForeignKey("payments.id", ondelete="CASCADE"), nullable=True, index=True
    )
    check_type = Column(String(50), nullable=False, default="payment")
    risk_level = Column(String(20), nullable=False, default=FraudRiskLevel.LOW.value)
    risk_score = Column(Numeric(6, 2), nullable=False, default=0)
    triggered_rules = Column(JSON, nullable=False, default=list)
    status = Column(String(30), nullable=False, default=FraudCheckStatus.APPROVED.value)
    is_blocked = Column(Boolean, nullable=False, default=False)
    blocking_reason = Column(Text, nullable=True)

    reviewed_by = Column(String(36), nullable=True)
    reviewed_at = Column(DateTime(timezone=True), nullable=True)
    review_notes = Column(Text, nullable=True)

    created_at = Column(DateTime(timezone=True), nullable=False, default=utc_now)


class VelocityLimit(Base):
    """Spending and transaction-count limit for one user over one window."""

    __tablename__ = "velocity_limits"

    id = Column(UUIDType, primary_key=True, default=generate_uuid)
    user_id = Column(String(36), nullable=False, index=True)
    limit_type = Column(String(20), nullable=False, default=VelocityLimitType.DAILY.value)
    window_hours = Column(Integer, nullable=False, default=24)
    amount_limit = Column(Numeric(12, 2), nullable=False)
    transaction_limit = Column(Integer, nullable=False)
    current_amount = Column(Numeric(12, 2), nullable=False, default=0)
    current_count = Column(Integer, nullable=False, default=0)
    window_start = Column(DateTime(timezone=True), nullable=False, default=utc_now)
    is_active = Column(Boolean, nullable=False, default=True)
    created_at = Column(DateTime(timezone=True), nullable=False, default=utc_now)
