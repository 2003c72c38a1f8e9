"""Fraud screening for captured rental payments.

Scores a payment against velocity and pattern rules and decides whether it
is approved, held for manual review or blocked. Each screening is recorded
as a FraudCheck row in the caller's unit of work.
"""

import logging
from dataclasses import dataclass, field
from datetime import timedelta
from decimal import Decimal
from uuid import UUID

from sqlalchemy.orm import Session

from app.core.config import settings
from app.models.fraud_check import (
    FraudCheck,
    FraudCheckStatus,
    FraudRiskLevel,
    VelocityLimit,
    VelocityLimitType,
)
from app.models.payment import Payment
from app.models.shared import as_utc, to_decimal, utc_now
from app.repositories.fraud_check_repository import FraudCheckRepository, VelocityLimitRepository
from app.repositories.payment_repository import PaymentRepository
from app.repositories.user_repository import UserRepository

logger = logging.getLogger(__name__)

# (amount limit, transaction limit, window hours) per limit type
DEFAULT_VELOCITY_LIMITS: dict[VelocityLimitType, tuple[Decimal, int, int]] = {
    VelocityLimitType.DAILY: (Decimal("5000"), 20, 24),
    VelocityLimitType.WEEKLY: (Decimal("15000"), 100, 24 * 7),
    VelocityLimitType.MONTHLY: (Decimal("50000"), 300, 24 * 30),
}

USER_RISK_WEIGHT = Decimal("0.3")


@dataclass
class FraudCheckResult:
    """Outcome of screening a payment."""

    is_approved: bool
    risk_level: FraudRiskLevel
    risk_score: Decimal
    requires_manual_review: bool = False
    blocking_reason: str | None = None
    triggered_rules: list[str] = field(default_factory=list)
    fraud_check_id: UUID | None = None


def get_risk_level(score: Decimal) -> FraudRiskLevel:
    if score >= 80:
        return FraudRiskLevel.CRITICAL
    if score >= 60:
        return FraudRiskLevel.HIGH
    if score >= 30:
        return FraudRiskLevel.MEDIUM
    return FraudRiskLevel.LOW


def is_round_amount(amount: Decimal, tolerance: Decimal | None = None) -> bool:
    """Whole-number amounts are a structuring signal."""
    tolerance = settings.fraud_round_amount_tolerance if tolerance is None else tolerance
    fractional = to_decimal(amount) % 1
    return fractional <= tolerance or fractional >= 1 - tolerance


def _parse_user_id(user_id: str) -> UUID | None:
    try:
        return UUID(str(user_id))
    except ValueError:
        return None


class FraudDetectionService:
    """Service for scoring payments and tracking per-user velocity."""

    def __init__(self, db: Session):
        self.db = db
        self.fraud_check_repo = FraudCheckRepository(db)
        self.velocity_repo = VelocityLimitRepository(db)
        self.payment_repo = PaymentRepository(db)
        self.user_repo = UserRepository(db)

    async def check_payment(self, payment: Payment) -> FraudCheckResult:
        """Screen a payment before it is captured.

        Args:
            payment: The pending rental payment. ``payer_id`` is the renter,
                ``payee_id`` the tool owner.

        Returns:
            FraudCheckResult. ``is_approved`` is False when the score reaches
            the auto-block threshold; ``requires_manual_review`` is set from
            the manual-review threshold upwards.
        """
        user_id = str(payment.payer_id)
        amount = to_decimal(payment.amount)
        now = utc_now()
        score = Decimal("0")
        rules: list[str] = []

        if not await self.check_velocity_limits(user_id, amount):
            rules.append("velocity_limit")
            score += 30

        if amount >= settings.fraud_critical_risk_amount:
            rules.append("critical_amount_threshold")
            score += 40
        elif amount >= settings.fraud_high_risk_amount:
            rules.append("high_amount_threshold")
            score += 20

        if is_round_amount(amount):
            rules.append("round_amount_pattern")
            score += 10

        if payment.payee_id and await self.is_back_and_forth(user_id, str(payment.payee_id)):
            rules.append("back_and_forth_transaction")
            score += 25

        user_risk = await self.calculate_user_risk_score(user_id)
        score += user_risk * USER_RISK_WEIGHT

        window = timedelta(minutes=settings.fraud_rapid_transaction_window_minutes)
        recent = self.payment_repo.get_processed_by_payer_since(user_id, now - window)
        if len(recent) >= settings.fraud_rapid_transaction_threshold:
            rules.append("rapid_transactions")
            score += 20

        risk_level = get_risk_level(score)
        blocked = score >= settings.fraud_auto_block_score
        requires_review = score >= settings.fraud_manual_review_score
        blocking_reason = None

        if blocked:
            status = FraudCheckStatus.BLOCKED
            blocking_reason = f"Risk score {score:.2f} triggered rules: {', '.join(rules)}"
            logger.warning(
                "Payment %s blocked for user %s: score=%s rules=%s",
                payment.id,
                user_id,
                score,
                rules,
            )
        elif requires_review:
            status = FraudCheckStatus.PENDING_REVIEW
            logger.info("Payment %s held for review: score=%s rules=%s", payment.id, score, rules)
        else:
            status = FraudCheckStatus.APPROVED

        check = self.fraud_check_repo.create(
            user_id=user_id,
            payment_id=payment.id,
            check_type="payment",
            risk_level=risk_level.value,
            risk_score=score,
            triggered_rules=rules,
            status=status.value,
            is_blocked=blocked,
            blocking_reason=blocking_reason,
        )

        return FraudCheckResult(
            is_approved=not blocked,
            risk_level=risk_level,
            risk_score=score,
            requires_manual_review=requires_review,
            blocking_reason=blocking_reason,
            triggered_rules=rules,
            fraud_check_id=check.id,  # type: ignore[arg-type]
        )

    async def calculate_user_risk_score(self, user_id: str) -> Decimal:
        """Risk of the user independent of the payment, capped at 100."""
        now = utc_now()
        score = Decimal("0")

        daily = self.payment_repo.get_processed_by_payer_since(user_id, now - timedelta(days=1))
        if len(daily) > settings.fraud_daily_transaction_limit * Decimal("0.8"):
            score += 20

        user_uuid = _parse_user_id(user_id)
        user = self.user_repo.get_by_id(user_uuid) if user_uuid else None
        if user is not None and user.created_at is not None:
            age = now - as_utc(user.created_at)
            if age < timedelta(days=30):
                score += 15
            elif age < timedelta(days=90):
                score += 5

        return min(score, Decimal("100"))

    async def is_back_and_forth(self, user_a: str, user_b: str) -> bool:
        """Whether two users have paid each other repeatedly in the recent window."""
        since = utc_now() - timedelta(hours=settings.fraud_back_and_forth_window_hours)
        count = self.payment_repo.count_between_parties_since(user_a, user_b, since)
        return count >= settings.fraud_back_and_forth_threshold

    def _reset_expired_window(self, limit: VelocityLimit) -> None:
        now = utc_now()
        if now - as_utc(limit.window_start) > timedelta(hours=int(limit.window_hours)):
            limit.current_amount = Decimal("0")  # type: ignore[assignment]
            limit.current_count = 0  # type: ignore[assignment]
            limit.window_start = now  # type: ignore[assignment]

    async def check_velocity_limits(self, user_id: str, amount: Decimal) -> bool:
        """Return False if one more payment of ``amount`` would exceed any active limit."""
        for limit in self.velocity_repo.get_active_for_user(user_id):
            self._reset_expired_window(limit)
            if (
                to_decimal(limit.current_amount) + amount > to_decimal(limit.amount_limit)
                or int(limit.current_count) + 1 > int(limit.transaction_limit)
            ):
                logger.warning(
                    "Velocity limit exceeded for user %s: %s %s/%s, %s/%s transactions",
                    user_id,
                    limit.limit_type,
                    limit.current_amount,
                    limit.amount_limit,
                    limit.current_count,
                    limit.transaction_limit,
                )
                return False
        self.db.flush()
        return True

    async def update_velocity_tracking(self, user_id: str, amount: Decimal) -> None:
        """Count an approved payment against every active limit of the user."""
        for limit in self.velocity_repo.get_active_for_user(user_id):
            self._reset_expired_window(limit)
            limit.current_amount = to_decimal(limit.current_amount) + amount  # type: ignore[assignment]
            limit.current_count = int(limit.current_count) + 1  # type: ignore[assignment]
        self.db.flush()

    async def set_velocity_limit(
        self,
        user_id: str,
        limit_type: VelocityLimitType,
        amount_limit: Decimal | None = None,
        transaction_limit: int | None = None,
    ) -> VelocityLimit:
        """Create or replace a user's limit for one window, using defaults for omitted values."""
        default_amount, default_count, window_hours = DEFAULT_VELOCITY_LIMITS[limit_type]
        limit = self.velocity_repo.get_for_user_and_type(user_id, limit_type.value)
        if limit is None:
            limit = self.velocity_repo.create(
                user_id=user_id,
                limit_type=limit_type.value,
                window_hours=window_hours,
                amount_limit=amount_limit if amount_limit is not None else default_amount,
                transaction_limit=(
                    transaction_limit if transaction_limit is not None else default_count
                ),
                window_start=utc_now(),
            )
        else:
            if amount_limit is not None:
                limit.amount_limit = amount_limit  # type: ignore[assignment]
            if transaction_limit is not None:
                limit.transaction_limit = transaction_limit  # type: ignore[assignment]
            limit.is_active = True  # type: ignore[assignment]
            self.db.flush()
        return limit

    async def get_pending_reviews(self) -> list[FraudCheck]:
        return self.fraud_check_repo.get_pending_reviews()

    async def review_fraud_check(
        self,
        fraud_check_id: UUID,
        approved: bool,
        reviewer_id: str,
        notes: str | None = None,
    ) -> FraudCheck | None:
        """Record a reviewer's decision on a held or blocked check."""
        check = self.fraud_check_repo.get_by_id(fraud_check_id)
        if check is None:
            return None
        status = FraudCheckStatus.REVIEWED_APPROVED if approved else FraudCheckStatus.REVIEWED_REJECTED
        check.status = status.value  # type: ignore[assignment]
        check.reviewed_by = reviewer_id  # type: ignore[assignment]
        check.reviewed_at = utc_now()  # type: ignore[assignment]
        check.review_notes = notes  # type: ignore[assignment]
        self.db.flush()
        logger.info("Fraud check %s reviewed by %s: %s", fraud_check_id, reviewer_id, status.value)
        return check

    async def review_payment(
        self,
        payment_id: UUID,
        approved: bool,
        reviewer_id: str,
        notes: str | None = None,
    ) -> FraudCheck | None:
        """Record a review decision on the latest check of a payment."""
        check = self.fraud_check_repo.get_latest_for_payment(payment_id)
        if check is None:
            return None
        return await self.review_fraud_check(check.id, approved, reviewer_id, notes)  # type: ignore[arg-type]
