from app.models.fraud_check import (
    FraudCheck,
    FraudCheckStatus,
    FraudRiskLevel,
    VelocityLimit,
    VelocityLimitType,
)
from app.models.payment import Payment, PaymentProvider, PaymentStatus, PaymentType
from app.models.payment_settings import PaymentSettings, PayoutSchedule
from app.models.payout import Payout, PayoutStatus, PayoutTransaction
from app.models.rental import Rental, RentalStatus
from app.models.tool import Tool
from app.models.transaction import Transaction, TransactionStatus
from app.models.user import User

__all__ = [
    "FraudCheck",
    "FraudCheckStatus",
    "FraudRiskLevel",
    "Payment",
    "PaymentProvider",
    "PaymentSettings",
    "PaymentStatus",
    "PaymentType",
    "Payout",
    "PayoutSchedule",
    "PayoutStatus",
    "PayoutTransaction",
    "Rental",
    "RentalStatus",
    "Tool",
    "Transaction",
    "TransactionStatus",
    "User",
    "VelocityLimit",
    "VelocityLimitType",
]
