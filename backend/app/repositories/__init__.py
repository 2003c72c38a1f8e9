from app.repositories.fraud_check_repository import FraudCheckRepository, VelocityLimitRepository
from app.repositories.payment_repository import PaymentRepository
from app.repositories.payment_settings_repository import PaymentSettingsRepository
from app.repositories.payout_repository import PayoutRepository
from app.repositories.rental_repository import RentalRepository
from app.repositories.tool_repository import ToolRepository
from app.repositories.transaction_repository import TransactionRepository
from app.repositories.user_repository import UserRepository

__all__ = [
    "FraudCheckRepository",
    "PaymentRepository",
    "PaymentSettingsRepository",
    "PayoutRepository",
    "RentalRepository",
    "ToolRepository",
    "TransactionRepository",
    "UserRepository",
    "VelocityLimitRepository",
]
