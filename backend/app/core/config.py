from decimal import Decimal

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    model_config = SettingsConfigDict(env_file=".env", env_file_encoding="utf-8", extra="ignore")

    APP_NAME: str = "Tool Rental Settlement API"
    version: str = "0.1.0"
    DEBUG: bool = False
    APP_DOMAIN: str = "example.com"
    APP_DATABASE_DSN: str = "sqlite:////tmp/database.db"
    REDIS_URL: str = "redis://localhost:6379"

    # Auth
    JWT_SECRET: str = "change-me-in-production"
    JWT_ALGORITHM: str = "HS256"

    # Fernet key for columns encrypted at rest; derived from JWT_SECRET when empty
    ENCRYPTION_KEY: str = ""

    # SMTP
    SMTP_HOST: str = ""
    SMTP_PORT: int = 587
    SMTP_USERNAME: str = ""
    SMTP_PASSWORD: str = ""
    SMTP_FROM_EMAIL: str = "noreply@example.com"
    SMTP_FROM_NAME: str = "Tool Rental"
    SMTP_USE_TLS: bool = True

    # Payments
    DEFAULT_COMMISSION_RATE: Decimal = Decimal("0.10")
    MINIMUM_PAYOUT_AMOUNT: Decimal = Decimal("10.00")
    DEFAULT_CURRENCY: str = "USD"
    FRONTEND_BASE_URL: str = "http://localhost:5173"
    PAYMENT_PROVIDER_TIMEOUT_SECONDS: float = 30.0
    PAYMENT_AMOUNT_TOLERANCE: Decimal = Decimal("0.01")
    PAYMENT_ABANDONED_AFTER_MINUTES: int = 15

    # Payout scheduling
    PAYOUT_HOLD_HOURS: int = 24
    PAYOUT_HOUR_UTC: int = 10

    # PayPal settings
    paypal_client_id: str = ""
    paypal_client_secret: str = ""
    paypal_mode: str = "sandbox"  # "sandbox" or "live"
    paypal_webhook_id: str = ""
    paypal_webhook_tolerance_minutes: int = 5
    paypal_marketplace_enabled: bool = False  # Send owner as payee with a platform fee

    # Fraud screening
    fraud_high_risk_amount: Decimal = Decimal("2000")
    fraud_critical_risk_amount: Decimal = Decimal("5000")
    fraud_auto_block_score: int = 85
    fraud_manual_review_score: int = 60
    fraud_rapid_transaction_threshold: int = 5
    fraud_rapid_transaction_window_minutes: int = 15
    fraud_back_and_forth_threshold: int = 3
    fraud_back_and_forth_window_hours: int = 24
    fraud_daily_transaction_limit: int = 20
    fraud_round_amount_tolerance: Decimal = Decimal("0.01")

    # CORS
    CORS_ORIGINS: str = "http://localhost:3000,http://localhost:5173"

    @property
    def paypal_base_url(self) -> str:
        if self.paypal_mode == "live":
            return "https://api-m.paypal.com"
        return "https://api-m.sandbox.paypal.com"


settings = Settings()
