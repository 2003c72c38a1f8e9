"""Shared test fixtures for all test modules."""

import contextlib
from dataclasses import dataclass, field
from decimal import Decimal
from typing import Any
from uuid import uuid4

import pytest
from sqlalchemy import create_engine, text
from sqlalchemy.exc import OperationalError
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool

from app.core import database as db_module
from app.core.database import Base
from app.models import PaymentProvider, Rental, Tool, User
from app.services.payment_provider import (
    CapturePaymentRequest,
    CapturePaymentResult,
    CreatePaymentRequest,
    CreatePaymentResult,
    CreatePayoutRequest,
    CreatePayoutResult,
    PaymentProviderBase,
    PaymentStatusResult,
    PayoutStatusResult,
    RefundPaymentRequest,
    RefundResult,
    WebhookProcessResult,
    WebhookValidationResult,
)

# Create an in-memory SQLite engine with StaticPool so all connections
# share the same database state and there are no file-locking issues.
_test_engine = create_engine(
    "sqlite://",
    connect_args={"check_same_thread": False},
    poolclass=StaticPool,
)
_TestSessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=_test_engine)


@pytest.fixture(autouse=True)
def setup_database():
    """Create tables before each test and truncate all data after.

    Patches the module-level engine and SessionLocal so all application code
    uses the in-memory test database. Clears data after each test.
    """
    original_engine = db_module.engine
    original_session = db_module.SessionLocal
    db_module.engine = _test_engine
    db_module.SessionLocal = _TestSessionLocal

    Base.metadata.create_all(bind=_test_engine)

    yield
    with _test_engine.connect() as conn:
        conn.execute(text("PRAGMA foreign_keys = OFF"))
        for table in reversed(Base.metadata.sorted_tables):
            with contextlib.suppress(OperationalError):
                conn.execute(table.delete())
        conn.execute(text("PRAGMA foreign_keys = ON"))
        conn.commit()

    db_module.engine = original_engine
    db_module.SessionLocal = original_session


@pytest.fixture
def db_session():
    """Create a database session for testing."""
    gen = db_module.get_db()
    db = next(gen)
    try:
        yield db
    finally:
        for _ in gen:
            pass


@dataclass
class FakePaymentProvider(PaymentProviderBase):
    """In-memory provider that records calls and returns canned results.

    Tests override the ``*_result`` attributes to simulate declines, and
    ``status_amount`` to simulate the provider reporting a different total.
    """

    status_amount: Decimal | None = None
    create_result: CreatePaymentResult | None = None
    capture_result: CapturePaymentResult | None = None
    status_result: PaymentStatusResult | None = None
    refund_result: RefundResult | None = None
    payout_result: CreatePayoutResult | None = None
    webhook_valid: bool = True
    calls: list[tuple[str, Any]] = field(default_factory=list)
    _orders: dict[str, Decimal] = field(default_factory=dict)

    @property
    def provider_name(self) -> PaymentProvider:
        return PaymentProvider.PAYPAL

    def call_names(self) -> list[str]:
        return [name for name, _ in self.calls]

    async def create_payment(self, request: CreatePaymentRequest) -> CreatePaymentResult:
        self.calls.append(("create_payment", request))
        if self.create_result is not None:
            return self.create_result
        order_id = f"ORDER-{uuid4().hex[:12].upper()}"
        self._orders[order_id] = request.amount
        return CreatePaymentResult(
            success=True,
            payment_id=order_id,
            order_id=order_id,
            approval_url=f"https://paypal.test/checkoutnow?token={order_id}",
            status="CREATED",
        )

    async def capture_payment(self, request: CapturePaymentRequest) -> CapturePaymentResult:
        self.calls.append(("capture_payment", request))
        if self.capture_result is not None:
            return self.capture_result
        return CapturePaymentResult(
            success=True,
            capture_id=f"CAPTURE-{request.payment_id}",
            amount=self._orders.get(request.payment_id),
            currency="USD",
            status="COMPLETED",
        )

    async def get_payment_status(self, payment_id: str) -> PaymentStatusResult:
        self.calls.append(("get_payment_status", payment_id))
        if self.status_result is not None:
            return self.status_result
        amount = self.status_amount if self.status_amount is not None else self._orders.get(payment_id)
        return PaymentStatusResult(success=True, status="APPROVED", amount=amount, currency="USD")

    async def refund_payment(self, request: RefundPaymentRequest) -> RefundResult:
        self.calls.append(("refund_payment", request))
        if self.refund_result is not None:
            return self.refund_result
        return RefundResult(
            success=True,
            refund_id=f"REFUND-{uuid4().hex[:8].upper()}",
            amount=request.amount,
            status="COMPLETED",
        )

    async def create_payout(self, request: CreatePayoutRequest) -> CreatePayoutResult:
        self.calls.append(("create_payout", request))
        if self.payout_result is not None:
            return self.payout_result
        return CreatePayoutResult(
            success=True,
            payout_id=f"BATCH-{uuid4().hex[:8].upper()}",
            batch_id=request.sender_batch_id,
            status="PENDING",
        )

    async def get_payout_status(self, payout_id: str) -> PayoutStatusResult:
        self.calls.append(("get_payout_status", payout_id))
        return PayoutStatusResult(success=True, status="SUCCESS")

    async def validate_webhook(
        self, payload: bytes, headers: dict[str, str]
    ) -> WebhookValidationResult:
        self.calls.append(("validate_webhook", headers))
        if not self.webhook_valid:
            return WebhookValidationResult(is_valid=False, error_message="Invalid signature")
        return WebhookValidationResult(is_valid=True)

    async def process_webhook(self, payload: dict[str, Any]) -> WebhookProcessResult:
        resource = payload.get("resource") or {}
        return WebhookProcessResult(
            success=True,
            event_type=payload.get("event_type"),
            resource_id=resource.get("id"),
            payer_id=(resource.get("payer") or {}).get("payer_id"),
            metadata={"event_id": payload.get("id"), "order_id": None},
        )


@pytest.fixture
def fake_provider() -> FakePaymentProvider:
    return FakePaymentProvider()


def create_user(db: Session, email: str | None = None, first_name: str = "Test") -> User:
    user = User(email=email or f"user-{uuid4().hex[:10]}@example.com", first_name=first_name)
    db.add(user)
    db.commit()
    db.refresh(user)
    return user


def create_rental(
    db: Session,
    owner: User,
    renter: User,
    total_cost: Decimal = Decimal("100.00"),
    deposit_amount: Decimal = Decimal("20.00"),
    tool_name: str = "Cordless Drill",
) -> Rental:
    tool = Tool(owner_id=owner.id, name=tool_name, daily_rate=Decimal("25.00"))
    db.add(tool)
    db.flush()
    rental = Rental(
        tool_id=tool.id,
        owner_id=owner.id,
        renter_id=renter.id,
        total_cost=total_cost,
        deposit_amount=deposit_amount,
    )
    db.add(rental)
    db.commit()
    db.refresh(rental)
    return rental


@pytest.fixture
def owner(db_session: Session) -> User:
    return create_user(db_session, email="owner@example.com", first_name="Olivia")


@pytest.fixture
def renter(db_session: Session) -> User:
    return create_user(db_session, email="renter@example.com", first_name="Ravi")


@pytest.fixture
def rental(db_session: Session, owner: User, renter: User) -> Rental:
    return create_rental(db_session, owner, renter)
