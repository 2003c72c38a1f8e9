"""Rental model - the booking a settlement transaction pays for."""

from enum import Enum

from sqlalchemy import Column, Date, DateTime, ForeignKey, Numeric, String

from app.core.database import Base
from app.models.shared import UUIDType, generate_uuid, utc_now


class RentalStatus(str, Enum):
    """Rental status enum."""

    PENDING = "pending"
    APPROVED = "approved"
    ACTIVE = "active"
    RETURNED = "returned"
    COMPLETED = "completed"
    CANCELLED = "cancelled"


class Rental(Base):
    """Rental of a tool by a renter for a date range."""

    __tablename__ = "rentals"

    id = Column(UUIDType, primary_key=True, default=generate_uuid)
    tool_id = Column(
        UUIDType, ForeignKey("tools.id", ondelete="RESTRICT"), nullable=False, index=True
    )
    owner_id = Column(
        UUIDType, ForeignKey("users.id", ondelete="RESTRICT"), nullable=False, index=True
    )
    renter_id = Column(
        UUIDType, ForeignKey("users.id", ondelete="RESTRICT"), nullable=False, index=True
    )
    start_date = Column(Date, nullable=True)
    end_date = Column(Date, nullable=True)
    total_cost = Column(Numeric(12, 2), nullable=False)
    deposit_amount = Column(Numeric(12, 2), nullable=False, default=0)
    status = Column(String(20), nullable=False, default=RentalStatus.PENDING.value)
    approved_at = Column(DateTime(timezone=True), nullable=True)
    created_at = Column(DateTime(timezone=True), nullable=False, default=utc_now)
