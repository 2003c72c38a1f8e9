"""Tool model - an item an owner lists for rent."""

from sqlalchemy import Column, DateTime, ForeignKey, Numeric, String

from app.core.database import Base
from app.models.shared import UUIDType, generate_uuid, utc_now


class Tool(Base):
    """Rentable tool listing."""

    __tablename__ = "tools"

    id = Column(UUIDType, primary_key=True, default=generate_uuid)
    owner_id = Column(
        UUIDType, ForeignKey("users.id", ondelete="RESTRICT"), nullable=False, index=True
    )
    name = Column(String(255), nullable=False)
    daily_rate = Column(Numeric(12, 2), nullable=False, default=0)
    deposit_amount = Column(Numeric(12, 2), nullable=False, default=0)
    created_at = Column(DateTime(timezone=True), nullable=False, default=utc_now)
