"""User model - the renters and tool owners a settlement refers to."""

from sqlalchemy import Column, DateTime, String

from app.core.database import Base
from app.models.shared import UUIDType, generate_uuid, utc_now


class User(Base):
    """Marketplace user."""

    __tablename__ = "users"

    id = Column(UUIDType, primary_key=True, default=generate_uuid)
    email = Column(String(255), nullable=False, unique=True, index=True)
    first_name = Column(String(100), nullable=True)
    last_name = Column(String(100), nullable=True)
    created_at = Column(DateTime(timezone=True), nullable=False, default=utc_now)

    @property
    def display_name(self) -> str:
        name = " ".join(part for part in (self.first_name, self.last_name) if part)
        return name or str(self.email)
