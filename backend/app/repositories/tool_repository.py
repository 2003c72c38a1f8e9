"""Tool repository for data access."""

from uuid import UUID

from sqlalchemy.orm import Session

from app.models.tool import Tool


class ToolRepository:
    """Repository for Tool model."""

    def __init__(self, db: Session):
        self.db = db

    def get_by_id(self, tool_id: UUID) -> Tool | None:
        return self.db.query(Tool).filter(Tool.id == tool_id).first()
