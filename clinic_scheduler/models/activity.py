from sqlalchemy import Column, Integer, String, DateTime, Text
from sqlalchemy.sql import func

from ..core.database import Base

class SystemActivity(Base):
    """Clinic-wide audit trail of appointment changes, shown to admins."""

    __tablename__ = "system_activities"

    id = Column(Integer, primary_key=True, index=True)
    type = Column(String(50), nullable=False)
    message = Column(Text, nullable=False)
    related_id = Column(Integer, nullable=True)
    created_at = Column(DateTime, server_default=func.now(), index=True)

    def __repr__(self):
        return f"<SystemActivity(id={self.id}, type='{self.type}', related_id={self.related_id})>"
