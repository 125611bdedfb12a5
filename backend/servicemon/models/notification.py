"""Notification model - in-app notifications shown in the dashboard."""
from datetime import datetime
from sqlalchemy import Column, Integer, String, DateTime, Text

from ..database import Base


class Notification(Base):
    """Notification delivered to a single user."""

    __tablename__ = "notifications"

    id = Column(Integer, primary_key=True, autoincrement=True)
    user_id = Column(String, nullable=False, index=True)
    type = Column(String, nullable=False, default="info")  # error, success, warning, info
    title = Column(String, nullable=False)
    message = Column(String, nullable=True)
    icon_id = Column(String, nullable=True)
    extra = Column("metadata", Text, nullable=True)  # JSON
    read = Column(Integer, default=0)
    created_at = Column(DateTime, default=datetime.utcnow)
