"""MonitorShare model - grants a non-owner visibility of a monitor."""
from datetime import datetime
from sqlalchemy import Column, Integer, String, DateTime, ForeignKey, UniqueConstraint
from sqlalchemy.orm import relationship

from ..database import Base


class MonitorShare(Base):
    """A user who can see a monitor and optionally receives its notifications."""

    __tablename__ = "service_monitor_shares"
    __table_args__ = (
        UniqueConstraint("monitor_id", "user_id", name="uq_monitor_shares_user"),
    )

    id = Column(Integer, primary_key=True, autoincrement=True)
    monitor_id = Column(Integer, ForeignKey("service_monitors.id", ondelete="CASCADE"), nullable=False, index=True)
    user_id = Column(String, nullable=False, index=True)
    notify = Column(Integer, default=0)
    created_at = Column(DateTime, default=datetime.utcnow)

    monitor = relationship("Monitor", back_populates="shares")
