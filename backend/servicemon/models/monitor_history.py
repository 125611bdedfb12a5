"""MonitorHistory model - one row per completed check."""
from datetime import datetime
from sqlalchemy import Column, Integer, String, DateTime, ForeignKey, Index
from sqlalchemy.orm import relationship

from ..database import Base


class MonitorHistory(Base):
    """Raw check result, pruned after the history retention window."""

    __tablename__ = "service_monitor_history"
    __table_args__ = (
        Index("idx_monitor_history_recent", "monitor_id", "checked_at"),
    )

    id = Column(Integer, primary_key=True, autoincrement=True)
    monitor_id = Column(Integer, ForeignKey("service_monitors.id", ondelete="CASCADE"), nullable=False)
    status = Column(String, nullable=False)  # up, down, degraded
    response_time_ms = Column(Integer, nullable=True)  # NULL on connection failure
    status_code = Column(Integer, nullable=True)  # HTTP only
    error_message = Column(String, nullable=True)
    checked_at = Column(DateTime, default=datetime.utcnow, index=True)

    monitor = relationship("Monitor", back_populates="history")
