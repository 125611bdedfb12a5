"""Monitor model - service health probe targets."""
from datetime import datetime
from sqlalchemy import Column, Integer, String, DateTime, Text
from sqlalchemy.orm import relationship

from ..database import Base


class Monitor(Base):
    """A monitored service - HTTP, TCP, or ping check."""

    __tablename__ = "service_monitors"

    id = Column(Integer, primary_key=True, autoincrement=True)
    owner_id = Column(String, nullable=False, index=True)  # User who created/imported the monitor
    name = Column(String, nullable=False)
    icon_id = Column(String, nullable=True)
    icon_name = Column(String, nullable=True)  # "custom:<slug>" or a Lucide icon name
    type = Column(String, nullable=False, default="http")  # http, tcp, ping
    url = Column(String, nullable=True)  # URL (http) or hostname (tcp/ping)
    port = Column(Integer, nullable=True)  # tcp only
    interval_seconds = Column(Integer, nullable=False, default=60)
    timeout_seconds = Column(Integer, nullable=False, default=10)
    retries = Column(Integer, nullable=False, default=3)  # Consecutive failures before DOWN
    degraded_threshold_ms = Column(Integer, nullable=False, default=2000)
    expected_status_codes = Column(Text, nullable=False, default='["200-299"]')  # JSON array
    enabled = Column(Integer, default=1, index=True)
    maintenance = Column(Integer, default=0)  # Manual maintenance override
    is_readonly = Column(Integer, default=0)  # Imported from an external monitoring system
    order_index = Column(Integer, default=0)
    notify_down = Column(Integer, default=1)
    notify_up = Column(Integer, default=1)
    notify_degraded = Column(Integer, default=0)
    maintenance_schedule = Column(Text, nullable=True)  # JSON object
    external_id = Column(Integer, nullable=True, index=True)
    external_url = Column(String, nullable=True)
    integration_instance_id = Column(String, nullable=True)
    source_integration_id = Column(String, nullable=True)
    created_at = Column(DateTime, default=datetime.utcnow)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    # Relationships (rows are removed by ON DELETE CASCADE)
    history = relationship("MonitorHistory", back_populates="monitor", passive_deletes=True)
    aggregates = relationship("MonitorAggregate", back_populates="monitor", passive_deletes=True)
    shares = relationship("MonitorShare", back_populates="monitor", passive_deletes=True)
