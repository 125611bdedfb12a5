"""Settings model - key-value store for global configuration."""
from datetime import datetime
from sqlalchemy import Column, String, DateTime

from ..database import Base


class Setting(Base):
    """Global settings stored as key-value pairs."""

    __tablename__ = "settings"

    key = Column(String, primary_key=True)
    value = Column(String, nullable=False)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)


# Default settings
DEFAULT_SETTINGS = {
    # Defaults applied to new monitors when a field is not supplied
    "monitor_interval_seconds": "60",
    "monitor_timeout_seconds": "10",
    "monitor_retries": "3",  # Consecutive failures before DOWN
    "monitor_degraded_threshold_ms": "2000",
    "monitor_expected_status_codes": "200-299",  # Comma-separated ranges
}
