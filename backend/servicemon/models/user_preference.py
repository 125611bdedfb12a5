"""UserNotificationPreference model - per-user notification opt-ins."""
from sqlalchemy import Column, Integer, String, Text, UniqueConstraint

from ..database import Base


class UserNotificationPreference(Base):
    """Which events of a notification domain a user wants to receive."""

    __tablename__ = "user_notification_preferences"
    __table_args__ = (
        UniqueConstraint("user_id", "domain", name="uq_user_notification_domain"),
    )

    id = Column(Integer, primary_key=True, autoincrement=True)
    user_id = Column(String, nullable=False, index=True)
    domain = Column(String, nullable=False)  # e.g. servicemonitoring
    enabled = Column(Integer, default=1)
    events = Column(Text, nullable=True)  # JSON list; empty/NULL = every allowed event
