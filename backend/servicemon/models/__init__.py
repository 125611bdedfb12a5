"""Database models."""
from .settings import Setting
from .monitor import Monitor
from .monitor_history import MonitorHistory
from .monitor_aggregate import MonitorAggregate
from .monitor_share import MonitorShare
from .notification import Notification
from .user_preference import UserNotificationPreference

__all__ = [
    "Setting",
    "Monitor",
    "MonitorHistory",
    "MonitorAggregate",
    "MonitorShare",
    "Notification",
    "UserNotificationPreference",
]
