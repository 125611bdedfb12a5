"""Services for probing, scheduling, and notifying."""
from .checker import CheckerService
from .scheduler import MonitorScheduler
from .notifier import NotificationDispatcher, DatabaseNotificationSink
from .batcher import NotificationBatcher
from .preferences import PreferenceResolver
from .realtime import ConnectionManager

__all__ = [
    "CheckerService",
    "MonitorScheduler",
    "NotificationDispatcher",
    "DatabaseNotificationSink",
    "NotificationBatcher",
    "PreferenceResolver",
    "ConnectionManager",
]
