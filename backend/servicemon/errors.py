"""Exception hierarchy for the service monitor."""
from typing import Optional


class ServiceMonitorError(Exception):
    """Base class for all service monitor errors."""

    def __init__(self, message: str, cause: Optional[Exception] = None):
        super().__init__(message)
        self.message = message
        self.cause = cause


class StorageError(ServiceMonitorError):
    """A persistence operation failed (database unavailable, constraint error, ...)."""


class MonitorNotFoundError(ServiceMonitorError):
    """The requested monitor does not exist."""

    def __init__(self, monitor_id: int):
        super().__init__(f"Monitor not found: {monitor_id}")
        self.monitor_id = monitor_id


class InvalidMonitorConfigError(ServiceMonitorError):
    """Monitor configuration violates a constraint (e.g. timeout >= interval)."""
