"""Pydantic schemas for API request/response models."""
from .monitor import (
    MaintenanceSchedule,
    ServiceMonitor,
    MonitorCreate,
    MonitorTestRequest,
    MonitorUpdate,
    MaintenanceToggle,
    ReorderRequest,
    ShareCreate,
    MonitorShareResponse,
    CheckResultResponse,
    HistoryEntryResponse,
    AggregateResponse,
    LiveStatus,
    PollerStatus,
    MonitorWithStatus,
    normalize_status_codes,
)

__all__ = [
    "MaintenanceSchedule",
    "ServiceMonitor",
    "MonitorCreate",
    "MonitorTestRequest",
    "MonitorUpdate",
    "MaintenanceToggle",
    "ReorderRequest",
    "ShareCreate",
    "MonitorShareResponse",
    "CheckResultResponse",
    "HistoryEntryResponse",
    "AggregateResponse",
    "LiveStatus",
    "PollerStatus",
    "MonitorWithStatus",
    "normalize_status_codes",
]
