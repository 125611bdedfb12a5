"""Monitor schemas for API and for records handed out by storage."""
from datetime import datetime
from typing import List, Optional, Union
from pydantic import BaseModel, Field, field_validator


MONITOR_TYPE_PATTERN = "^(http|tcp|ping)$"


def normalize_status_codes(value: Union[List[str], str, None]) -> Optional[List[str]]:
    """Normalize expected status codes to a list of range strings.

    The UI may send a comma-separated string such as "200-299,301"; lists are
    stripped the same way so both spellings store identically.
    """
    if value is None:
        return None
    if isinstance(value, str):
        parts = value.split(",")
    else:
        parts = [str(part) for part in value]
    return [part.strip() for part in parts if part.strip()]


class MaintenanceSchedule(BaseModel):
    """Recurring maintenance window.

    Fields are kept loose so stored schedules always load; the
    maintenance evaluator treats anything it cannot parse as "not in maintenance".
    """
    enabled: bool = True
    frequency: str = "daily"  # daily, weekly, monthly
    start_time: str = "00:00"  # HH:MM, 24h
    end_time: str = "00:00"  # HH:MM, 24h; before start_time wraps past midnight
    weekly_days: Optional[List[int]] = None  # 0=Sun .. 6=Sat
    monthly_day: Optional[int] = None  # 1-31, clamped to the month length


class ServiceMonitor(BaseModel):
    """A monitor as stored, with JSON columns already parsed."""
    id: int
    owner_id: str
    name: str
    icon_id: Optional[str] = None
    icon_name: Optional[str] = None
    type: str = "http"
    url: Optional[str] = None
    port: Optional[int] = None
    interval_seconds: int = 60
    timeout_seconds: int = 10
    retries: int = 3
    degraded_threshold_ms: int = 2000
    expected_status_codes: List[str] = Field(default_factory=lambda: ["200-299"])
    enabled: bool = True
    maintenance: bool = False
    is_readonly: bool = False
    order_index: int = 0
    notify_down: bool = True
    notify_up: bool = True
    notify_degraded: bool = False
    maintenance_schedule: Optional[MaintenanceSchedule] = None
    external_id: Optional[int] = None
    external_url: Optional[str] = None
    integration_instance_id: Optional[str] = None
    source_integration_id: Optional[str] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None


class MonitorCreate(BaseModel):
    """Schema for creating a new monitor.

    Probe settings left unset fall back to the global monitor defaults.
    """
    owner_id: str = Field(..., min_length=1)
    name: str = Field(..., min_length=1, max_length=255)
    icon_id: Optional[str] = None
    icon_name: Optional[str] = None
    type: str = Field(default="http", pattern=MONITOR_TYPE_PATTERN)
    url: Optional[str] = None
    port: Optional[int] = Field(None, ge=1, le=65535)
    interval_seconds: Optional[int] = Field(None, ge=5, le=86400)
    timeout_seconds: Optional[int] = Field(None, ge=1, le=300)
    retries: Optional[int] = Field(None, ge=1, le=10)
    degraded_threshold_ms: Optional[int] = Field(None, ge=1)
    expected_status_codes: Optional[Union[List[str], str]] = None
    enabled: bool = True
    is_readonly: bool = False
    order_index: Optional[int] = None
    notify_down: bool = True
    notify_up: bool = True
    notify_degraded: bool = False
    maintenance_schedule: Optional[MaintenanceSchedule] = None
    external_id: Optional[int] = None
    external_url: Optional[str] = None
    integration_instance_id: Optional[str] = None
    source_integration_id: Optional[str] = None

    @field_validator("expected_status_codes", mode="before")
    @classmethod
    def _normalize_codes(cls, value):
        return normalize_status_codes(value) or None


class MonitorTestRequest(MonitorCreate):
    """Unsaved monitor configuration for a "test before save" probe."""
    owner_id: str = ""
    name: str = "test"


class MonitorUpdate(BaseModel):
    """Schema for a partial monitor update; only fields that are sent change."""
    name: Optional[str] = Field(None, min_length=1, max_length=255)
    icon_id: Optional[str] = None
    icon_name: Optional[str] = None
    type: Optional[str] = Field(None, pattern=MONITOR_TYPE_PATTERN)
    url: Optional[str] = None
    port: Optional[int] = Field(None, ge=1, le=65535)
    interval_seconds: Optional[int] = Field(None, ge=5, le=86400)
    timeout_seconds: Optional[int] = Field(None, ge=1, le=300)
    retries: Optional[int] = Field(None, ge=1, le=10)
    degraded_threshold_ms: Optional[int] = Field(None, ge=1)
    expected_status_codes: Optional[Union[List[str], str]] = None
    enabled: Optional[bool] = None
    order_index: Optional[int] = None
    notify_down: Optional[bool] = None
    notify_up: Optional[bool] = None
    notify_degraded: Optional[bool] = None
    maintenance_schedule: Optional[MaintenanceSchedule] = None

    @field_validator("expected_status_codes", mode="before")
    @classmethod
    def _normalize_codes(cls, value):
        codes = normalize_status_codes(value)
        if codes is not None and not codes:
            raise ValueError("expected_status_codes must not be empty")
        return codes


class MaintenanceToggle(BaseModel):
    """Request body for toggling manual maintenance."""
    enabled: bool


class ReorderRequest(BaseModel):
    """Monitor IDs in their new display order."""
    ordered_ids: List[int]


class ShareCreate(BaseModel):
    """Share a monitor with another user."""
    user_id: str = Field(..., min_length=1)
    notify: bool = False


class MonitorShareResponse(BaseModel):
    """A monitor share."""
    id: int
    monitor_id: int
    user_id: str
    notify: bool
    created_at: Optional[datetime] = None

    class Config:
        from_attributes = True


class CheckResultResponse(BaseModel):
    """Result of an ad-hoc monitor test."""
    status: str  # up, down, degraded
    response_time_ms: Optional[int] = None
    status_code: Optional[int] = None
    error_message: Optional[str] = None


class HistoryEntryResponse(BaseModel):
    """One recorded check."""
    id: int
    monitor_id: int
    status: str
    response_time_ms: Optional[int] = None
    status_code: Optional[int] = None
    error_message: Optional[str] = None
    checked_at: datetime

    class Config:
        from_attributes = True


class AggregateResponse(BaseModel):
    """Hourly rollup for tick-bar visualization."""
    hour_start: int
    checks_total: int
    checks_up: int
    checks_degraded: int
    checks_down: int
    checks_maintenance: int
    avg_response_ms: Optional[int] = None

    class Config:
        from_attributes = True


class LiveStatus(BaseModel):
    """Poller view of a monitor: official status and retry progress."""
    monitor_id: int
    status: str  # pending, up, degraded, down, maintenance
    consecutive_failures: int = 0
    last_check: Optional[datetime] = None


class PollerStatus(BaseModel):
    """Poller health for the admin diagnostics page."""
    running: bool
    monitor_count: int
    last_health_check: Optional[datetime] = None


class MonitorWithStatus(ServiceMonitor):
    """Monitor with its live poller state and most recent recorded check."""
    live: Optional[LiveStatus] = None
    latest_check: Optional[HistoryEntryResponse] = None
