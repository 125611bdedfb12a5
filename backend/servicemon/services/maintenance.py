"""Maintenance evaluator - decides whether a monitor is in a maintenance window."""
import calendar
import logging
from datetime import datetime, timedelta
from typing import Optional

from ..schemas.monitor import MaintenanceSchedule, ServiceMonitor

logger = logging.getLogger(__name__)


def _minutes_since_midnight(value: str) -> int:
    """Parse "HH:MM" into minutes since midnight; raises ValueError if malformed."""
    hour_text, minute_text = value.split(":")
    hour, minute = int(hour_text), int(minute_text)
    if not (0 <= hour <= 23 and 0 <= minute <= 59):
        raise ValueError(f"time out of range: {value}")
    return hour * 60 + minute


def is_in_maintenance_window(schedule: Optional[MaintenanceSchedule], now: datetime) -> bool:
    """Check whether ``now`` falls inside a recurring maintenance window.

    The window is [start_time, end_time); when end_time is earlier than
    start_time it wraps past midnight into the next day. Weekly schedules
    match on the weekday the window started (0=Sun .. 6=Sat) and monthly
    schedules on day of month, clamped to the last day of that month.

    A disabled, missing or malformed schedule is never in maintenance, so a
    bad schedule cannot silently suppress monitoring.
    """
    if schedule is None or not schedule.enabled:
        return False

    try:
        start = _minutes_since_midnight(schedule.start_time)
        end = _minutes_since_midnight(schedule.end_time)
    except (ValueError, AttributeError) as e:
        logger.warning(f"Malformed maintenance schedule times ({schedule.start_time!r}-{schedule.end_time!r}): {e}")
        return False

    current = now.hour * 60 + now.minute
    day = now
    if start <= end:
        in_range = start <= current < end
    else:
        in_range = current >= start or current < end
        if current < end:
            # After midnight: the window belongs to the day it started on
            day = now - timedelta(days=1)

    if not in_range:
        return False

    if schedule.frequency == "daily":
        return True

    if schedule.frequency == "weekly":
        # datetime.weekday() is Mon=0; schedules use Sun=0
        weekday = (day.weekday() + 1) % 7
        return weekday in (schedule.weekly_days or [])

    if schedule.frequency == "monthly":
        if not schedule.monthly_day:
            return False
        last_day = calendar.monthrange(day.year, day.month)[1]
        return day.day == min(schedule.monthly_day, last_day)

    logger.warning(f"Unknown maintenance frequency: {schedule.frequency!r}")
    return False


def is_in_maintenance(monitor: ServiceMonitor, now: Optional[datetime] = None) -> bool:
    """Manual maintenance flag or an active scheduled window."""
    if monitor.maintenance:
        return True
    return is_in_maintenance_window(monitor.maintenance_schedule, now or datetime.now())
