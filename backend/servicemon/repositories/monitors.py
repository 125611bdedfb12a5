"""Monitor repository - CRUD, maintenance flag, ordering and shares."""
import json
import logging
from typing import Any, Dict, List, Optional

from pydantic import ValidationError
from sqlalchemy import select, update, delete
from sqlalchemy.ext.asyncio import AsyncSession

from ..errors import InvalidMonitorConfigError
from ..models import Monitor, MonitorAggregate, MonitorHistory, MonitorShare, Setting
from ..models.settings import DEFAULT_SETTINGS
from ..schemas.monitor import (
    MaintenanceSchedule,
    MonitorCreate,
    MonitorUpdate,
    ServiceMonitor,
    normalize_status_codes,
)
from .base import BaseRepository

logger = logging.getLogger(__name__)

BOOL_FIELDS = ("enabled", "maintenance", "is_readonly", "notify_down", "notify_up", "notify_degraded")


def _parse_status_codes(monitor_id: int, raw: Optional[str]) -> List[str]:
    try:
        codes = json.loads(raw) if raw else []
    except json.JSONDecodeError:
        logger.warning(f"Monitor {monitor_id} has unreadable expected_status_codes: {raw!r}")
        return []
    return normalize_status_codes(codes) or []


def _parse_schedule(monitor_id: int, raw: Optional[str]) -> Optional[MaintenanceSchedule]:
    if not raw:
        return None
    try:
        return MaintenanceSchedule.model_validate(json.loads(raw))
    except (json.JSONDecodeError, ValidationError) as e:
        logger.warning(f"Monitor {monitor_id} has unreadable maintenance schedule, ignoring it: {e}")
        return None


def row_to_monitor(row: Monitor) -> ServiceMonitor:
    """Convert an ORM row into a ServiceMonitor record."""
    return ServiceMonitor(
        id=row.id,
        owner_id=row.owner_id,
        name=row.name,
        icon_id=row.icon_id,
        icon_name=row.icon_name,
        type=row.type,
        url=row.url,
        port=row.port,
        interval_seconds=row.interval_seconds,
        timeout_seconds=row.timeout_seconds,
        retries=row.retries,
        degraded_threshold_ms=row.degraded_threshold_ms,
        expected_status_codes=_parse_status_codes(row.id, row.expected_status_codes),
        enabled=bool(row.enabled),
        maintenance=bool(row.maintenance),
        is_readonly=bool(row.is_readonly),
        order_index=row.order_index or 0,
        notify_down=bool(row.notify_down),
        notify_up=bool(row.notify_up),
        notify_degraded=bool(row.notify_degraded),
        maintenance_schedule=_parse_schedule(row.id, row.maintenance_schedule),
        external_id=row.external_id,
        external_url=row.external_url,
        integration_instance_id=row.integration_instance_id,
        source_integration_id=row.source_integration_id,
        created_at=row.created_at,
        updated_at=row.updated_at,
    )


def _validate_timing(interval_seconds: int, timeout_seconds: int) -> None:
    # A probe must finish before the next tick is due
    if timeout_seconds >= interval_seconds:
        raise InvalidMonitorConfigError(
            f"timeout_seconds ({timeout_seconds}) must be less than interval_seconds ({interval_seconds})"
        )


def _encode_schedule(schedule: Any) -> Optional[str]:
    if schedule is None:
        return None
    if isinstance(schedule, MaintenanceSchedule):
        schedule = schedule.model_dump()
    return json.dumps(schedule)


class MonitorRepository(BaseRepository):
    """Repository for monitor CRUD operations."""

    async def get_monitor_defaults(self) -> Dict[str, Any]:
        """Global defaults for new monitors: stored settings over DEFAULT_SETTINGS."""
        async def op(session: AsyncSession):
            result = await session.execute(
                select(Setting).where(Setting.key.in_(list(DEFAULT_SETTINGS)))
            )
            values = dict(DEFAULT_SETTINGS)
            for setting in result.scalars().all():
                values[setting.key] = setting.value
            return values

        values = await self._run(op)
        return {
            "interval_seconds": int(values["monitor_interval_seconds"]),
            "timeout_seconds": int(values["monitor_timeout_seconds"]),
            "retries": int(values["monitor_retries"]),
            "degraded_threshold_ms": int(values["monitor_degraded_threshold_ms"]),
            "expected_status_codes": normalize_status_codes(values["monitor_expected_status_codes"]) or ["200-299"],
        }

    async def apply_defaults(self, data: MonitorCreate) -> Dict[str, Any]:
        """Resolve a create request into concrete column values."""
        defaults = await self.get_monitor_defaults()
        fields = data.model_dump()
        for key, default in defaults.items():
            if fields.get(key) is None:
                fields[key] = default
        if fields.get("order_index") is None:
            fields["order_index"] = 0
        _validate_timing(fields["interval_seconds"], fields["timeout_seconds"])
        return fields

    async def create_monitor(self, data: MonitorCreate) -> ServiceMonitor:
        """Create a new monitor; unspecified probe settings use the global defaults."""
        fields = await self.apply_defaults(data)

        async def op(session: AsyncSession):
            row = Monitor(
                owner_id=fields["owner_id"],
                name=fields["name"],
                icon_id=fields["icon_id"],
                icon_name=fields["icon_name"],
                type=fields["type"],
                url=fields["url"],
                port=fields["port"],
                interval_seconds=fields["interval_seconds"],
                timeout_seconds=fields["timeout_seconds"],
                retries=fields["retries"],
                degraded_threshold_ms=fields["degraded_threshold_ms"],
                expected_status_codes=json.dumps(fields["expected_status_codes"]),
                enabled=1 if fields["enabled"] else 0,
                maintenance=0,
                is_readonly=1 if fields["is_readonly"] else 0,
                order_index=fields["order_index"],
                notify_down=1 if fields["notify_down"] else 0,
                notify_up=1 if fields["notify_up"] else 0,
                notify_degraded=1 if fields["notify_degraded"] else 0,
                maintenance_schedule=_encode_schedule(fields["maintenance_schedule"]),
                external_id=fields["external_id"],
                external_url=fields["external_url"],
                integration_instance_id=fields["integration_instance_id"],
                source_integration_id=fields["source_integration_id"],
            )
            session.add(row)
            await session.flush()
            await session.refresh(row)
            return row_to_monitor(row)

        monitor = await self._run(op, write=True)
        logger.info(f"Created monitor: id={monitor.id} name=\"{monitor.name}\" owner={monitor.owner_id}")
        return monitor

    async def update_monitor(self, monitor_id: int, data: MonitorUpdate) -> Optional[ServiceMonitor]:
        """Apply a partial update; only fields present in the request change."""
        changes = data.model_dump(exclude_unset=True)

        async def op(session: AsyncSession):
            row = await session.get(Monitor, monitor_id)
            if row is None:
                return None

            interval = changes.get("interval_seconds") or row.interval_seconds
            timeout = changes.get("timeout_seconds") or row.timeout_seconds
            _validate_timing(interval, timeout)

            for key, value in changes.items():
                if key == "expected_status_codes":
                    if value is None:
                        continue
                    value = json.dumps(value)
                elif key == "maintenance_schedule":
                    value = _encode_schedule(value)
                elif key in BOOL_FIELDS:
                    if value is None:
                        continue
                    value = 1 if value else 0
                elif value is None and key in ("name", "type", "interval_seconds", "timeout_seconds",
                                               "retries", "degraded_threshold_ms", "order_index"):
                    continue
                setattr(row, key, value)

            await session.flush()
            await session.refresh(row)
            return row_to_monitor(row)

        monitor = await self._run(op, write=True)
        if monitor is not None:
            logger.info(f"Updated monitor: id={monitor_id} fields=[{','.join(changes)}]")
        return monitor

    async def delete_monitor(self, monitor_id: int) -> bool:
        """Delete a monitor with its history, aggregates and shares."""
        async def op(session: AsyncSession):
            await session.execute(delete(MonitorHistory).where(MonitorHistory.monitor_id == monitor_id))
            await session.execute(delete(MonitorAggregate).where(MonitorAggregate.monitor_id == monitor_id))
            await session.execute(delete(MonitorShare).where(MonitorShare.monitor_id == monitor_id))
            result = await session.execute(delete(Monitor).where(Monitor.id == monitor_id))
            return result.rowcount > 0

        deleted = await self._run(op, write=True)
        if deleted:
            logger.info(f"Deleted monitor: id={monitor_id}")
        return deleted

    async def get_monitor_by_id(self, monitor_id: int) -> Optional[ServiceMonitor]:
        async def op(session: AsyncSession):
            row = await session.get(Monitor, monitor_id)
            return row_to_monitor(row) if row else None

        return await self._run(op)

    async def get_monitor_by_external_id(self, external_id: int) -> Optional[ServiceMonitor]:
        """Find an imported monitor by its external monitoring system ID."""
        async def op(session: AsyncSession):
            result = await session.execute(select(Monitor).where(Monitor.external_id == external_id))
            row = result.scalars().first()
            return row_to_monitor(row) if row else None

        return await self._run(op)

    async def _list(self, *criteria, order_by=None) -> List[ServiceMonitor]:
        async def op(session: AsyncSession):
            stmt = select(Monitor).where(*criteria)
            stmt = stmt.order_by(*(order_by or (Monitor.order_index, Monitor.created_at, Monitor.id)))
            result = await session.execute(stmt)
            return [row_to_monitor(row) for row in result.scalars().all()]

        return await self._run(op)

    async def get_enabled_monitors(self) -> List[ServiceMonitor]:
        """All enabled monitors, for the poller."""
        return await self._list(Monitor.enabled == 1, order_by=(Monitor.created_at, Monitor.id))

    async def get_all_monitors(self) -> List[ServiceMonitor]:
        return await self._list()

    async def get_monitors_by_owner(self, owner_id: str) -> List[ServiceMonitor]:
        return await self._list(Monitor.owner_id == owner_id)

    async def reorder_monitors(self, ordered_ids: List[int]) -> None:
        """Set order_index from the position of each ID in the list."""
        async def op(session: AsyncSession):
            for index, monitor_id in enumerate(ordered_ids):
                await session.execute(
                    update(Monitor).where(Monitor.id == monitor_id).values(order_index=index)
                )

        await self._run(op, write=True)
        logger.info(f"Reordered monitors: count={len(ordered_ids)}")

    async def set_monitor_maintenance(self, monitor_id: int, enabled: bool) -> bool:
        """Toggle the manual maintenance flag."""
        async def op(session: AsyncSession):
            result = await session.execute(
                update(Monitor).where(Monitor.id == monitor_id).values(maintenance=1 if enabled else 0)
            )
            return result.rowcount > 0

        changed = await self._run(op, write=True)
        if changed:
            logger.info(f"Maintenance toggled: id={monitor_id} enabled={enabled}")
        return changed

    async def get_monitor_shares(self, monitor_id: int) -> List[MonitorShare]:
        async def op(session: AsyncSession):
            result = await session.execute(
                select(MonitorShare).where(MonitorShare.monitor_id == monitor_id).order_by(MonitorShare.id)
            )
            return list(result.scalars().all())

        return await self._run(op)

    async def share_monitor(self, monitor_id: int, user_id: str, notify: bool = False) -> MonitorShare:
        """Share a monitor with a user, or update the notify flag of an existing share."""
        async def op(session: AsyncSession):
            result = await session.execute(
                select(MonitorShare).where(
                    MonitorShare.monitor_id == monitor_id,
                    MonitorShare.user_id == user_id,
                )
            )
            share = result.scalar_one_or_none()
            if share is None:
                share = MonitorShare(monitor_id=monitor_id, user_id=user_id)
                session.add(share)
            share.notify = 1 if notify else 0
            await session.flush()
            await session.refresh(share)
            return share

        return await self._run(op, write=True)

    async def unshare_monitor(self, monitor_id: int, user_id: str) -> bool:
        async def op(session: AsyncSession):
            result = await session.execute(
                delete(MonitorShare).where(
                    MonitorShare.monitor_id == monitor_id,
                    MonitorShare.user_id == user_id,
                )
            )
            return result.rowcount > 0

        return await self._run(op, write=True)
