"""Notifier - turns official status changes into user notifications."""
import json
import logging
from typing import Any, Awaitable, Callable, Dict, List, Optional, Tuple

from sqlalchemy.ext.asyncio import AsyncSession

from ..models import Notification
from ..repositories.base import BaseRepository
from ..schemas.monitor import ServiceMonitor
from .classifier import UP, DEGRADED, DOWN
from .hysteresis import Transition
from .maintenance import is_in_maintenance
from .preferences import SERVICE_MONITORING_DOMAIN

logger = logging.getLogger(__name__)

# (display name, webhook config) of an integration instance
InstanceInfo = Tuple[Optional[str], Optional[Dict[str, Any]]]
InstanceLookup = Callable[[str], Awaitable[Optional[InstanceInfo]]]


def event_key_for(old_status: str, new_status: str) -> Optional[str]:
    """Map an official transition to its notification event, if any."""
    if new_status == DOWN:
        return "serviceDown"
    if new_status == UP and old_status == DOWN:
        return "serviceUp"
    if new_status == DEGRADED:
        return "serviceDegraded"
    return None


def notification_icon(monitor: ServiceMonitor) -> Tuple[Optional[str], Optional[str]]:
    """Return (icon_id, lucide_icon) for a monitor's notifications.

    icon_name "custom:<slug>" refers to an uploaded icon; any other
    icon_name is a Lucide icon rendered by the client.
    """
    if monitor.icon_name and monitor.icon_name.startswith("custom:"):
        return monitor.icon_name[len("custom:"):], None
    if monitor.icon_name:
        return None, monitor.icon_name
    return monitor.icon_id, None


class DatabaseNotificationSink(BaseRepository):
    """Stores notifications and pushes them to the user's live connections."""

    def __init__(self, session_factory=None, broadcaster=None):
        super().__init__(session_factory)
        self.broadcaster = broadcaster

    async def create_notification(
        self,
        user_id: str,
        type: str,
        title: str,
        message: str = "",
        icon_id: Optional[str] = None,
        metadata: Optional[Dict[str, Any]] = None,
    ) -> Notification:
        async def op(session: AsyncSession):
            notification = Notification(
                user_id=user_id,
                type=type,
                title=title,
                message=message,
                icon_id=icon_id,
                extra=json.dumps(metadata) if metadata else None,
            )
            session.add(notification)
            await session.flush()
            await session.refresh(notification)
            return notification

        notification = await self._run(op, write=True)

        if self.broadcaster is not None:
            await self.broadcaster.broadcast(f"notifications:{user_id}", {
                "event": "notification",
                "id": notification.id,
                "type": notification.type,
                "title": notification.title,
                "message": notification.message,
                "icon_id": notification.icon_id,
                "metadata": metadata,
                "created_at": notification.created_at,
            })
        return notification


class NotificationDispatcher:
    """Decides who hears about a status change and hands notifications off.

    Status changes go through the batcher so that several monitors failing
    together produce one notification; maintenance notifications are sent
    directly. Failures are logged and never propagate to the caller.
    """

    def __init__(self, monitors, sink, preferences, batcher, instance_lookup: Optional[InstanceLookup] = None):
        self.monitors = monitors
        self.sink = sink
        self.preferences = preferences
        self.batcher = batcher
        self.instance_lookup = instance_lookup

    async def _instance_info(self, monitor: ServiceMonitor) -> InstanceInfo:
        if not monitor.integration_instance_id or self.instance_lookup is None:
            return None, None
        info = await self.instance_lookup(monitor.integration_instance_id)
        return info or (None, None)

    async def _recipients(
        self,
        monitor: ServiceMonitor,
        event_key: str,
        webhook_config: Optional[Dict[str, Any]],
    ) -> List[str]:
        """Owner (as admin) plus opted-in shares that want this event."""
        recipients = []
        if await self.preferences.user_wants_event(
            monitor.owner_id, SERVICE_MONITORING_DOMAIN, event_key, True, webhook_config
        ):
            recipients.append(monitor.owner_id)

        for share in await self.monitors.get_monitor_shares(monitor.id):
            if not share.notify or share.user_id == monitor.owner_id:
                continue
            if await self.preferences.user_wants_event(
                share.user_id, SERVICE_MONITORING_DOMAIN, event_key, False, webhook_config
            ):
                recipients.append(share.user_id)
        return recipients

    def _enabled_for_monitor(self, monitor: ServiceMonitor, event_key: str) -> bool:
        if event_key == "serviceDown":
            return monitor.notify_down
        if event_key == "serviceUp":
            return monitor.notify_up
        if event_key == "serviceDegraded":
            return monitor.notify_degraded
        return True

    async def notify_transition(self, monitor: ServiceMonitor, transition: Transition) -> int:
        """Queue notifications for an official transition. Returns the recipient count."""
        if transition.is_initial:
            return 0
        # Paused monitors stay quiet even if a late result slips through
        if is_in_maintenance(monitor):
            return 0

        event_key = event_key_for(transition.old_status, transition.new_status)
        if event_key is None or not self._enabled_for_monitor(monitor, event_key):
            return 0

        try:
            instance_name, webhook_config = await self._instance_info(monitor)
            recipients = await self._recipients(monitor, event_key, webhook_config)
            icon_id, lucide_icon = notification_icon(monitor)
            for user_id in recipients:
                self.batcher.add(
                    user_id,
                    monitor.integration_instance_id or "",
                    transition.new_status,
                    monitor.name,
                    icon_id=icon_id,
                    lucide_icon=lucide_icon,
                    instance_name=instance_name or "",
                )
            logger.debug(f"Transition notification queued: monitor={monitor.name} event={event_key} recipients={len(recipients)}")
            return len(recipients)
        except Exception as e:
            logger.error(f"Failed to dispatch notification for monitor {monitor.id}: {e}")
            return 0

    async def notify_maintenance(self, monitor: ServiceMonitor, enabled: bool) -> int:
        """Send maintenance start/end notifications. Returns the recipient count."""
        event_key = "serviceMaintenanceStart" if enabled else "serviceMaintenanceEnd"
        try:
            instance_name, webhook_config = await self._instance_info(monitor)
            prefix = f"{instance_name}: " if instance_name else ""
            if enabled:
                title = f"{prefix}{monitor.name} is under maintenance"
            else:
                title = f"{prefix}{monitor.name} maintenance complete"

            icon_id, lucide_icon = notification_icon(monitor)
            recipients = await self._recipients(monitor, event_key, webhook_config)
            for user_id in recipients:
                try:
                    await self.sink.create_notification(
                        user_id=user_id,
                        type="info",
                        title=title,
                        message="",
                        icon_id=icon_id,
                        metadata={"lucide_icon": lucide_icon} if lucide_icon else None,
                    )
                except Exception as e:
                    logger.error(f"Failed to send maintenance notification: user={user_id} monitor={monitor.id} error=\"{e}\"")
            return len(recipients)
        except Exception as e:
            logger.error(f"Failed to dispatch maintenance notification for monitor {monitor.id}: {e}")
            return 0
