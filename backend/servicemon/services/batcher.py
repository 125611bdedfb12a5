"""Notification batcher - combines status notifications raised close together."""
import asyncio
import logging
from dataclasses import dataclass
from typing import Dict, List, Optional, Tuple

logger = logging.getLogger(__name__)

BatchKey = Tuple[str, str, str]  # (user_id, instance_id, status)

STATUS_WORDS = {
    "up": "Recovered",
    "down": "Down",
    "degraded": "Degraded",
}

SINGLE_MESSAGES = {
    "up": "Service recovered",
    "down": "Service is unreachable",
    "degraded": "Response time is slow",
}

PLURAL_SUFFIXES = {
    "up": "recovered",
    "down": "are unreachable",
    "degraded": "are slow",
}

NOTIFICATION_TYPES = {
    "up": "success",
    "down": "error",
    "degraded": "warning",
}


@dataclass
class PendingNotification:
    """One monitor waiting in a batch."""
    monitor_name: str
    instance_name: str = ""
    icon_id: Optional[str] = None
    lucide_icon: Optional[str] = None


def build_title(status: str, names: List[str], instance_name: str = "") -> str:
    if len(names) == 1:
        title = f"{names[0]} is {status.upper()}"
    else:
        title = f"{len(names)} Services {STATUS_WORDS[status]}"
    return f"{instance_name}: {title}" if instance_name else title


def build_message(status: str, names: List[str]) -> str:
    count = len(names)
    if count == 1:
        return SINGLE_MESSAGES[status]
    if count <= 3:
        return f"{', '.join(names)} {PLURAL_SUFFIXES[status]}"
    return f"{', '.join(names[:2])}, and {count - 2} more {PLURAL_SUFFIXES[status]}"


class NotificationBatcher:
    """Collects status notifications per (user, instance, status) for a short window.

    The first notification for a key starts the window; when it closes a
    single combined notification goes to the sink, e.g. "3 Services Down".
    """

    def __init__(self, sink, window_seconds: float = 10.0):
        self.sink = sink
        self.window_seconds = window_seconds
        self._pending: Dict[BatchKey, List[PendingNotification]] = {}
        self._timers: Dict[BatchKey, asyncio.Task] = {}

    def add(
        self,
        user_id: str,
        instance_id: str,
        status: str,
        monitor_name: str,
        icon_id: Optional[str] = None,
        lucide_icon: Optional[str] = None,
        instance_name: str = "",
    ) -> None:
        """Queue a notification; starts the batch timer if it is the first for its key."""
        if status not in NOTIFICATION_TYPES:
            raise ValueError(f"Cannot batch notifications for status {status!r}")

        key = (user_id, instance_id or "", status)
        items = self._pending.setdefault(key, [])
        items.append(PendingNotification(
            monitor_name=monitor_name,
            instance_name=instance_name,
            icon_id=icon_id,
            lucide_icon=lucide_icon,
        ))
        logger.debug(f"Notification batched: key={key} monitor={monitor_name} pending={len(items)}")

        if key not in self._timers:
            self._timers[key] = asyncio.create_task(self._flush_later(key))

    async def _flush_later(self, key: BatchKey) -> None:
        await asyncio.sleep(self.window_seconds)
        # Timer is finishing; don't let flush() cancel the running task
        self._timers.pop(key, None)
        await self.flush(key)

    async def flush(self, key: BatchKey) -> None:
        """Send the combined notification for one key now."""
        items = self._pending.pop(key, [])
        timer = self._timers.pop(key, None)
        if timer is not None:
            timer.cancel()
        if not items:
            return

        user_id, _, status = key
        names = [item.monitor_name for item in items]
        icon_ids = [item.icon_id for item in items if item.icon_id]
        lucide_icons = [item.lucide_icon for item in items if item.lucide_icon]

        # Lucide icons win over custom icons
        icon_id = None
        metadata = None
        if lucide_icons:
            metadata = {"lucide_icon": lucide_icons[0]} if len(lucide_icons) == 1 else {"lucide_icons": lucide_icons}
        elif len(icon_ids) == 1:
            icon_id = icon_ids[0]
        elif icon_ids:
            metadata = {"icon_ids": icon_ids}

        title = build_title(status, names, items[0].instance_name)
        try:
            await self.sink.create_notification(
                user_id=user_id,
                type=NOTIFICATION_TYPES[status],
                title=title,
                message=build_message(status, names),
                icon_id=icon_id,
                metadata=metadata,
            )
            logger.info(f"Batched notification sent: user={user_id} status={status} count={len(items)} title=\"{title}\"")
        except Exception as e:
            logger.error(f"Failed to send batched notification: user={user_id} status={status} error=\"{e}\"")

    async def flush_all(self) -> None:
        """Send everything pending, e.g. on shutdown."""
        for key in list(self._pending):
            await self.flush(key)

    @property
    def pending_count(self) -> int:
        return sum(len(items) for items in self._pending.values())
