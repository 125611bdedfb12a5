"""Preference resolver - decides whether a user receives a notification event."""
import json
import logging
from typing import Any, Dict, List, Optional

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from ..models import UserNotificationPreference
from ..repositories.base import BaseRepository

logger = logging.getLogger(__name__)

SERVICE_MONITORING_DOMAIN = "servicemonitoring"

SERVICE_EVENTS = [
    "serviceDown",
    "serviceUp",
    "serviceDegraded",
    "serviceMaintenanceStart",
    "serviceMaintenanceEnd",
]

# Events enabled when an instance has no webhook configuration of its own
DEFAULT_EVENTS = {
    SERVICE_MONITORING_DOMAIN: {
        "admin_events": SERVICE_EVENTS,
        "user_events": SERVICE_EVENTS,
    },
}


def effective_events(domain: str, webhook_config: Optional[Dict[str, Any]], is_admin: bool) -> List[str]:
    """Events the instance allows for admins or for regular users."""
    key = "admin_events" if is_admin else "user_events"
    configured = (webhook_config or {}).get(key)
    if configured is not None:
        return list(configured)
    return list(DEFAULT_EVENTS.get(domain, {}).get(key, []))


class PreferenceResolver(BaseRepository):
    """Resolves notification opt-ins from instance config and per-user preferences."""

    async def get_preference(self, user_id: str, domain: str) -> Optional[UserNotificationPreference]:
        async def op(session: AsyncSession):
            result = await session.execute(
                select(UserNotificationPreference).where(
                    UserNotificationPreference.user_id == user_id,
                    UserNotificationPreference.domain == domain,
                )
            )
            return result.scalar_one_or_none()

        return await self._run(op)

    async def set_preference(
        self,
        user_id: str,
        domain: str,
        enabled: bool = True,
        events: Optional[List[str]] = None,
    ) -> UserNotificationPreference:
        """Create or replace a user's preference for one domain."""
        async def op(session: AsyncSession):
            result = await session.execute(
                select(UserNotificationPreference).where(
                    UserNotificationPreference.user_id == user_id,
                    UserNotificationPreference.domain == domain,
                )
            )
            pref = result.scalar_one_or_none()
            if pref is None:
                pref = UserNotificationPreference(user_id=user_id, domain=domain)
                session.add(pref)
            pref.enabled = 1 if enabled else 0
            pref.events = json.dumps(events) if events else None
            await session.flush()
            return pref

        return await self._run(op, write=True)

    async def user_wants_event(
        self,
        user_id: str,
        domain: str,
        event_key: str,
        is_admin: bool,
        webhook_config: Optional[Dict[str, Any]] = None,
    ) -> bool:
        """Check whether a user should be notified of an event.

        Admins receive every event the instance allows for admins. Regular
        users additionally need the domain enabled in their own preferences
        and, if they picked specific events, this event among them.
        Any failure resolves to False.
        """
        try:
            allowed = effective_events(domain, webhook_config, is_admin)
            if is_admin:
                return event_key in allowed

            if event_key not in allowed:
                return False

            pref = await self.get_preference(user_id, domain)
            if pref is None:
                return True
            if not pref.enabled:
                return False

            events = json.loads(pref.events) if pref.events else []
            if not events:
                return True
            return event_key in events
        except Exception as e:
            logger.error(f"Error checking notification preference: user={user_id} event={event_key} error=\"{e}\"")
            return False
