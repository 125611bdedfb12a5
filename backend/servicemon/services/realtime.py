"""WebSocket connection manager for topic-based real-time updates."""
import asyncio
import json
import logging
from datetime import datetime
from typing import Dict, Set, Any

from fastapi import WebSocket

logger = logging.getLogger(__name__)

SERVICE_STATUS_TOPIC = "service-status"
SERVICE_MONITORS_TOPIC = "service-monitors"


def maintenance_topic(integration_instance_id: str = None) -> str:
    """Topic clients of a monitor listen on for refreshes.

    Instance IDs look like "<type>-<suffix>", so a monitor of instance
    "uptimekuma-abc" publishes on "uptimekuma:uptimekuma-abc".
    """
    if integration_instance_id:
        instance_type = integration_instance_id.split("-")[0]
        return f"{instance_type}:{integration_instance_id}"
    return SERVICE_MONITORS_TOPIC


class ConnectionManager:
    """Tracks WebSocket subscriptions per topic and fans messages out to them."""

    def __init__(self):
        self.subscriptions: Dict[WebSocket, Set[str]] = {}
        self._lock = asyncio.Lock()

    async def connect(self, websocket: WebSocket):
        """Accept a new WebSocket connection."""
        await websocket.accept()
        async with self._lock:
            self.subscriptions[websocket] = set()
        logger.info(f"WebSocket connected. Total connections: {len(self.subscriptions)}")

    async def disconnect(self, websocket: WebSocket):
        """Remove a disconnected WebSocket."""
        async with self._lock:
            self.subscriptions.pop(websocket, None)
        logger.info(f"WebSocket disconnected. Total connections: {len(self.subscriptions)}")

    async def subscribe(self, websocket: WebSocket, topic: str):
        async with self._lock:
            if websocket in self.subscriptions:
                self.subscriptions[websocket].add(topic)
        logger.debug(f"WebSocket subscribed: topic={topic}")

    async def unsubscribe(self, websocket: WebSocket, topic: str):
        async with self._lock:
            if websocket in self.subscriptions:
                self.subscriptions[websocket].discard(topic)

    async def handle_message(self, websocket: WebSocket, raw: str):
        """Apply a client control message: {"action": "subscribe"|"unsubscribe", "topic": ...}."""
        try:
            message = json.loads(raw)
        except json.JSONDecodeError:
            logger.debug(f"Ignoring non-JSON WebSocket message: {raw[:100]!r}")
            return
        if not isinstance(message, dict):
            return

        topic = message.get("topic")
        if not isinstance(topic, str) or not topic:
            return
        if message.get("action") == "subscribe":
            await self.subscribe(websocket, topic)
        elif message.get("action") == "unsubscribe":
            await self.unsubscribe(websocket, topic)

    async def broadcast(self, topic: str, message: Dict[str, Any]):
        """Send a message to every client subscribed to the topic."""
        async with self._lock:
            connections = [ws for ws, topics in self.subscriptions.items() if topic in topics]

        if not connections:
            return

        message_json = json.dumps({"topic": topic, "data": message}, default=str)

        # Send to all subscribers, removing any that fail
        disconnected = []
        for websocket in connections:
            try:
                await websocket.send_text(message_json)
            except Exception as e:
                logger.debug(f"Failed to send to WebSocket: {e}")
                disconnected.append(websocket)

        if disconnected:
            async with self._lock:
                for ws in disconnected:
                    self.subscriptions.pop(ws, None)

    async def trigger_topic_poll(self, topic: str):
        """Ask subscribers of a topic to refresh their data."""
        logger.debug(f"Triggering topic poll: topic={topic}")
        await self.broadcast(topic, {
            "event": "poll",
            "timestamp": datetime.utcnow().isoformat(),
        })

    @property
    def connection_count(self) -> int:
        """Return the number of active connections."""
        return len(self.subscriptions)


# Global instance
connection_manager = ConnectionManager()
