"""
Real-time notification fan-out over WebSockets.

Connections join topics (``user_<id>``, ``role_<role>``, ``staff``) when they
connect. ``publish`` is fire-and-forget: delivery runs in a background task
and failures are logged, never raised to the publisher.
"""

import asyncio
import json
import logging
from collections import defaultdict
from datetime import datetime, timezone
from typing import Any, Dict, Iterable, List, Optional, Set

from fastapi import WebSocket

logger = logging.getLogger(__name__)

STAFF_TOPIC = "staff"


def user_topic(user_id: int) -> str:
    return f"user_{user_id}"


def role_topic(role: str) -> str:
    return f"role_{role}"


def topics_for_user(user) -> List[str]:
    """Topics a connection authenticated as ``user`` joins."""
    if user is None:
        return []
    role = getattr(user.role, "value", user.role)
    topics = [user_topic(user.id), role_topic(role)]
    if user.is_staff:
        topics.append(STAFF_TOPIC)
    return topics


class NotificationHub:
    """In-process registry of WebSocket connections grouped by topic."""

    def __init__(self):
        self._topics: Dict[str, Set[WebSocket]] = defaultdict(set)
        self._pending: Set[asyncio.Task] = set()

    def register(self, websocket: WebSocket, topics: Iterable[str]) -> None:
        for topic in topics:
            self._topics[topic].add(websocket)
        logger.debug(f"WebSocket registered for topics: {list(topics)}")

    def unregister(self, websocket: WebSocket) -> None:
        for topic in list(self._topics):
            self._topics[topic].discard(websocket)
            if not self._topics[topic]:
                del self._topics[topic]

    def subscriber_count(self, topic: str) -> int:
        return len(self._topics.get(topic, ()))

    def publish(self, topic: str, event: str, data: Optional[Dict[str, Any]] = None) -> None:
        """Schedule delivery of ``event`` to every socket on ``topic`` and return."""
        sockets = list(self._topics.get(topic, ()))
        if not sockets:
            return

        payload = json.dumps(
            {
                "event": event,
                "data": data or {},
                "timestamp": datetime.now(timezone.utc).isoformat(),
            },
            default=str,
        )

        try:
            task = asyncio.get_running_loop().create_task(self._deliver(topic, sockets, payload))
        except RuntimeError:
            logger.warning(f"No running event loop; dropping '{event}' for {topic}")
            return

        self._pending.add(task)
        task.add_done_callback(self._pending.discard)

    async def _deliver(self, topic: str, sockets: List[WebSocket], payload: str) -> None:
        for websocket in sockets:
            try:
                await websocket.send_text(payload)
            except Exception as e:
                logger.warning(f"Dropping WebSocket on {topic} after send failure: {e}")
                self.unregister(websocket)

    async def drain(self) -> None:
        """Wait for in-flight deliveries (shutdown and tests)."""
        if self._pending:
            await asyncio.gather(*list(self._pending), return_exceptions=True)
