"""
Notification Hub - topic-based change notifications for connected clients.

Collaborators that mutate durable state call ``notify(topic, action, id)``.
The hub fans a small JSON frame out to every connected client subscribed to
that topic. Delivery is best-effort and at-most-once: the frame is an
invalidation signal, clients re-fetch authoritative state on receipt.

The hub knows nothing about transports. A client is registered with a
``send`` callable taking the encoded frame; the websocket adapter in
``ui.server`` provides one that schedules the write on the socket's event loop.

Usage:
    hub = get_notification_hub()
    client = hub.connect(send=lambda frame: print(frame))
    hub.handle_client_message(client, '{"type": "subscribe", "topics": ["tasks"]}')
    hub.notify("tasks")
"""

import json
import threading
import uuid
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Callable, Dict, Iterable, List, Optional, Set

from swarm_engine.utils.logger import get_logger

logger = get_logger(__name__)


@dataclass
class HubClient:
    """One connected client and the topics it listens to."""
    client_id: str
    send: Callable[[str], None]
    topics: Set[str] = field(default_factory=set)
    connected: bool = True
    connected_at: str = field(default_factory=lambda: datetime.now().isoformat())


class NotificationHub:
    """
    Topic broadcaster safe to call from the queue worker thread and from
    request handlers at the same time.
    """

    def __init__(self):
        self._clients: Dict[str, HubClient] = {}
        self._lock = threading.Lock()
        self.stats = {
            "notifications_sent": 0,
            "frames_delivered": 0,
            "send_failures": 0,
        }

    # ------------------------------------------------------------------
    # Client registry
    # ------------------------------------------------------------------

    def connect(self, send: Callable[[str], None], topics: Optional[Iterable[str]] = None) -> HubClient:
        client = HubClient(client_id=str(uuid.uuid4()), send=send)
        if topics:
            client.topics.update(t for t in topics if isinstance(t, str))
        with self._lock:
            self._clients[client.client_id] = client
        logger.debug(f"Hub client connected: {client.client_id}")
        return client

    def disconnect(self, client: HubClient) -> None:
        client.connected = False
        with self._lock:
            self._clients.pop(client.client_id, None)
        logger.debug(f"Hub client disconnected: {client.client_id}")

    def subscribe(self, client: HubClient, topics: Iterable[str]) -> None:
        with self._lock:
            client.topics.update(t for t in topics if isinstance(t, str))

    def unsubscribe(self, client: HubClient, topics: Iterable[str]) -> None:
        with self._lock:
            for topic in topics:
                client.topics.discard(topic)

    def handle_client_message(self, client: HubClient, raw: str) -> None:
        """Apply a ``{"type": "subscribe"|"unsubscribe", "topics": [...]}`` frame. Malformed frames are ignored."""
        try:
            message = json.loads(raw)
        except (TypeError, ValueError):
            return
        if not isinstance(message, dict) or not isinstance(message.get("topics"), list):
            return
        if message.get("type") == "subscribe":
            self.subscribe(client, message["topics"])
        elif message.get("type") == "unsubscribe":
            self.unsubscribe(client, message["topics"])

    @property
    def client_count(self) -> int:
        with self._lock:
            return len(self._clients)

    # ------------------------------------------------------------------
    # Broadcasting
    # ------------------------------------------------------------------

    def _broadcast(self, topic: str, frame: Dict[str, Any]) -> int:
        payload = json.dumps(frame, default=str)
        with self._lock:
            targets: List[HubClient] = [
                c for c in self._clients.values() if c.connected and topic in c.topics
            ]
            self.stats["notifications_sent"] += 1

        delivered = 0
        for client in targets:
            try:
                client.send(payload)
                delivered += 1
            except Exception as e:
                logger.warning(f"Dropping hub client {client.client_id} after send failure: {e}")
                self.stats["send_failures"] += 1
                self.disconnect(client)

        self.stats["frames_delivered"] += delivered
        return delivered

    def notify(self, topic: str, action: str = "update", id: Optional[str] = None) -> int:
        """
        Signal that state behind ``topic`` changed.

        Returns:
            Number of clients the frame was handed to
        """
        frame: Dict[str, Any] = {"topic": topic, "action": action}
        if id:
            frame["id"] = id
        return self._broadcast(topic, frame)

    def notify_with_payload(self, topic: str, data: Any) -> int:
        """Send an event whose payload is itself the update (e.g. live status deltas)."""
        return self._broadcast(topic, {"topic": topic, "action": "event", "data": data})

    def get_statistics(self) -> Dict[str, Any]:
        return {**self.stats, "connected_clients": self.client_count}


# ============================================================================
# GLOBAL HUB INSTANCE
# ============================================================================

_global_hub: Optional[NotificationHub] = None


def get_notification_hub() -> NotificationHub:
    global _global_hub
    if _global_hub is None:
        _global_hub = NotificationHub()
    return _global_hub


def notify(topic: str, action: str = "update", id: Optional[str] = None) -> int:
    return get_notification_hub().notify(topic, action, id)
