"""Service tracking live connections and fanning out class events."""

from __future__ import annotations

import logging
from typing import Any, Hashable, Protocol

from quiz_live.constants.protocol_constants import (
    EVT_PARTICIPANT_HEARTBEAT,
    EVT_QUESTION_LAUNCHED,
    EVT_QUESTION_RESULTS,
)
from quiz_live.core.wire import encode_message

logger = logging.getLogger(__name__)

_INFO_EVENTS = {EVT_QUESTION_LAUNCHED, EVT_QUESTION_RESULTS}


class Connection(Protocol):
    """Anything that can take one serialized frame without blocking."""

    def send(self, raw: str) -> None: ...


class ConnectionRegistry:
    """Keeps per-class subscriber sets and their reverse mapping in step."""

    def __init__(self) -> None:
        self._connections: set[Connection] = set()
        self._subscribers: dict[str, set[Connection]] = {}
        self._subscriptions: dict[Hashable, set[str]] = {}

    def register(self, connection: Connection) -> None:
        self._connections.add(connection)
        self._subscriptions.setdefault(connection, set())

    def unregister(self, connection: Connection) -> set[str]:
        """Forget a connection and return the classes it was subscribed to."""
        class_ids = set(self._subscriptions.get(connection, set()))
        for class_id in class_ids:
            self._discard(connection, class_id)
        self._subscriptions.pop(connection, None)
        self._connections.discard(connection)
        return class_ids

    def subscribe(self, connection: Connection, class_id: str) -> None:
        self.register(connection)
        self._subscribers.setdefault(class_id, set()).add(connection)
        self._subscriptions[connection].add(class_id)

    def unsubscribe(self, connection: Connection, class_id: str) -> None:
        self._discard(connection, class_id)

    def _discard(self, connection: Connection, class_id: str) -> None:
        members = self._subscribers.get(class_id)
        if members is not None:
            members.discard(connection)
            if not members:
                del self._subscribers[class_id]
        classes = self._subscriptions.get(connection)
        if classes is not None:
            classes.discard(class_id)

    def get_connection_count(self) -> int:
        return len(self._connections)

    def publish(self, payload: dict[str, Any], class_id: str | None = None) -> int:
        """Serialize once and send to the class's subscribers, or to everyone.

        Returns the number of connections that accepted the frame. A failing
        send is logged and skipped.
        """
        raw = encode_message(payload)
        if class_id is not None:
            targets = list(self._subscribers.get(class_id, ()))
        else:
            targets = list(self._connections)

        event_type = payload.get("type")
        if event_type in _INFO_EVENTS:
            logger.info("Broadcasting %s for class %s to %d connections", event_type, class_id, len(targets))
        elif event_type != EVT_PARTICIPANT_HEARTBEAT:
            logger.debug("Broadcasting %s for class %s to %d connections", event_type, class_id, len(targets))

        delivered = 0
        for connection in targets:
            try:
                connection.send(raw)
            except Exception:
                logger.warning("Send of %s to %r failed", event_type, connection, exc_info=True)
                continue
            delivered += 1
        return delivered
