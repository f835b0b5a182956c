"""Per-session event channels.

The orchestrator publishes lifecycle events (``pairing.code``,
``pairing.connected`` …) on a channel keyed by session id. Subscribers
(e.g. the WebSocket endpoint) get the recent history first, then live
events as they happen.
"""

from __future__ import annotations

import asyncio
import logging
from collections import deque
from collections.abc import AsyncIterator
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any

from pairhub.models.base import utcnow

logger = logging.getLogger(__name__)

PAIRING_CODE = "pairing.code"
PAIRING_UPDATE = "pairing.update"
PAIRING_CONNECTED = "pairing.connected"
PAIRING_CLOSED = "pairing.closed"
PAIRING_ERROR = "pairing.error"

HISTORY_SIZE = 50
RETAIN_CLOSED = 256


@dataclass(frozen=True)
class SessionEvent:
    name: str
    data: dict[str, Any]
    at: datetime = field(default_factory=utcnow)

    def to_json(self) -> dict[str, Any]:
        return {"event": self.name, "data": self.data, "at": self.at.isoformat()}


class SessionChannel:
    def __init__(self, session_id: str, history_size: int = HISTORY_SIZE) -> None:
        self.session_id = session_id
        self.history: deque[SessionEvent] = deque(maxlen=history_size)
        self._subscribers: set[asyncio.Queue[SessionEvent]] = set()

    def publish(self, event: SessionEvent) -> None:
        self.history.append(event)
        for queue in self._subscribers:
            queue.put_nowait(event)

    async def subscribe(self) -> AsyncIterator[SessionEvent]:
        queue: asyncio.Queue[SessionEvent] = asyncio.Queue()
        for event in self.history:
            queue.put_nowait(event)
        self._subscribers.add(queue)
        try:
            while True:
                yield await queue.get()
        finally:
            self._subscribers.discard(queue)

    @property
    def subscriber_count(self) -> int:
        return len(self._subscribers)


class EventHub:
    """Registry of session channels, created lazily.

    Once a session has stopped, :meth:`discard` retires its channel. The
    most recent ``retain_closed`` retired channels keep their history for
    late subscribers; older ones are dropped unless someone is still
    subscribed.
    """

    def __init__(self, retain_closed: int = RETAIN_CLOSED) -> None:
        self._channels: dict[str, SessionChannel] = {}
        self._retired: deque[str] = deque()
        self._retain_closed = retain_closed

    def channel(self, session_id: str) -> SessionChannel:
        if session_id not in self._channels:
            self._channels[session_id] = SessionChannel(session_id)
        return self._channels[session_id]

    def discard(self, session_id: str) -> None:
        if session_id not in self._channels or session_id in self._retired:
            return
        self._retired.append(session_id)
        for _ in range(len(self._retired)):
            if len(self._retired) <= self._retain_closed:
                break
            oldest = self._retired.popleft()
            channel = self._channels.get(oldest)
            if channel is not None and channel.subscriber_count:
                # Still watched: check it again on a later discard.
                self._retired.append(oldest)
                continue
            self._channels.pop(oldest, None)
            logger.debug("Dropped event channel for %s", oldest)

    @property
    def channel_count(self) -> int:
        return len(self._channels)

    def publish(self, session_id: str, name: str, data: dict[str, Any] | None = None) -> SessionEvent:
        event = SessionEvent(name=name, data=data or {})
        logger.debug("[%s] %s %s", session_id, name, event.data)
        self.channel(session_id).publish(event)
        return event

    def history(self, session_id: str) -> list[SessionEvent]:
        channel = self._channels.get(session_id)
        return list(channel.history) if channel else []
